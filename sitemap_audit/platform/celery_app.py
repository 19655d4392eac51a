from celery import Celery
from kombu import Queue

from sitemap_audit.platform.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - audit.pipeline: one task per sitemap audit; the task owns its own
      page worker pool, so a worker process runs a whole audit end to end.
    """
    celery_app = Celery(
        "sitemap_audit",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        result_expires=3600,

        task_routes={
            "sitemap_audit.features.audit.workers.tasks.run_audit_pipeline": {"queue": "audit.pipeline"},
        },

        task_queues=(
            Queue("default"),
            Queue("audit.pipeline"),
        ),

        task_default_queue="default",

        # One audit at a time per worker process; the audit fans out internally
        worker_prefetch_multiplier=1,

        task_acks_late=True,
        task_reject_on_worker_lost=True,
    )

    celery_app.autodiscover_tasks(["sitemap_audit.features.audit.workers"])

    return celery_app


celery_app = create_celery_app()
