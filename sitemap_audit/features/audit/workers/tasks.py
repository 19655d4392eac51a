from typing import Any, Dict

from sitemap_audit.features.audit.exceptions import InvalidTransition, SitemapError
from sitemap_audit.features.audit.services.orchestration.pipeline import AuditPipeline
from sitemap_audit.features.audit.services.persistence.audit_store import SqlAlchemyAuditStore
from sitemap_audit.platform.celery_app import celery_app
from sitemap_audit.platform.config import AuditPipelineConfig
from sitemap_audit.platform.db.session import get_sync_db
from sitemap_audit.platform.logger import get_job_logger


# No autoretry: a rerun would call the content gap service a second time
@celery_app.task(
    bind=True,
    name="sitemap_audit.features.audit.workers.tasks.run_audit_pipeline",
)
def run_audit_pipeline(self, job_id: str, sitemap_url: str) -> Dict[str, Any]:
    """
    Run a sitemap audit end to end.

    Args:
        job_id: The PENDING audit job ID
        sitemap_url: Validated sitemap URL

    Returns:
        Dict with the terminal status and headline numbers
    """
    log = get_job_logger(__name__, job_id)
    log.info(f"Audit task {self.request.id} picked up {sitemap_url}")

    db = get_sync_db()
    try:
        store = SqlAlchemyAuditStore(db)
        pipeline = AuditPipeline(store, config=AuditPipelineConfig.from_settings())
        try:
            summary = pipeline.run(job_id, sitemap_url)
        except SitemapError as e:
            # The job is already FAILED; nothing to retry
            log.warning(f"Audit rejected: {e.message}")
            return {"job_id": job_id, "status": "FAILED", "error": e.message}
        except InvalidTransition as e:
            # Redelivered after the job already ran (acks_late)
            log.warning(f"Skipping audit: job is already {e.current.value}")
            return {"job_id": job_id, "status": e.current.value, "skipped": True}

        return {
            "job_id": job_id,
            "status": summary.status.value,
            "overall_score": summary.overall_score,
            "pages_attempted": summary.pages_attempted,
            "pages_succeeded": summary.pages_succeeded,
            "pages_failed": summary.pages_failed,
        }
    finally:
        db.close()
