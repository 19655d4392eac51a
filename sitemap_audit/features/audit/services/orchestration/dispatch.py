import logging
from typing import Any, Dict, Optional

from sitemap_audit.features.audit.services.persistence.audit_store import SqlAlchemyAuditStore
from sitemap_audit.platform.utils.url_validator import validate_sitemap_url

logger = logging.getLogger(__name__)


def enqueue_sitemap_audit(
    store: SqlAlchemyAuditStore,
    sitemap_url: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Validate a sitemap URL, create its PENDING audit job and queue the run.

    Returns immediately with the job id; progress is read back from the
    store.

    Raises:
        ValueError: the URL is malformed or does not point at an .xml file
    """
    from sitemap_audit.features.audit.workers.tasks import run_audit_pipeline

    is_valid, normalized_url, error = validate_sitemap_url(sitemap_url)
    if not is_valid:
        raise ValueError(error)

    job_id = store.create_audit_job(normalized_url, metadata)
    async_result = run_audit_pipeline.delay(job_id, normalized_url)
    store.set_celery_task_id(job_id, async_result.id)

    logger.info(f"[{job_id}] Queued audit for {normalized_url} (task {async_result.id})")
    return job_id
