import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sitemap_audit.features.audit.exceptions import AuditJobNotFound
from sitemap_audit.features.audit.models.audit_job import AuditJob, AuditStatus
from sitemap_audit.features.audit.schemas.audit import AuditSummary

logger = logging.getLogger(__name__)


class SqlAlchemyAuditStore:
    """Persists audit jobs through a synchronous SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def create_audit_job(self, sitemap_url: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        metadata = metadata or {}
        job = AuditJob(
            sitemap_url=sitemap_url,
            client_name=metadata.get("client_name"),
            client_email=metadata.get("client_email"),
            status=AuditStatus.PENDING,
        )
        try:
            self.db.add(job)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        logger.info(f"Created audit job {job.id} for {sitemap_url}")
        return job.id

    def get_audit_job(self, job_id: str) -> Optional[AuditJob]:
        return self.db.query(AuditJob).filter(AuditJob.id == job_id).first()

    def set_celery_task_id(self, job_id: str, task_id: str) -> None:
        job = self._require(job_id)
        job.celery_task_id = task_id
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def update_audit_status(
        self,
        job_id: str,
        status: AuditStatus,
        summary: Optional[AuditSummary] = None,
    ) -> None:
        job = self._require(job_id)
        job.status = status

        now = datetime.now(timezone.utc)
        if status == AuditStatus.IN_PROGRESS:
            job.started_at = now
        if status.is_terminal:
            job.completed_at = now

        if summary is not None:
            job.summary = summary.model_dump(mode="json")
            job.pages_attempted = summary.pages_attempted
            job.pages_succeeded = summary.pages_succeeded
            job.pages_failed = summary.pages_failed
            job.score_overall = summary.overall_score
            job.critical_issues_count = summary.issue_counts.get("critical", 0)
            job.warning_issues_count = summary.issue_counts.get("warning", 0)
            job.info_issues_count = summary.issue_counts.get("info", 0)
            job.error_message = summary.error

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[{job_id}] Failed to persist status {status.value}: {e}")
            raise

    def _require(self, job_id: str) -> AuditJob:
        job = self.get_audit_job(job_id)
        if job is None:
            raise AuditJobNotFound(f"Audit job {job_id} not found")
        return job
