from sqlalchemy import Column, String, Integer, Float, DateTime, Text, Index, Enum, JSON
import enum

from sitemap_audit.platform.db.base import BaseModel


class AuditStatus(enum.Enum):
    """Audit job status state machine"""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (AuditStatus.COMPLETED, AuditStatus.PARTIAL, AuditStatus.FAILED)


class AuditJob(BaseModel):

    __tablename__ = "audit_jobs"

    sitemap_url = Column(String(2048), nullable=False)

    # Optional client metadata
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)

    status = Column(Enum(AuditStatus), default=AuditStatus.PENDING, nullable=False, index=True)
    error_message = Column(Text, nullable=True)

    # Crawl counters
    pages_attempted = Column(Integer, nullable=True)
    pages_succeeded = Column(Integer, nullable=True)
    pages_failed = Column(Integer, nullable=True)

    # NULL when no page succeeded
    score_overall = Column(Float, nullable=True)

    # Issue counts (denormalized)
    critical_issues_count = Column(Integer, default=0, nullable=False)
    warning_issues_count = Column(Integer, default=0, nullable=False)
    info_issues_count = Column(Integer, default=0, nullable=False)

    # Full AuditSummary as JSON (page results, content gaps, url structure)
    summary = Column(JSON, nullable=True)

    celery_task_id = Column(String(128), nullable=True, index=True)

    # Timestamps (created_at and updated_at inherited from BaseModel)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('idx_audit_jobs_created', 'created_at'),
    )
