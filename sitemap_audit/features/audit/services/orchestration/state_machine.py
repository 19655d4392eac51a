import logging
from typing import Optional

from sitemap_audit.features.audit.exceptions import InvalidTransition
from sitemap_audit.features.audit.models.audit_job import AuditStatus
from sitemap_audit.features.audit.schemas.audit import AggregateReport, AuditSummary

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AuditStatus.PENDING: {AuditStatus.IN_PROGRESS, AuditStatus.FAILED},
    AuditStatus.IN_PROGRESS: {AuditStatus.COMPLETED, AuditStatus.PARTIAL, AuditStatus.FAILED},
    AuditStatus.COMPLETED: set(),
    AuditStatus.PARTIAL: set(),
    AuditStatus.FAILED: set(),
}


def determine_terminal_status(attempted: int, succeeded: int, failed: int, partial_threshold_ratio: float) -> AuditStatus:
    if succeeded == 0:
        return AuditStatus.FAILED
    if attempted and failed / attempted > partial_threshold_ratio:
        return AuditStatus.PARTIAL
    return AuditStatus.COMPLETED


class AuditStateMachine:
    """
    Tracks one audit job's lifecycle.

    PENDING -> IN_PROGRESS -> COMPLETED | PARTIAL | FAILED, plus
    PENDING -> FAILED when the input is rejected. Every transition is
    written to the store; terminal transitions carry the AuditSummary.
    """

    def __init__(
        self,
        store,
        job_id: str,
        partial_threshold_ratio: float = 0.2,
        status: AuditStatus = AuditStatus.PENDING,
    ):
        self.store = store
        self.job_id = job_id
        self.partial_threshold_ratio = partial_threshold_ratio
        self._status = status

    @property
    def status(self) -> AuditStatus:
        return self._status

    def start(self) -> None:
        self._transition(AuditStatus.IN_PROGRESS)

    def fail(self, summary: AuditSummary) -> AuditSummary:
        summary = summary.model_copy(update={"status": AuditStatus.FAILED})
        self._transition(AuditStatus.FAILED, summary)
        return summary

    def complete(self, report: AggregateReport, sitemap_url: str) -> AuditSummary:
        status = determine_terminal_status(
            report.pages_attempted,
            report.pages_succeeded,
            report.pages_failed,
            self.partial_threshold_ratio,
        )
        summary = report.to_summary(sitemap_url, status)
        if status == AuditStatus.FAILED:
            summary = summary.model_copy(update={"error": "No pages could be audited"})
        self._transition(status, summary)
        return summary

    def _transition(self, target: AuditStatus, summary: Optional[AuditSummary] = None) -> None:
        if target not in ALLOWED_TRANSITIONS[self._status]:
            raise InvalidTransition(self._status, target)

        self.store.update_audit_status(self.job_id, target, summary)
        logger.info(f"[{self.job_id}] {self._status.value} -> {target.value}")
        self._status = target
