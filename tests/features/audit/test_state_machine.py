import pytest
from unittest.mock import MagicMock

from sitemap_audit.features.audit.exceptions import InvalidTransition
from sitemap_audit.features.audit.models.audit_job import AuditStatus
from sitemap_audit.features.audit.schemas.audit import AggregateReport, AuditSummary
from sitemap_audit.features.audit.services.orchestration.state_machine import (
    AuditStateMachine,
    determine_terminal_status,
)

SITEMAP = "https://example.com/sitemap.xml"


def report(attempted: int, succeeded: int, score=None) -> AggregateReport:
    return AggregateReport(
        overall_score=score,
        pages_attempted=attempted,
        pages_succeeded=succeeded,
        pages_failed=attempted - succeeded,
    )


class TestDetermineTerminalStatus:
    @pytest.mark.parametrize("attempted,succeeded,expected", [
        (5, 5, AuditStatus.COMPLETED),
        (5, 4, AuditStatus.COMPLETED),  # exactly 20% failed
        (3, 2, AuditStatus.PARTIAL),
        (10, 1, AuditStatus.PARTIAL),
        (3, 0, AuditStatus.FAILED),
        (0, 0, AuditStatus.FAILED),
    ])
    def test_default_threshold(self, attempted, succeeded, expected):
        assert determine_terminal_status(attempted, succeeded, attempted - succeeded, 0.2) == expected

    def test_threshold_is_configurable(self):
        assert determine_terminal_status(3, 2, 1, 0.5) == AuditStatus.COMPLETED


class TestAuditStateMachine:
    @pytest.fixture
    def store(self):
        return MagicMock()

    def test_happy_path_persists_each_transition(self, store):
        machine = AuditStateMachine(store, "job-1")

        machine.start()
        summary = machine.complete(report(2, 2, score=85.0), SITEMAP)

        assert machine.status == AuditStatus.COMPLETED
        assert summary.status == AuditStatus.COMPLETED
        assert summary.overall_score == 85.0
        assert store.update_audit_status.call_args_list[0].args == ("job-1", AuditStatus.IN_PROGRESS, None)
        assert store.update_audit_status.call_args_list[1].args == ("job-1", AuditStatus.COMPLETED, summary)

    def test_partial_uses_configured_threshold(self, store):
        machine = AuditStateMachine(store, "job-1", partial_threshold_ratio=0.2)
        machine.start()

        summary = machine.complete(report(3, 2, score=70.0), SITEMAP)

        assert summary.status == AuditStatus.PARTIAL

    def test_zero_successes_fail_with_no_score(self, store):
        machine = AuditStateMachine(store, "job-1")
        machine.start()

        summary = machine.complete(report(3, 0), SITEMAP)

        assert summary.status == AuditStatus.FAILED
        assert summary.overall_score is None
        assert summary.error

    def test_pending_can_fail_directly(self, store):
        machine = AuditStateMachine(store, "job-1")

        summary = machine.fail(AuditSummary(sitemap_url=SITEMAP, status=AuditStatus.PENDING, error="bad xml"))

        assert machine.status == AuditStatus.FAILED
        assert summary.status == AuditStatus.FAILED
        store.update_audit_status.assert_called_once_with("job-1", AuditStatus.FAILED, summary)

    def test_cannot_complete_from_pending(self, store):
        machine = AuditStateMachine(store, "job-1")

        with pytest.raises(InvalidTransition):
            machine.complete(report(1, 1, score=90.0), SITEMAP)

        store.update_audit_status.assert_not_called()

    @pytest.mark.parametrize("terminal", [AuditStatus.COMPLETED, AuditStatus.PARTIAL, AuditStatus.FAILED])
    def test_terminal_states_never_transition(self, store, terminal):
        machine = AuditStateMachine(store, "job-1", status=terminal)

        with pytest.raises(InvalidTransition):
            machine.start()
        with pytest.raises(InvalidTransition):
            machine.fail(AuditSummary(sitemap_url=SITEMAP, status=AuditStatus.FAILED))

        store.update_audit_status.assert_not_called()

    def test_failed_store_write_keeps_status(self, store):
        store.update_audit_status.side_effect = RuntimeError("db down")
        machine = AuditStateMachine(store, "job-1")

        with pytest.raises(RuntimeError):
            machine.start()

        assert machine.status == AuditStatus.PENDING
