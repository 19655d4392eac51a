import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError

from sitemap_audit.features.audit.exceptions import AuditJobNotFound
from sitemap_audit.features.audit.models.audit_job import AuditStatus
from sitemap_audit.features.audit.schemas.audit import AuditSummary
from sitemap_audit.features.audit.services.persistence.audit_store import SqlAlchemyAuditStore

SITEMAP = "https://example.com/sitemap.xml"


class TestSqlAlchemyAuditStore:
    def test_create_job_starts_pending(self, store):
        job_id = store.create_audit_job(SITEMAP, {"client_name": "Acme", "client_email": "ops@acme.test"})

        job = store.get_audit_job(job_id)
        assert job.status == AuditStatus.PENDING
        assert job.sitemap_url == SITEMAP
        assert job.client_name == "Acme"
        assert job.client_email == "ops@acme.test"
        assert job.created_at is not None

    def test_job_ids_are_unique(self, store):
        assert store.create_audit_job(SITEMAP) != store.create_audit_job(SITEMAP)

    def test_get_unknown_job_returns_none(self, store):
        assert store.get_audit_job("missing") is None

    def test_in_progress_sets_started_at(self, store):
        job_id = store.create_audit_job(SITEMAP)

        store.update_audit_status(job_id, AuditStatus.IN_PROGRESS)

        job = store.get_audit_job(job_id)
        assert job.status == AuditStatus.IN_PROGRESS
        assert job.started_at is not None
        assert job.completed_at is None

    def test_terminal_status_stores_summary(self, store):
        job_id = store.create_audit_job(SITEMAP)
        summary = AuditSummary(
            sitemap_url=SITEMAP,
            status=AuditStatus.PARTIAL,
            overall_score=70.0,
            pages_attempted=3,
            pages_succeeded=2,
            pages_failed=1,
            issue_counts={"critical": 2, "warning": 4, "info": 1},
        )

        store.update_audit_status(job_id, AuditStatus.PARTIAL, summary)

        job = store.get_audit_job(job_id)
        assert job.status == AuditStatus.PARTIAL
        assert job.completed_at is not None
        assert job.score_overall == 70.0
        assert (job.pages_attempted, job.pages_succeeded, job.pages_failed) == (3, 2, 1)
        assert (job.critical_issues_count, job.warning_issues_count, job.info_issues_count) == (2, 4, 1)
        assert job.summary["status"] == "PARTIAL"

    def test_unknown_job_update_raises(self, store):
        with pytest.raises(AuditJobNotFound):
            store.update_audit_status("missing", AuditStatus.FAILED)

    def test_set_celery_task_id(self, store):
        job_id = store.create_audit_job(SITEMAP)

        store.set_celery_task_id(job_id, "task-123")

        assert store.get_audit_job(job_id).celery_task_id == "task-123"

    def test_commit_failure_rolls_back(self):
        db = MagicMock()
        db.commit.side_effect = OperationalError("COMMIT", {}, Exception("disk full"))

        with pytest.raises(OperationalError):
            SqlAlchemyAuditStore(db).create_audit_job(SITEMAP)

        db.rollback.assert_called_once()
