"""
Audit models package.
"""
from sitemap_audit.features.audit.models.audit_job import AuditJob, AuditStatus

__all__ = ["AuditJob", "AuditStatus"]
