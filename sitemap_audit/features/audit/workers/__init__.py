"""Celery workers module - imports all task modules for autodiscovery."""

from sitemap_audit.features.audit.workers import tasks  # noqa: F401
