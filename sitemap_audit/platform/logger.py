import logging
import os
from logging.handlers import RotatingFileHandler

from sitemap_audit.platform.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _log_file_path() -> str:
    log_dir = os.path.abspath(settings.LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)
    return os.path.join(log_dir, "sitemap_audit.log")


def get_logger(name: str) -> logging.Logger:
    """
    Logger that writes to the console and a rotating file under LOG_DIR.

    Handlers are attached once per name, so repeated calls from the same
    module (e.g. re-imported Celery tasks) do not duplicate lines.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    level = logging.DEBUG if settings.DEBUG else logging.INFO
    logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(
        _log_file_path(),
        maxBytes=settings.LOG_MAX_BYTES,
        backupCount=settings.LOG_BACKUP_COUNT,
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


class JobLogger(logging.LoggerAdapter):
    """Prefixes every message with the audit job id: "[<job_id>] message"."""

    def process(self, msg, kwargs):
        return f"[{self.extra['job_id']}] {msg}", kwargs


def get_job_logger(name: str, job_id: str) -> JobLogger:
    return JobLogger(get_logger(name), {"job_id": job_id})
