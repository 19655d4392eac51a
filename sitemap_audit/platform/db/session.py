from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sitemap_audit.platform.config import settings

# One engine per worker process, created on first use
_sync_engine = None
_sync_session_factory = None


def build_engine(db_url: str) -> Engine:
    """Create a sync engine; async driver URLs are converted for worker use."""
    if db_url.startswith("postgresql+asyncpg://"):
        db_url = db_url.replace("postgresql+asyncpg://", "postgresql://")

    if db_url.startswith("sqlite"):
        # in-memory databases must share one connection across threads
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in db_url or db_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(db_url, **kwargs)

    return create_engine(
        db_url,
        pool_size=25,
        max_overflow=25,
        pool_timeout=30,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def get_engine() -> Engine:
    global _sync_engine

    if _sync_engine is None:
        _sync_engine = build_engine(settings.DATABASE_URL)

    return _sync_engine


def get_session_factory() -> sessionmaker:
    global _sync_session_factory

    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())

    return _sync_session_factory


def get_sync_db():
    """Get a database session for Celery tasks."""
    return get_session_factory()()
