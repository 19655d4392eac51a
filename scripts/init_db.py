from sitemap_audit.features.audit.models import AuditJob  # noqa: F401
from sitemap_audit.platform.db.base import Base
from sitemap_audit.platform.db.session import get_engine


def init_db():
    Base.metadata.create_all(bind=get_engine())
    print(f"✅ Created tables: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    init_db()
