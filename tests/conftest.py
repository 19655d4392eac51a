"""
Test configuration and fixtures for the sitemap audit pipeline.

Every test runs against an in-memory SQLite database and mocked
network/browser collaborators; nothing here needs Chrome or the internet.
"""

import os
import tempfile
import threading
import time
from typing import Dict, Generator, List, Optional

from dotenv import load_dotenv

load_dotenv()

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "sitemap_audit_test_logs"))

import pytest
from sqlalchemy.orm import Session, sessionmaker

from sitemap_audit.features.audit.exceptions import FetchTimeout
from sitemap_audit.features.audit.models.audit_job import AuditJob  # noqa: F401
from sitemap_audit.features.audit.schemas.audit import (
    ContentGap,
    ContentGapReport,
    PageAnalysis,
    RenderedPage,
    SeoFinding,
    Severity,
)
from sitemap_audit.features.audit.services.persistence.audit_store import SqlAlchemyAuditStore
from sitemap_audit.platform.config import AuditPipelineConfig
from sitemap_audit.platform.db.base import Base
from sitemap_audit.platform.db.session import build_engine


GOOD_HTML = """
<html lang="en">
<head>
  <title>Acme Widgets - Industrial Widgets for Every Job</title>
  <meta name="description" content="Acme builds industrial widgets for factories, workshops and home garages. Browse the catalog, compare models and order spare parts online.">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="canonical" href="https://example.com/">
</head>
<body>
  <main>
    <h1>Industrial widgets</h1>
    <h2>Our catalog</h2>
    <img src="/widget.png" alt="A blue widget">
    <a href="/catalog">Browse the catalog</a>
  </main>
</body>
</html>
"""


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def store(db_session) -> SqlAlchemyAuditStore:
    return SqlAlchemyAuditStore(db_session)


@pytest.fixture
def pipeline_config() -> AuditPipelineConfig:
    return AuditPipelineConfig(
        max_pages_per_sitemap=500,
        concurrency_limit=3,
        per_page_timeout_ms=2_000,
        overall_deadline_ms=10_000,
        partial_threshold_ratio=0.2,
        content_gap_timeout_ms=1_000,
    )


class FakeFetcher:
    """
    Stands in for PageFetcher.

    `behaviour` maps a URL to either a delay in seconds before a
    successful render, or an exception (or list of exceptions, consumed
    one per call) to raise. `abort()` only records the URL; a sleeping
    fetch still runs to the end.
    """

    def __init__(self, behaviour: Optional[Dict] = None, delay: float = 0.0):
        self.behaviour = behaviour or {}
        self.delay = delay
        self.calls: List[str] = []
        self.aborted: List[str] = []
        self._lock = threading.Lock()

    def fetch(self, url: str, timeout: float) -> RenderedPage:
        with self._lock:
            self.calls.append(url)
            action = self.behaviour.get(url, self.delay)
            if isinstance(action, list):
                action = action.pop(0) if action else self.delay

        if isinstance(action, Exception):
            raise action
        if action:
            time.sleep(action)
        return RenderedPage(url=url, final_url=url, html=GOOD_HTML, title="Page")

    def abort(self, url: str) -> bool:
        with self._lock:
            self.aborted.append(url)
        return True


class FakeAnalyzer:
    """Returns a fixed score per URL (default 100) with one finding per 5 points lost."""

    def __init__(self, scores: Optional[Dict[str, int]] = None):
        self.scores = scores or {}

    def analyze(self, page: RenderedPage, deadline: Optional[float] = None) -> PageAnalysis:
        score = self.scores.get(page.url, 100)
        findings = [
            SeoFinding(check="title_length", severity=Severity.warning, message="Title is too short")
            for _ in range((100 - score) // 5)
        ]
        return PageAnalysis(
            seo_findings=findings,
            score=score,
            title=f"Title of {page.url}",
            headings=["Heading"],
        )


class FakeContentGapService:
    def __init__(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.error = error
        self.delay = delay
        self.calls: List[List[Dict]] = []

    def analyze_content_gaps(self, pages):
        self.calls.append(pages)
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return ContentGapReport(
            gaps=[ContentGap(
                category="Essential Pages",
                description="Missing privacy policy",
                priority="high",
                suggested_pages=["/privacy-policy"],
                reasoning="Legal requirement",
            )],
            summary="Solid coverage, missing legal pages.",
        )


@pytest.fixture
def fake_fetcher_cls():
    return FakeFetcher


@pytest.fixture
def fake_analyzer_cls():
    return FakeAnalyzer


@pytest.fixture
def fake_content_gap_cls():
    return FakeContentGapService


@pytest.fixture
def page_timeout_error():
    def _make(url: str) -> FetchTimeout:
        return FetchTimeout(url, "Page load exceeded 30s")
    return _make


@pytest.fixture
def good_html() -> str:
    return GOOD_HTML
