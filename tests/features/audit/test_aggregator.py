import time

import pytest

from sitemap_audit.features.audit.exceptions import ContentGapError
from sitemap_audit.features.audit.schemas.audit import (
    AccessibilityFinding,
    PageAnalysis,
    PageOutcome,
    PageResult,
    PageTask,
    SeoFinding,
    Severity,
)
from sitemap_audit.features.audit.services.orchestration.aggregator import (
    Aggregator,
    mean_score,
    rank_top_issues,
)

SITEMAP = "https://example.com/sitemap.xml"


def ok(index: int, score: int, seo=None, a11y=None) -> PageResult:
    task = PageTask(url=f"https://example.com/p{index}", index=index, attempts=1)
    return PageResult.success(task, PageAnalysis(
        score=score,
        seo_findings=seo or [],
        accessibility_findings=a11y or [],
        title=f"Page {index}",
        headings=[f"Heading {index}"],
    ))


def failed(index: int, outcome=PageOutcome.fetch_failed) -> PageResult:
    task = PageTask(url=f"https://example.com/p{index}", index=index, attempts=1)
    return PageResult.failure(task, outcome, "HTTP 404")


def seo(check: str, severity=Severity.warning) -> SeoFinding:
    return SeoFinding(check=check, severity=severity, message=f"{check} message")


def a11y(rule_id: str, severity=Severity.critical) -> AccessibilityFinding:
    return AccessibilityFinding(
        rule_id=rule_id, severity=severity, impact="critical", wcag="WCAG 2.1 1.1.1", description=rule_id)


class TestAggregator:
    def test_scores_and_tallies(self, fake_content_gap_cls):
        service = fake_content_gap_cls()
        results = [ok(0, 80), failed(1, PageOutcome.timed_out), ok(2, 60)]

        report = Aggregator(service, content_gap_timeout=1).aggregate(results, SITEMAP)

        assert report.overall_score == 70
        assert report.pages_attempted == 3
        assert report.pages_succeeded == 2
        assert report.pages_failed == 1
        assert [r.index for r in report.page_results] == [0, 1, 2]

    def test_no_successes_means_no_score_and_no_gap_call(self, fake_content_gap_cls):
        service = fake_content_gap_cls()

        report = Aggregator(service).aggregate([failed(0), failed(1)], SITEMAP)

        assert report.overall_score is None
        assert report.pages_succeeded == 0
        assert report.content_gaps == []
        assert service.calls == []

    def test_content_gaps_called_once_with_successful_pages(self, fake_content_gap_cls):
        service = fake_content_gap_cls()

        report = Aggregator(service).aggregate([ok(0, 90), failed(1), ok(2, 70)], SITEMAP)

        assert len(service.calls) == 1
        assert service.calls[0] == [
            {"url": "https://example.com/p0", "title": "Page 0", "headings": ["Heading 0"]},
            {"url": "https://example.com/p2", "title": "Page 2", "headings": ["Heading 2"]},
        ]
        assert [gap.description for gap in report.content_gaps] == ["Missing privacy policy"]
        assert report.content_gap_summary == "Solid coverage, missing legal pages."

    @pytest.mark.parametrize("error", [RuntimeError("503 from provider"), ContentGapError("no JSON")])
    def test_content_gap_failure_yields_empty_gaps(self, fake_content_gap_cls, error):
        service = fake_content_gap_cls(error=error)

        report = Aggregator(service).aggregate([ok(0, 90)], SITEMAP)

        assert report.content_gaps == []
        assert report.content_gap_summary is None
        assert report.overall_score == 90

    def test_content_gap_timeout_is_bounded(self, fake_content_gap_cls):
        service = fake_content_gap_cls(delay=2.0)

        started = time.monotonic()
        report = Aggregator(service, content_gap_timeout=0.1).aggregate([ok(0, 90)], SITEMAP)

        assert time.monotonic() - started < 1.5
        assert report.content_gaps == []

    def test_issue_counts_by_severity(self):
        results = [
            ok(0, 75, seo=[seo("title_length"), seo("h1_missing", Severity.critical)]),
            ok(1, 84, a11y=[a11y("image-alt"), a11y("duplicate-id", Severity.info)]),
            failed(2),
        ]

        report = Aggregator().aggregate(results, SITEMAP)

        assert report.issue_counts == {"critical": 2, "warning": 1, "info": 1}

    def test_url_structure_runs_over_all_urls(self):
        report = Aggregator().aggregate([ok(0, 100), failed(1)], SITEMAP)

        assert report.url_structure is not None
        assert sum(report.url_structure.urls_by_depth.values()) == 2

    def test_mean_stays_within_bounds(self):
        results = [ok(i, score) for i, score in enumerate([0, 100, 37, 100, 0])]

        assert 0 <= mean_score(results) <= 100


class TestTopIssues:
    def test_ranked_by_pages_affected_then_first_appearance(self):
        results = [
            ok(0, 90, seo=[seo("canonical_missing")], a11y=[a11y("image-alt")]),
            ok(1, 90, seo=[seo("title_length"), seo("canonical_missing")]),
            ok(2, 90, seo=[seo("title_length")], a11y=[a11y("image-alt")]),
        ]

        top = rank_top_issues(results)

        assert [issue.key for issue in top] == [
            "seo:canonical_missing",
            "accessibility:image-alt",
            "seo:title_length",
        ]
        assert top[0].pages_affected == 2
        assert top[0].example_urls == ["https://example.com/p0", "https://example.com/p1"]

    def test_keeps_highest_severity_and_limit(self):
        results = [ok(i, 90, seo=[seo(f"check_{i}")]) for i in range(12)]
        results.append(ok(12, 90, seo=[seo("check_0", Severity.critical)]))

        top = rank_top_issues(results, limit=10)

        assert len(top) == 10
        assert top[0].key == "seo:check_0"
        assert top[0].severity == Severity.critical
        assert top[0].pages_affected == 2

    def test_failed_pages_are_ignored(self):
        assert rank_top_issues([failed(0)]) == []
