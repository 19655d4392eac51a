import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Dict, List, Optional, Tuple

from sitemap_audit.features.audit.schemas.audit import (
    AggregateReport,
    ContentGap,
    PageResult,
    Severity,
    TopIssue,
)
from sitemap_audit.features.audit.services.analysis.content_gap import ContentGapService
from sitemap_audit.features.audit.services.analysis.url_structure import analyze_url_structure

logger = logging.getLogger(__name__)

MAX_TOP_ISSUES = 10
MAX_EXAMPLE_URLS = 3

_SEVERITY_RANK = {Severity.info: 0, Severity.warning: 1, Severity.critical: 2}


def mean_score(results: List[PageResult]) -> Optional[float]:
    """Average of successful page scores; None when nothing succeeded."""
    scores = [result.score for result in results if result.succeeded]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 2)


def count_issues(results: List[PageResult]) -> Dict[str, int]:
    counts = {severity.value: 0 for severity in Severity}
    for result in results:
        for finding in result.seo_findings + result.accessibility_findings:
            counts[finding.severity.value] += 1
    return counts


def rank_top_issues(results: List[PageResult], limit: int = MAX_TOP_ISSUES) -> List[TopIssue]:
    """
    Group findings across pages and rank them by pages affected.

    Ties keep the order in which the issue first appeared (discovery
    index, then finding order within the page).
    """
    issues: Dict[str, Dict[str, Any]] = {}
    for result in results:
        if not result.succeeded:
            continue

        entries: List[Tuple[str, str, Severity, str]] = [
            (f"seo:{f.check}", "seo", f.severity, f.message) for f in result.seo_findings
        ] + [
            (f"accessibility:{f.rule_id}", "accessibility", f.severity, f.description)
            for f in result.accessibility_findings
        ]

        for key, category, severity, message in entries:
            issue = issues.setdefault(key, {
                "key": key,
                "category": category,
                "severity": severity,
                "message": message,
                "urls": [],
            })
            if _SEVERITY_RANK[severity] > _SEVERITY_RANK[issue["severity"]]:
                issue["severity"] = severity
            if result.url not in issue["urls"]:
                issue["urls"].append(result.url)

    # dicts keep insertion order and sorted() is stable
    ranked = sorted(issues.values(), key=lambda issue: -len(issue["urls"]))[:limit]
    return [
        TopIssue(
            key=issue["key"],
            category=issue["category"],
            severity=issue["severity"],
            message=issue["message"],
            pages_affected=len(issue["urls"]),
            example_urls=issue["urls"][:MAX_EXAMPLE_URLS],
        )
        for issue in ranked
    ]


class Aggregator:
    """
    Folds per-page results into the job-level report.

    The content-gap service is called at most once per aggregate() and
    only when at least one page succeeded. Its failure never fails the
    audit: the report just carries no gaps.
    """

    def __init__(self, content_gap_service: Optional[ContentGapService] = None, content_gap_timeout: float = 90):
        self.content_gap_service = content_gap_service
        self.content_gap_timeout = content_gap_timeout

    def aggregate(
        self,
        results: List[PageResult],
        sitemap_url: str,
        job_id: Optional[str] = None,
    ) -> AggregateReport:
        prefix = f"[{job_id}] " if job_id else ""
        ordered = sorted(results, key=lambda result: result.index)
        succeeded = [result for result in ordered if result.succeeded]

        content_gaps: List[ContentGap] = []
        content_gap_summary = None
        if succeeded:
            content_gaps, content_gap_summary = self._content_gaps(succeeded, prefix)
        else:
            logger.info(f"{prefix}No successful pages for {sitemap_url}, skipping content gap analysis")

        report = AggregateReport(
            overall_score=mean_score(ordered),
            pages_attempted=len(ordered),
            pages_succeeded=len(succeeded),
            pages_failed=len(ordered) - len(succeeded),
            page_results=ordered,
            content_gaps=content_gaps,
            content_gap_summary=content_gap_summary,
            issue_counts=count_issues(succeeded),
            top_issues=rank_top_issues(succeeded),
            url_structure=analyze_url_structure([result.url for result in ordered]),
        )
        logger.info(
            f"{prefix}Aggregated {report.pages_attempted} pages: score={report.overall_score}, "
            f"failed={report.pages_failed}, gaps={len(report.content_gaps)}"
        )
        return report

    def _content_gaps(self, succeeded: List[PageResult], prefix: str) -> Tuple[List[ContentGap], Optional[str]]:
        if self.content_gap_service is None:
            return [], None

        pages = [
            {"url": result.url, "title": result.title, "headings": result.headings}
            for result in succeeded
        ]

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="content-gap")
        future = executor.submit(self.content_gap_service.analyze_content_gaps, pages)
        try:
            report = future.result(timeout=self.content_gap_timeout)
        except FuturesTimeout:
            logger.warning(f"{prefix}Content gap analysis timed out after {self.content_gap_timeout:g}s")
            return [], None
        except Exception as e:
            logger.warning(f"{prefix}Content gap analysis failed: {e}")
            return [], None
        finally:
            # Never block on a hung call; its late answer is dropped
            executor.shutdown(wait=False)

        return list(report.gaps), report.summary
