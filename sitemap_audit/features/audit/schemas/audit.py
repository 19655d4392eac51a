"""
Audit Schemas

Value objects that flow through the audit pipeline: tasks handed to the
crawl workers, per-page results, AI content gaps and the final summary.
"""
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from sitemap_audit.features.audit.models.audit_job import AuditStatus


class Severity(str, Enum):
    critical = "critical"
    warning = "warning"
    info = "info"


class PageOutcome(str, Enum):
    ok = "ok"
    fetch_failed = "fetch_failed"
    timed_out = "timed_out"
    analysis_failed = "analysis_failed"


# Reason code for tasks that never started because the audit ran out of time
DEADLINE_EXCEEDED = "deadline_exceeded"


class SitemapEntry(BaseModel):
    """One <url> entry from a sitemap urlset."""
    loc: str
    lastmod: Optional[str] = None
    changefreq: Optional[str] = None
    priority: Optional[float] = None


class PageTask(BaseModel):
    """One URL to crawl. Owned by a single worker at a time."""
    url: str
    index: int
    attempts: int = 0


class RenderedPage(BaseModel):
    """DOM snapshot produced by the page fetcher."""
    url: str
    final_url: str
    html: str
    title: Optional[str] = None
    status_code: Optional[int] = None
    load_time: float = 0.0


class SeoFinding(BaseModel):
    check: str
    severity: Severity
    message: str
    affected: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class AccessibilityFinding(BaseModel):
    rule_id: str
    severity: Severity
    impact: Literal["critical", "serious", "moderate", "minor"]
    wcag: str
    description: str
    nodes: int = 1
    targets: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class PageAnalysis(BaseModel):
    """Analyzer output for one rendered page."""
    seo_findings: List[SeoFinding] = Field(default_factory=list)
    accessibility_findings: List[AccessibilityFinding] = Field(default_factory=list)
    score: int
    title: Optional[str] = None
    headings: List[str] = Field(default_factory=list)


class PageResult(BaseModel):
    """
    Outcome for one PageTask.

    `score` is only set for `ok` results and `error` only for failures.
    """
    url: str
    index: int
    outcome: PageOutcome
    seo_findings: List[SeoFinding] = Field(default_factory=list)
    accessibility_findings: List[AccessibilityFinding] = Field(default_factory=list)
    score: Optional[int] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 1
    title: Optional[str] = None
    headings: List[str] = Field(default_factory=list)

    class Config:
        frozen = True

    @model_validator(mode="after")
    def _check_outcome_fields(self) -> "PageResult":
        if self.outcome == PageOutcome.ok:
            if self.score is None:
                raise ValueError("ok results must carry a score")
            if self.error is not None:
                raise ValueError("ok results cannot carry an error")
        else:
            if self.score is not None:
                raise ValueError("failed results cannot carry a score")
            if not self.error:
                raise ValueError("failed results must carry an error")
        return self

    @property
    def succeeded(self) -> bool:
        return self.outcome == PageOutcome.ok

    @classmethod
    def success(cls, task: PageTask, analysis: PageAnalysis) -> "PageResult":
        return cls(
            url=task.url,
            index=task.index,
            outcome=PageOutcome.ok,
            seo_findings=analysis.seo_findings,
            accessibility_findings=analysis.accessibility_findings,
            score=analysis.score,
            attempts=task.attempts,
            title=analysis.title,
            headings=analysis.headings,
        )

    @classmethod
    def failure(
        cls,
        task: PageTask,
        outcome: PageOutcome,
        error: str,
        reason: Optional[str] = None,
    ) -> "PageResult":
        return cls(
            url=task.url,
            index=task.index,
            outcome=outcome,
            error=error,
            reason=reason,
            attempts=task.attempts,
        )


class ContentGap(BaseModel):
    category: str
    description: str
    priority: Literal["high", "medium", "low"]
    suggested_pages: List[str] = Field(default_factory=list, alias="suggestedPages")
    reasoning: str = ""

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class TopIssue(BaseModel):
    key: str
    category: Literal["seo", "accessibility"]
    severity: Severity
    message: str
    pages_affected: int
    example_urls: List[str] = Field(default_factory=list)


class UrlStructureIssue(BaseModel):
    type: str
    description: str
    affected_urls: List[str] = Field(default_factory=list)
    recommendation: str
    severity: Literal["high", "medium", "low"]


class UrlPattern(BaseModel):
    pattern: str
    count: int
    example: str


class UrlStructureAnalysis(BaseModel):
    issues: List[UrlStructureIssue] = Field(default_factory=list)
    total_issues: int = 0
    patterns: List[UrlPattern] = Field(default_factory=list)
    average_depth: float = 0.0
    max_depth: int = 0
    urls_by_depth: Dict[int, int] = Field(default_factory=dict)


class AuditSummary(BaseModel):
    """Terminal artifact handed to the persistence store."""
    sitemap_url: str
    status: AuditStatus
    overall_score: Optional[float] = None
    pages_attempted: int = 0
    pages_succeeded: int = 0
    pages_failed: int = 0
    page_results: List[PageResult] = Field(default_factory=list)
    content_gaps: List[ContentGap] = Field(default_factory=list)
    content_gap_summary: Optional[str] = None
    issue_counts: Dict[str, int] = Field(default_factory=dict)
    top_issues: List[TopIssue] = Field(default_factory=list)
    url_structure: Optional[UrlStructureAnalysis] = None
    error: Optional[str] = None

    @property
    def failed_ratio(self) -> float:
        if not self.pages_attempted:
            return 0.0
        return self.pages_failed / self.pages_attempted


class ContentGapReport(BaseModel):
    """What the content-gap service hands back: gaps plus its overall assessment."""
    gaps: List[ContentGap] = Field(default_factory=list)
    summary: Optional[str] = None


class AggregateReport(BaseModel):
    """Aggregator output; the state machine adds the terminal status."""
    overall_score: Optional[float] = None
    pages_attempted: int = 0
    pages_succeeded: int = 0
    pages_failed: int = 0
    page_results: List[PageResult] = Field(default_factory=list)
    content_gaps: List[ContentGap] = Field(default_factory=list)
    content_gap_summary: Optional[str] = None
    issue_counts: Dict[str, int] = Field(default_factory=dict)
    top_issues: List[TopIssue] = Field(default_factory=list)
    url_structure: Optional[UrlStructureAnalysis] = None

    def to_summary(self, sitemap_url: str, status: AuditStatus) -> AuditSummary:
        return AuditSummary(
            sitemap_url=sitemap_url,
            status=status,
            overall_score=self.overall_score,
            pages_attempted=self.pages_attempted,
            pages_succeeded=self.pages_succeeded,
            pages_failed=self.pages_failed,
            page_results=self.page_results,
            content_gaps=self.content_gaps,
            content_gap_summary=self.content_gap_summary,
            issue_counts=self.issue_counts,
            top_issues=self.top_issues,
            url_structure=self.url_structure,
        )
