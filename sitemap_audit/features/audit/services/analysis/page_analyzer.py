import logging
from typing import Dict, List, Optional

from bs4 import BeautifulSoup

from sitemap_audit.features.audit.exceptions import AnalysisFailed
from sitemap_audit.features.audit.schemas.audit import (
    AccessibilityFinding,
    PageAnalysis,
    RenderedPage,
    SeoFinding,
    Severity,
)
from sitemap_audit.features.audit.services.analysis import accessibility_rules, seo_rules
from sitemap_audit.features.audit.services.analysis.link_checker import LinkChecker

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY_WEIGHTS = {
    Severity.critical: 15,
    Severity.warning: 5,
    Severity.info: 1,
}

HEADING_TAGS = ["h1", "h2", "h3"]
MAX_HEADINGS = 20


def compute_score(findings: List, weights: Dict[Severity, int]) -> int:
    """100 minus the weighted finding count, clamped to 0..100."""
    penalty = sum(weights.get(finding.severity, 0) for finding in findings)
    return max(0, min(100, 100 - penalty))


class PageAnalyzer:
    """
    Runs the SEO and accessibility rule catalogs over a rendered page.

    Analysis is deterministic for a given DOM snapshot except for the
    broken-link check, which makes HEAD requests. A rule that blows up is
    reported as an info finding instead of failing the page.
    """

    def __init__(
        self,
        link_checker: Optional[LinkChecker] = None,
        severity_weights: Optional[Dict[Severity, int]] = None,
    ):
        self.link_checker = link_checker
        self.severity_weights = {**DEFAULT_SEVERITY_WEIGHTS, **(severity_weights or {})}

    def analyze(self, page: RenderedPage, deadline: Optional[float] = None) -> PageAnalysis:
        """
        Analyze one rendered page.

        Args:
            page: DOM snapshot from the fetcher
            deadline: time.monotonic() value bounding network-bound checks

        Raises:
            AnalysisFailed: the document has no usable content
        """
        soup = self._parse(page)

        seo_findings = self._run_seo_checks(soup, page, deadline)
        accessibility_findings = self._run_accessibility_checks(soup)

        score = compute_score(seo_findings + accessibility_findings, self.severity_weights)
        title = seo_rules.page_title(soup) or page.title

        logger.debug(
            f"Analyzed {page.url}: score={score}, "
            f"seo={len(seo_findings)}, a11y={len(accessibility_findings)}"
        )
        return PageAnalysis(
            seo_findings=seo_findings,
            accessibility_findings=accessibility_findings,
            score=score,
            title=title or None,
            headings=self._headings(soup),
        )

    @staticmethod
    def _parse(page: RenderedPage) -> BeautifulSoup:
        if not page.html or not page.html.strip():
            raise AnalysisFailed(f"Empty document for {page.url}")

        soup = BeautifulSoup(page.html, "html.parser")
        body = soup.find("body")
        root = body or soup.find("html")
        if root is None:
            raise AnalysisFailed(f"No <html> or <body> element for {page.url}")
        if not root.find(True) and not root.get_text(strip=True):
            raise AnalysisFailed(f"Document body is empty for {page.url}")
        return soup

    def _run_seo_checks(
        self,
        soup: BeautifulSoup,
        page: RenderedPage,
        deadline: Optional[float],
    ) -> List[SeoFinding]:
        findings: List[SeoFinding] = []
        for check in seo_rules.SEO_CHECKS:
            try:
                findings.extend(check(soup))
            except Exception as e:
                logger.warning(f"SEO check {check.__name__} failed on {page.url}: {e}")
                findings.append(self._rule_error(check.__name__, e))

        if self.link_checker is not None:
            try:
                hrefs = [a["href"] for a in soup.find_all("a", href=True)]
                broken = self.link_checker.find_broken(page.final_url or page.url, hrefs, deadline)
                findings.extend(seo_rules.broken_links_finding(broken))
            except Exception as e:
                logger.warning(f"Broken link check failed on {page.url}: {e}")
                findings.append(self._rule_error("broken_internal_links", e))

        return findings

    def _run_accessibility_checks(self, soup: BeautifulSoup) -> List[AccessibilityFinding]:
        findings: List[AccessibilityFinding] = []
        for rule_id, check in accessibility_rules.RULE_CHECKS.items():
            try:
                targets = check(soup)
            except Exception as e:
                logger.warning(f"Accessibility rule {rule_id} failed: {e}")
                findings.append(AccessibilityFinding(
                    rule_id=rule_id,
                    severity=Severity.info,
                    impact="minor",
                    wcag=accessibility_rules.ACCESSIBILITY_RULES[rule_id]["wcag"],
                    description=f"Rule could not be evaluated: {e}",
                    nodes=0,
                ))
                continue
            if targets:
                findings.append(accessibility_rules.build_finding(rule_id, targets))
        return findings

    @staticmethod
    def _rule_error(check_name: str, error: Exception) -> SeoFinding:
        return SeoFinding(
            check=f"{check_name}_error",
            severity=Severity.info,
            message=f"Check could not be evaluated: {error}",
        )

    @staticmethod
    def _headings(soup: BeautifulSoup) -> List[str]:
        headings = []
        for heading in soup.find_all(HEADING_TAGS):
            text = heading.get_text(" ", strip=True)
            if text:
                headings.append(text)
            if len(headings) >= MAX_HEADINGS:
                break
        return headings
