"""
SEO checks run against a parsed DOM snapshot.

Each check takes the BeautifulSoup document and returns zero or more
findings. Broken-link detection needs the network and lives in
link_checker.py; the analyzer turns its result into a finding with
`broken_links_finding`.
"""
import re
from typing import Callable, List

from bs4 import BeautifulSoup

from sitemap_audit.features.audit.schemas.audit import SeoFinding, Severity

# Length thresholds
TITLE_MIN_LENGTH = 30
TITLE_MAX_LENGTH = 60
DESCRIPTION_MIN_LENGTH = 120
DESCRIPTION_MAX_LENGTH = 160

# Below this share of images with alt text the finding becomes critical
ALT_COVERAGE_CRITICAL_RATIO = 0.5

MAX_AFFECTED = 10


def page_title(soup: BeautifulSoup) -> str:
    tag = soup.find("title")
    return tag.get_text(strip=True) if tag else ""


def check_title(soup: BeautifulSoup) -> List[SeoFinding]:
    title = page_title(soup)
    if not title:
        return [SeoFinding(
            check="title_missing",
            severity=Severity.critical,
            message="Page title is missing. Every page should have a <title> tag.",
        )]

    length = len(title)
    if length < TITLE_MIN_LENGTH:
        return [SeoFinding(
            check="title_length",
            severity=Severity.warning,
            message=f"Title is too short ({length} chars). Recommended: {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH} characters.",
        )]
    if length > TITLE_MAX_LENGTH:
        return [SeoFinding(
            check="title_length",
            severity=Severity.warning,
            message=f"Title is too long ({length} chars). Recommended: {TITLE_MIN_LENGTH}-{TITLE_MAX_LENGTH} characters. Long titles may be truncated in search results.",
        )]
    return []


def check_meta_description(soup: BeautifulSoup) -> List[SeoFinding]:
    tag = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
    description = (tag.get("content") or "").strip() if tag else ""
    if not description:
        return [SeoFinding(
            check="meta_description_missing",
            severity=Severity.critical,
            message='Meta description is missing. Add a <meta name="description" content="..."> tag.',
        )]

    length = len(description)
    if length < DESCRIPTION_MIN_LENGTH or length > DESCRIPTION_MAX_LENGTH:
        qualifier = "short" if length < DESCRIPTION_MIN_LENGTH else "long"
        return [SeoFinding(
            check="meta_description_length",
            severity=Severity.warning,
            message=f"Description is too {qualifier} ({length} chars). Recommended: {DESCRIPTION_MIN_LENGTH}-{DESCRIPTION_MAX_LENGTH} characters.",
        )]
    return []


def check_h1(soup: BeautifulSoup) -> List[SeoFinding]:
    h1_tags = soup.find_all("h1")
    if not h1_tags:
        return [SeoFinding(
            check="h1_missing",
            severity=Severity.critical,
            message="Page has no <h1> heading.",
        )]
    if len(h1_tags) > 1:
        return [SeoFinding(
            check="h1_multiple",
            severity=Severity.warning,
            message=f"Page has {len(h1_tags)} <h1> headings; use exactly one.",
            affected=[h.get_text(strip=True) for h in h1_tags][:MAX_AFFECTED],
        )]
    return []


def check_image_alt_coverage(soup: BeautifulSoup) -> List[SeoFinding]:
    images = soup.find_all("img")
    if not images:
        return []

    missing = [img for img in images if not (img.get("alt") or "").strip()]
    if not missing:
        return []

    coverage = (len(images) - len(missing)) / len(images)
    severity = Severity.critical if coverage < ALT_COVERAGE_CRITICAL_RATIO else Severity.warning
    return [SeoFinding(
        check="image_alt_coverage",
        severity=severity,
        message=f"{len(missing)} of {len(images)} images lack alt text ({coverage:.0%} coverage).",
        affected=[img.get("src") or "" for img in missing][:MAX_AFFECTED],
    )]


def check_canonical(soup: BeautifulSoup) -> List[SeoFinding]:
    tag = soup.find("link", rel="canonical")
    if tag and (tag.get("href") or "").strip():
        return []
    return [SeoFinding(
        check="canonical_missing",
        severity=Severity.warning,
        message='No canonical URL. Add <link rel="canonical" href="..."> to avoid duplicate content.',
    )]


def check_viewport(soup: BeautifulSoup) -> List[SeoFinding]:
    if soup.find("meta", attrs={"name": re.compile(r"^viewport$", re.I)}):
        return []
    return [SeoFinding(
        check="viewport_missing",
        severity=Severity.info,
        message="No viewport meta tag; the page may not render well on mobile.",
    )]


def broken_links_finding(broken: List[str]) -> List[SeoFinding]:
    if not broken:
        return []
    return [SeoFinding(
        check="broken_internal_links",
        severity=Severity.warning,
        message=f"{len(broken)} internal link(s) return an error status.",
        affected=broken[:MAX_AFFECTED],
    )]


SEO_CHECKS: List[Callable[[BeautifulSoup], List[SeoFinding]]] = [
    check_title,
    check_meta_description,
    check_h1,
    check_image_alt_coverage,
    check_canonical,
    check_viewport,
]
