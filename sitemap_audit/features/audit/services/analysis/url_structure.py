"""
URL structure analysis over the resolved sitemap URL set.

Pure function of its input: no fetches, no randomness.
"""
import logging
import re
from collections import Counter
from typing import Dict, List
from urllib.parse import urlparse

from sitemap_audit.features.audit.schemas.audit import (
    UrlPattern,
    UrlStructureAnalysis,
    UrlStructureIssue,
)

logger = logging.getLogger(__name__)

MAX_DEPTH = 4
MAX_PATH_LENGTH = 100
MAX_PATTERNS = 10
TRAILING_SLASH_MINORITY_RATIO = 0.1

_SEGMENT_RE = re.compile(r"/[^/]+(?=/|$)")
_KEBAB_RE = re.compile(r"[a-z]+-[a-z]+")
_CAMEL_RE = re.compile(r"[a-z][A-Z]")
_NON_DESCRIPTIVE_RE = re.compile(r"/(page|item|post|content|id)[-_]?\d+")


def _depth(path: str) -> int:
    return len([segment for segment in path.split("/") if segment])


def is_homepage(url: str) -> bool:
    """True for the site root, with or without a trailing slash."""
    parsed = urlparse(url)
    return parsed.path in ("", "/") and not parsed.query


def _issue(type_: str, description: str, affected: List[str], recommendation: str, severity: str):
    return UrlStructureIssue(
        type=type_,
        description=description,
        affected_urls=affected,
        recommendation=recommendation,
        severity=severity,
    )


def analyze_url_structure(urls: List[str]) -> UrlStructureAnalysis:
    logger.info(f"Analyzing URL structure of {len(urls)} URLs")

    parsed = []
    for url in urls:
        try:
            parsed.append((url, urlparse(url)))
        except ValueError:
            logger.debug(f"Skipping unparsable URL: {url}")

    total = len(urls)
    depth_counts: Dict[int, int] = Counter()
    patterns: Dict[str, Dict] = {}
    for url, parts in parsed:
        depth_counts[_depth(parts.path)] += 1
        pattern = _SEGMENT_RE.sub("/{slug}", parts.path)
        entry = patterns.setdefault(pattern, {"count": 0, "example": parts.path})
        entry["count"] += 1

    issues: List[UrlStructureIssue] = []

    deep = [url for url, parts in parsed if _depth(parts.path) > MAX_DEPTH]
    if deep:
        issues.append(_issue(
            "too_deep",
            f"{len(deep)} URLs have a depth greater than {MAX_DEPTH} levels",
            deep[:10],
            "Consider flattening the URL structure to improve crawlability and user experience. "
            "URLs deeper than 4 levels may indicate over-categorization.",
            "high" if len(deep) > total * 0.2 else "medium",
        ))

    kebab = [url for url, parts in parsed if _KEBAB_RE.search(parts.path)]
    underscore = [url for url, parts in parsed if "_" in parts.path]
    if kebab and underscore:
        issues.append(_issue(
            "inconsistent_pattern",
            f"Mixed naming conventions detected: {len(kebab)} kebab-case URLs and "
            f"{len(underscore)} underscore URLs",
            kebab[:3] + underscore[:3],
            "Standardize on kebab-case (dash-separated) URLs for consistency and SEO best practices.",
            "medium",
        ))

    camel = [url for url, parts in parsed if _CAMEL_RE.search(parts.path)]
    if camel:
        issues.append(_issue(
            "poor_naming",
            f"{len(camel)} URLs use camelCase, which is not SEO-friendly",
            camel[:10],
            "Convert camelCase URLs to kebab-case (lowercase with dashes) for better readability and SEO.",
            "high" if len(camel) > total * 0.1 else "medium",
        ))

    long_paths = [url for url, parts in parsed if len(parts.path) > MAX_PATH_LENGTH]
    if long_paths:
        issues.append(_issue(
            "poor_naming",
            f"{len(long_paths)} URLs exceed {MAX_PATH_LENGTH} characters in length",
            long_paths[:5],
            "Shorten URLs by removing unnecessary words. Long URLs are harder to share and remember.",
            "high" if len(long_paths) > total * 0.15 else "low",
        ))

    generic = [url for url, parts in parsed if _NON_DESCRIPTIVE_RE.search(parts.path)]
    if generic:
        issues.append(_issue(
            "poor_naming",
            f"{len(generic)} URLs use non-descriptive patterns (e.g., /page-1, /item-123)",
            generic[:10],
            "Use descriptive, keyword-rich URLs that indicate the page content. "
            "Avoid generic patterns like /page-1 or /item-123.",
            "high" if len(generic) > total * 0.2 else "medium",
        ))

    with_slash = [url for url, parts in parsed if parts.path not in ("", "/") and parts.path.endswith("/")]
    without_slash = [url for url, parts in parsed if parts.path not in ("", "/") and not parts.path.endswith("/")]
    if with_slash and without_slash:
        minority = min(len(with_slash), len(without_slash)) / total
        if minority > TRAILING_SLASH_MINORITY_RATIO:
            issues.append(_issue(
                "inconsistent_pattern",
                f"Inconsistent trailing slash usage: {len(with_slash)} URLs with trailing slash, "
                f"{len(without_slash)} without",
                with_slash[:3] + without_slash[:3],
                "Standardize trailing slash usage across all URLs and set up redirects for the other form.",
                "medium",
            ))

    with_query = [url for url, parts in parsed if parts.query]
    if with_query:
        issues.append(_issue(
            "inconsistent_pattern",
            f"{len(with_query)} URLs contain query parameters",
            with_query[:5],
            "URLs in sitemaps should generally not contain query parameters. "
            "Use clean, static URLs or make sure parameters are intentional (e.g., for pagination).",
            "medium" if len(with_query) > total * 0.1 else "low",
        ))

    # sorted() is stable, so equal counts keep first-seen order
    top_patterns = sorted(patterns.items(), key=lambda item: -item[1]["count"])[:MAX_PATTERNS]
    total_depth = sum(depth * count for depth, count in depth_counts.items())

    logger.info(f"URL structure analysis found {len(issues)} issues")
    return UrlStructureAnalysis(
        issues=issues,
        total_issues=len(issues),
        patterns=[
            UrlPattern(pattern=pattern, count=data["count"], example=data["example"])
            for pattern, data in top_patterns
        ],
        average_depth=round(total_depth / total, 1) if total else 0.0,
        max_depth=max(depth_counts) if depth_counts else 0,
        urls_by_depth=dict(sorted(depth_counts.items())),
    )
