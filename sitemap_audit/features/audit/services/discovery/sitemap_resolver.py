import logging
from typing import List, Optional
from urllib.parse import urldefrag

import requests
from defusedxml import ElementTree as ET
from defusedxml.common import DefusedXmlException

from sitemap_audit.features.audit.exceptions import (
    InvalidSitemap,
    SitemapTooLarge,
    UnreachableSitemap,
)
from sitemap_audit.features.audit.schemas.audit import SitemapEntry
from sitemap_audit.platform.utils.url_validator import is_http_url

logger = logging.getLogger(__name__)


def _local_name(tag: str) -> str:
    """Strip the XML namespace: '{http://...}urlset' -> 'urlset'."""
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _child_text(element, name: str) -> Optional[str]:
    for child in element:
        if _local_name(child.tag) == name:
            return (child.text or "").strip() or None
    return None


class SitemapResolver:
    """
    Turns a sitemap URL into the ordered list of pages to audit.

    Supports a plain <urlset> and one level of <sitemapindex> nesting. A
    child sitemap that is itself an index is skipped, not followed.
    """

    USER_AGENT = "Mozilla/5.0 (compatible; SitemapAuditBot/1.0)"

    def __init__(
        self,
        max_pages: int = 500,
        max_raw_entries: int = 5000,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.max_pages = max_pages
        self.max_raw_entries = max_raw_entries
        self.timeout = timeout
        self.session = session or requests.Session()

    def resolve(self, sitemap_url: str) -> List[str]:
        """
        Resolve a sitemap into page URLs.

        Returns:
            Deduplicated URLs in order of first appearance, capped at max_pages

        Raises:
            InvalidSitemap: malformed XML or no usable URLs
            UnreachableSitemap: fetch failed, non-2xx or non-XML response
            SitemapTooLarge: index expansion exceeded max_raw_entries
        """
        return [entry.loc for entry in self.resolve_entries(sitemap_url)]

    def resolve_entries(self, sitemap_url: str) -> List[SitemapEntry]:
        logger.info(f"Resolving sitemap: {sitemap_url}")
        root = self._fetch_document(sitemap_url)
        kind = _local_name(root.tag)

        if kind == "urlset":
            raw_entries = self._url_entries(root, sitemap_url, already_collected=0)
        elif kind == "sitemapindex":
            raw_entries = self._expand_index(root, sitemap_url)
        else:
            raise InvalidSitemap(
                f"Root element <{kind}> is neither <urlset> nor <sitemapindex>",
                sitemap_url,
            )

        entries = self._dedupe(raw_entries)
        if not entries:
            raise InvalidSitemap("No usable URLs found in sitemap", sitemap_url)

        if len(entries) > self.max_pages:
            logger.info(
                f"Sitemap lists {len(entries)} unique URLs, capping at {self.max_pages}")
            entries = entries[:self.max_pages]

        logger.info(f"Resolved {len(entries)} URLs from {sitemap_url}")
        return entries

    def _expand_index(self, root, sitemap_url: str) -> List[SitemapEntry]:
        child_urls = [
            loc for loc in (_child_text(el, "loc") for el in root if _local_name(el.tag) == "sitemap")
            if loc
        ]
        logger.info(f"Sitemap index with {len(child_urls)} child sitemaps")

        if len(child_urls) > self.max_raw_entries:
            raise SitemapTooLarge(
                f"Sitemap index lists {len(child_urls)} sitemaps (limit {self.max_raw_entries})",
                sitemap_url,
            )

        collected: List[SitemapEntry] = []
        for child_url in child_urls:
            try:
                child_root = self._fetch_document(child_url)
            except (InvalidSitemap, UnreachableSitemap) as e:
                logger.warning(f"Skipping child sitemap {child_url}: {e.message}")
                continue

            if _local_name(child_root.tag) != "urlset":
                logger.warning(f"Skipping nested sitemap index {child_url}")
                continue

            collected.extend(
                self._url_entries(child_root, sitemap_url, already_collected=len(collected)))

        return collected

    def _url_entries(self, root, sitemap_url: str, already_collected: int) -> List[SitemapEntry]:
        url_elements = [el for el in root if _local_name(el.tag) == "url"]
        total = already_collected + len(url_elements)
        if total > self.max_raw_entries:
            raise SitemapTooLarge(
                f"Sitemap expansion reached {total} entries (limit {self.max_raw_entries})",
                sitemap_url,
            )

        entries = []
        for el in url_elements:
            loc = _child_text(el, "loc")
            if not loc:
                continue
            priority = _child_text(el, "priority")
            try:
                priority_value = float(priority) if priority else None
            except ValueError:
                priority_value = None
            entries.append(SitemapEntry(
                loc=loc,
                lastmod=_child_text(el, "lastmod"),
                changefreq=_child_text(el, "changefreq"),
                priority=priority_value,
            ))
        return entries

    def _dedupe(self, entries: List[SitemapEntry]) -> List[SitemapEntry]:
        seen = set()
        unique = []
        for entry in entries:
            url = urldefrag(entry.loc.strip())[0]
            if not is_http_url(url):
                logger.debug(f"Dropping unusable sitemap entry: {entry.loc}")
                continue
            if url in seen:
                continue
            seen.add(url)
            unique.append(entry.model_copy(update={"loc": url}))
        return unique

    def _fetch_document(self, url: str):
        try:
            response = self.session.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": self.USER_AGENT},
            )
        except requests.RequestException as e:
            raise UnreachableSitemap(f"Failed to fetch sitemap: {e}", url) from e

        if not 200 <= response.status_code < 300:
            raise UnreachableSitemap(f"Sitemap returned HTTP {response.status_code}", url)

        content_type = (response.headers.get("Content-Type") or "").lower()
        if content_type and "xml" not in content_type:
            raise UnreachableSitemap(f"Sitemap has non-XML content type: {content_type}", url)

        try:
            return ET.fromstring(response.content)
        except (ET.ParseError, DefusedXmlException) as e:
            raise InvalidSitemap(f"Sitemap is not well-formed XML: {e}", url) from e
