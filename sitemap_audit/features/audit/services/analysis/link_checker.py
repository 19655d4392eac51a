import logging
import time
from typing import Callable, Iterable, List, Optional
from urllib.parse import urldefrag, urljoin, urlparse

import requests

logger = logging.getLogger(__name__)


class LinkChecker:
    """
    Shallow broken-link detection for one page.

    Only same-origin links are checked, with HEAD requests, up to
    `max_links` per page. A link that times out is treated as unknown
    rather than broken. A new requests session is opened per page so
    worker threads never share one.
    """

    USER_AGENT = "Mozilla/5.0 (compatible; SitemapAuditBot/1.0)"

    def __init__(
        self,
        max_links: int = 20,
        timeout: float = 5,
        session_factory: Optional[Callable[[], requests.Session]] = None,
    ):
        self.max_links = max_links
        self.timeout = timeout
        self.session_factory = session_factory or requests.Session

    @staticmethod
    def same_origin_links(page_url: str, hrefs: Iterable[str]) -> List[str]:
        origin = urlparse(page_url)
        links = []
        seen = set()
        for href in hrefs:
            href = (href or "").strip()
            if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
                continue
            absolute = urldefrag(urljoin(page_url, href))[0]
            parsed = urlparse(absolute)
            if parsed.scheme not in ("http", "https") or parsed.netloc != origin.netloc:
                continue
            if absolute in seen or absolute == urldefrag(page_url)[0]:
                continue
            seen.add(absolute)
            links.append(absolute)
        return links

    def find_broken(
        self,
        page_url: str,
        hrefs: Iterable[str],
        deadline: Optional[float] = None,
    ) -> List[str]:
        """
        Return the same-origin links that answered with a 4xx/5xx status.

        `deadline` is a time.monotonic() value; checking stops once it passes.
        """
        candidates = self.same_origin_links(page_url, hrefs)[:self.max_links]
        if not candidates:
            return []

        broken = []
        session = self.session_factory()
        try:
            for link in candidates:
                timeout = self.timeout
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        logger.info(f"Link check budget exhausted for {page_url}")
                        break
                    timeout = min(timeout, remaining)

                try:
                    response = session.head(
                        link,
                        allow_redirects=True,
                        timeout=timeout,
                        headers={"User-Agent": self.USER_AGENT},
                    )
                except requests.Timeout:
                    logger.debug(f"Link check timed out: {link}")
                    continue
                except requests.RequestException as e:
                    logger.debug(f"Link check failed for {link}: {e}")
                    broken.append(link)
                    continue

                # Some servers refuse HEAD outright; that says nothing about the page
                if response.status_code in (405, 501):
                    continue
                if response.status_code >= 400:
                    broken.append(link)
        finally:
            session.close()

        return broken
