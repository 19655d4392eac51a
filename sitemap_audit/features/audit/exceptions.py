"""
Audit pipeline errors.

Sitemap errors are the only ones that escape the pipeline entry point.
Fetch and analysis errors are caught by the crawl scheduler and turned
into failed page results.
"""
from typing import Optional


class SitemapError(Exception):
    """Base class for problems with the sitemap itself."""

    def __init__(self, message: str, sitemap_url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.sitemap_url = sitemap_url


class InvalidSitemap(SitemapError):
    """Document is not well-formed XML or lists no usable URLs."""


class UnreachableSitemap(SitemapError):
    """Network error, non-2xx status or non-XML content type."""


class SitemapTooLarge(SitemapError):
    """Index expansion exceeded the raw entry safety limit."""


class FetchError(Exception):
    """Base class for page fetch failures."""

    # Whether the scheduler may retry the page once
    transient = False

    def __init__(self, url: str, message: str):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.message = message


class FetchTimeout(FetchError):
    pass


class FetchNetworkError(FetchError):
    transient = True


class FetchHttpError(FetchError):

    def __init__(self, url: str, status: int):
        super().__init__(url, f"HTTP {status}")
        self.status = status
        # 5xx responses are treated like network blips; 4xx never change on retry
        self.transient = status >= 500


class AnalysisFailed(Exception):
    """Rendered content is structurally unusable (e.g. an empty DOM)."""


class InvalidTransition(Exception):

    def __init__(self, current, target):
        super().__init__(f"Cannot transition audit from {current.value} to {target.value}")
        self.current = current
        self.target = target


class ContentGapError(Exception):
    """Content-gap service returned nothing usable."""


class AuditJobNotFound(LookupError):
    pass
