from typing import Tuple
from urllib.parse import urldefrag, urlparse

ALLOWED_SCHEMES = ("http", "https")


def normalize_url(url: str) -> str:
    """Trim whitespace, drop any #fragment and default to https when no scheme is given."""
    url = urldefrag(url.strip())[0]
    if not urlparse(url).scheme:
        url = f"https://{url}"
    return url


def is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ALLOWED_SCHEMES and bool(parsed.netloc)


def validate_url(url: str) -> Tuple[bool, str, str]:
    """
    Returns:
        (is_valid, normalized_url, error_message); error is "" when valid
    """
    if not url or not url.strip():
        return False, "", "URL cannot be empty"

    normalized_url = normalize_url(url)

    try:
        parsed = urlparse(normalized_url)
    except ValueError as e:
        return False, normalized_url, f"URL parsing error: {e}"

    if parsed.scheme not in ALLOWED_SCHEMES:
        return False, normalized_url, f"Invalid URL scheme: {parsed.scheme} (must be http or https)"
    if not parsed.netloc:
        return False, normalized_url, "Invalid URL format: missing domain"

    return True, normalized_url, ""


def validate_sitemap_url(url: str) -> Tuple[bool, str, str]:
    """Same checks as validate_url, plus the document must be an .xml file."""
    is_valid, normalized_url, error = validate_url(url)
    if not is_valid:
        return is_valid, normalized_url, error

    if not urlparse(normalized_url).path.lower().endswith(".xml"):
        return False, normalized_url, "Invalid sitemap URL. Must end with .xml"

    return True, normalized_url, ""
