"""Callback URL validation."""

from urllib.parse import urlparse

ALLOWED_SCHEMES = ("http", "https")


def is_valid_webhook_url(url: str) -> bool:
    """True for an absolute http(s) URL with a host.

    Example:
        "https://example.com/hook" -> True
        "ftp://example.com" -> False
        "/relative/path" -> False
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ALLOWED_SCHEMES and bool(parsed.netloc) and " " not in url
