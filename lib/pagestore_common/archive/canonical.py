"""
URL canonicalization and fingerprinting.

Two spellings of the same page must map to one cache key:

    canonicalize("HTTPS://Example.com:443/a?b=2&a=1/")
    == canonicalize("https://example.com/a?a=1&b=2")
    == "https://example.com/a?a=1&b=2"
"""

import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pagestore_common.constants import DEFAULT_URL_SCHEME, FINGERPRINT_LENGTH
from pagestore_common.exceptions import InvalidUrlError

DEFAULT_PORTS = {"http": 80, "https": 443}

_HTTP_PREFIX = re.compile(r"^https?://", re.IGNORECASE)
_ANY_SCHEME = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)


def with_default_scheme(url: str) -> str:
    """
    Prefix https:// when the input has no http(s) scheme.

    This is the only normalization applied to URLs as they are queued.
    """
    url = (url or "").strip()
    if _HTTP_PREFIX.match(url):
        return url
    return f"{DEFAULT_URL_SCHEME}://{url}"


def canonicalize(url: str) -> str:
    """
    Normalize a URL into its canonical cache form.

    Steps:
    - Default a missing scheme to https
    - Lowercase scheme and hostname (path and query keep their case)
    - Strip the default port (:443 for https, :80 for http)
    - Drop trailing slashes unless the path is the root
    - Sort query parameters by key, then value
    - Drop the fragment

    Args:
        url: User-supplied URL

    Returns:
        Canonical URL string

    Raises:
        InvalidUrlError: If the input cannot be parsed as an http(s) URL
    """
    raw = (url or "").strip()
    if not raw:
        raise InvalidUrlError(url, "empty")

    if _ANY_SCHEME.match(raw) and not _HTTP_PREFIX.match(raw):
        raise InvalidUrlError(url, "unsupported scheme")

    try:
        parts = urlsplit(with_default_scheme(raw))
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError(url, str(e)) from e

    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not host:
        raise InvalidUrlError(url, "missing host")
    if ":" in host:
        # IPv6 literal
        host = f"[{host}]"

    netloc = host
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{port}"
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    path = parts.path.rstrip("/") or "/"

    # A single slash ending the raw input belongs to the query when one is
    # present; a parameter whose whole value is "/" keeps it
    query = parts.query
    if query.endswith("/") and not query.endswith("=/"):
        query = query[:-1]

    if query:
        params = sorted(parse_qsl(query, keep_blank_values=True))
        query = urlencode(params)

    return urlunsplit((scheme, netloc, path, query, ""))


def fingerprint(url: str) -> str:
    """
    Compute the cache key for a URL.

    Returns:
        First 16 hex characters of SHA-256 over the canonical URL
    """
    canonical = canonicalize(url)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
