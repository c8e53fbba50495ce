"""
Custom exceptions for PageStore capture and queue processing.

This module defines the error taxonomy shared by the library and the
Lambda handlers.
"""


class PageStoreError(Exception):
    """Base exception for page store errors."""


class InvalidUrlError(PageStoreError):
    """Input could not be parsed as a URL, even with a default scheme."""

    def __init__(self, url: str, reason: str | None = None):
        self.url = url
        message = f"Invalid URL: {url!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class FetchError(PageStoreError):
    """Error during page fetching (unreachable origin or non-2xx response)."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Failed to fetch {url}: {message}")


class StorageError(PageStoreError):
    """Blob or record persistence failed."""


class UnauthenticatedError(PageStoreError):
    """Request carries no authenticated identity."""


class UnauthorizedError(PageStoreError):
    """Authenticated identity may not act on the requested tenant."""
