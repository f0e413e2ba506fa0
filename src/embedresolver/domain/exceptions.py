"""Resolution error taxonomy.

Every error carries a message that is safe to show to the caller; the use
case turns it into ``ResolutionResult.message``.
"""

from __future__ import annotations


class ResolveError(Exception):
    """Base class for all resolution errors."""


class DecodeError(ResolveError):
    """Raised when the caller's base64url encoding cannot be decoded."""


class ValidationError(ResolveError):
    """Raised when a URL violates the scheme/host/port/length policy."""


class FetchError(ResolveError):
    """Raised on a non-2xx response or a transport failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResolveTimeoutError(FetchError, TimeoutError):
    """Raised when a fetch or an attempt exceeds its deadline."""


class ExtractionEmpty(ResolveError):
    """Raised when the page was fetched but yielded no valid source."""

    def __init__(self, message: str = "no urls found") -> None:
        super().__init__(message)
