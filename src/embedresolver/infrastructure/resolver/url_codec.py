"""Transport encoding of target URLs and cache key derivation."""

from __future__ import annotations

import base64
import binascii

import structlog

from embedresolver.domain.exceptions import DecodeError

log = structlog.get_logger(__name__)

CACHE_KEY_PREFIX = "resolve:"


def _strict_decode(value: str) -> str:
    """Decode base64url to UTF-8, raising DecodeError on any failure."""
    b64 = value.strip().replace("-", "+").replace("_", "/")
    b64 += "=" * (-len(b64) % 4)
    try:
        raw = base64.b64decode(b64, validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"invalid base64url: {exc}") from exc


def decode_base64url(value: str) -> str:
    """Decode the caller's base64url encoding of a URL.

    Restores ``=`` padding before decoding. Input that does not decode is
    returned unchanged so that a malformed value fails later, at validation.

    >>> decode_base64url("aHR0cHM6Ly9leGFtcGxlLmNvbS8")
    'https://example.com/'
    """
    try:
        return _strict_decode(value)
    except DecodeError as exc:
        log.warning("base64url_decode_failed", error=str(exc))
        return value


def encode_base64url(value: str) -> str:
    """Encode a UTF-8 string as unpadded base64url."""
    return base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")


def build_cache_key(target_url: str, referer: str | None = None) -> str:
    """Deterministic, URL-safe cache key for (target URL, referer)."""
    raw = (target_url + (referer or "")).encode("utf-8")
    encoded = (
        base64.b64encode(raw)
        .decode("ascii")
        .replace("+", "-")
        .replace("/", "_")
        .rstrip("=")
    )
    return f"{CACHE_KEY_PREFIX}{encoded}"
