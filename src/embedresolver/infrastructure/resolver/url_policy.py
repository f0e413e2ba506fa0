"""URL policy for extracted candidates and fetch targets.

A candidate passes when, after stripping surrounding quotes, it is a
non-empty ``http``/``https`` URL no longer than the length limit, whose
hostname is not blocked, whose explicit port (if any) is allowed and whose
hostname only contains ``[a-zA-Z0-9.-]``.

Fetch targets additionally go through :func:`check_resolved_addresses`
once the hostname has been resolved, so that a public-looking name that
points at loopback or an internal network is refused before any request.
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from embedresolver.domain.exceptions import ValidationError

_HOSTNAME_RE = re.compile(r"^[a-zA-Z0-9.-]+$")
_QUOTES = "\"'"

DEFAULT_ALLOWED_PORTS = frozenset({80, 443, 8080, 8443})
DEFAULT_BLOCKED_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "::1"})


@dataclass(frozen=True)
class UrlPolicy:
    """Scheme/host/port/length rules applied to every URL we touch."""

    allowed_ports: frozenset[int] = DEFAULT_ALLOWED_PORTS
    blocked_hosts: frozenset[str] = DEFAULT_BLOCKED_HOSTS
    max_length: int = 2048
    allowed_schemes: frozenset[str] = field(
        default_factory=lambda: frozenset({"http", "https"})
    )

    @classmethod
    def from_lists(
        cls,
        *,
        allowed_ports: Iterable[int],
        blocked_hosts: Iterable[str],
        max_length: int = 2048,
    ) -> UrlPolicy:
        return cls(
            allowed_ports=frozenset(allowed_ports),
            blocked_hosts=frozenset(h.lower() for h in blocked_hosts),
            max_length=max_length,
        )

    def validate(self, candidate: str) -> str:
        """Return the cleaned URL or raise ``ValidationError``."""
        clean = strip_quotes(candidate.strip())
        if not clean or len(clean) > self.max_length:
            raise ValidationError("URL too long or empty")

        try:
            parts = urlsplit(clean)
            port = parts.port
        except ValueError as exc:
            raise ValidationError(f"Invalid URL: {exc}") from exc

        if parts.scheme.lower() not in self.allowed_schemes:
            raise ValidationError("Only HTTP and HTTPS URLs allowed")

        hostname = (parts.hostname or "").lower()
        if not hostname:
            raise ValidationError("Invalid URL: missing hostname")

        if hostname in self.blocked_hosts:
            raise ValidationError("Blocked hostname")

        if port is not None and port not in self.allowed_ports:
            raise ValidationError("Port not allowed")

        if not _HOSTNAME_RE.match(hostname):
            raise ValidationError("Invalid hostname characters")

        return clean

    def is_valid(self, candidate: str) -> bool:
        try:
            self.validate(candidate)
        except ValidationError:
            return False
        return True


def strip_quotes(value: str) -> str:
    """Remove one leading and one trailing quote character."""
    if value[:1] in _QUOTES:
        value = value[1:]
    if value[-1:] in _QUOTES:
        value = value[:-1]
    return value


def check_resolved_addresses(
    hostname: str,
    addresses: Iterable[str],
    *,
    blocked_hosts: frozenset[str] = DEFAULT_BLOCKED_HOSTS,
    block_private: bool = True,
) -> None:
    """Raise ``ValidationError`` if any resolved address is internal.

    Loopback, unspecified and blocked literals are always refused; private,
    link-local and reserved ranges are refused when *block_private* is set.
    """
    for addr in addresses:
        if addr.lower() in blocked_hosts:
            raise ValidationError(f"Blocked address for {hostname}: {addr}")
        try:
            ip = ipaddress.ip_address(addr.split("%", 1)[0])
        except ValueError:
            continue
        if ip.is_loopback or ip.is_unspecified:
            raise ValidationError(f"Blocked address for {hostname}: {addr}")
        if block_private and (
            ip.is_private or ip.is_link_local or ip.is_reserved or ip.is_multicast
        ):
            raise ValidationError(f"Internal address for {hostname}: {addr}")


_default_policy = UrlPolicy()


def validate_url(candidate: str) -> str:
    """Validate with the default policy. Returns the cleaned URL."""
    return _default_policy.validate(candidate)


def is_valid_url(candidate: str) -> bool:
    return _default_policy.is_valid(candidate)
