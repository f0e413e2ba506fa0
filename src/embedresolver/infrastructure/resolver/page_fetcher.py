"""httpx-based embed page fetcher with SSRF guard and hard deadline."""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from collections.abc import Awaitable, Callable
from urllib.parse import unquote, urljoin, urlsplit

import httpx
import structlog

from embedresolver.domain.exceptions import (
    FetchError,
    ResolveTimeoutError,
    ValidationError,
)
from embedresolver.domain.ports.page_fetcher import FetchedPage
from embedresolver.infrastructure.config.schema import ResolverConfig
from embedresolver.infrastructure.resolver.url_policy import (
    UrlPolicy,
    check_resolved_addresses,
)

log = structlog.get_logger(__name__)

HostResolver = Callable[[str], Awaitable[list[str]]]

_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


def browser_headers(user_agent: str, referer: str | None = None) -> dict[str, str]:
    """Desktop-browser navigation headers."""
    headers = {
        "User-Agent": user_agent,
        "Accept": (
            "text/html,application/xhtml+xml,application/xml;q=0.9,"
            "image/webp,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "DNT": "1",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Cache-Control": "no-cache",
    }
    if referer:
        headers["Referer"] = unquote(referer)
    return headers


async def resolve_host(hostname: str) -> list[str]:
    """Resolve *hostname* to its IP addresses via the event loop resolver."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


def _format_seconds(value: float) -> str:
    return f"{value:g}s"


class HttpxPageFetcher:
    """Fetches one embed page.

    Every URL (the target and each redirect hop) passes the URL policy and,
    when DNS checks are enabled, an address check before it is requested.
    The whole exchange, body included, runs under one deadline.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        config: ResolverConfig,
        *,
        policy: UrlPolicy | None = None,
        host_resolver: HostResolver | None = None,
    ) -> None:
        self._http = http_client
        self._config = config
        self._policy = policy or UrlPolicy.from_lists(
            allowed_ports=config.allowed_ports,
            blocked_hosts=config.blocked_hosts,
            max_length=config.max_url_length,
        )
        self._host_resolver = host_resolver or resolve_host

    async def _guard(self, url: str) -> str:
        """Apply the SSRF policy to *url*. Returns the cleaned URL."""
        clean = self._policy.validate(url)
        if not self._config.resolve_dns:
            return clean

        hostname = (urlsplit(clean).hostname or "").lower()
        try:
            ipaddress.ip_address(hostname)
            addresses = [hostname]
        except ValueError:
            try:
                addresses = await self._host_resolver(hostname)
            except OSError as exc:
                raise FetchError(f"Network error: {exc}") from exc

        if not addresses:
            raise FetchError(f"Network error: cannot resolve {hostname}")
        check_resolved_addresses(
            hostname,
            addresses,
            blocked_hosts=self._policy.blocked_hosts,
            block_private=self._config.block_private_networks,
        )
        return clean

    def _check_peer(self, response: httpx.Response) -> None:
        """Re-check the address the connection actually reached.

        httpx resolves the hostname again when it connects, so a rebinding
        DNS answer could differ from the one checked in ``_guard``.
        Transports that expose no network stream are skipped.
        """
        if not self._config.resolve_dns:
            return
        stream = response.extensions.get("network_stream")
        if stream is None:
            return
        server_addr = stream.get_extra_info("server_addr")
        if not server_addr:
            return
        check_resolved_addresses(
            response.request.url.host,
            [str(server_addr[0])],
            blocked_hosts=self._policy.blocked_hosts,
            block_private=self._config.block_private_networks,
        )

    async def _read_capped(self, response: httpx.Response) -> bytes:
        limit = self._config.max_html_size
        buf = bytearray()
        async for chunk in response.aiter_bytes():
            buf.extend(chunk)
            if len(buf) >= limit:
                log.debug("fetch_body_capped", url=str(response.url), limit=limit)
                del buf[limit:]
                break
        return bytes(buf)

    async def _exchange(self, url: str, referer: str | None) -> FetchedPage:
        headers = browser_headers(self._config.user_agent, referer)
        current = await self._guard(url)

        for hop in range(self._config.max_redirects + 1):
            request = self._http.build_request("GET", current, headers=headers)
            response = await self._http.send(
                request, stream=True, follow_redirects=False
            )
            try:
                self._check_peer(response)
                if response.status_code in _REDIRECT_STATUSES:
                    location = response.headers.get("location")
                    if not location:
                        raise FetchError(
                            f"Failed to fetch: {response.status_code} "
                            f"{response.reason_phrase}",
                            status_code=response.status_code,
                        )
                    next_url = urljoin(current, location)
                    log.debug("fetch_redirect", hop=hop + 1, location=next_url)
                    current = await self._guard(next_url)
                    continue

                if not response.is_success:
                    raise FetchError(
                        f"Failed to fetch: {response.status_code} "
                        f"{response.reason_phrase}",
                        status_code=response.status_code,
                    )

                body = await self._read_capped(response)
                encoding = response.charset_encoding or "utf-8"
                try:
                    text = body.decode(encoding, errors="replace")
                except LookupError:
                    text = body.decode("utf-8", errors="replace")
                return FetchedPage(
                    url=current,
                    text=text,
                    status_code=response.status_code,
                    byte_count=len(body),
                )
            finally:
                await response.aclose()

        raise FetchError(
            f"Network error: too many redirects (> {self._config.max_redirects})"
        )

    async def fetch(
        self,
        url: str,
        *,
        referer: str | None = None,
        timeout: float | None = None,
    ) -> FetchedPage:
        """Fetch *url* once. Never retried within the call.

        Raises:
            ValidationError: Target or a redirect hop violates the policy.
            ResolveTimeoutError: The deadline expired.
            FetchError: Non-2xx status or transport failure.
        """
        deadline = timeout or self._config.fetch_timeout_seconds
        try:
            page = await asyncio.wait_for(self._exchange(url, referer), deadline)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            log.warning("fetch_timeout", url=url, timeout=deadline)
            raise ResolveTimeoutError(
                f"request timed out after {_format_seconds(deadline)}"
            ) from exc
        except httpx.HTTPError as exc:
            log.warning("fetch_network_error", url=url, error=str(exc))
            raise FetchError(f"Network error: {exc}") from exc
        except ValidationError as exc:
            log.info("fetch_refused", url=url, reason=str(exc))
            raise
        except FetchError as exc:
            log.info("fetch_failed", url=url, error=str(exc))
            raise

        log.debug(
            "fetch_ok",
            url=url,
            final_url=page.url,
            status=page.status_code,
            bytes=page.byte_count,
        )
        return page
