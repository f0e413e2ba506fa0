"""FastAPI middleware for API rate limiting."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

log = structlog.get_logger(__name__)

# Dispatch cycles between sweeps of idle client entries.
_GC_INTERVAL = 256
_WINDOW_SECONDS = 60.0


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiter per client IP.

    Args:
        app: ASGI application.
        requests_per_minute: Max requests per IP per minute. 0 = unlimited.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        app: object,
        requests_per_minute: int = 120,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._rpm = requests_per_minute
        self._clock = clock
        self._window: dict[str, deque[float]] = {}
        self._dispatch_count = 0

    def _gc(self) -> None:
        self._dispatch_count += 1
        if self._dispatch_count < _GC_INTERVAL:
            return
        self._dispatch_count = 0
        for ip in [ip for ip, dq in self._window.items() if not dq]:
            del self._window[ip]

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if self._rpm <= 0 or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = self._clock()
        cutoff = now - _WINDOW_SECONDS

        timestamps = self._window.setdefault(client_ip, deque())
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

        if len(timestamps) >= self._rpm:
            retry_after = max(1, int(timestamps[0] + _WINDOW_SECONDS - now) + 1)
            log.warning(
                "rate_limit_exceeded",
                client_ip=client_ip,
                rpm=self._rpm,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "ok": False,
                    "urls": [],
                    "message": "rate limit exceeded",
                },
                headers={"Retry-After": str(retry_after)},
            )

        timestamps.append(now)
        self._gc()

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self._rpm)
        response.headers["X-RateLimit-Remaining"] = str(
            max(0, self._rpm - len(timestamps))
        )
        return response
