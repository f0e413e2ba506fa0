"""In-flight request de-duplication (thundering-herd protection)."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


class InFlightRegistry:
    """Shares one running operation between concurrent callers of a key.

    The first caller for a key starts the operation as a task; callers that
    arrive before it settles await the same task and get the same value or
    exception. A waiter that is cancelled does not cancel the shared task.
    Entries are removed as soon as the task settles.

    Created once per process (application lifespan); :meth:`aclose`
    cancels whatever is still running at shutdown.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Task[Any]] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``factory()`` for *key*, or join the run already in flight."""
        task = self._pending.get(key)
        if task is None:
            if self._closed:
                raise RuntimeError("InFlightRegistry is closed")
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            log.debug("inflight_joined", key=key)
        return await asyncio.shield(task)

    async def aclose(self) -> None:
        self._closed = True
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            log.info("inflight_cancelled", count=len(tasks))
