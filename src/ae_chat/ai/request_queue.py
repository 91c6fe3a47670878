"""Serial request queue and per-provider rate limiting."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

from ae_chat.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RequestQueue:
    """Runs submitted jobs one at a time, in submission order.

    After each job the queue sleeps ``pacing_ms`` before starting the next,
    whether the job succeeded or not.
    """

    def __init__(self, pacing_ms: int = 100):
        self._pacing = pacing_ms / 1000
        self._lock = asyncio.Lock()
        self._pending = 0

    @property
    def pending(self) -> int:
        return self._pending

    async def submit(self, job: Callable[[], Awaitable[T]]) -> T:
        self._pending += 1
        if self._pending > 1:
            logger.debug("request_queued", pending=self._pending)
        try:
            async with self._lock:
                try:
                    return await job()
                finally:
                    if self._pacing:
                        await asyncio.sleep(self._pacing)
        finally:
            self._pending -= 1


class RateLimiter:
    """Minimum interval between requests to the same provider."""

    def __init__(
        self,
        limits_ms: dict[str, int] | None = None,
        default_ms: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._limits = dict(limits_ms or {})
        self._default = default_ms
        self._clock = clock
        self._last: dict[str, float] = {}

    def interval(self, provider: str) -> float:
        return self._limits.get(provider, self._default) / 1000

    def is_limited(self, provider: str) -> bool:
        last = self._last.get(provider)
        if last is None:
            return False
        return (self._clock() - last) < self.interval(provider)

    def record(self, provider: str) -> None:
        self._last[provider] = self._clock()
