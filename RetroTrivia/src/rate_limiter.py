"""Request spacing for rate limited HTTP APIs."""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable


class RequestCooldown:
    """Keep at least ``period`` seconds between two consecutive requests.

    Unlike a token bucket this never rejects a caller: :meth:`wait` sleeps
    until the cooldown has elapsed. :meth:`hit` records a request and
    :meth:`reset` forgets the last one.
    """

    def __init__(
        self,
        period: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None

    def remaining(self) -> float:
        if self._last is None:
            return 0.0
        return max(0.0, self.period - (self._clock() - self._last))

    async def wait(self) -> None:
        delay = self.remaining()
        if delay > 0:
            await self._sleep(delay)

    def hit(self) -> None:
        self._last = self._clock()

    def reset(self) -> None:
        self._last = None
