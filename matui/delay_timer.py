from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional


class DelayTimer:
    """Fire *callback* once, *delay* seconds after the latest ``record()``.

    Each ``record()`` restarts the wait, so a burst of activity produces a
    single callback after it goes quiet. A delay of 0 disables the timer.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.delay = delay
        self._callback = callback
        self._waiter: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._waiter is not None and not self._waiter.done()

    def record(self) -> None:
        self.cancel()
        if self.delay <= 0:
            return
        self._waiter = asyncio.create_task(self._wait())

    def cancel(self) -> None:
        if self._waiter is not None:
            self._waiter.cancel()
            self._waiter = None

    async def _wait(self) -> None:
        await asyncio.sleep(self.delay)
        await self._callback()
