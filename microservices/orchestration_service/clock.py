"""
Orchestration Clocks

SystemClock drives triggers from the running asyncio loop. ManualClock is a
virtual clock: time only moves when advance() is called, which fires every
trigger that has come due, in due order.
"""

import asyncio
import heapq
import itertools
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class SystemClock:
    """Wall clock backed by the asyncio event loop"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay_ms: int, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay_ms, 0) / 1000.0, callback)

    async def sleep(self, delay_ms: int) -> None:
        await asyncio.sleep(max(delay_ms, 0) / 1000.0)


class ManualTimer:
    """Handle returned by ManualClock.call_later"""

    def __init__(self, due_ms: int, callback: Callable[[], Any]):
        self.due_ms = due_ms
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Virtual clock for deterministic tests"""

    def __init__(self, start: Optional[datetime] = None):
        self._start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._elapsed_ms = 0
        self._seq = itertools.count()
        self._queue: List[Tuple[int, int, ManualTimer]] = []

    @property
    def elapsed_ms(self) -> int:
        return self._elapsed_ms

    def now(self) -> datetime:
        return self._start + timedelta(milliseconds=self._elapsed_ms)

    def call_later(self, delay_ms: int, callback: Callable[[], Any]) -> ManualTimer:
        timer = ManualTimer(self._elapsed_ms + max(delay_ms, 0), callback)
        heapq.heappush(self._queue, (timer.due_ms, next(self._seq), timer))
        return timer

    async def sleep(self, delay_ms: int) -> None:
        future = asyncio.get_running_loop().create_future()

        def _wake() -> None:
            if not future.done():
                future.set_result(None)

        timer = self.call_later(delay_ms, _wake)
        try:
            await future
        finally:
            timer.cancel()

    @property
    def pending(self) -> int:
        return sum(1 for _, _, t in self._queue if not t.cancelled and not t.fired)

    def advance(self, delay_ms: int = 0) -> int:
        """Move time forward, firing due triggers; returns how many fired"""
        target = self._elapsed_ms + max(delay_ms, 0)
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due_ms, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._elapsed_ms = max(self._elapsed_ms, due_ms)
            timer.fired = True
            fired += 1
            timer.callback()
        self._elapsed_ms = target
        return fired


__all__ = ["SystemClock", "ManualClock", "ManualTimer"]
