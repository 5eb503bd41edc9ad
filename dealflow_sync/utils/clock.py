"""
Clock abstraction for the sync loops.

Every timer in the package goes through a ``Clock`` so tests can drive the
schedulers with virtual time instead of real sleeps.
"""

import asyncio
import heapq
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Source of wall time, monotonic time and sleeping."""

    def now(self) -> datetime:
        """Current UTC wall-clock time."""
        ...

    def monotonic(self) -> float:
        """Monotonic seconds, used for throttling."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        ...


class SystemClock:
    """Clock backed by the real time and ``asyncio.sleep``."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0.0))


class ManualClock:
    """
    Virtual clock advanced explicitly by the caller.

    ``sleep`` parks the task until ``advance`` moves time past its deadline.
    Sleepers are woken in deadline order and the event loop is given a few
    turns after each wake-up so the woken task can run its next step.
    """

    def __init__(
        self,
        start: Optional[datetime] = None,
        settle_turns: int = 50,
    ) -> None:
        self._start = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._elapsed = 0.0
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._sequence = 0
        self._settle_turns = settle_turns

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        return self._elapsed

    @property
    def pending_sleepers(self) -> int:
        """Number of tasks currently parked in ``sleep``."""
        return sum(1 for _, _, fut in self._sleepers if not fut.done())

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sequence += 1
        heapq.heappush(
            self._sleepers, (self._elapsed + seconds, self._sequence, future)
        )
        await future

    async def settle(self) -> None:
        """Let ready tasks run until they park again."""
        for _ in range(self._settle_turns):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking every sleeper whose deadline passes."""
        target = self._elapsed + seconds
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self._elapsed = max(self._elapsed, deadline)
            future.set_result(None)
            await self.settle()
        self._elapsed = target
        await self.settle()
