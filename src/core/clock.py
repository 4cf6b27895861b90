# src/core/clock.py — v1
"""Injectable clocks for timers and retry backoff.

SystemClock is used in production. ManualClock lets tests advance time
explicitly so scan cadence and backoff are deterministic.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Time source plus an awaitable sleep."""

    @abstractmethod
    def now(self) -> datetime:
        """Current UTC time."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds``."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock(Clock):
    """Clock that only moves when advance() is called."""

    def __init__(self, start: datetime | None = None) -> None:
        self._start = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._elapsed = 0.0
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._elapsed)

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, fut in self._sleepers if not fut.done())

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._elapsed + seconds, fut))
        try:
            await fut
        finally:
            self._sleepers = [(d, f) for d, f in self._sleepers if f is not fut]

    async def advance(self, seconds: float) -> None:
        """Move time forward and let woken tasks run."""
        self._elapsed += seconds
        for deadline, fut in list(self._sleepers):
            if deadline <= self._elapsed and not fut.done():
                fut.set_result(None)
        # Give woken coroutines a chance to reach their next await.
        for _ in range(10):
            await asyncio.sleep(0)
