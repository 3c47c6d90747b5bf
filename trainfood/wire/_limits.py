"""
Rate limiting — fixed window per caller.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


class RateLimiter(Protocol):
    async def hit(self, key: str) -> RateDecision: ...


class MemoryRateLimiter:
    """``limit`` requests per ``window`` seconds per key, single process."""

    def __init__(
        self,
        limit: int,
        window: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window = window
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._last_sweep = clock()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (started, _) in self._windows.items() if now - started >= self.window]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now

    async def hit(self, key: str) -> RateDecision:
        async with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self.window:
                self._sweep(now)
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window:
                started, count = now, 0

            if count >= self.limit:
                return RateDecision(
                    allowed=False, remaining=0, retry_after=started + self.window - now
                )

            self._windows[key] = (started, count + 1)
            return RateDecision(allowed=True, remaining=self.limit - count - 1)


__all__ = ("RateDecision", "RateLimiter", "MemoryRateLimiter")
