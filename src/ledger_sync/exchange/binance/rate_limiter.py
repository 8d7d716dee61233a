"""Rate limiting for Binance requests.

Two mechanisms work together: a slot scheduler pacing individual
requests, and a batch policy capping how many symbol probes run
concurrently with a fixed pause between batches.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class RateLimiter:
    """Request pacer using a theoretical-arrival-time schedule.

    Each call reserves the next free slot before sleeping, so concurrent
    callers are released in arrival order at no more than ``rate`` calls
    per second. Up to ``burst`` calls may go out back to back after an
    idle period.
    """

    def __init__(self, rate: float, burst: float | None = None) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.burst = burst if burst else rate
        self._interval = 1.0 / rate
        self._tat = time.monotonic()

    def reserve(self, cost: float = 1.0) -> float:
        """Book a slot for cost units and return the seconds to wait."""
        now = time.monotonic()
        tat = max(self._tat, now)
        allowed_at = tat + (cost - self.burst) * self._interval
        self._tat = tat + cost * self._interval
        return max(0.0, allowed_at - now)

    async def acquire(self, cost: float = 1.0) -> None:
        """Wait until a slot for cost units is available."""
        delay = self.reserve(cost)
        if delay > 0:
            logger.debug(f"Rate limited, waiting {delay:.3f}s")
            await asyncio.sleep(delay)


@dataclass(frozen=True)
class BatchPolicy:
    """Bounded fan-out for per-symbol exchange calls.

    Attributes:
        batch_size: Concurrent calls per batch
        delay_seconds: Pause between consecutive batches
    """

    batch_size: int = 5
    delay_seconds: float = 0.2

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")

    def batches(self, items: Sequence[T]) -> list[Sequence[T]]:
        """Chunk items into batches of batch_size."""
        return [
            items[i : i + self.batch_size]
            for i in range(0, len(items), self.batch_size)
        ]

    async def run(
        self,
        items: Sequence[T],
        call: Callable[[T], Awaitable[R]],
        on_batch: Callable[[int, int], Awaitable[None]] | None = None,
    ) -> list[R]:
        """Run call over items in sequential concurrent batches.

        call must not raise; wrap failures in its return value.

        Args:
            items: Inputs, processed in order
            call: Coroutine function applied to each item
            on_batch: Awaited after each batch with (batch_index, batch_count)

        Returns:
            Results in input order
        """
        results: list[R] = []
        chunks = self.batches(items)
        for index, chunk in enumerate(chunks):
            results.extend(await asyncio.gather(*(call(item) for item in chunk)))
            if on_batch is not None:
                await on_batch(index, len(chunks))
            if index < len(chunks) - 1 and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
        return results
