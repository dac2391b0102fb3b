"""Randomised pacing between upstream fetches.

Each fetch is preceded by a wait so that at least a random interval drawn
from ``[PACING_MIN_MS, PACING_MAX_MS]`` separates it from the previous
iteration's start.  Only the calling loop is delayed.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable

__all__ = ["next_pacing_interval_ms", "PacingController"]

logger = logging.getLogger(__name__)


def next_pacing_interval_ms(
    min_ms: int,
    max_ms: int,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """Return a randomised target interval in milliseconds."""
    return rng(min_ms, max_ms)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class PacingController:
    """Delays the caller until the randomised interval has elapsed.

    Args:
        min_ms: Lower bound of the interval.
        max_ms: Upper bound of the interval.
        clock: Millisecond clock; defaults to a monotonic clock.
        sleep: Awaitable sleep taking seconds.
        rng: ``(low, high) -> float`` draw; defaults to :func:`random.uniform`.
    """

    def __init__(
        self,
        min_ms: int,
        max_ms: int,
        *,
        clock: Callable[[], float] = _monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[float, float], float] = random.uniform,
    ) -> None:
        if min_ms > max_ms:
            raise ValueError(f"min_ms ({min_ms}) > max_ms ({max_ms})")
        self._min_ms = min_ms
        self._max_ms = max_ms
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

    def now_ms(self) -> float:
        return self._clock()

    async def wait_since_last(self, last_run_at_ms: float) -> float:
        """Sleep for whatever remains of a fresh random interval.

        Args:
            last_run_at_ms: :meth:`now_ms` value recorded at the start of the
                previous iteration.

        Returns:
            Milliseconds actually waited (``0`` if the interval had passed).
        """
        target = next_pacing_interval_ms(self._min_ms, self._max_ms, self._rng)
        elapsed = self._clock() - last_run_at_ms
        remaining = target - elapsed
        if remaining <= 0:
            return 0.0
        logger.debug("Pacing: waiting %.0f ms.", remaining)
        await self._sleep(remaining / 1000)
        return remaining
