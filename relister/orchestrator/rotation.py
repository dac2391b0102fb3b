"""Round-robin rotation over equivalent upstream fetcher functions.

Upstream fetchers are stateful scrapers that occasionally wedge.  Instead of
a health-check subsystem, a fetcher that fails is *remediated*: its
configuration is touched so the platform cold-starts it, the loop waits a
fixed cooldown, and the fetcher stays in rotation for its next turn.

The cursor is owned by one :class:`FetcherRotation` instance for the whole
process lifetime; it is never reset between items.

Typical usage::

    rotation = FetcherRotation(["f1", "f2"], gateway, cooldown_s=3.0)

    fetcher = rotation.next()
    try:
        snapshot = await procedures.fetch_item(fetcher, item_id)
    except UpstreamError:
        await rotation.remediate(fetcher)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from relister.core import events
from relister.core.exceptions import UpstreamError
from relister.gateway.client import FunctionGateway

__all__ = ["FetcherStats", "FetcherRotation"]

logger = logging.getLogger(__name__)


@dataclass
class FetcherStats:
    """Per-fetcher counters kept for the exit summary.

    Attributes:
        selected: Times :meth:`FetcherRotation.next` returned this fetcher.
        failures: Times this fetcher was remediated.
        remediation_errors: Remediations whose configuration touch failed.
    """

    selected: int = 0
    failures: int = 0
    remediation_errors: int = 0


class FetcherRotation:
    """Ordered fetcher list plus a wrap-around cursor.

    Args:
        fetchers: Equivalent fetcher function identifiers (at least one).
        gateway: Used for the configuration touch during remediation.
        cooldown_s: Fixed wait after every remediation.
        sleep: Awaitable sleep function; injectable for tests.

    Raises:
        ValueError: If *fetchers* is empty.
    """

    def __init__(
        self,
        fetchers: Sequence[str],
        gateway: FunctionGateway,
        cooldown_s: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not fetchers:
            raise ValueError("FetcherRotation needs at least one fetcher")
        self._fetchers: tuple[str, ...] = tuple(fetchers)
        self._gateway = gateway
        self._cooldown_s = cooldown_s
        self._sleep = sleep
        self._cursor = 0
        self._stats: dict[str, FetcherStats] = {f: FetcherStats() for f in self._fetchers}

    @property
    def fetchers(self) -> tuple[str, ...]:
        return self._fetchers

    @property
    def cursor(self) -> int:
        """Index of the fetcher the next :meth:`next` call will return."""
        return self._cursor

    def next(self) -> str:
        """Return the fetcher at the cursor and advance the cursor."""
        fetcher = self._fetchers[self._cursor]
        self._cursor = (self._cursor + 1) % len(self._fetchers)
        self._stats[fetcher].selected += 1
        return fetcher

    async def remediate(self, fetcher: str) -> None:
        """Force *fetcher* to restart cleanly, then wait the cooldown.

        A failed configuration touch is logged and does not propagate; the
        cooldown is applied either way and the fetcher stays in rotation.
        """
        stats = self._stats.setdefault(fetcher, FetcherStats())
        stats.failures += 1
        try:
            await self._gateway.touch_configuration(fetcher)
        except UpstreamError as exc:
            stats.remediation_errors += 1
            logger.warning(
                "Remediation of fetcher %s failed: %s",
                fetcher,
                exc,
                extra={"event": events.FETCHER_REMEDIATED, "fetcher": fetcher, "ok": False},
            )
        else:
            logger.info(
                "Fetcher %s remediated; cooling down %.1f s.",
                fetcher,
                self._cooldown_s,
                extra={"event": events.FETCHER_REMEDIATED, "fetcher": fetcher, "ok": True},
            )
        await self._sleep(self._cooldown_s)

    def summary(self) -> dict[str, FetcherStats]:
        """Per-fetcher counters, in rotation order."""
        return {f: self._stats[f] for f in self._fetchers}

    def format_summary(self) -> str:
        return ", ".join(
            f"{name}: selected={s.selected} failures={s.failures}"
            for name, s in self.summary().items()
        )
