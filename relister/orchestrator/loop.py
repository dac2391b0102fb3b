"""The sequential reconciliation loop.

One item is in flight at a time.  Each iteration:

1. Checks the shutdown flag and exits if it is set.
2. Takes the next item from the work source.  ``None`` (empty queue) is a
   no-op iteration and the loop continues immediately.  A failing source
   (queue unreachable, "get next item" call failed) costs a cooldown wait
   before the next poll.
3. Skips the item with no remote call and no write if its SKU is in the sold
   set.
4. Awaits the pacing controller, picks the next fetcher from the rotation,
   and fetches the upstream snapshot.  A failed fetch remediates that
   fetcher and skips the item without persisting anything.
5. Hands the item to the :class:`~relister.orchestrator.reconciler.Reconciler`.

Any other :class:`~relister.core.exceptions.RelisterError` inside an
iteration (malformed input, a failed delist/list call, a store error) is
logged and the item is skipped.  Anything else propagates and ends the
process.

The heartbeat file is rewritten after every iteration.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from collections import Counter
from dataclasses import dataclass, field

from relister.core import events
from relister.core.exceptions import RelisterError, UpstreamError
from relister.core.logging_config import ITEM_ID_CTX
from relister.core.models import ReconcileAction, TrackedItem
from relister.gateway.procedures import RemoteProcedures
from relister.orchestrator.pacing import PacingController
from relister.orchestrator.reconciler import Reconciler
from relister.orchestrator.rotation import FetcherRotation
from relister.orchestrator.shutdown import ShutdownCoordinator
from relister.sources.base import WorkSource

__all__ = ["LoopStats", "ReconciliationLoop", "write_heartbeat"]

logger = logging.getLogger(__name__)


def write_heartbeat(path: str) -> None:
    """Write the current epoch timestamp to *path*.

    Errors are logged at WARNING level and never propagated.
    """
    if not path:
        return
    try:
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(str(time.time()))
    except OSError:
        logger.warning("Failed to write heartbeat file '%s'.", path, exc_info=True)


@dataclass
class LoopStats:
    """Counters accumulated over the lifetime of one loop.

    Attributes:
        iterations: Iterations started (including empty polls).
        empty_polls: Iterations where the work source had nothing.
        skipped: Items dropped because of a non-fetch failure.
        source_failures: Iterations where taking the next item failed.
        actions: Terminal state counts keyed by :class:`ReconcileAction`.
    """

    iterations: int = 0
    empty_polls: int = 0
    skipped: int = 0
    source_failures: int = 0
    actions: Counter[ReconcileAction] = field(default_factory=Counter)

    _start_monotonic: float = field(default_factory=time.monotonic, repr=False)

    @property
    def uptime_s(self) -> float:
        return time.monotonic() - self._start_monotonic

    def record(self, action: ReconcileAction) -> None:
        self.actions[action] += 1

    def format_summary(self) -> str:
        """One-line summary suitable for a single ``logger.info()`` call."""
        per_action = " ".join(f"{a.value}={self.actions.get(a, 0)}" for a in ReconcileAction)
        return (
            f"iterations={self.iterations} empty={self.empty_polls} "
            f"skipped={self.skipped} source_failures={self.source_failures} "
            f"{per_action} uptime={self.uptime_s:.0f}s"
        )


class ReconciliationLoop:
    """Owns the loop state: sold set, rotation cursor, pacing clock, shutdown flag.

    Args:
        source: Where the next item comes from.
        procedures: Remote collaborators; the loop uses ``fetch_item``.
        reconciler: Applies the decision for a fetched item.
        rotation: Fetcher rotation with remediation.
        pacing: Randomised delay before every fetch.
        shutdown: Cooperative stop flag.
        sold_skus: SKUs sold on the destination marketplace, loaded once.
        heartbeat_path: File rewritten after each iteration; empty disables.
        source_cooldown_s: Wait after the work source itself fails.
        sleep: Awaitable sleep taking seconds; injectable for tests.
    """

    def __init__(
        self,
        *,
        source: WorkSource,
        procedures: RemoteProcedures,
        reconciler: Reconciler,
        rotation: FetcherRotation,
        pacing: PacingController,
        shutdown: ShutdownCoordinator,
        sold_skus: frozenset[str],
        heartbeat_path: str = "",
        source_cooldown_s: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._procedures = procedures
        self._reconciler = reconciler
        self._rotation = rotation
        self._pacing = pacing
        self._shutdown = shutdown
        self._sold_skus = sold_skus
        self._heartbeat_path = heartbeat_path
        self._source_cooldown_s = source_cooldown_s
        self._sleep = sleep
        self._last_run_at_ms = 0.0
        self.stats = LoopStats()

    async def run(self, max_iterations: int | None = None) -> LoopStats:
        """Run until the shutdown flag is set or *max_iterations* is reached.

        Raises:
            Exception: Anything that is not a :class:`RelisterError` escapes
                the iteration and ends the loop.
        """
        while not self._shutdown.requested:
            if max_iterations is not None and self.stats.iterations >= max_iterations:
                logger.info("Iteration limit %d reached.", max_iterations)
                break
            await self.run_iteration()
        return self.stats

    async def run_iteration(self) -> ReconcileAction | None:
        """Process at most one item.  Returns its terminal state, if any."""
        self.stats.iterations += 1
        token = ITEM_ID_CTX.set("-")
        try:
            return await self._iterate()
        except RelisterError as exc:
            self.stats.skipped += 1
            logger.warning(
                "Item skipped: %s: %s",
                type(exc).__name__,
                exc,
                extra={"event": events.ITEM_SKIPPED, "error_name": type(exc).__name__},
            )
            return None
        finally:
            ITEM_ID_CTX.reset(token)
            write_heartbeat(self._heartbeat_path)

    async def _iterate(self) -> ReconcileAction | None:
        try:
            item = await self._source.next_item()
        except UpstreamError as exc:
            self.stats.source_failures += 1
            logger.warning(
                "Work source failed: %s; waiting %.1f s.",
                exc,
                self._source_cooldown_s,
                extra={"event": events.SOURCE_FAILED, "error_name": type(exc).__name__},
            )
            await self._sleep(self._source_cooldown_s)
            return None

        if item is None:
            self.stats.empty_polls += 1
            logger.debug("Work source is empty.", extra={"event": events.QUEUE_EMPTY})
            return None

        ITEM_ID_CTX.set(item.id)
        logger.info("Next item %s (sku=%s).", item.id, item.marketplace_sku)

        if item.marketplace_sku in self._sold_skus:
            logger.info(
                "Item with SKU %s is sold.",
                item.marketplace_sku,
                extra={"event": events.ITEM_SOLD, "sku": item.marketplace_sku},
            )
            self.stats.record(ReconcileAction.SOLD)
            return ReconcileAction.SOLD

        action = await self._fetch_and_reconcile(item)
        self.stats.record(action)
        return action

    async def _fetch_and_reconcile(self, item: TrackedItem) -> ReconcileAction:
        origin_id = item.origin_item_id

        await self._pacing.wait_since_last(self._last_run_at_ms)
        self._last_run_at_ms = self._pacing.now_ms()

        fetcher = self._rotation.next()
        logger.debug("Fetching %s through %s.", origin_id, fetcher)
        try:
            snapshot = await self._procedures.fetch_item(fetcher, origin_id)
        except UpstreamError as exc:
            logger.warning(
                "Upstream fetch through %s failed: %s",
                fetcher,
                exc,
                extra={"event": events.FETCH_FAILED, "fetcher": fetcher},
            )
            await self._rotation.remediate(fetcher)
            return ReconcileAction.FETCH_FAILED

        return await self._reconciler.reconcile(item, snapshot)
