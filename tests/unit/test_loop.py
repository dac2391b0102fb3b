"""Unit tests for the reconciliation loop.

The work source, remote procedures and reconciler are mocks; rotation,
pacing and the shutdown flag are the real classes with fake clocks.

Tests cover:
- Sold items: no fetch, no reconcile, no write.
- Fetch failure: the selected fetcher is remediated, the reconciler is not
  called, the rotation keeps advancing.
- Empty polls: no pacing wait, counted separately.
- Source failures: one cooldown wait per failing poll, no remediation.
- Per-item failures (malformed input, store and upstream errors) skip the
  item; other exceptions propagate.
- Shutdown and ``max_iterations`` stop the loop between iterations.
- Heartbeat written after every iteration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from relister.core.exceptions import (
    ApplicationFailure,
    MalformedInputError,
    StorageError,
    TransportFailure,
)
from relister.core.logging_config import ITEM_ID_CTX
from relister.core.models import ReconcileAction, TrackedItem, UpstreamSnapshot
from relister.orchestrator.loop import LoopStats, ReconciliationLoop, write_heartbeat
from relister.orchestrator.pacing import PacingController
from relister.orchestrator.rotation import FetcherRotation
from relister.orchestrator.shutdown import ShutdownCoordinator

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def item(item_payload: dict[str, Any]) -> TrackedItem:
    return TrackedItem.model_validate(item_payload)


@pytest.fixture()
def snapshot(snapshot_payload: dict[str, Any]) -> UpstreamSnapshot:
    return UpstreamSnapshot.model_validate(snapshot_payload)


@pytest.fixture()
def source() -> MagicMock:
    src = MagicMock()
    src.next_item = AsyncMock(return_value=None)
    return src


@pytest.fixture()
def procedures(snapshot: UpstreamSnapshot) -> MagicMock:
    procs = MagicMock()
    procs.fetch_item = AsyncMock(return_value=snapshot)
    return procs


@pytest.fixture()
def reconciler() -> MagicMock:
    rec = MagicMock()
    rec.reconcile = AsyncMock(return_value=ReconcileAction.LISTED)
    return rec


@pytest.fixture()
def gateway() -> MagicMock:
    gw = MagicMock()
    gw.touch_configuration = AsyncMock()
    return gw


@pytest.fixture()
def cooldown_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def rotation(gateway: MagicMock, cooldown_sleep: AsyncMock) -> FetcherRotation:
    return FetcherRotation(["fetch-a", "fetch-b"], gateway, cooldown_s=3.0, sleep=cooldown_sleep)


@pytest.fixture()
def pacing_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def pacing(pacing_sleep: AsyncMock) -> PacingController:
    # Clock stuck at zero: every wait is the full drawn interval.
    return PacingController(
        2000, 3000, clock=lambda: 0.0, sleep=pacing_sleep, rng=lambda lo, hi: 2500.0
    )


@pytest.fixture()
def shutdown() -> ShutdownCoordinator:
    return ShutdownCoordinator()


@pytest.fixture()
def make_loop(
    source: MagicMock,
    procedures: MagicMock,
    reconciler: MagicMock,
    rotation: FetcherRotation,
    pacing: PacingController,
    shutdown: ShutdownCoordinator,
) -> Any:
    def _make(
        sold_skus: frozenset[str] = frozenset(),
        heartbeat_path: str = "",
        source_cooldown_s: float = 0.0,
        sleep: Any = None,
    ) -> ReconciliationLoop:
        extra: dict[str, Any] = {} if sleep is None else {"sleep": sleep}
        return ReconciliationLoop(
            source=source,
            procedures=procedures,
            reconciler=reconciler,
            rotation=rotation,
            pacing=pacing,
            shutdown=shutdown,
            sold_skus=sold_skus,
            heartbeat_path=heartbeat_path,
            source_cooldown_s=source_cooldown_s,
            **extra,
        )

    return _make


# ---------------------------------------------------------------------------
# Single iterations
# ---------------------------------------------------------------------------


class TestIteration:
    @pytest.mark.asyncio
    async def test_sold_item_makes_no_calls(
        self,
        make_loop: Any,
        source: MagicMock,
        procedures: MagicMock,
        reconciler: MagicMock,
        pacing_sleep: AsyncMock,
        item: TrackedItem,
    ) -> None:
        source.next_item.return_value = item
        loop = make_loop(sold_skus=frozenset({"SKU-1"}))

        assert await loop.run_iteration() is ReconcileAction.SOLD

        procedures.fetch_item.assert_not_awaited()
        reconciler.reconcile.assert_not_awaited()
        pacing_sleep.assert_not_awaited()
        assert loop.stats.actions[ReconcileAction.SOLD] == 1

    @pytest.mark.asyncio
    async def test_fetch_and_reconcile(
        self,
        make_loop: Any,
        source: MagicMock,
        procedures: MagicMock,
        reconciler: MagicMock,
        pacing_sleep: AsyncMock,
        item: TrackedItem,
        snapshot: UpstreamSnapshot,
    ) -> None:
        source.next_item.return_value = item
        loop = make_loop()

        assert await loop.run_iteration() is ReconcileAction.LISTED

        pacing_sleep.assert_awaited_once_with(2.5)
        procedures.fetch_item.assert_awaited_once_with("fetch-a", "m123")
        reconciler.reconcile.assert_awaited_once_with(item, snapshot)

    @pytest.mark.asyncio
    async def test_fetch_failure_remediates_selected_fetcher(
        self,
        make_loop: Any,
        source: MagicMock,
        procedures: MagicMock,
        reconciler: MagicMock,
        gateway: MagicMock,
        cooldown_sleep: AsyncMock,
        rotation: FetcherRotation,
        item: TrackedItem,
    ) -> None:
        source.next_item.return_value = item
        procedures.fetch_item.side_effect = TransportFailure("fetch-a", "HTTP 502")
        loop = make_loop()

        assert await loop.run_iteration() is ReconcileAction.FETCH_FAILED

        gateway.touch_configuration.assert_awaited_once_with("fetch-a")
        cooldown_sleep.assert_awaited_once_with(3.0)
        reconciler.reconcile.assert_not_awaited()
        assert loop.stats.skipped == 0
        assert rotation.next() == "fetch-b"

    @pytest.mark.asyncio
    async def test_application_failure_on_fetch_also_remediates(
        self,
        make_loop: Any,
        source: MagicMock,
        procedures: MagicMock,
        gateway: MagicMock,
        item: TrackedItem,
    ) -> None:
        source.next_item.return_value = item
        procedures.fetch_item.side_effect = ApplicationFailure("fetch-a", "success=false")

        assert await make_loop().run_iteration() is ReconcileAction.FETCH_FAILED
        gateway.touch_configuration.assert_awaited_once_with("fetch-a")

    @pytest.mark.asyncio
    async def test_empty_poll_does_not_pace(
        self,
        make_loop: Any,
        procedures: MagicMock,
        pacing_sleep: AsyncMock,
    ) -> None:
        loop = make_loop()

        assert await loop.run_iteration() is None

        pacing_sleep.assert_not_awaited()
        procedures.fetch_item.assert_not_awaited()
        assert loop.stats.empty_polls == 1

    @pytest.mark.asyncio
    async def test_source_failure_waits_cooldown(
        self,
        make_loop: Any,
        source: MagicMock,
        procedures: MagicMock,
        gateway: MagicMock,
        pacing_sleep: AsyncMock,
    ) -> None:
        source.next_item.side_effect = TransportFailure("relister:items", "Connection refused")
        sleep = AsyncMock()
        loop = make_loop(source_cooldown_s=3.0, sleep=sleep)

        assert await loop.run_iteration() is None

        sleep.assert_awaited_once_with(3.0)
        pacing_sleep.assert_not_awaited()
        procedures.fetch_item.assert_not_awaited()
        gateway.touch_configuration.assert_not_awaited()
        assert loop.stats.source_failures == 1
        assert loop.stats.skipped == 0

    @pytest.mark.asyncio
    async def test_malformed_input_is_skipped(
        self, make_loop: Any, source: MagicMock, procedures: MagicMock
    ) -> None:
        source.next_item.side_effect = MalformedInputError("Queue message body is empty")
        loop = make_loop()

        assert await loop.run_iteration() is None

        procedures.fetch_item.assert_not_awaited()
        assert loop.stats.skipped == 1

    @pytest.mark.parametrize(
        "error",
        [StorageError("disk full"), ApplicationFailure("ebay-list", "rejected")],
    )
    @pytest.mark.asyncio
    async def test_reconcile_failure_is_skipped_without_remediation(
        self,
        make_loop: Any,
        source: MagicMock,
        reconciler: MagicMock,
        gateway: MagicMock,
        item: TrackedItem,
        error: Exception,
    ) -> None:
        source.next_item.return_value = item
        reconciler.reconcile.side_effect = error
        loop = make_loop()

        assert await loop.run_iteration() is None

        gateway.touch_configuration.assert_not_awaited()
        assert loop.stats.skipped == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(
        self, make_loop: Any, source: MagicMock, reconciler: MagicMock, item: TrackedItem
    ) -> None:
        source.next_item.return_value = item
        reconciler.reconcile.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError, match="bug"):
            await make_loop().run_iteration()

    @pytest.mark.asyncio
    async def test_item_id_context_reset(
        self, make_loop: Any, source: MagicMock, item: TrackedItem
    ) -> None:
        source.next_item.return_value = item
        before = ITEM_ID_CTX.get()
        await make_loop().run_iteration()
        assert ITEM_ID_CTX.get() == before


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestRun:
    @pytest.mark.asyncio
    async def test_stops_at_max_iterations(self, make_loop: Any, source: MagicMock) -> None:
        stats = await make_loop().run(max_iterations=3)
        assert stats.iterations == 3
        assert source.next_item.await_count == 3

    @pytest.mark.asyncio
    async def test_failing_source_never_spins(
        self, make_loop: Any, source: MagicMock
    ) -> None:
        source.next_item.side_effect = TransportFailure("relister:items", "Connection refused")
        sleep = AsyncMock()

        stats = await make_loop(source_cooldown_s=3.0, sleep=sleep).run(max_iterations=50)

        assert stats.iterations == 50
        assert stats.source_failures == 50
        assert sleep.await_count == 50

    @pytest.mark.asyncio
    async def test_shutdown_before_start_runs_nothing(
        self, make_loop: Any, source: MagicMock, shutdown: ShutdownCoordinator
    ) -> None:
        shutdown.request("SIGTERM")
        stats = await make_loop().run()
        assert stats.iterations == 0
        source.next_item.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_shutdown_finishes_current_iteration(
        self,
        make_loop: Any,
        source: MagicMock,
        reconciler: MagicMock,
        shutdown: ShutdownCoordinator,
        item: TrackedItem,
    ) -> None:
        async def reconcile_then_signal(*args: Any) -> ReconcileAction:
            shutdown.request("SIGTERM")
            return ReconcileAction.LISTED

        source.next_item.return_value = item
        reconciler.reconcile.side_effect = reconcile_then_signal

        stats = await make_loop().run()

        assert stats.iterations == 1
        assert stats.actions[ReconcileAction.LISTED] == 1

    @pytest.mark.asyncio
    async def test_rotation_advances_across_items(
        self,
        make_loop: Any,
        source: MagicMock,
        procedures: MagicMock,
        item: TrackedItem,
    ) -> None:
        source.next_item.return_value = item
        await make_loop().run(max_iterations=3)

        fetchers = [c.args[0] for c in procedures.fetch_item.await_args_list]
        assert fetchers == ["fetch-a", "fetch-b", "fetch-a"]

    @pytest.mark.asyncio
    async def test_pacing_before_every_fetch(
        self,
        make_loop: Any,
        source: MagicMock,
        pacing_sleep: AsyncMock,
        item: TrackedItem,
    ) -> None:
        source.next_item.side_effect = [item, None, item]
        await make_loop().run(max_iterations=3)
        assert pacing_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_heartbeat_written_each_iteration(
        self, make_loop: Any, tmp_path: Path
    ) -> None:
        heartbeat = tmp_path / "heartbeat"
        await make_loop(heartbeat_path=str(heartbeat)).run(max_iterations=1)
        assert float(heartbeat.read_text()) > 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_heartbeat_disabled(self, tmp_path: Path) -> None:
        write_heartbeat("")
        assert list(tmp_path.iterdir()) == []

    def test_heartbeat_unwritable_path_is_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        write_heartbeat(str(tmp_path / "missing" / "heartbeat"))
        assert "Failed to write heartbeat" in caplog.text

    def test_stats_summary(self) -> None:
        stats = LoopStats(iterations=4, empty_polls=1, skipped=1)
        stats.record(ReconcileAction.LISTED)
        stats.record(ReconcileAction.SOLD)
        summary = stats.format_summary()
        assert summary.startswith("iterations=4 empty=1 skipped=1 ")
        assert "sold=1" in summary
        assert "listed=1" in summary
        assert "fetch_failed=0" in summary
        assert "source_failures=0" in summary
