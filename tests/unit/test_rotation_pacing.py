"""Unit tests for fetcher rotation, pacing and the shutdown flag.

Tests cover:
- ``FetcherRotation`` — wrap-around cursor, fairness over N selections,
  remediation touches the failing fetcher then cools down, failed touch
  still cools down, summary counters.
- ``next_pacing_interval_ms`` / ``PacingController`` — bounds, remaining-time
  sleep, no sleep once the interval has passed.
- ``ShutdownCoordinator`` — set once, idempotent, SIGTERM registration.
"""

from __future__ import annotations

import asyncio
import signal
from collections import Counter
from unittest.mock import AsyncMock, MagicMock

import pytest

from relister.core.exceptions import TransportFailure
from relister.orchestrator.pacing import PacingController, next_pacing_interval_ms
from relister.orchestrator.rotation import FetcherRotation
from relister.orchestrator.shutdown import ShutdownCoordinator

# ---------------------------------------------------------------------------
# FetcherRotation
# ---------------------------------------------------------------------------


@pytest.fixture()
def gateway() -> MagicMock:
    gw = MagicMock()
    gw.touch_configuration = AsyncMock()
    return gw


class TestFetcherRotation:
    def test_round_robin_wraps(self, gateway: MagicMock) -> None:
        rotation = FetcherRotation(["a", "b", "c"], gateway, cooldown_s=0)
        assert [rotation.next() for _ in range(7)] == ["a", "b", "c", "a", "b", "c", "a"]
        assert rotation.cursor == 1

    def test_single_fetcher(self, gateway: MagicMock) -> None:
        rotation = FetcherRotation(["only"], gateway, cooldown_s=0)
        assert {rotation.next() for _ in range(5)} == {"only"}

    def test_empty_list_rejected(self, gateway: MagicMock) -> None:
        with pytest.raises(ValueError):
            FetcherRotation([], gateway, cooldown_s=0)

    @pytest.mark.parametrize(("n", "k"), [(10, 3), (9, 3), (100, 7), (1, 4)])
    def test_fairness(self, gateway: MagicMock, n: int, k: int) -> None:
        rotation = FetcherRotation([f"f{i}" for i in range(k)], gateway, cooldown_s=0)
        counts = Counter(rotation.next() for _ in range(n))
        for i in range(k):
            assert abs(counts[f"f{i}"] - n / k) <= 1

    def test_cursor_not_reset_between_items(self, gateway: MagicMock) -> None:
        rotation = FetcherRotation(["a", "b"], gateway, cooldown_s=0)
        rotation.next()
        assert rotation.next() == "b"
        assert rotation.next() == "a"

    @pytest.mark.asyncio
    async def test_remediate_touches_then_sleeps(self, gateway: MagicMock) -> None:
        calls: list[str] = []
        gateway.touch_configuration.side_effect = lambda name: calls.append(f"touch:{name}")

        async def fake_sleep(seconds: float) -> None:
            calls.append(f"sleep:{seconds}")

        rotation = FetcherRotation(["a", "b"], gateway, cooldown_s=3.0, sleep=fake_sleep)
        await rotation.remediate("b")

        assert calls == ["touch:b", "sleep:3.0"]
        assert rotation.summary()["b"].failures == 1

    @pytest.mark.asyncio
    async def test_failed_touch_still_cools_down(self, gateway: MagicMock) -> None:
        gateway.touch_configuration.side_effect = TransportFailure("a", "HTTP 500")
        sleep = AsyncMock()
        rotation = FetcherRotation(["a"], gateway, cooldown_s=3.0, sleep=sleep)

        await rotation.remediate("a")

        sleep.assert_awaited_once_with(3.0)
        assert rotation.summary()["a"].remediation_errors == 1
        assert rotation.next() == "a"

    def test_summary_counts_selections(self, gateway: MagicMock) -> None:
        rotation = FetcherRotation(["a", "b"], gateway, cooldown_s=0)
        for _ in range(3):
            rotation.next()
        summary = rotation.summary()
        assert list(summary) == ["a", "b"]
        assert summary["a"].selected == 2
        assert summary["b"].selected == 1
        assert "a: selected=2 failures=0" in rotation.format_summary()


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------


class TestPacing:
    def test_interval_within_bounds(self) -> None:
        for _ in range(200):
            assert 2000 <= next_pacing_interval_ms(2000, 3000) <= 3000

    def test_interval_equal_bounds(self) -> None:
        assert next_pacing_interval_ms(2500, 2500) == 2500

    def test_min_above_max_rejected(self) -> None:
        with pytest.raises(ValueError):
            PacingController(3000, 2000)

    @pytest.mark.asyncio
    async def test_sleeps_for_remaining_time(self) -> None:
        sleep = AsyncMock()
        pacing = PacingController(
            2000, 3000, clock=lambda: 10_500.0, sleep=sleep, rng=lambda lo, hi: 2500.0
        )

        waited = await pacing.wait_since_last(10_000.0)

        assert waited == 2000.0
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_no_sleep_when_interval_elapsed(self) -> None:
        sleep = AsyncMock()
        pacing = PacingController(
            2000, 3000, clock=lambda: 20_000.0, sleep=sleep, rng=lambda lo, hi: 3000.0
        )

        assert await pacing.wait_since_last(10_000.0) == 0.0
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_draws_from_configured_range(self) -> None:
        seen: list[tuple[float, float]] = []

        def rng(lo: float, hi: float) -> float:
            seen.append((lo, hi))
            return lo

        pacing = PacingController(100, 200, clock=lambda: 0.0, sleep=AsyncMock(), rng=rng)
        await pacing.wait_since_last(0.0)
        assert seen == [(100, 200)]


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdownCoordinator:
    def test_initially_clear(self) -> None:
        assert ShutdownCoordinator().requested is False

    def test_request_is_sticky_and_idempotent(self, caplog: pytest.LogCaptureFixture) -> None:
        shutdown = ShutdownCoordinator()
        with caplog.at_level("INFO", logger="relister.orchestrator.shutdown"):
            shutdown.request("SIGTERM")
            shutdown.request("SIGTERM")

        assert shutdown.requested is True
        assert shutdown.signal_name == "SIGTERM"
        assert sum("Received SIGTERM" in r.message for r in caplog.records) == 1

    @pytest.mark.asyncio
    async def test_install_registers_sigterm(self) -> None:
        loop = MagicMock(spec=asyncio.AbstractEventLoop)
        shutdown = ShutdownCoordinator()

        shutdown.install(loop)
        loop.add_signal_handler.assert_called_once_with(
            signal.SIGTERM, shutdown.request, "SIGTERM"
        )

        shutdown.uninstall()
        loop.remove_signal_handler.assert_called_once_with(signal.SIGTERM)

    def test_uninstall_without_install_is_noop(self) -> None:
        ShutdownCoordinator().uninstall()
