"""Reconciliation loop, engine, fetcher rotation, pacing and shutdown.

Public API
----------
* :func:`~relister.orchestrator.runner.run_worker` — process entry-point;
  wires the store, gateway and work source and runs the loop.
* :class:`~relister.orchestrator.loop.ReconciliationLoop` — the sequential
  per-item loop.
* :class:`~relister.orchestrator.reconciler.Reconciler` — decides and applies
  one item's listing state.
* :class:`~relister.orchestrator.rotation.FetcherRotation` — round-robin
  fetcher selection with remediation.
* :class:`~relister.orchestrator.pacing.PacingController` — randomised delay
  between upstream fetches.
* :class:`~relister.orchestrator.shutdown.ShutdownCoordinator` — ``SIGTERM``
  driven stop flag.
"""

from relister.orchestrator.loop import LoopStats, ReconciliationLoop, write_heartbeat
from relister.orchestrator.pacing import PacingController, next_pacing_interval_ms
from relister.orchestrator.reconciler import (
    Reconciler,
    build_inventory_payload,
    build_offer_payload,
    build_update_fields,
    classify,
    detect_changes,
)
from relister.orchestrator.rotation import FetcherRotation, FetcherStats
from relister.orchestrator.runner import run_worker
from relister.orchestrator.shutdown import ShutdownCoordinator

__all__ = [
    # Entry-point
    "run_worker",
    # Loop
    "ReconciliationLoop",
    "LoopStats",
    "write_heartbeat",
    # Engine
    "Reconciler",
    "classify",
    "detect_changes",
    "build_update_fields",
    "build_offer_payload",
    "build_inventory_payload",
    # Rotation / pacing / shutdown
    "FetcherRotation",
    "FetcherStats",
    "PacingController",
    "next_pacing_interval_ms",
    "ShutdownCoordinator",
]
