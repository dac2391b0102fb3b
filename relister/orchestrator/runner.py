"""Orchestrator entry-point: assemble every component and run the loop.

Component wiring
----------------
:func:`run_worker`:

1. Opens the record store via :func:`~relister.storage.database.open_db`.
2. Enters a :class:`~relister.gateway.client.FunctionGateway` and the
   configured :class:`~relister.sources.base.WorkSource` through a single
   :class:`contextlib.AsyncExitStack`.
3. Loads the sold SKU set once.  It is not refreshed while the process
   runs.
4. Installs the ``SIGTERM`` handler and runs the
   :class:`~relister.orchestrator.loop.ReconciliationLoop`.
5. Tears every resource down on exit, including on exceptions.

Typical usage::

    import asyncio
    from relister.core.settings import load_settings
    from relister.orchestrator.runner import run_worker

    stats = asyncio.run(run_worker(load_settings()))
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack

from relister.core import events
from relister.core.settings import Settings
from relister.gateway.client import FunctionGateway
from relister.gateway.procedures import RemoteProcedures
from relister.orchestrator.loop import LoopStats, ReconciliationLoop
from relister.orchestrator.pacing import PacingController
from relister.orchestrator.reconciler import Reconciler
from relister.orchestrator.rotation import FetcherRotation
from relister.orchestrator.shutdown import ShutdownCoordinator
from relister.sources import build_work_source
from relister.storage.database import open_db
from relister.storage.record_store import RecordStore

__all__ = ["run_worker"]

logger = logging.getLogger(__name__)


async def run_worker(
    settings: Settings,
    max_iterations: int | None = None,
    shutdown: ShutdownCoordinator | None = None,
) -> LoopStats:
    """Run the reconciliation loop until shutdown.

    Args:
        settings: Validated worker settings.
        max_iterations: Stop after this many iterations (``None``: unbounded).
        shutdown: Stop flag; a fresh coordinator bound to ``SIGTERM`` is
            created when omitted.

    Returns:
        The loop's :class:`~relister.orchestrator.loop.LoopStats`.

    Raises:
        UpstreamError: If the sold SKU set cannot be loaded at startup.
        Exception: Anything unhandled inside the loop.
    """
    shutdown = shutdown or ShutdownCoordinator()

    logger.info(
        "Worker starting: table=%s source=%s fetchers=%d db=%s",
        settings.table_name,
        settings.work_source,
        len(settings.fetcher_functions),
        settings.database_path,
    )

    conn = await open_db(settings.database_path)
    try:
        async with AsyncExitStack() as stack:
            gateway = await stack.enter_async_context(
                FunctionGateway(
                    settings.function_gateway_url,
                    token=settings.function_gateway_token,
                    timeout=settings.function_gateway_timeout,
                )
            )
            procedures = RemoteProcedures(gateway, settings)
            source = await stack.enter_async_context(build_work_source(settings, procedures))

            sold_skus = await procedures.fetch_sold_skus()
            logger.info(
                "Loaded %d sold SKUs.",
                len(sold_skus),
                extra={"event": events.WORKER_START, "sold_skus": len(sold_skus)},
            )

            rotation = FetcherRotation(
                settings.fetcher_functions,
                gateway,
                cooldown_s=settings.remediation_cooldown_s,
            )
            loop = ReconciliationLoop(
                source=source,
                procedures=procedures,
                reconciler=Reconciler(procedures, RecordStore(conn), settings),
                rotation=rotation,
                pacing=PacingController(settings.pacing_min_ms, settings.pacing_max_ms),
                shutdown=shutdown,
                sold_skus=sold_skus,
                heartbeat_path=settings.heartbeat_path,
                source_cooldown_s=settings.remediation_cooldown_s,
            )

            shutdown.install()
            try:
                stats = await loop.run(max_iterations=max_iterations)
            finally:
                shutdown.uninstall()
                logger.info("Fetcher rotation: %s", rotation.format_summary())
        return stats
    finally:
        await conn.close()
        logger.debug("Database connection closed.")
