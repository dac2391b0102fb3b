"""Structured log event name constants for the reconciliation worker.

Every key transition in the loop emits a log record with an ``event`` field
(passed via ``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the
value surfaces as ``extra.event``; in text mode the message is
self-describing and the event is not printed.

Usage example::

    import logging
    from relister.core import events

    logger = logging.getLogger(__name__)

    logger.info("Item is sold", extra={"event": events.ITEM_SOLD})
"""

from __future__ import annotations

__all__ = [
    # Process lifecycle
    "WORKER_START",
    "WORKER_ENDED",
    "WORKER_CRASHED",
    "SHUTDOWN_REQUESTED",
    # Work source
    "QUEUE_EMPTY",
    "SOURCE_FAILED",
    # Reconciliation outcomes
    "ITEM_SOLD",
    "ITEM_ORIGIN_GONE",
    "ITEM_NEEDS_UPDATE",
    "ITEM_LISTED",
    "ITEM_SKIPPED",
    # Fetcher rotation
    "FETCH_FAILED",
    "FETCHER_REMEDIATED",
]

# ---------------------------------------------------------------------------
# Process lifecycle
# ---------------------------------------------------------------------------

#: Sold SKUs loaded and the loop is about to start.
WORKER_START: str = "WORKER_START"

#: The loop exited normally (shutdown flag or iteration limit).
WORKER_ENDED: str = "WORKER_ENDED"

#: An unhandled exception terminated the process.
WORKER_CRASHED: str = "WORKER_CRASHED"

#: A termination signal set the shutdown flag.
SHUTDOWN_REQUESTED: str = "SHUTDOWN_REQUESTED"

# ---------------------------------------------------------------------------
# Work source
# ---------------------------------------------------------------------------

#: Queue poll returned nothing; no-op iteration.
QUEUE_EMPTY: str = "QUEUE_EMPTY"

#: Taking the next item failed (queue or "get next item" call); cooldown follows.
SOURCE_FAILED: str = "SOURCE_FAILED"

# ---------------------------------------------------------------------------
# Reconciliation outcomes
# ---------------------------------------------------------------------------

#: SKU found in the sold set; no fetch, no write.
ITEM_SOLD: str = "ITEM_SOLD"

#: Upstream item is no longer on sale; delisted.
ITEM_ORIGIN_GONE: str = "ITEM_ORIGIN_GONE"

#: Item is live but changed, ineligible, or incomplete; delisted.
ITEM_NEEDS_UPDATE: str = "ITEM_NEEDS_UPDATE"

#: Item passed every check and was listed.
ITEM_LISTED: str = "ITEM_LISTED"

#: A non-fetch failure inside an iteration; item skipped.
ITEM_SKIPPED: str = "ITEM_SKIPPED"

# ---------------------------------------------------------------------------
# Fetcher rotation
# ---------------------------------------------------------------------------

#: The upstream fetch raised; remediation follows.
FETCH_FAILED: str = "FETCH_FAILED"

#: A fetcher's configuration was touched to force a clean restart.
FETCHER_REMEDIATED: str = "FETCHER_REMEDIATED"
