"""Work sources: where the loop gets its next candidate item."""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

from relister.core.settings import Settings
from relister.gateway.procedures import RemoteProcedures
from relister.sources.base import WorkSource
from relister.sources.pull import PullWorkSource
from relister.sources.queue import QueueWorkSource, parse_queue_message

__all__ = [
    "WorkSource",
    "QueueWorkSource",
    "PullWorkSource",
    "parse_queue_message",
    "build_work_source",
]

logger = logging.getLogger(__name__)


def build_work_source(settings: Settings, procedures: RemoteProcedures) -> WorkSource:
    """Instantiate the work source selected by ``WORK_SOURCE``."""
    if settings.work_source == "pull":
        logger.info("Work source: pull (%s).", settings.next_item_function)
        return PullWorkSource(procedures)

    client = aioredis.from_url(settings.queue_url, decode_responses=True)
    logger.info("Work source: queue (%s).", settings.queue_name)
    return QueueWorkSource(
        client,
        settings.queue_name,
        wait_seconds=settings.queue_wait_seconds,
    )
