"""Queue-backed work source on a Redis list.

Each poll is a blocking pop with a bounded wait (``BLPOP``).  The pop
removes the message from the queue at the moment it is received, before
the item is processed: delivery is at-most-once, and a crash mid-iteration
loses that item until the producer enqueues it again.

Message contract: the body is JSON text decoding to ``{"item": {...}}``
where the inner object is a :class:`~relister.core.models.TrackedItem`.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, ClassVar

from pydantic import ValidationError
from redis.exceptions import RedisError

from relister.core.exceptions import MalformedInputError, TransportFailure
from relister.core.models import TrackedItem
from relister.sources.base import WorkSource

if TYPE_CHECKING:
    import redis.asyncio as aioredis

__all__ = ["QueueWorkSource", "parse_queue_message"]

logger = logging.getLogger(__name__)


def parse_queue_message(body: str | bytes | None) -> TrackedItem:
    """Decode one queue message body into a :class:`TrackedItem`.

    Raises:
        MalformedInputError: Empty body, invalid JSON, missing ``item`` key,
            or an item that does not validate.
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not body or not body.strip():
        raise MalformedInputError("Queue message body is empty")

    try:
        decoded = json.loads(body)
    except json.JSONDecodeError as exc:
        raise MalformedInputError(f"Queue message is not valid JSON: {exc}") from exc

    if not isinstance(decoded, dict) or not decoded.get("item"):
        raise MalformedInputError("Queue message has no 'item'")

    try:
        return TrackedItem.model_validate(decoded["item"])
    except ValidationError as exc:
        raise MalformedInputError(f"Queue message item is malformed: {exc}") from exc


class QueueWorkSource(WorkSource):
    """Pop one item per call from a Redis list.

    Args:
        redis_client: Async Redis connection.  Closed by :meth:`close`.
        queue_name: Key of the list holding queued messages.
        wait_seconds: Bounded wait of one poll.  ``0`` would block forever in
            Redis, so values below the minimum are raised to it.
    """

    kind: ClassVar[str] = "queue"

    #: Smallest poll timeout sent to Redis (``0`` means "block forever").
    _MIN_WAIT_SECONDS: ClassVar[float] = 0.1

    def __init__(
        self,
        redis_client: aioredis.Redis,
        queue_name: str,
        wait_seconds: float = 1.0,
    ) -> None:
        self._redis = redis_client
        self._queue_name = queue_name
        self._wait_seconds = max(wait_seconds, self._MIN_WAIT_SECONDS)

    async def close(self) -> None:
        await self._redis.aclose()
        logger.debug("Queue connection closed.")

    async def next_item(self) -> TrackedItem | None:
        try:
            popped = await self._redis.blpop([self._queue_name], timeout=self._wait_seconds)
        except RedisError as exc:
            raise TransportFailure(self._queue_name, f"Queue poll failed: {exc}") from exc

        if popped is None:
            return None

        _key, body = popped
        return parse_queue_message(body)
