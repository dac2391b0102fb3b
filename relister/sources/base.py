"""Work source interface: "give me the next item to reconcile".

Two interchangeable implementations exist and are selected by the
``WORK_SOURCE`` setting:

* :class:`~relister.sources.queue.QueueWorkSource` — pops one message from a
  queue; may return ``None`` when the queue is empty.
* :class:`~relister.sources.pull.PullWorkSource` — asks a remote "get next
  item" function whose cursor lives server-side; always yields an item.

Both raise :class:`~relister.core.exceptions.MalformedInputError` for an
empty or undecodable item so the loop can drop that iteration only.

Typical usage::

    async with build_work_source(settings, procedures) as source:
        item = await source.next_item()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from types import TracebackType
from typing import ClassVar

from relister.core.models import TrackedItem

__all__ = ["WorkSource"]

logger = logging.getLogger(__name__)


class WorkSource(ABC):
    """Abstract base for every source of candidate items.

    Attributes:
        kind: Short label used in log lines (``"queue"`` / ``"pull"``).
    """

    kind: ClassVar[str]

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by this source.  Default: no-op."""

    async def __aenter__(self) -> WorkSource:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @abstractmethod
    async def next_item(self) -> TrackedItem | None:
        """Return the next candidate item, or ``None`` if there is none right now.

        Raises:
            :class:`~relister.core.exceptions.MalformedInputError`: The
            retrieved item is empty or cannot be decoded.
            :class:`~relister.core.exceptions.UpstreamError`: A remote
            source failed.
        """
