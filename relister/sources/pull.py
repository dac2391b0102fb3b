"""Pull-based work source backed by a remote "get next item" function.

The cursor lives server-side and advances on every call, so an item
dropped by this worker (for example after a failed upstream fetch) is not
offered again until the cursor wraps around.
"""

from __future__ import annotations

import logging
from typing import ClassVar

from relister.core.models import TrackedItem
from relister.gateway.procedures import RemoteProcedures
from relister.sources.base import WorkSource

__all__ = ["PullWorkSource"]

logger = logging.getLogger(__name__)


class PullWorkSource(WorkSource):
    kind: ClassVar[str] = "pull"

    def __init__(self, procedures: RemoteProcedures) -> None:
        self._procedures = procedures

    async def next_item(self) -> TrackedItem:
        return await self._procedures.get_next_item()
