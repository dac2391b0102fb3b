"""Cooperative shutdown flag driven by ``SIGTERM``.

The flag is set once and never cleared.  The loop reads it at the top of
every iteration; remote calls already in flight complete normally.
``SIGINT`` keeps Python's default :exc:`KeyboardInterrupt` behaviour.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from relister.core import events

__all__ = ["ShutdownCoordinator"]

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    def __init__(self) -> None:
        self._signame: str | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def requested(self) -> bool:
        return self._signame is not None

    @property
    def signal_name(self) -> str | None:
        return self._signame

    def request(self, signame: str = "SIGTERM") -> None:
        """Set the flag.  Idempotent: only the first call is logged."""
        if self._signame is not None:
            return
        self._signame = signame
        logger.info(
            "Received %s; stopping after the current iteration.",
            signame,
            extra={"event": events.SHUTDOWN_REQUESTED, "signal": signame},
        )

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Register the ``SIGTERM`` handler on *loop* (default: running loop)."""
        self._loop = loop or asyncio.get_running_loop()
        self._loop.add_signal_handler(signal.SIGTERM, self.request, "SIGTERM")

    def uninstall(self) -> None:
        if self._loop is None:
            return
        with contextlib.suppress(Exception):
            self._loop.remove_signal_handler(signal.SIGTERM)
        self._loop = None
