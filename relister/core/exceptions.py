"""Relister exception taxonomy.

Every custom exception inherits from :class:`RelisterError`.  Exceptions are
organised by layer so the reconciliation loop can decide, at a single point,
whether a failure costs one item or the whole process:

    Layer hierarchy
    ---------------
    RelisterError
    ├── ConfigError
    ├── StorageError
    ├── MalformedInputError
    └── UpstreamError
        ├── TransportFailure
        └── ApplicationFailure

Any :class:`RelisterError` raised inside one loop iteration skips that item.
Anything else escapes the loop and terminates the process.

Usage:

    from relister.core.exceptions import TransportFailure

    raise TransportFailure("merc-item-1", "Connection refused") from exc
"""

from __future__ import annotations

__all__ = [
    "RelisterError",
    "ConfigError",
    "StorageError",
    "MalformedInputError",
    "UpstreamError",
    "TransportFailure",
    "ApplicationFailure",
]


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class RelisterError(Exception):
    """Root exception for all Relister errors."""


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(RelisterError):
    """Raised when the process configuration is invalid or incomplete.

    Examples:
        - A required environment variable is missing.
        - ``PACING_MIN_MS`` is greater than ``PACING_MAX_MS``.
    """


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(RelisterError):
    """Raised when a record store read or update fails."""


# ---------------------------------------------------------------------------
# Work source layer
# ---------------------------------------------------------------------------


class MalformedInputError(RelisterError):
    """Raised when a work item is empty or cannot be decoded.

    Fatal to the current iteration only; the loop catches it and moves on.
    """


# ---------------------------------------------------------------------------
# Remote procedure layer
# ---------------------------------------------------------------------------


class UpstreamError(RelisterError):
    """Base class for every remote procedure failure.

    Args:
        function_name: Identifier of the remote function that failed.
        message: Human-readable error description.
    """

    def __init__(self, function_name: str, message: str) -> None:
        self.function_name = function_name
        super().__init__(f"[{function_name}] {message}")


class TransportFailure(UpstreamError):
    """The remote call could not complete (network error, non-2xx status)."""


class ApplicationFailure(UpstreamError):
    """The remote call completed but reported failure.

    Covers an ``errorMessage`` envelope, ``success`` false or absent, and a
    response that cannot be decoded into the expected schema.

    Args:
        function_name: Identifier of the remote function that failed.
        message: Human-readable error description.
        raw_response: The undecoded response text, when available.
    """

    def __init__(
        self,
        function_name: str,
        message: str,
        raw_response: str | None = None,
    ) -> None:
        self.raw_response = raw_response
        super().__init__(function_name, message)
