"""Core domain models, settings, logging configuration, and shared utilities."""

from relister.core.exceptions import (
    ApplicationFailure,
    ConfigError,
    MalformedInputError,
    RelisterError,
    StorageError,
    TransportFailure,
    UpstreamError,
)
from relister.core.logging_config import JsonFormatter, configure_logging
from relister.core.models import (
    ReconcileAction,
    ReconciliationOutcome,
    TrackedItem,
    UpstreamSnapshot,
)
from relister.core.settings import Settings, load_settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "TrackedItem",
    "UpstreamSnapshot",
    "ReconcileAction",
    "ReconciliationOutcome",
    # Settings
    "Settings",
    "load_settings",
    # Exceptions
    "RelisterError",
    "ConfigError",
    "StorageError",
    "MalformedInputError",
    "UpstreamError",
    "TransportFailure",
    "ApplicationFailure",
]
