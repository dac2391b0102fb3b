"""Persistence layer: SQLite-backed record store for tracked items."""

from relister.storage.database import create_schema, open_db
from relister.storage.record_store import (
    RecordStore,
    UpdateExpression,
    build_update_expression,
)

__all__ = [
    "open_db",
    "create_schema",
    "RecordStore",
    "UpdateExpression",
    "build_update_expression",
]
