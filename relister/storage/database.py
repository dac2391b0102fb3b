"""SQLite database initialisation for the record store.

Responsible for opening (or creating) the SQLite file, configuring PRAGMAs,
and bootstrapping the schema with ``CREATE TABLE IF NOT EXISTS``.

Call :func:`open_db` once at process startup and hand the connection to
:class:`~relister.storage.record_store.RecordStore`.  The caller closes it.

Typical usage::

    from relister.storage.database import open_db

    async def main() -> None:
        conn = await open_db(Path("data/relister.db"))
        ...
        await conn.close()
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("relister.db")

#: ``records`` holds one JSON document per (table, key).
#:
#: Column notes
#: ------------
#: table_name   Logical table identifier (``TABLE_NAME`` setting).
#: key_value    Record key, stored as text.
#: body         JSON object with every attribute of the record.  Updates are
#:              applied with ``json_set`` / ``json_remove`` in one statement.
#: updated_at   UTC timestamp of the last write.
_DDL_RECORDS = """\
CREATE TABLE IF NOT EXISTS records (
    table_name  TEXT  NOT NULL,
    key_value   TEXT  NOT NULL,
    body        TEXT  NOT NULL DEFAULT '{}',
    updated_at  TEXT  NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (table_name, key_value)
)"""


async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and bootstrap the schema.

    Args:
        path: Filesystem path for the SQLite file, or ``":memory:"``.
            Defaults to :data:`DEFAULT_DB_PATH`.

    Returns:
        An open, configured :class:`aiosqlite.Connection`.

    Raises:
        aiosqlite.OperationalError: If the database file cannot be opened.
    """
    db_path = path or DEFAULT_DB_PATH
    if str(db_path) != ":memory:":
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", db_path)

    conn: aiosqlite.Connection = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    await _configure_pragmas(conn)
    await create_schema(conn)

    logger.info("Record store ready at %s", db_path)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create the ``records`` table if it does not already exist."""
    await conn.execute(_DDL_RECORDS)
    await conn.commit()
    logger.debug("Schema bootstrap complete (records table verified)")


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.debug("SQLite journal_mode is %r (expected for ':memory:').", mode)
