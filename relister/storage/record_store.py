"""Field-level record updates for tracked items.

The reconciliation loop never rewrites a whole record; it SETs the handful
of fields it owns and optionally REMOVEs the listed-index marker.  Every
field name and value is addressed through a generated placeholder
(``#n0`` / ``:v0``) so a field called ``status`` or ``size`` can never
collide with a reserved word in the expression.

:func:`build_update_expression` is pure and produces the expression;
:class:`RecordStore` applies it atomically to the SQLite ``records`` table
in a single ``UPDATE`` using ``json_remove`` / ``json_set``.

Typical usage::

    store = RecordStore(conn)
    await store.update_record(
        "items",
        "id",
        "a1",
        {"isListed": False, "scanCount": 4},
        field_to_remove="isListedGsi",
    )
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiosqlite

from relister.core.exceptions import StorageError

__all__ = [
    "UpdateExpression",
    "build_update_expression",
    "RecordStore",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateExpression:
    """A SET/REMOVE update with every name and value behind a placeholder.

    Attributes:
        expression: e.g. ``"REMOVE #r0 SET #n0 = :v0, #n1 = :v1"``.
        names: Placeholder → attribute name (``{"#n0": "scanCount"}``).
        values: Placeholder → attribute value (``{":v0": 4}``).
    """

    expression: str
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)

    @property
    def set_pairs(self) -> list[tuple[str, str]]:
        """``(name placeholder, value placeholder)`` pairs in SET order."""
        return [(f"#n{i}", f":v{i}") for i in range(len(self.values))]

    @property
    def remove_placeholder(self) -> str | None:
        return "#r0" if "#r0" in self.names else None


def build_update_expression(
    fields_to_set: Mapping[str, Any],
    field_to_remove: str | None = None,
) -> UpdateExpression:
    """Build an :class:`UpdateExpression` that SETs every key of *fields_to_set*.

    Args:
        fields_to_set: Attribute name → new value.  Order is preserved.
        field_to_remove: Optional attribute removed before the SETs apply.

    Raises:
        ValueError: If there is nothing to set, or the removed field is also
            being set.
    """
    if not fields_to_set:
        raise ValueError("fields_to_set must contain at least one attribute")
    if field_to_remove is not None and field_to_remove in fields_to_set:
        raise ValueError(f"{field_to_remove!r} cannot be both set and removed")

    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    assignments: list[str] = []

    for i, (name, value) in enumerate(fields_to_set.items()):
        names[f"#n{i}"] = name
        values[f":v{i}"] = value
        assignments.append(f"#n{i} = :v{i}")

    expression = "SET " + ", ".join(assignments)
    if field_to_remove is not None:
        names["#r0"] = field_to_remove
        expression = "REMOVE #r0 " + expression

    return UpdateExpression(expression=expression, names=names, values=values)


def _json_path(attribute: str) -> str:
    """Return a SQLite JSON path addressing a top-level *attribute*."""
    escaped = attribute.replace("\\", "\\\\").replace('"', '\\"')
    return f'$."{escaped}"'


class RecordStore:
    """Data-access object for the ``records`` table.

    Owns no connection lifecycle; the caller supplies an open
    :class:`aiosqlite.Connection` (see :func:`~relister.storage.database.open_db`).
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get_record(self, table: str, key_value: Any) -> dict[str, Any] | None:
        """Return the decoded record, or ``None`` if it does not exist."""
        cursor = await self._conn.execute(
            "SELECT body FROM records WHERE table_name = ? AND key_value = ?",
            (table, str(key_value)),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def update_record(
        self,
        table: str,
        key_field: str,
        key_value: Any,
        fields_to_set: Mapping[str, Any],
        field_to_remove: str | None = None,
    ) -> None:
        """Apply a SET/REMOVE update to one record atomically.

        A missing record is created holding only ``{key_field: key_value}``
        before the update applies.  Both statements run in one transaction;
        on failure it is rolled back and no field is changed.

        Raises:
            StorageError: If the database rejects the update.
        """
        expr = build_update_expression(fields_to_set, field_to_remove)

        params: dict[str, Any] = {
            "table": table,
            "key": str(key_value),
            "key_field": key_field,
            "key_json": json.dumps(key_value),
        }

        body_sql = "body"
        remove = expr.remove_placeholder
        if remove is not None:
            params["r0"] = _json_path(expr.names[remove])
            body_sql = "json_remove(body, :r0)"

        set_args: list[str] = []
        for name_ph, value_ph in expr.set_pairs:
            name_param = name_ph.lstrip("#")
            value_param = value_ph.lstrip(":")
            params[name_param] = _json_path(expr.names[name_ph])
            params[value_param] = json.dumps(expr.values[value_ph], default=str)
            set_args.append(f":{name_param}, json(:{value_param})")
        body_sql = f"json_set({body_sql}, {', '.join(set_args)})"

        try:
            await self._conn.execute(
                """
                INSERT INTO records (table_name, key_value, body)
                VALUES (:table, :key, json_object(:key_field, json(:key_json)))
                ON CONFLICT (table_name, key_value) DO NOTHING
                """,
                params,
            )
            await self._conn.execute(
                f"""
                UPDATE records
                SET body = {body_sql}, updated_at = CURRENT_TIMESTAMP
                WHERE table_name = :table AND key_value = :key
                """,  # noqa: S608  (only placeholders are interpolated)
                params,
            )
            await self._conn.commit()
        except aiosqlite.Error as exc:
            await self._conn.rollback()
            raise StorageError(
                f"Update of {table}/{key_value} failed ({expr.expression}): {exc}"
            ) from exc

        logger.debug(
            "Updated %s %s=%s: %s",
            table,
            key_field,
            key_value,
            expr.expression,
        )
