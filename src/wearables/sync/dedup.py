"""Deduplication for remote writes.

The remote tables carry UNIQUE constraints that make every upload
idempotent; uploading the same sample twice leaves one row.

Dedup keys:
    - biometrics:          (user_id, timestamp)
    - health_scores:       (user_id, timestamp)
    - biometric_summaries: (user_id, date)

PostgreSQL rejects an ``ON CONFLICT DO UPDATE`` statement that touches the
same row twice, so a batch is collapsed to one row per key (last wins)
before it is sent.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Sequence

from src.wearables.base import TABLE_BIOMETRIC_SUMMARIES, TABLE_BIOMETRICS, TABLE_HEALTH_SCORES

logger = logging.getLogger("healthgenie.wearables.sync.dedup")

CONFLICT_KEYS: dict[str, tuple[str, ...]] = {
    TABLE_BIOMETRICS: ("user_id", "timestamp"),
    TABLE_HEALTH_SCORES: ("user_id", "timestamp"),
    TABLE_BIOMETRIC_SUMMARIES: ("user_id", "date"),
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def conflict_key(table: str) -> tuple[str, ...]:
    """Return the UNIQUE columns for a remote table.

    Raises:
        KeyError: If the table has no registered key.
    """
    try:
        return CONFLICT_KEYS[table]
    except KeyError:
        raise KeyError(
            f"No conflict key for table '{table}'. Available: {list(CONFLICT_KEYS)}"
        ) from None


def row_key(row: dict[str, Any], columns: Sequence[str]) -> tuple:
    return tuple(row.get(col) for col in columns)


def dedupe_rows(
    rows: Sequence[dict[str, Any]], columns: Sequence[str]
) -> list[dict[str, Any]]:
    """Collapse rows sharing a key, keeping the last one in its first position.

    Args:
        rows:    Rows about to be upserted.
        columns: Conflict key columns.

    Returns:
        Rows with unique keys.
    """
    by_key: dict[tuple, dict[str, Any]] = {}
    for row in rows:
        by_key[row_key(row, columns)] = row
    if len(by_key) < len(rows):
        logger.debug(
            "Collapsed %d duplicate row(s) on %s", len(rows) - len(by_key), list(columns)
        )
    return list(by_key.values())


def check_identifier(name: str) -> str:
    """Validate a table or column name before it is interpolated into SQL.

    Raises:
        ValueError: If the name is not a plain identifier.
    """
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def build_upsert_query(
    table: str,
    columns: Sequence[str],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str] | None = None,
    touch_column: str | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Generates idempotent writes: safe to call multiple times with the same
    data.  On conflict, updates the non-key columns.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        touch_column:     Timestamp column set to NOW() on update, if any.

    Returns:
        Parameterized SQL string.
    """
    for name in (table, *columns, *conflict_columns):
        check_identifier(name)
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
        if touch_column:
            update_set += f", {check_identifier(touch_column)} = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
