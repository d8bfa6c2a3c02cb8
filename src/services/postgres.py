"""Direct PostgreSQL backend over an asyncpg pool.

Used when the service runs next to the database (self-hosted Supabase or
plain Postgres) and the REST layer is unnecessary.  Upserts are built with
``build_upsert_query`` and executed with ``executemany`` in one transaction.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import asyncpg

from src.services.backend import FILTER_OPERATORS, Filter, RemoteBackend
from src.wearables.errors import TransientIOError
from src.wearables.sync.dedup import build_upsert_query, check_identifier

logger = logging.getLogger("healthgenie.remote.postgres")

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PostgresBackend(RemoteBackend):
    """asyncpg implementation of RemoteBackend.

    Args:
        dsn:             Postgres connection string.
        pool:            Optional pre-built pool (for testing).
        min_size:        Minimum pool connections.
        max_size:        Maximum pool connections.
        command_timeout: Per-statement timeout in seconds.
    """

    KIND = "postgres"

    def __init__(
        self,
        dsn: str | None = None,
        pool: asyncpg.Pool | None = None,
        min_size: int = 1,
        max_size: int = 5,
        command_timeout: float = 30.0,
    ) -> None:
        if dsn is None and pool is None:
            raise ValueError("PostgresBackend requires a dsn or a pool")
        self._dsn = dsn
        self._pool = pool
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout

    async def connect(self) -> None:
        """Create the connection pool.  Call once at startup."""
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
            )
        except _DB_ERRORS as exc:
            raise TransientIOError(f"Could not connect to Postgres: {exc}") from exc
        logger.info("Postgres pool initialized (min=%d, max=%d)", self._min_size, self._max_size)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Postgres pool closed")

    def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Postgres pool not initialized; call connect() first")
        return self._pool

    # ------------------------------------------------------------------
    # RemoteBackend interface
    # ------------------------------------------------------------------

    async def upsert(
        self, table: str, rows: Sequence[dict[str, Any]], on_conflict: Sequence[str]
    ) -> int:
        if not rows:
            return 0
        columns = list(rows[0])
        query = build_upsert_query(table, columns, list(on_conflict))
        args = [tuple(row.get(col) for col in columns) for row in rows]
        try:
            async with self._get_pool().acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(query, args)
        except _DB_ERRORS as exc:
            logger.warning("Postgres upsert into %s failed: %s", table, exc)
            raise TransientIOError(f"Upsert into {table} failed: {exc}") from exc
        logger.debug("Upserted %d row(s) into %s", len(rows), table)
        return len(rows)

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        where, args = self._where_clause(filters)
        query = f"SELECT * FROM {check_identifier(table)}{where}"
        if order_by:
            query += f" ORDER BY {check_identifier(order_by)} {'DESC' if descending else 'ASC'}"
        try:
            async with self._get_pool().acquire() as conn:
                rows = await conn.fetch(query, *args)
        except _DB_ERRORS as exc:
            logger.warning("Postgres select from %s failed: %s", table, exc)
            raise TransientIOError(f"Select from {table} failed: {exc}") from exc
        return [dict(row) for row in rows]

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        where, args = self._where_clause(filters)
        try:
            async with self._get_pool().acquire() as conn:
                status = await conn.execute(f"DELETE FROM {check_identifier(table)}{where}", *args)
        except _DB_ERRORS as exc:
            logger.warning("Postgres delete from %s failed: %s", table, exc)
            raise TransientIOError(f"Delete from {table} failed: {exc}") from exc
        logger.info("Postgres delete from %s: %s", table, status)

    @staticmethod
    def _where_clause(filters: Sequence[Filter]) -> tuple[str, list[Any]]:
        if not filters:
            return "", []
        parts = [
            f"{check_identifier(f.column)} {FILTER_OPERATORS[f.op]} ${i + 1}"
            for i, f in enumerate(filters)
        ]
        return " WHERE " + " AND ".join(parts), [f.value for f in filters]
