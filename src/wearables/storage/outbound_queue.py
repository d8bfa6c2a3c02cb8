"""Retry-bounded outbound mutation queue.

Items are delivered oldest first.  Each failed delivery attempt bumps the
item's ``retry_count``; once it reaches the ceiling the item is excluded from
``pending()`` and counted as permanently lost until an operator clears it.

Usage::

    queue = OutboundQueue(engine, retry_ceiling=3)
    for item in queue.pending(limit=50):
        ...
    queue.ack([item.id])          # delivered
    queue.bump([other.id])        # failed, retry later
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Sequence

from pydantic import ValidationError
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine, Row

from src.wearables.base import QueueItem, dump_payload, load_payload, utc_now
from src.wearables.storage.database import sync_queue

logger = logging.getLogger("healthgenie.wearables.storage.queue")

DEFAULT_RETRY_CEILING = 3


class OutboundQueue:
    """Durable, ordered list of pending remote mutations.

    Attributes:
        retry_ceiling: Attempts after which an item is no longer retried.
        lost_count:    Items that crossed the ceiling since process start.
    """

    def __init__(
        self,
        engine: Engine,
        retry_ceiling: int = DEFAULT_RETRY_CEILING,
        lock: threading.RLock | None = None,
    ) -> None:
        if retry_ceiling < 1:
            raise ValueError("retry_ceiling must be at least 1")
        self._engine = engine
        self.retry_ceiling = retry_ceiling
        self._lock = lock or threading.RLock()
        self.lost_count = 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def enqueue(self, item: QueueItem, conn: Connection | None = None) -> int:
        """Persist a queue item.

        Args:
            item: Item to store; ``item.id`` is set on return.
            conn: Open connection to enqueue inside the caller's transaction.
                  Used by the sample store so eviction and enqueue commit
                  together.

        Returns:
            The new queue row id.
        """
        values = {
            "table_name": item.target_table,
            "record_id": item.record_id,
            "action": item.action,
            "data": dump_payload(item.payload),
            "created_at": item.created_at,
            "retry_count": item.retry_count,
            "last_attempt": item.last_attempt,
        }
        if conn is not None:
            item.id = conn.execute(insert(sync_queue).values(**values)).inserted_primary_key[0]
        else:
            with self._lock, self._engine.begin() as own:
                item.id = own.execute(insert(sync_queue).values(**values)).inserted_primary_key[0]
        logger.debug(
            "Enqueued %s for %s record %s (queue id %s)",
            item.action, item.target_table, item.record_id, item.id,
        )
        return item.id

    def ack(self, ids: Sequence[int]) -> int:
        """Remove delivered items.  Unknown ids are ignored.

        Returns:
            Number of rows removed.
        """
        if not ids:
            return 0
        with self._lock, self._engine.begin() as conn:
            removed = conn.execute(delete(sync_queue).where(sync_queue.c.id.in_(list(ids)))).rowcount
        logger.debug("Acknowledged %d queue item(s)", removed)
        return removed

    def bump(self, ids: Sequence[int]) -> list[int]:
        """Record a failed delivery attempt for each item.

        Returns:
            Ids of items that reached the retry ceiling with this bump.
        """
        if not ids:
            return []
        now = utc_now()
        with self._lock, self._engine.begin() as conn:
            conn.execute(
                update(sync_queue)
                .where(sync_queue.c.id.in_(list(ids)))
                .values(retry_count=sync_queue.c.retry_count + 1, last_attempt=now)
            )
            exhausted = list(
                conn.execute(
                    select(sync_queue.c.id).where(
                        sync_queue.c.id.in_(list(ids)),
                        sync_queue.c.retry_count == self.retry_ceiling,
                    )
                ).scalars()
            )
        if exhausted:
            self.lost_count += len(exhausted)
            logger.warning(
                "Permanent loss: %d queue item(s) reached the retry ceiling (%d): %s",
                len(exhausted), self.retry_ceiling, exhausted,
            )
        return exhausted

    def clear_stuck(self) -> int:
        """Drop every item at or above the retry ceiling (operator action)."""
        with self._lock, self._engine.begin() as conn:
            dropped = conn.execute(
                delete(sync_queue).where(sync_queue.c.retry_count >= self.retry_ceiling)
            ).rowcount
        if dropped:
            logger.warning("Cleared %d stuck queue item(s)", dropped)
        return dropped

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def pending(self, limit: int = 50) -> list[QueueItem]:
        """Return retryable items, oldest first (FIFO within each table)."""
        stmt = (
            select(sync_queue)
            .where(sync_queue.c.retry_count < self.retry_ceiling)
            .order_by(sync_queue.c.id.asc())
            .limit(limit)
        )
        return self._load(stmt)

    def stuck(self, limit: int = 100) -> list[QueueItem]:
        """Return items that exhausted their retries."""
        stmt = (
            select(sync_queue)
            .where(sync_queue.c.retry_count >= self.retry_ceiling)
            .order_by(sync_queue.c.id.asc())
            .limit(limit)
        )
        return self._load(stmt)

    def stuck_count(self) -> int:
        with self._engine.connect() as conn:
            return conn.execute(
                select(func.count())
                .select_from(sync_queue)
                .where(sync_queue.c.retry_count >= self.retry_ceiling)
            ).scalar_one()

    def size(self) -> int:
        with self._engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(sync_queue)).scalar_one()

    @staticmethod
    def group_by_table(items: Sequence[QueueItem]) -> "OrderedDict[str, list[QueueItem]]":
        """Split items per target table, keeping their relative order."""
        groups: OrderedDict[str, list[QueueItem]] = OrderedDict()
        for item in items:
            groups.setdefault(item.target_table, []).append(item)
        return groups

    def _load(self, stmt) -> list[QueueItem]:
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).all()
        items: list[QueueItem] = []
        for row in rows:
            item = self._row_to_item(row)
            if item is not None:
                items.append(item)
        return items

    @staticmethod
    def _row_to_item(row: Row) -> QueueItem | None:
        try:
            payload = load_payload(row.data)
        except ValidationError as exc:
            logger.error("Unreadable payload in queue item %s: %s", row.id, exc)
            return None
        return QueueItem(
            id=row.id,
            target_table=row.table_name,
            record_id=row.record_id,
            action=row.action,
            payload=payload,
            retry_count=row.retry_count,
            created_at=row.created_at,
            last_attempt=row.last_attempt,
        )
