"""Capacity-bounded local store for biometric samples and computed scores.

The sample table behaves as a FIFO ring of ``capacity`` rows ordered by
``sequence_id`` (the autoincrement row id).  When an insert would exceed the
capacity the oldest row is evicted; if it was never synced, a queue item
carrying its full payload is written in the same transaction before the row
is deleted.  No unsynced observation is destroyed without a durable queue
entry.

Score rows are not capacity bounded.  They are pruned explicitly once synced
and older than a cutoff.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine, Row

from src.wearables.base import (
    METRIC_FIELDS,
    TABLE_BIOMETRICS,
    TABLE_HEALTH_SCORES,
    BiometricSample,
    QueueItem,
    SamplePayload,
    ScorePayload,
    ScoreRecord,
    utc_now,
)
from src.wearables.errors import InvariantViolation, StoreHaltedError
from src.wearables.storage.database import biometrics, health_scores, sync_queue
from src.wearables.storage.outbound_queue import OutboundQueue

logger = logging.getLogger("healthgenie.wearables.storage.samples")

# 24 hours at one sample every 15 seconds.  Independent of the real cadence.
DEFAULT_CAPACITY = 5760

_SCORE_COLUMNS = (
    "overall_score",
    "cardiovascular_score",
    "sleep_score",
    "activity_score",
    "recovery_score",
    "stress_score",
    "confidence_level",
    "device_id",
)


@dataclass
class StoreStats:
    """Row counts across the local relations."""

    biometrics: int
    scores: int
    unsynced: int
    sync_queue: int
    stuck: int
    capacity: int


class SampleStore:
    """Fixed-capacity sample store with eviction-to-queue semantics.

    Usage::

        store = SampleStore(engine, queue, capacity=5760)
        seq = store.insert(BiometricSample.from_mapping(raw))
        recent = store.recent(10)
    """

    def __init__(
        self,
        engine: Engine,
        queue: OutboundQueue,
        capacity: int = DEFAULT_CAPACITY,
        lock: threading.RLock | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._engine = engine
        self._queue = queue
        self.capacity = capacity
        self._lock = lock or threading.RLock()
        self._halted_reason: str | None = None
        self._last_sequence_id = self._max_sequence_id()

    # ------------------------------------------------------------------
    # Halt state
    # ------------------------------------------------------------------

    @property
    def halted(self) -> bool:
        return self._halted_reason is not None

    def reset_halt(self) -> None:
        """Re-enable writes after an operator has inspected an invariant violation."""
        if self._halted_reason:
            logger.warning("Store halt cleared by operator (was: %s)", self._halted_reason)
        self._halted_reason = None
        self._last_sequence_id = self._max_sequence_id()

    def _halt(self, reason: str) -> InvariantViolation:
        self._halted_reason = reason
        logger.critical("Sample store halted: %s", reason)
        return InvariantViolation(reason)

    def _check_writable(self) -> None:
        if self._halted_reason:
            raise StoreHaltedError(f"Sample store is halted: {self._halted_reason}")

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------

    def insert(self, sample: BiometricSample) -> int:
        """Insert a sample, evicting the oldest row when at capacity.

        Eviction, enqueue and insert form one transaction under the store
        lock.

        Args:
            sample: The sample to store.  ``sequence_id`` and ``is_synced``
                    are set on return.

        Returns:
            The new sequence id.

        Raises:
            StoreHaltedError:   If a previous invariant violation halted writes.
            InvariantViolation: If eviction could not be enqueued or the
                                sequence id did not increase.
        """
        with self._lock:
            self._check_writable()
            # Any exception below rolls back the eviction as well.
            with self._engine.begin() as conn:
                count = conn.execute(select(func.count()).select_from(biometrics)).scalar_one()
                while count >= self.capacity:
                    self._evict_oldest(conn)
                    count -= 1

                values = sample.metrics()
                values.update(timestamp=sample.timestamp, is_synced=False, created_at=utc_now())
                seq = conn.execute(insert(biometrics).values(**values)).inserted_primary_key[0]
                if seq <= self._last_sequence_id:
                    raise self._halt(
                        f"sequence id {seq} is not greater than previous {self._last_sequence_id}"
                    )
            self._last_sequence_id = seq

        sample.sequence_id = seq
        sample.is_synced = False
        return seq

    def _evict_oldest(self, conn: Connection) -> None:
        oldest = conn.execute(
            select(biometrics).order_by(biometrics.c.id.asc()).limit(1)
        ).first()
        if oldest is None:
            return
        if not oldest.is_synced:
            before = self._queue_size(conn)
            try:
                self._queue.enqueue(
                    QueueItem(
                        target_table=TABLE_BIOMETRICS,
                        record_id=oldest.id,
                        payload=SamplePayload.from_sample(self._row_to_sample(oldest)),
                    ),
                    conn=conn,
                )
            except Exception as exc:
                raise self._halt(
                    f"could not enqueue unsynced sample {oldest.id} before eviction: {exc}"
                ) from exc
            if self._queue_size(conn) != before + 1:
                raise self._halt(f"eviction of sample {oldest.id} did not produce a queue item")
        conn.execute(delete(biometrics).where(biometrics.c.id == oldest.id))
        logger.debug(
            "Evicted sample %s (synced=%s) to stay within capacity %d",
            oldest.id, oldest.is_synced, self.capacity,
        )

    def query(self, start: datetime, end: datetime) -> list[BiometricSample]:
        """Return samples with ``start <= timestamp <= end``, newest first.

        An empty or inverted range returns an empty list.
        """
        if start > end:
            return []
        stmt = (
            select(biometrics)
            .where(and_(biometrics.c.timestamp >= start, biometrics.c.timestamp <= end))
            .order_by(biometrics.c.timestamp.desc(), biometrics.c.id.desc())
        )
        return self._fetch_samples(stmt)

    def recent(self, n: int = 100) -> list[BiometricSample]:
        """Return the ``n`` most recently inserted samples, newest first."""
        if n <= 0:
            return []
        stmt = select(biometrics).order_by(biometrics.c.id.desc()).limit(n)
        return self._fetch_samples(stmt)

    def latest(self) -> BiometricSample | None:
        found = self.recent(1)
        return found[0] if found else None

    def unsynced(self, limit: int = 100) -> list[BiometricSample]:
        """Return unsynced samples, oldest first."""
        stmt = (
            select(biometrics)
            .where(biometrics.c.is_synced.is_(False))
            .order_by(biometrics.c.id.asc())
            .limit(limit)
        )
        return self._fetch_samples(stmt)

    def mark_synced(self, ids: Sequence[int]) -> int:
        """Flag samples as synced.  Idempotent; unknown ids are ignored.

        Returns:
            Number of rows matched.
        """
        if not ids:
            return 0
        with self._lock, self._engine.begin() as conn:
            matched = conn.execute(
                update(biometrics).where(biometrics.c.id.in_(list(ids))).values(is_synced=True)
            ).rowcount
        logger.debug("Marked %d sample(s) as synced", matched)
        return matched

    def count(self) -> int:
        with self._engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(biometrics)).scalar_one()

    # ------------------------------------------------------------------
    # Scores
    # ------------------------------------------------------------------

    def insert_score(self, record: ScoreRecord, synced: bool = False) -> int:
        """Persist a computed score.

        Args:
            record: The score to store; ``id`` and ``is_synced`` are set on return.
            synced: True for rows that originate from the remote backend.
        """
        with self._lock:
            self._check_writable()
            values = {col: getattr(record, col) for col in _SCORE_COLUMNS}
            values.update(timestamp=record.timestamp, is_synced=synced, created_at=utc_now())
            with self._engine.begin() as conn:
                record.id = conn.execute(insert(health_scores).values(**values)).inserted_primary_key[0]
        record.is_synced = synced
        return record.id

    def upsert_remote_score(self, record: ScoreRecord) -> bool:
        """Store a downloaded score, keyed on its timestamp.

        Remote rows are stored as synced so they are never uploaded again.  A
        synced local row with the same timestamp takes the remote values; an
        unsynced local row is left alone, its pending upload wins.

        Returns:
            True if a row was inserted or changed.
        """
        with self._lock:
            self._check_writable()
            with self._engine.begin() as conn:
                existing = conn.execute(
                    select(health_scores)
                    .where(health_scores.c.timestamp == record.timestamp)
                    .order_by(health_scores.c.id.asc())
                    .limit(1)
                ).first()
                if existing is None:
                    values = {col: getattr(record, col) for col in _SCORE_COLUMNS}
                    values.update(timestamp=record.timestamp, is_synced=True, created_at=utc_now())
                    record.id = conn.execute(
                        insert(health_scores).values(**values)
                    ).inserted_primary_key[0]
                elif not existing.is_synced:
                    logger.debug(
                        "Remote score at %s skipped: local row %d not yet uploaded",
                        record.timestamp, existing.id,
                    )
                    return False
                else:
                    values = {col: getattr(record, col) for col in _SCORE_COLUMNS}
                    record.id = existing.id
                    if all(getattr(existing, col) == value for col, value in values.items()):
                        record.is_synced = True
                        return False
                    conn.execute(
                        update(health_scores)
                        .where(health_scores.c.id == existing.id)
                        .values(**values)
                    )
        record.is_synced = True
        return True

    def hand_off_scores(self, records: Sequence[ScoreRecord]) -> int:
        """Move scores that failed to upload into the outbound queue.

        One queue item per score is written and the score rows are marked
        synced in the same transaction, so from then on the retry ceiling of
        the queue governs their delivery.

        Returns:
            Number of scores handed off.
        """
        if not records:
            return 0
        with self._lock:
            self._check_writable()
            with self._engine.begin() as conn:
                for record in records:
                    self._queue.enqueue(
                        QueueItem(
                            target_table=TABLE_HEALTH_SCORES,
                            record_id=record.id,
                            payload=ScorePayload.from_record(record),
                        ),
                        conn=conn,
                    )
                conn.execute(
                    update(health_scores)
                    .where(health_scores.c.id.in_([r.id for r in records]))
                    .values(is_synced=True)
                )
        for record in records:
            record.is_synced = True
        logger.info("Handed %d unsent score(s) to the outbound queue", len(records))
        return len(records)

    def latest_score(self) -> ScoreRecord | None:
        stmt = select(health_scores).order_by(health_scores.c.timestamp.desc()).limit(1)
        found = self._fetch_scores(stmt)
        return found[0] if found else None

    def scores_in_range(self, start: datetime, end: datetime) -> list[ScoreRecord]:
        """Return scores with ``start <= timestamp <= end``, newest first."""
        if start > end:
            return []
        stmt = (
            select(health_scores)
            .where(and_(health_scores.c.timestamp >= start, health_scores.c.timestamp <= end))
            .order_by(health_scores.c.timestamp.desc())
        )
        return self._fetch_scores(stmt)

    def unsynced_scores(self, limit: int = 100) -> list[ScoreRecord]:
        stmt = (
            select(health_scores)
            .where(health_scores.c.is_synced.is_(False))
            .order_by(health_scores.c.id.asc())
            .limit(limit)
        )
        return self._fetch_scores(stmt)

    def mark_scores_synced(self, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        with self._lock, self._engine.begin() as conn:
            return conn.execute(
                update(health_scores)
                .where(health_scores.c.id.in_(list(ids)))
                .values(is_synced=True)
            ).rowcount

    def prune_scores(self, older_than: datetime) -> int:
        """Delete synced scores older than the cutoff.  Unsynced rows are kept."""
        with self._lock, self._engine.begin() as conn:
            removed = conn.execute(
                delete(health_scores).where(
                    health_scores.c.is_synced.is_(True),
                    health_scores.c.timestamp < older_than,
                )
            ).rowcount
        if removed:
            logger.info("Pruned %d synced score(s) older than %s", removed, older_than)
        return removed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def stats(self) -> StoreStats:
        with self._engine.connect() as conn:
            samples = conn.execute(select(func.count()).select_from(biometrics)).scalar_one()
            scores = conn.execute(select(func.count()).select_from(health_scores)).scalar_one()
            unsynced = conn.execute(
                select(func.count()).select_from(biometrics).where(biometrics.c.is_synced.is_(False))
            ).scalar_one()
            queued = self._queue_size(conn)
        return StoreStats(
            biometrics=samples,
            scores=scores,
            unsynced=unsynced,
            sync_queue=queued,
            stuck=self._queue.stuck_count(),
            capacity=self.capacity,
        )

    def clear(self) -> None:
        """Delete all samples, scores and queue items."""
        with self._lock, self._engine.begin() as conn:
            conn.execute(delete(biometrics))
            conn.execute(delete(health_scores))
            conn.execute(delete(sync_queue))
        logger.info("All local tables cleared")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _max_sequence_id(self) -> int:
        with self._engine.connect() as conn:
            return conn.execute(select(func.max(biometrics.c.id))).scalar() or 0

    @staticmethod
    def _queue_size(conn: Connection) -> int:
        return conn.execute(select(func.count()).select_from(sync_queue)).scalar_one()

    def _fetch_samples(self, stmt) -> list[BiometricSample]:
        with self._engine.connect() as conn:
            return [self._row_to_sample(row) for row in conn.execute(stmt)]

    def _fetch_scores(self, stmt) -> list[ScoreRecord]:
        with self._engine.connect() as conn:
            return [self._row_to_score(row) for row in conn.execute(stmt)]

    @staticmethod
    def _row_to_sample(row: Row) -> BiometricSample:
        data = row._mapping
        return BiometricSample(
            timestamp=data["timestamp"],
            current_activity=data["current_activity"],
            is_synced=bool(data["is_synced"]),
            sequence_id=data["id"],
            **{key: data[key] for key in METRIC_FIELDS},
        )

    @staticmethod
    def _row_to_score(row: Row) -> ScoreRecord:
        data = row._mapping
        values = {col: data[col] for col in _SCORE_COLUMNS}
        if values["confidence_level"] is None:
            values["confidence_level"] = 0.0
        return ScoreRecord(
            id=data["id"],
            timestamp=data["timestamp"],
            is_synced=bool(data["is_synced"]),
            **values,
        )
