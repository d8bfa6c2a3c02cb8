"""Shared fixtures and an in-memory remote backend for Health Genie tests."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta
from typing import Any, Sequence

import pytest

from src.services.backend import Filter, RemoteBackend
from src.wearables.base import BiometricSample
from src.wearables.config_loader import ScoringConfig, load_scoring_config
from src.wearables.errors import TransientIOError
from src.wearables.scoring import ScoreEngine
from src.wearables.storage.database import create_local_engine, migrate
from src.wearables.storage.outbound_queue import OutboundQueue
from src.wearables.storage.sample_store import SampleStore
from src.wearables.sync.coordinator import SyncCoordinator

TEST_USER_ID = "user-1234"
TEST_NOW = datetime(2026, 2, 23, 12, 0, 0)


# ---------------------------------------------------------------------------
# Sample builders
# ---------------------------------------------------------------------------


def make_sample(timestamp: datetime | None = None, **metrics: Any) -> BiometricSample:
    """A sample with typical resting values, overridable per metric."""
    values: dict[str, Any] = {
        "heart_rate": 68.0,
        "resting_heart_rate": 60.0,
        "heart_rate_variability": 52.0,
        "blood_oxygen": 98.0,
        "steps": 4000.0,
    }
    values.update(metrics)
    return BiometricSample(timestamp=timestamp or TEST_NOW, **values)


def regular_samples(
    end: datetime, days: int, per_day: int, **metrics: Any
) -> list[BiometricSample]:
    """Evenly spaced samples covering ``days`` days before ``end``, newest first."""
    step = timedelta(days=1) / per_day
    total = days * per_day
    return [make_sample(end - step * i, **metrics) for i in range(total)]


# ---------------------------------------------------------------------------
# In-memory remote backend
# ---------------------------------------------------------------------------


class FakeBackend(RemoteBackend):
    """Dict-backed RemoteBackend that honours conflict keys.

    Attributes:
        tables:      table → {conflict key tuple → row}
        fail_tables: Tables whose calls raise TransientIOError.
        calls:       Log of (method, table, row count) tuples.
        delay:       Seconds each call sleeps before completing.
    """

    KIND = "fake"

    def __init__(self) -> None:
        self.tables: dict[str, dict[tuple, dict[str, Any]]] = {}
        self.fail_tables: set[str] = set()
        self.fail_selects = False
        self.calls: list[tuple[str, str, int]] = []
        self.delay = 0.0
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def _maybe_fail(self, table: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if table in self.fail_tables:
            raise TransientIOError(f"{table} unavailable")

    async def upsert(
        self, table: str, rows: Sequence[dict[str, Any]], on_conflict: Sequence[str]
    ) -> int:
        self.calls.append(("upsert", table, len(rows)))
        await self._maybe_fail(table)
        stored = self.tables.setdefault(table, {})
        for row in rows:
            stored[tuple(row[c] for c in on_conflict)] = dict(row)
        return len(rows)

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        self.calls.append(("select", table, 0))
        await self._maybe_fail(table)
        if self.fail_selects:
            raise TransientIOError("select unavailable")
        rows = [r for r in self.tables.get(table, {}).values() if _matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: r[order_by], reverse=descending)
        return [dict(r) for r in rows]

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        self.calls.append(("delete", table, 0))
        await self._maybe_fail(table)
        stored = self.tables.get(table, {})
        for key in [k for k, r in stored.items() if _matches(r, filters)]:
            del stored[key]

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self.tables.get(table, {}).values())


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return value


def _matches(row: dict[str, Any], filters: Sequence[Filter]) -> bool:
    for f in filters:
        left, right = _comparable(row.get(f.column)), _comparable(f.value)
        if isinstance(left, datetime) and type(right) is date:
            left = left.date()
        ok = {
            "eq": left == right,
            "gte": left >= right,
            "lte": left <= right,
            "gt": left > right,
            "lt": left < right,
        }[f.op]
        if not ok:
            return False
    return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def scoring_config() -> ScoringConfig:
    """Load the real scoring config for tests."""
    return load_scoring_config()


@pytest.fixture
def score_engine(scoring_config: ScoringConfig) -> ScoreEngine:
    return ScoreEngine(scoring_config)


@pytest.fixture
def db_engine():
    engine = create_local_engine(":memory:")
    migrate(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def queue(db_engine) -> OutboundQueue:
    return OutboundQueue(db_engine, retry_ceiling=3)


@pytest.fixture
def store(db_engine, queue: OutboundQueue) -> SampleStore:
    return SampleStore(db_engine, queue, capacity=5760)


@pytest.fixture
def small_store(db_engine, queue: OutboundQueue) -> SampleStore:
    """A store with capacity 5 for eviction tests."""
    return SampleStore(db_engine, queue, capacity=5)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def coordinator(
    store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
) -> SyncCoordinator:
    return SyncCoordinator(
        store,
        queue,
        fake_backend,
        user_id=TEST_USER_ID,
        batch_limit=100,
        timeout_seconds=2.0,
    )
