"""Tests for SyncCoordinator against the in-memory FakeBackend."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy import text

from src.wearables.base import (
    TABLE_BIOMETRIC_SUMMARIES,
    TABLE_BIOMETRICS,
    TABLE_HEALTH_SCORES,
    CategoryScores,
    QueueItem,
    ScorePayload,
    ScoreRecord,
    utc_now,
)
from src.wearables.storage.outbound_queue import OutboundQueue
from src.wearables.storage.sample_store import SampleStore
from src.wearables.sync.coordinator import SyncCoordinator, SyncOutcome
from src.wearables.sync.dedup import conflict_key
from src.wearables.sync.network import NetworkClass, static_probe
from src.wearables.sync.rows import score_row
from src.wearables.sync.summaries import DailySummary
from src.wearables.tests.conftest import TEST_NOW, TEST_USER_ID, FakeBackend, make_sample


def _seed(backend: FakeBackend, table: str, row: dict[str, Any]) -> None:
    key = tuple(row[c] for c in conflict_key(table))
    backend.tables.setdefault(table, {})[key] = row


def _remote_score(hours_ago: float = 1, overall: float = 72.0, user_id: str = TEST_USER_ID) -> dict:
    record = ScoreRecord.from_scores(
        CategoryScores(overall=overall),
        confidence=0.8,
        timestamp=utc_now() - timedelta(hours=hours_ago),
    )
    return score_row(user_id, record)


def _fill(store: SampleStore, n: int) -> list[int]:
    return [store.insert(make_sample(TEST_NOW + timedelta(minutes=i))) for i in range(n)]


def _coordinator(store: SampleStore, queue: OutboundQueue, backend: FakeBackend, **kwargs) -> SyncCoordinator:
    options = {"user_id": TEST_USER_ID, "timeout_seconds": 2.0}
    options.update(kwargs)
    return SyncCoordinator(store, queue, backend, **options)


class TestUpload:

    @pytest.mark.asyncio
    async def test_uploads_samples_scores_and_summaries(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 3)
        store.insert_score(ScoreRecord.from_scores(CategoryScores(overall=70), timestamp=TEST_NOW))

        report = await coordinator.sync_now()

        assert report.outcome == SyncOutcome.SUCCESS
        assert report.samples_uploaded == 3
        assert report.scores_uploaded == 1
        assert report.summaries_uploaded == 1
        assert len(fake_backend.rows(TABLE_BIOMETRICS)) == 3
        assert all(r["user_id"] == TEST_USER_ID for r in fake_backend.rows(TABLE_BIOMETRICS))
        summary = fake_backend.rows(TABLE_BIOMETRIC_SUMMARIES)[0]
        assert summary["date"] == TEST_NOW.date()
        assert summary["avg_heart_rate"] == pytest.approx(68.0)
        assert store.unsynced() == []
        assert store.unsynced_scores() == []

    @pytest.mark.asyncio
    async def test_second_upload_creates_no_duplicates(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend, db_engine
    ) -> None:
        _fill(store, 3)
        await coordinator.sync_now()
        with db_engine.begin() as conn:
            conn.execute(text("UPDATE biometrics SET is_synced = 0"))

        report = await coordinator.sync_now()

        assert report.samples_uploaded == 3
        assert len(fake_backend.rows(TABLE_BIOMETRICS)) == 3
        assert len(fake_backend.rows(TABLE_BIOMETRIC_SUMMARIES)) == 1

    @pytest.mark.asyncio
    async def test_batch_limit(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 5)
        coordinator = _coordinator(store, queue, fake_backend, batch_limit=2)
        report = await coordinator.sync_now()
        assert report.samples_uploaded == 2
        assert len(store.unsynced()) == 3

    @pytest.mark.asyncio
    async def test_failed_sample_upload_leaves_samples_unsynced(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 2)
        fake_backend.fail_tables.add(TABLE_BIOMETRICS)

        report = await coordinator.sync_now()

        assert report.outcome == SyncOutcome.FAILED
        assert "biometrics unavailable" in report.upload_error
        assert len(store.unsynced()) == 2
        assert coordinator.last_sync_time is None

    @pytest.mark.asyncio
    async def test_failed_summary_upload_leaves_samples_unsynced(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 2)
        fake_backend.fail_tables.add(TABLE_BIOMETRIC_SUMMARIES)

        report = await coordinator.sync_now()

        assert report.outcome == SyncOutcome.FAILED
        assert len(store.unsynced()) == 2

    @pytest.mark.asyncio
    async def test_failed_score_upload_is_bounded_by_queue(
        self,
        coordinator: SyncCoordinator,
        store: SampleStore,
        queue: OutboundQueue,
        fake_backend: FakeBackend,
    ) -> None:
        store.insert_score(ScoreRecord.from_scores(CategoryScores(overall=70), timestamp=TEST_NOW))
        fake_backend.fail_tables.add(TABLE_HEALTH_SCORES)

        reports = [await coordinator.sync_now() for _ in range(3)]

        assert [r.scores_queued for r in reports] == [1, 0, 0]
        assert [r.queue_bumped for r in reports] == [1, 1, 1]
        assert [r.queue_lost for r in reports] == [0, 0, 1]
        assert all(r.outcome == SyncOutcome.FAILED for r in reports)
        assert store.unsynced_scores() == []
        assert queue.pending() == []
        assert queue.stuck_count() == 1

    @pytest.mark.asyncio
    async def test_queued_score_delivered_on_next_pass(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        coordinator = _coordinator(store, queue, fake_backend, device_id="watch-01")
        store.insert_score(ScoreRecord.from_scores(CategoryScores(overall=70), timestamp=TEST_NOW))
        fake_backend.fail_tables.add(TABLE_HEALTH_SCORES)
        await coordinator.sync_now()
        fake_backend.fail_tables.clear()

        report = await coordinator.sync_now()

        assert report.ok
        assert report.queue_acked == 1
        assert queue.size() == 0
        [row] = fake_backend.rows(TABLE_HEALTH_SCORES)
        assert row["overall_score"] == 70.0
        assert row["device_id"] == "watch-01"

    @pytest.mark.asyncio
    async def test_timeout_is_reported(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 1)
        fake_backend.delay = 0.5
        coordinator = _coordinator(store, queue, fake_backend, timeout_seconds=0.05)

        report = await coordinator.sync_now()

        assert report.outcome == SyncOutcome.FAILED
        assert "timed out" in report.upload_error
        assert "timed out" in report.download_error


class TestQueueReplay:

    @pytest.fixture
    def evicted(self, small_store: SampleStore, queue: OutboundQueue) -> SampleStore:
        """Six samples through a capacity-5 store; the rest marked synced."""
        _fill(small_store, 6)
        small_store.mark_synced([s.sequence_id for s in small_store.recent(5)])
        assert queue.size() == 1
        return small_store

    @pytest.mark.asyncio
    async def test_replay_delivers_evicted_sample(
        self, evicted: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        coordinator = _coordinator(evicted, queue, fake_backend)

        report = await coordinator.sync_now()

        assert report.ok
        assert report.queue_acked == 1
        assert queue.size() == 0
        rows = fake_backend.rows(TABLE_BIOMETRICS)
        assert len(rows) == 1
        assert rows[0]["timestamp"].replace(tzinfo=None) == TEST_NOW

    @pytest.mark.asyncio
    async def test_failures_bump_until_ceiling(
        self, evicted: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        coordinator = _coordinator(evicted, queue, fake_backend)
        fake_backend.fail_tables.add(TABLE_BIOMETRICS)

        reports = [await coordinator.sync_now() for _ in range(3)]

        assert [r.queue_bumped for r in reports] == [1, 1, 1]
        assert [r.queue_lost for r in reports] == [0, 0, 1]
        assert queue.pending() == []
        assert queue.stuck_count() == 1
        assert queue.lost_count == 1

        # Stuck items are no longer attempted.
        fake_backend.fail_tables.clear()
        report = await coordinator.sync_now()
        assert report.ok
        assert report.queue_bumped == 0
        assert fake_backend.rows(TABLE_BIOMETRICS) == []

    @pytest.mark.asyncio
    async def test_other_tables_still_replayed(
        self, evicted: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        queue.enqueue(QueueItem(
            target_table=TABLE_HEALTH_SCORES,
            record_id=42,
            payload=ScorePayload(timestamp=TEST_NOW, overall_score=66),
        ))
        fake_backend.fail_tables.add(TABLE_BIOMETRICS)
        coordinator = _coordinator(evicted, queue, fake_backend)

        report = await coordinator.sync_now()

        assert report.outcome == SyncOutcome.FAILED
        assert report.queue_acked == 1
        assert report.queue_bumped == 1
        assert "biometrics" in report.upload_error
        assert len(fake_backend.rows(TABLE_HEALTH_SCORES)) == 1
        assert [i.target_table for i in queue.pending()] == [TABLE_BIOMETRICS]


class TestDownload:

    @pytest.mark.asyncio
    async def test_remote_scores_stored_as_synced(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend
    ) -> None:
        _seed(fake_backend, TABLE_HEALTH_SCORES, _remote_score(overall=72))
        _seed(fake_backend, TABLE_HEALTH_SCORES, _remote_score(hours_ago=2, user_id="someone-else"))
        _seed(fake_backend, TABLE_HEALTH_SCORES, _remote_score(hours_ago=24 * 45))

        report = await coordinator.sync_now()

        assert report.scores_downloaded == 1
        latest = store.latest_score()
        assert latest.overall_score == 72.0
        assert latest.is_synced
        assert store.unsynced_scores() == []
        # Not echoed back on the next upload.
        assert report.scores_uploaded == 0

    @pytest.mark.asyncio
    async def test_download_is_idempotent(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend, monkeypatch
    ) -> None:
        _seed(fake_backend, TABLE_HEALTH_SCORES, _remote_score())
        await coordinator.sync_now()
        # Force the full window again.
        monkeypatch.setattr(coordinator, "_last_sync", None)

        report = await coordinator.sync_now()

        assert report.scores_downloaded == 0
        assert store.stats().scores == 1

    @pytest.mark.asyncio
    async def test_summaries_cached(
        self, coordinator: SyncCoordinator, fake_backend: FakeBackend
    ) -> None:
        today = utc_now().date()
        for offset, steps in ((0, 9000), (1, 7000)):
            summary = DailySummary(date=today - timedelta(days=offset), total_steps=steps)
            _seed(fake_backend, TABLE_BIOMETRIC_SUMMARIES, summary.to_row(TEST_USER_ID))

        report = await coordinator.sync_now()

        assert report.summaries_downloaded == 2
        cached = coordinator.remote_summaries()
        assert [s.total_steps for s in cached] == [7000, 9000]

    @pytest.mark.asyncio
    async def test_download_failure_does_not_block_upload(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 2)
        fake_backend.fail_selects = True

        report = await coordinator.sync_now()

        assert report.outcome == SyncOutcome.FAILED
        assert report.upload_error is None
        assert report.download_error is not None
        assert report.samples_uploaded == 2
        assert store.unsynced() == []
        assert coordinator.last_sync_time is None

    @pytest.mark.asyncio
    async def test_upload_failure_does_not_block_download(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 1)
        _seed(fake_backend, TABLE_HEALTH_SCORES, _remote_score())
        fake_backend.fail_tables.add(TABLE_BIOMETRICS)

        report = await coordinator.sync_now()

        assert report.upload_error is not None
        assert report.download_error is None
        assert report.scores_downloaded == 1


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_concurrent_request_reports_already_running(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 1)
        fake_backend.delay = 0.1

        first, second = await asyncio.gather(coordinator.sync_now(), coordinator.sync_now())

        assert first.outcome == SyncOutcome.SUCCESS
        assert second.outcome == SyncOutcome.ALREADY_RUNNING
        assert len(fake_backend.rows(TABLE_BIOMETRICS)) == 1
        assert not coordinator.is_syncing

    @pytest.mark.asyncio
    async def test_is_syncing_during_pass(
        self, coordinator: SyncCoordinator, fake_backend: FakeBackend
    ) -> None:
        fake_backend.delay = 0.1
        task = asyncio.create_task(coordinator.sync_now())
        await asyncio.sleep(0.02)
        assert coordinator.is_syncing
        await task
        assert not coordinator.is_syncing

    @pytest.mark.asyncio
    async def test_last_sync_time_set_on_success(self, coordinator: SyncCoordinator) -> None:
        assert coordinator.last_sync_time is None
        report = await coordinator.sync_now()
        assert coordinator.last_sync_time == report.started_at


class TestGates:

    @pytest.mark.asyncio
    async def test_no_user_is_not_authenticated(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 1)
        coordinator = _coordinator(store, queue, fake_backend, user_id=None)

        report = await coordinator.sync_now()

        assert report.outcome == SyncOutcome.NOT_AUTHENTICATED
        assert fake_backend.calls == []
        assert await coordinator.erase_remote_data() is False

    @pytest.mark.asyncio
    async def test_metered_network_defers(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        coordinator = _coordinator(
            store, queue, fake_backend, network_probe=static_probe(NetworkClass.METERED)
        )
        report = await coordinator.sync_if_unmetered()
        assert report.outcome == SyncOutcome.DEFERRED
        assert fake_backend.calls == []

        # Manual sync ignores the gate.
        assert (await coordinator.sync_now()).ok

    @pytest.mark.asyncio
    async def test_async_probe(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        async def probe() -> NetworkClass:
            return NetworkClass.UNMETERED

        coordinator = _coordinator(store, queue, fake_backend, network_probe=probe)
        assert (await coordinator.sync_if_unmetered()).ok

    @pytest.mark.asyncio
    async def test_failing_probe_defers(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        def probe() -> NetworkClass:
            raise OSError("connectivity API unavailable")

        coordinator = _coordinator(store, queue, fake_backend, network_probe=probe)

        report = await coordinator.sync_if_unmetered()

        assert report.outcome == SyncOutcome.DEFERRED
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_no_backend_is_not_configured(
        self, store: SampleStore, queue: OutboundQueue
    ) -> None:
        _fill(store, 1)
        coordinator = SyncCoordinator(store, queue, None, user_id=TEST_USER_ID)

        report = await coordinator.sync_now()

        assert report.outcome == SyncOutcome.NOT_CONFIGURED
        assert len(store.unsynced()) == 1
        assert await coordinator.erase_remote_data() is False


class TestEraseRemoteData:

    @pytest.mark.asyncio
    async def test_erases_only_own_rows(
        self, coordinator: SyncCoordinator, store: SampleStore, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 2)
        await coordinator.sync_now()
        _seed(fake_backend, TABLE_HEALTH_SCORES, _remote_score(user_id="someone-else"))

        assert await coordinator.erase_remote_data() is True

        assert fake_backend.rows(TABLE_BIOMETRICS) == []
        assert fake_backend.rows(TABLE_BIOMETRIC_SUMMARIES) == []
        assert [r["user_id"] for r in fake_backend.rows(TABLE_HEALTH_SCORES)] == ["someone-else"]
        assert coordinator.remote_summaries() == []

    @pytest.mark.asyncio
    async def test_failure_returns_false(
        self, coordinator: SyncCoordinator, fake_backend: FakeBackend
    ) -> None:
        fake_backend.fail_tables.add(TABLE_BIOMETRIC_SUMMARIES)
        assert await coordinator.erase_remote_data() is False


class TestBackgroundTask:

    @pytest.mark.asyncio
    async def test_periodic_sync_and_stop(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        _fill(store, 2)
        coordinator = _coordinator(store, queue, fake_backend, interval_seconds=0.05)

        coordinator.start()
        coordinator.start()
        assert coordinator.running
        await asyncio.sleep(0.3)
        await coordinator.stop()

        assert not coordinator.running
        assert coordinator.last_sync_time is not None
        assert len(fake_backend.rows(TABLE_BIOMETRICS)) == 2

    @pytest.mark.asyncio
    async def test_first_pass_waits_one_interval(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        coordinator = _coordinator(store, queue, fake_backend, interval_seconds=60)
        coordinator.start()
        await asyncio.sleep(0.05)
        await coordinator.stop()
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_background_pass_respects_network_gate(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        coordinator = _coordinator(
            store,
            queue,
            fake_backend,
            interval_seconds=0.02,
            network_probe=static_probe(NetworkClass.OFFLINE),
        )
        coordinator.start()
        await asyncio.sleep(0.1)
        await coordinator.stop()
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_failing_probe_keeps_loop_alive(
        self, store: SampleStore, queue: OutboundQueue, fake_backend: FakeBackend
    ) -> None:
        def probe() -> NetworkClass:
            raise OSError("connectivity API unavailable")

        coordinator = _coordinator(
            store, queue, fake_backend, interval_seconds=0.02, network_probe=probe
        )
        coordinator.start()
        await asyncio.sleep(0.1)

        assert coordinator.running
        await coordinator.stop()
        assert not coordinator.running
