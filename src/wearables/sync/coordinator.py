"""Single-flight sync between the local store and the remote backend.

One sync pass runs two independent phases:

1. **Upload**: unsynced samples go to ``biometrics`` together with the daily
   summaries of every day they touch, unsynced scores go to
   ``health_scores``, then the outbound queue is replayed per target table.
   Scores the backend refuses are handed to the queue, so they share its
   retry ceiling.  Delivered queue items are acknowledged; failed ones are
   bumped.
2. **Download**: remote scores and daily summaries newer than the last
   successful sync (or the last 30 days on first run) are pulled back.

A failure in one phase is recorded in the ``SyncReport`` and the other phase
still runs.  Only a pass where both phases succeed advances
``last_sync_time``.  Callers never see exceptions; they get a report.

Usage::

    coordinator = SyncCoordinator(store, queue, backend, user_id="u-1")
    coordinator.start()                 # periodic, gated on unmetered network
    report = await coordinator.sync_now()
    await coordinator.stop()
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable

from src.services.backend import Filter, RemoteBackend
from src.wearables.base import (
    TABLE_BIOMETRIC_SUMMARIES,
    TABLE_BIOMETRICS,
    TABLE_HEALTH_SCORES,
    QueueItem,
    utc_now,
)
from src.wearables.errors import TransientIOError
from src.wearables.storage.outbound_queue import OutboundQueue
from src.wearables.storage.sample_store import SampleStore
from src.wearables.sync.dedup import conflict_key, dedupe_rows
from src.wearables.sync.network import NetworkClass, NetworkProbe, static_probe
from src.wearables.sync.rows import sample_row, score_from_row, score_row
from src.wearables.sync.summaries import DailySummary, day_bounds, touched_days

logger = logging.getLogger("healthgenie.wearables.sync.coordinator")

DEFAULT_INTERVAL_SECONDS = 900
DEFAULT_BATCH_LIMIT = 100
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_HISTORY_DAYS = 30


class SyncOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    ALREADY_RUNNING = "already_running"
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_CONFIGURED = "not_configured"
    DEFERRED = "deferred"


@dataclass
class SyncReport:
    """Result of one sync request.

    Attributes:
        outcome:              Overall outcome.
        started_at:           UTC start time.
        finished_at:          UTC completion time.
        samples_uploaded:     Samples accepted by the backend.
        scores_uploaded:      Scores accepted by the backend.
        scores_queued:        Scores that failed to upload and moved to the queue.
        summaries_uploaded:   Daily summaries upserted.
        queue_acked:          Queue items delivered and removed.
        queue_bumped:         Queue items that failed this pass.
        queue_lost:           Queue items that reached the retry ceiling this pass.
        scores_downloaded:    Remote scores stored locally.
        summaries_downloaded: Remote summaries cached.
        upload_error:         Upload phase error, if any.
        download_error:       Download phase error, if any.
    """

    outcome: SyncOutcome
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    samples_uploaded: int = 0
    scores_uploaded: int = 0
    scores_queued: int = 0
    summaries_uploaded: int = 0
    queue_acked: int = 0
    queue_bumped: int = 0
    queue_lost: int = 0
    scores_downloaded: int = 0
    summaries_downloaded: int = 0
    upload_error: str | None = None
    download_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == SyncOutcome.SUCCESS


class SyncCoordinator:
    """Reconcile the local store with the remote backend.

    Args:
        store:            Local sample/score store.
        queue:            Outbound queue.
        backend:          Remote backend; None when no remote is configured.
        user_id:          Owner of the uploaded rows; sync is refused without it.
        device_id:        Stamped on uploaded scores that carry no device id.
        network_probe:    Returns the current NetworkClass; defaults to unmetered.
        batch_limit:      Maximum samples/scores/queue items per pass.
        interval_seconds: Period of the background task.
        timeout_seconds:  Timeout applied to every remote call.
        history_days:     Download window on the first sync.
    """

    def __init__(
        self,
        store: SampleStore,
        queue: OutboundQueue,
        backend: RemoteBackend | None,
        user_id: str | None,
        device_id: str | None = None,
        network_probe: NetworkProbe | None = None,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        history_days: int = DEFAULT_HISTORY_DAYS,
    ) -> None:
        self._store = store
        self._queue = queue
        self._backend = backend
        self._user_id = user_id
        self._device_id = device_id or None
        self._probe = network_probe or static_probe(NetworkClass.UNMETERED)
        self._batch_limit = batch_limit
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._history_days = history_days

        self._syncing = False
        self._last_sync: datetime | None = None
        self._summaries: dict[date, DailySummary] = {}
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def last_sync_time(self) -> datetime | None:
        return self._last_sync

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def remote_summaries(self) -> list[DailySummary]:
        """Downloaded daily summaries, oldest first."""
        return [self._summaries[day] for day in sorted(self._summaries)]

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Launch the periodic background task.  No-op if already running."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="healthgenie-sync")
        logger.info("Background sync started (every %ss)", self._interval)

    async def stop(self) -> None:
        """Stop scheduling new passes.  A pass already in flight completes."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
            logger.info("Background sync stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                return
            except asyncio.TimeoutError:
                pass
            await self.sync_if_unmetered()

    async def sync_if_unmetered(self) -> SyncReport:
        """Sync only when the network probe reports an unmetered connection.

        A probe that fails counts as offline: the pass is deferred.
        """
        try:
            network = self._probe()
            if inspect.isawaitable(network):
                network = await network
        except Exception:
            logger.exception("Network probe failed; deferring sync")
            network = NetworkClass.OFFLINE
        if network != NetworkClass.UNMETERED:
            logger.debug("Sync deferred: network is %s", getattr(network, "value", network))
            report = SyncReport(outcome=SyncOutcome.DEFERRED)
            report.finished_at = utc_now()
            return report
        return await self.sync_now()

    async def sync_now(self) -> SyncReport:
        """Run one sync pass immediately, ignoring the network gate.

        Returns:
            SyncReport.  NOT_CONFIGURED if there is no remote backend,
            NOT_AUTHENTICATED if no user is configured, ALREADY_RUNNING if
            another pass is in flight.
        """
        if self._backend is None:
            logger.info("Sync skipped: no remote backend configured")
            return SyncReport(outcome=SyncOutcome.NOT_CONFIGURED, finished_at=utc_now())
        user_id = self._user_id
        if not user_id:
            logger.info("Sync skipped: no user configured")
            return SyncReport(outcome=SyncOutcome.NOT_AUTHENTICATED, finished_at=utc_now())
        if self._syncing:
            logger.debug("Sync already in progress")
            return SyncReport(outcome=SyncOutcome.ALREADY_RUNNING, finished_at=utc_now())

        self._syncing = True
        report = SyncReport(outcome=SyncOutcome.FAILED)
        try:
            try:
                await self._upload(user_id, report)
            except Exception as exc:
                report.upload_error = str(exc) or type(exc).__name__
                self._log_phase_failure("Upload", exc)

            try:
                await self._download(user_id, report)
            except Exception as exc:
                report.download_error = str(exc) or type(exc).__name__
                self._log_phase_failure("Download", exc)

            if report.upload_error is None and report.download_error is None:
                report.outcome = SyncOutcome.SUCCESS
                self._last_sync = report.started_at
        finally:
            self._syncing = False
            report.finished_at = utc_now()

        logger.info(
            "Sync %s: up samples=%d scores=%d (queued %d) summaries=%d queue acked=%d bumped=%d lost=%d; "
            "down scores=%d summaries=%d",
            report.outcome.value, report.samples_uploaded, report.scores_uploaded, report.scores_queued,
            report.summaries_uploaded, report.queue_acked, report.queue_bumped,
            report.queue_lost, report.scores_downloaded, report.summaries_downloaded,
        )
        return report

    async def erase_remote_data(self) -> bool:
        """Delete every remote row owned by the configured user.

        Returns:
            True if all tables were cleared.
        """
        if not self._user_id or self._backend is None:
            return False
        owner = [Filter("user_id", "eq", self._user_id)]
        try:
            for table in (TABLE_HEALTH_SCORES, TABLE_BIOMETRIC_SUMMARIES, TABLE_BIOMETRICS):
                await self._call(self._backend.delete(table, owner))
        except TransientIOError as exc:
            logger.warning("Remote data erasure failed: %s", exc)
            return False
        self._summaries.clear()
        logger.info("Remote data erased for user %s", self._user_id)
        return True

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _upload(self, user_id: str, report: SyncReport) -> None:

        samples = await asyncio.to_thread(self._store.unsynced, self._batch_limit)
        if samples:
            key = conflict_key(TABLE_BIOMETRICS)
            rows = dedupe_rows([sample_row(user_id, s) for s in samples], key)
            await self._call(self._backend.upsert(TABLE_BIOMETRICS, rows, key))
            report.summaries_uploaded = await self._upload_summaries(user_id, touched_days(samples))
            await asyncio.to_thread(self._store.mark_synced, [s.sequence_id for s in samples])
            report.samples_uploaded = len(samples)

        scores = await asyncio.to_thread(self._store.unsynced_scores, self._batch_limit)
        if scores:
            key = conflict_key(TABLE_HEALTH_SCORES)
            rows = dedupe_rows([score_row(user_id, r, self._device_id) for r in scores], key)
            try:
                await self._call(self._backend.upsert(TABLE_HEALTH_SCORES, rows, key))
            except TransientIOError as exc:
                logger.warning("Score upload failed (%d score(s)); queueing: %s", len(scores), exc)
                report.scores_queued = await asyncio.to_thread(self._store.hand_off_scores, scores)
            else:
                await asyncio.to_thread(self._store.mark_scores_synced, [r.id for r in scores])
                report.scores_uploaded = len(scores)

        await self._replay_queue(user_id, report)

    async def _upload_summaries(self, user_id: str, days: list[date]) -> int:
        rows: list[dict[str, Any]] = []
        for day in days:
            day_samples = await asyncio.to_thread(self._store.query, *day_bounds(day))
            rows.append(DailySummary.from_samples(day, day_samples).to_row(user_id))
        if rows:
            key = conflict_key(TABLE_BIOMETRIC_SUMMARIES)
            await self._call(self._backend.upsert(TABLE_BIOMETRIC_SUMMARIES, rows, key))
        return len(rows)

    async def _replay_queue(self, user_id: str, report: SyncReport) -> None:
        """Deliver pending queue items, one batch upsert per target table.

        A failed table is bumped and the remaining tables are still tried.

        Raises:
            TransientIOError: If any table failed, after all tables were tried.
        """
        pending = await asyncio.to_thread(self._queue.pending, self._batch_limit)
        failed_tables: list[str] = []

        for table, items in OutboundQueue.group_by_table(pending).items():
            ids = [item.id for item in items]
            try:
                key = conflict_key(table)
                rows = dedupe_rows([self._queue_row(user_id, item) for item in items], key)
                await self._call(self._backend.upsert(table, rows, key))
            except (TransientIOError, KeyError) as exc:
                logger.warning("Queue replay for %s failed (%d item(s)): %s", table, len(ids), exc)
                exhausted = await asyncio.to_thread(self._queue.bump, ids)
                report.queue_bumped += len(ids)
                report.queue_lost += len(exhausted)
                failed_tables.append(table)
                continue
            report.queue_acked += await asyncio.to_thread(self._queue.ack, ids)

        if failed_tables:
            raise TransientIOError(f"Queue replay failed for {', '.join(failed_tables)}")

    def _queue_row(self, user_id: str, item: QueueItem) -> dict[str, Any]:
        if item.target_table == TABLE_BIOMETRICS:
            return sample_row(user_id, item.payload)
        return score_row(user_id, item.payload, self._device_id)

    async def _download(self, user_id: str, report: SyncReport) -> None:
        since = self._last_sync or utc_now() - timedelta(days=self._history_days)

        score_rows = await self._call(
            self._backend.select(
                TABLE_HEALTH_SCORES,
                [Filter("user_id", "eq", user_id), Filter("timestamp", "gte", since)],
                order_by="timestamp",
            )
        )
        for row in score_rows:
            stored = await asyncio.to_thread(self._store.upsert_remote_score, score_from_row(row))
            report.scores_downloaded += int(stored)

        summary_rows = await self._call(
            self._backend.select(
                TABLE_BIOMETRIC_SUMMARIES,
                [Filter("user_id", "eq", user_id), Filter("date", "gte", since.date())],
                order_by="date",
            )
        )
        for row in summary_rows:
            summary = DailySummary.from_row(row)
            self._summaries[summary.date] = summary
        report.summaries_downloaded = len(summary_rows)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        """Await a remote call under the per-call timeout.

        Raises:
            TransientIOError: If the call timed out.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise TransientIOError(f"Remote call timed out after {self._timeout}s") from exc

    @staticmethod
    def _log_phase_failure(phase: str, exc: Exception) -> None:
        if isinstance(exc, TransientIOError):
            logger.warning("%s phase failed: %s", phase, exc)
        else:
            logger.exception("%s phase failed unexpectedly", phase)
