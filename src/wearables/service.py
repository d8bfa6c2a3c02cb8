"""Health Genie service container.

Wires the local store, outbound queue, score engine and sync coordinator
together once per process and exposes the read/ingest API used by the HTTP
layer.  Nothing here is a module-level singleton; the FastAPI lifespan owns
the instance.

Usage::

    genie = HealthGenie.from_settings(get_settings())
    await genie.startup()
    genie.ingest({"timestamp": "2024-05-01T08:00:00Z", "heart_rate": 64})
    scores = genie.instant_score()
    await genie.shutdown()
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Mapping

from sqlalchemy.engine import Engine

from src.config import Settings
from src.services.backend import RemoteBackend, get_backend
from src.wearables.base import BiometricSample, CategoryScores, ScoreRecord, utc_now
from src.wearables.config_loader import get_scoring_config, load_scoring_config
from src.wearables.scoring import LongTermScore, ScoreEngine
from src.wearables.storage.database import create_local_engine, migrate
from src.wearables.storage.outbound_queue import OutboundQueue
from src.wearables.storage.sample_store import SampleStore, StoreStats
from src.wearables.sync.coordinator import SyncCoordinator, SyncReport
from src.wearables.sync.network import NetworkClass, NetworkProbe, static_probe
from src.wearables.sync.summaries import DailySummary

logger = logging.getLogger("healthgenie.service")


def build_backend(settings: Settings) -> RemoteBackend | None:
    """Instantiate the configured remote backend.

    Returns:
        The backend, or None when its connection settings are empty.  The
        local store and scoring still work; sync reports NOT_CONFIGURED.

    Raises:
        KeyError: Unknown ``backend_kind``.
    """
    backend_cls = get_backend(settings.backend_kind)
    if backend_cls.KIND == "postgres":
        if not settings.supabase_db_url:
            logger.warning("No database URL configured; remote sync disabled")
            return None
        return backend_cls(
            dsn=settings.supabase_db_url,
            command_timeout=settings.request_timeout_seconds,
        )
    if not settings.supabase_url:
        logger.warning("No Supabase URL configured; remote sync disabled")
        return None
    return backend_cls(
        base_url=settings.supabase_url,
        api_key=settings.supabase_anon_key,
        access_token=settings.supabase_access_token or None,
        timeout=settings.request_timeout_seconds,
    )


class HealthGenie:
    """Dependency container and facade for the wearable core.

    Attributes:
        store:       Capacity-bounded sample store.
        queue:       Outbound queue.
        engine:      Score engine.
        coordinator: Sync coordinator.
    """

    def __init__(
        self,
        store: SampleStore,
        queue: OutboundQueue,
        engine: ScoreEngine,
        coordinator: SyncCoordinator,
        backend: RemoteBackend | None,
        db_engine: Engine | None = None,
        device_id: str | None = None,
        score_retention_days: int = 90,
        background_sync: bool = True,
    ) -> None:
        self.store = store
        self.queue = queue
        self.engine = engine
        self.coordinator = coordinator
        self.backend = backend
        self._db_engine = db_engine
        self._device_id = device_id or None
        self._score_retention = timedelta(days=score_retention_days)
        self._background_sync = background_sync

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backend: RemoteBackend | None = None,
        network_probe: NetworkProbe | None = None,
    ) -> "HealthGenie":
        """Build the full object graph from settings.

        Args:
            settings:      Application settings.
            backend:       Remote backend override (tests, custom transports).
            network_probe: Network probe override; defaults to the configured class.
        """
        db_engine = create_local_engine(settings.database_path)
        version = migrate(db_engine)
        logger.info("Local store ready at %s (schema v%d)", settings.database_path, version)

        lock = threading.RLock()
        queue = OutboundQueue(db_engine, retry_ceiling=settings.retry_ceiling, lock=lock)
        store = SampleStore(db_engine, queue, capacity=settings.sample_capacity, lock=lock)

        scoring_config = (
            load_scoring_config(Path(settings.scoring_config_path))
            if settings.scoring_config_path
            else get_scoring_config()
        )
        backend = backend or build_backend(settings)
        coordinator = SyncCoordinator(
            store,
            queue,
            backend,
            user_id=settings.user_id or None,
            device_id=settings.device_id or None,
            network_probe=network_probe or static_probe(NetworkClass(settings.network_class)),
            batch_limit=settings.sync_batch_limit,
            interval_seconds=settings.sync_interval_seconds,
            timeout_seconds=settings.request_timeout_seconds,
            history_days=settings.history_days,
        )
        return cls(
            store=store,
            queue=queue,
            engine=ScoreEngine(scoring_config),
            coordinator=coordinator,
            backend=backend,
            db_engine=db_engine,
            device_id=settings.device_id,
            score_retention_days=settings.score_retention_days,
            background_sync=settings.sync_enabled,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        if self.backend is not None:
            await self.backend.connect()
        if self._background_sync and self.backend is not None:
            self.coordinator.start()

    async def shutdown(self) -> None:
        await self.coordinator.stop()
        if self.backend is not None:
            await self.backend.close()
        if self._db_engine is not None:
            self._db_engine.dispose()

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def ingest(self, data: Mapping[str, Any] | BiometricSample) -> BiometricSample:
        """Store one sample from the acquisition layer.

        Raises:
            ValueError:         Unparseable timestamp.
            StoreHaltedError:   The store is halted.
            InvariantViolation: The insert broke a store invariant.
        """
        sample = data if isinstance(data, BiometricSample) else BiometricSample.from_mapping(data)
        if sample.is_empty:
            logger.debug("Ingesting sample at %s with no metrics", sample.timestamp)
        self.store.insert(sample)
        return sample

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def latest(self) -> BiometricSample | None:
        return self.store.latest()

    def instant_score(self, sample: BiometricSample | None = None) -> CategoryScores | None:
        """Score ``sample``, or the latest stored sample.  None when the store is empty."""
        sample = sample or self.store.latest()
        if sample is None:
            return None
        return self.engine.instant_score(sample)

    def long_term_score(self, now: datetime | None = None) -> LongTermScore:
        return self.engine.long_term_from_store(self.store, now)

    def record_score(self, now: datetime | None = None) -> ScoreRecord | None:
        """Compute and persist the score the UI should show.

        The long-term score is used when its confidence is high enough,
        otherwise the instant score of the latest sample.  Old synced scores
        are pruned afterwards.

        Returns:
            The stored record, or None when there is nothing to score.
        """
        now = now or utc_now()
        long_term = self.long_term_score(now)
        if long_term.prefer_long_term:
            scores = long_term.scores
        else:
            scores = self.instant_score()
            if scores is None:
                return None
        record = self.engine.to_record(scores, long_term.confidence, self._device_id, now)
        self.store.insert_score(record)
        self.store.prune_scores(now - self._score_retention)
        return record

    def last_sync_time(self) -> datetime | None:
        return self.coordinator.last_sync_time

    def is_syncing(self) -> bool:
        return self.coordinator.is_syncing

    def remote_summaries(self) -> list[DailySummary]:
        return self.coordinator.remote_summaries()

    def stats(self) -> StoreStats:
        return self.store.stats()

    # ------------------------------------------------------------------
    # Sync / maintenance
    # ------------------------------------------------------------------

    async def sync_now(self) -> SyncReport:
        return await self.coordinator.sync_now()

    async def erase_remote_data(self) -> bool:
        return await self.coordinator.erase_remote_data()
