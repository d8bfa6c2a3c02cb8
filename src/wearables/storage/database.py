"""Local SQLite database: engine factory, table definitions and migrations.

Three relations live here: ``biometrics`` (capacity bounded), ``health_scores``
(pruned independently) and ``sync_queue`` (retry bounded).  The schema is
brought up to date by applying ``MIGRATIONS`` in order against the version
recorded in ``schema_version``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from src.wearables.base import TABLE_BIOMETRICS, TABLE_HEALTH_SCORES, TABLE_SYNC_QUEUE

logger = logging.getLogger("healthgenie.wearables.storage.database")

metadata = MetaData()

# Table objects describe the schema after the latest migration and are used
# for all queries.  DDL is owned by MIGRATIONS below.
biometrics = Table(
    TABLE_BIOMETRICS,
    metadata,
    Column("id", Integer, primary_key=True),
    Column("timestamp", DateTime, nullable=False),
    Column("heart_rate", Float),
    Column("heart_rate_variability", Float),
    Column("resting_heart_rate", Float),
    Column("heart_rate_min", Float),
    Column("heart_rate_max", Float),
    Column("steps", Float),
    Column("distance", Float),
    Column("active_energy", Float),
    Column("blood_oxygen", Float),
    Column("blood_oxygen_min", Float),
    Column("blood_oxygen_max", Float),
    Column("body_temperature", Float),
    Column("sleep_total", Float),
    Column("sleep_deep", Float),
    Column("sleep_light", Float),
    Column("sleep_rem", Float),
    Column("sleep_awake", Float),
    Column("current_activity", String),
    Column("is_synced", Boolean, nullable=False, default=False),
    Column("created_at", DateTime),
)

health_scores = Table(
    TABLE_HEALTH_SCORES,
    metadata,
    Column("id", Integer, primary_key=True),
    Column("timestamp", DateTime, nullable=False),
    Column("overall_score", Float, nullable=False),
    Column("cardiovascular_score", Float),
    Column("sleep_score", Float),
    Column("activity_score", Float),
    Column("recovery_score", Float),
    Column("stress_score", Float),
    Column("confidence_level", Float),
    Column("device_id", String),
    Column("is_synced", Boolean, nullable=False, default=False),
    Column("created_at", DateTime),
)

sync_queue = Table(
    TABLE_SYNC_QUEUE,
    metadata,
    Column("id", Integer, primary_key=True),
    Column("table_name", String, nullable=False),
    Column("record_id", Integer, nullable=False),
    Column("action", String, nullable=False),
    Column("data", Text, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("last_attempt", DateTime),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def create_local_engine(path: str | Path | None = None, echo: bool = False) -> Engine:
    """Create the SQLite engine for the local store.

    Args:
        path: Database file path.  ``None`` or ``":memory:"`` gives an
              in-memory database shared by every connection of this engine.
        echo: Log emitted SQL.

    Returns:
        A SQLAlchemy Engine.
    """
    if path is None or str(path) == ":memory:":
        return create_engine(
            "sqlite://",
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    db_path = Path(path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path}",
        echo=echo,
        connect_args={"check_same_thread": False},
    )


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Migration:
    """One schema step.  ``apply`` runs inside the migration transaction."""

    version: int
    description: str
    apply: Callable[[Connection], None]


def _v1_base_tables(conn: Connection) -> None:
    conn.execute(text(
        f"""
        CREATE TABLE {TABLE_BIOMETRICS} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp DATETIME NOT NULL,
            heart_rate FLOAT,
            heart_rate_variability FLOAT,
            resting_heart_rate FLOAT,
            steps FLOAT,
            distance FLOAT,
            active_energy FLOAT,
            blood_oxygen FLOAT,
            body_temperature FLOAT,
            sleep_total FLOAT,
            sleep_deep FLOAT,
            sleep_light FLOAT,
            sleep_rem FLOAT,
            sleep_awake FLOAT,
            is_synced BOOLEAN NOT NULL DEFAULT 0,
            created_at DATETIME
        )
        """
    ))
    conn.execute(text(
        f"""
        CREATE TABLE {TABLE_HEALTH_SCORES} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp DATETIME NOT NULL,
            overall_score FLOAT NOT NULL,
            cardiovascular_score FLOAT,
            sleep_score FLOAT,
            activity_score FLOAT,
            recovery_score FLOAT,
            stress_score FLOAT,
            is_synced BOOLEAN NOT NULL DEFAULT 0,
            created_at DATETIME
        )
        """
    ))
    conn.execute(text(
        f"""
        CREATE TABLE {TABLE_SYNC_QUEUE} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            table_name VARCHAR NOT NULL,
            record_id INTEGER NOT NULL,
            action VARCHAR NOT NULL,
            data TEXT NOT NULL,
            created_at DATETIME NOT NULL,
            retry_count INTEGER NOT NULL DEFAULT 0,
            last_attempt DATETIME
        )
        """
    ))
    for stmt in (
        f"CREATE INDEX idx_biometrics_timestamp ON {TABLE_BIOMETRICS}(timestamp)",
        f"CREATE INDEX idx_biometrics_synced ON {TABLE_BIOMETRICS}(is_synced)",
        f"CREATE INDEX idx_scores_timestamp ON {TABLE_HEALTH_SCORES}(timestamp)",
        f"CREATE INDEX idx_scores_synced ON {TABLE_HEALTH_SCORES}(is_synced)",
        f"CREATE INDEX idx_queue_retry ON {TABLE_SYNC_QUEUE}(retry_count)",
        f"CREATE INDEX idx_queue_created ON {TABLE_SYNC_QUEUE}(created_at)",
    ):
        conn.execute(text(stmt))


def _v2_heart_rate_extrema(conn: Connection) -> None:
    conn.execute(text(f"ALTER TABLE {TABLE_BIOMETRICS} ADD COLUMN heart_rate_min FLOAT"))
    conn.execute(text(f"ALTER TABLE {TABLE_BIOMETRICS} ADD COLUMN heart_rate_max FLOAT"))


def _v3_blood_oxygen_extrema(conn: Connection) -> None:
    conn.execute(text(f"ALTER TABLE {TABLE_BIOMETRICS} ADD COLUMN blood_oxygen_min FLOAT"))
    conn.execute(text(f"ALTER TABLE {TABLE_BIOMETRICS} ADD COLUMN blood_oxygen_max FLOAT"))


def _v4_sync_metadata(conn: Connection) -> None:
    conn.execute(text(f"ALTER TABLE {TABLE_BIOMETRICS} ADD COLUMN current_activity VARCHAR"))
    conn.execute(text(f"ALTER TABLE {TABLE_HEALTH_SCORES} ADD COLUMN confidence_level FLOAT"))
    conn.execute(text(f"ALTER TABLE {TABLE_HEALTH_SCORES} ADD COLUMN device_id VARCHAR"))


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "base tables and indexes", _v1_base_tables),
    Migration(2, "heart rate min/max columns", _v2_heart_rate_extrema),
    Migration(3, "blood oxygen min/max columns", _v3_blood_oxygen_extrema),
    Migration(4, "activity label, score confidence and device id", _v4_sync_metadata),
)

LATEST_VERSION = MIGRATIONS[-1].version


def current_version(conn: Connection) -> int:
    """Return the recorded schema version, 0 for a fresh database."""
    conn.execute(text("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)"))
    row = conn.execute(text("SELECT MAX(version) FROM schema_version")).scalar()
    return int(row) if row is not None else 0


def migrate(
    engine: Engine,
    migrations: tuple[Migration, ...] = MIGRATIONS,
    target: int | None = None,
) -> int:
    """Apply pending migrations in order.

    Each step runs in its own transaction together with the version bump, so
    a failed step leaves the database at the previous version.

    Args:
        engine:     Local engine.
        migrations: Ordered migration steps (ascending, contiguous versions).
        target:     Stop after this version; defaults to the last step.

    Returns:
        The schema version after migrating.
    """
    versions = [m.version for m in migrations]
    if versions != sorted(versions) or len(set(versions)) != len(versions):
        raise ValueError(f"Migrations must have strictly ascending versions: {versions}")

    with engine.begin() as conn:
        version = current_version(conn)

    stop_at = target if target is not None else (versions[-1] if versions else 0)
    for migration in migrations:
        if migration.version <= version or migration.version > stop_at:
            continue
        with engine.begin() as conn:
            migration.apply(conn)
            conn.execute(
                text("INSERT INTO schema_version (version) VALUES (:v)"),
                {"v": migration.version},
            )
        logger.info(
            "Applied local schema migration v%d: %s", migration.version, migration.description
        )
        version = migration.version

    return version
