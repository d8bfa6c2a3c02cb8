"""Pydantic models for biometric samples, scores, sync status and queue maintenance."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import Field

from src.models.base import GenieBase
from src.wearables.base import BiometricSample


# ---------- Samples ----------

class SleepAnalysisIn(GenieBase):
    total_sleep_time: float | None = Field(default=None, ge=0)
    deep_sleep: float | None = Field(default=None, ge=0)
    light_sleep: float | None = Field(default=None, ge=0)
    rem_sleep: float | None = Field(default=None, ge=0)
    awake: float | None = Field(default=None, ge=0)


class SampleMetrics(GenieBase):
    heart_rate: float | None = Field(default=None, ge=0, le=300)
    heart_rate_variability: float | None = Field(default=None, ge=0)
    resting_heart_rate: float | None = Field(default=None, ge=0, le=300)
    heart_rate_min: float | None = Field(default=None, ge=0, le=300)
    heart_rate_max: float | None = Field(default=None, ge=0, le=300)
    steps: float | None = Field(default=None, ge=0)
    distance: float | None = Field(default=None, ge=0)
    active_energy: float | None = Field(default=None, ge=0)
    blood_oxygen: float | None = Field(default=None, ge=0, le=100)
    blood_oxygen_min: float | None = Field(default=None, ge=0, le=100)
    blood_oxygen_max: float | None = Field(default=None, ge=0, le=100)
    body_temperature: float | None = None
    sleep_total: float | None = Field(default=None, ge=0)
    sleep_deep: float | None = Field(default=None, ge=0)
    sleep_light: float | None = Field(default=None, ge=0)
    sleep_rem: float | None = Field(default=None, ge=0)
    sleep_awake: float | None = Field(default=None, ge=0)
    current_activity: str | None = Field(default=None, max_length=100)


class SampleIn(SampleMetrics):
    """One sample from the acquisition layer.  ``timestamp`` defaults to now."""

    timestamp: datetime | None = None
    sleep_analysis: SleepAnalysisIn | None = None

    def to_sample(self) -> BiometricSample:
        return BiometricSample.from_mapping(self.model_dump(exclude_none=True))


class SampleRead(SampleMetrics):
    sequence_id: int
    timestamp: datetime
    is_synced: bool


class IngestResponse(GenieBase):
    sequence_id: int
    timestamp: datetime


# ---------- Scores ----------

class CategoryScoresRead(GenieBase):
    overall: float
    cardiovascular: float
    sleep: float
    activity: float
    recovery: float
    stress: float


class InstantScoreRead(GenieBase):
    sequence_id: int | None
    scores: CategoryScoresRead
    status: str
    recommendations: list[str]


class BaselineRead(GenieBase):
    resting_hr: float
    hrv: float
    daily_steps: float
    sleep_hours: float
    defaulted: list[str]


class DataQualityRead(GenieBase):
    confidence: float
    coverage_24h: float
    coverage_7d: float
    coverage_30d: float
    wear_hours: int


class LongTermScoreRead(GenieBase):
    scores: CategoryScoresRead
    confidence: float
    quality: DataQualityRead
    baseline: BaselineRead
    insufficient_data: bool
    prefer_long_term: bool
    message: str | None = None
    status: str
    computed_at: datetime


class ScoreRecordRead(GenieBase):
    id: int | None
    timestamp: datetime
    overall_score: float
    cardiovascular_score: float | None = None
    sleep_score: float | None = None
    activity_score: float | None = None
    recovery_score: float | None = None
    stress_score: float | None = None
    confidence_level: float
    device_id: str | None = None
    is_synced: bool


# ---------- Sync ----------

class SyncReportRead(GenieBase):
    outcome: str
    started_at: datetime
    finished_at: datetime | None = None
    samples_uploaded: int
    scores_uploaded: int
    scores_queued: int
    summaries_uploaded: int
    queue_acked: int
    queue_bumped: int
    queue_lost: int
    scores_downloaded: int
    summaries_downloaded: int
    upload_error: str | None = None
    download_error: str | None = None


class SyncStatusRead(GenieBase):
    is_syncing: bool
    last_sync_time: datetime | None = None
    background_running: bool


class DailySummaryRead(GenieBase):
    date: date
    avg_heart_rate: float | None = None
    min_heart_rate: float | None = None
    max_heart_rate: float | None = None
    avg_hrv: float | None = None
    avg_blood_oxygen: float | None = None
    total_steps: float | None = None
    total_distance: float | None = None
    active_energy_burned: float | None = None
    total_sleep_minutes: float | None = None
    deep_sleep_minutes: float | None = None
    rem_sleep_minutes: float | None = None
    light_sleep_minutes: float | None = None
    awake_minutes: float | None = None


# ---------- Maintenance ----------

class StoreStatsRead(GenieBase):
    biometrics: int
    scores: int
    unsynced: int
    sync_queue: int
    stuck: int
    capacity: int
    halted: bool
    lost_since_start: int


class QueueItemRead(GenieBase):
    id: int | None
    target_table: str
    record_id: int
    action: str
    retry_count: int
    created_at: datetime
    last_attempt: datetime | None = None
    payload: dict[str, Any]


class ClearedResponse(GenieBase):
    cleared: int
