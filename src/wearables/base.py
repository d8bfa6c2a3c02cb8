"""Canonical data models for the Health Genie wearable core.

Every sample delivered by the acquisition layer is converted into a
``BiometricSample`` before it reaches the store.  Computed composite scores
travel as ``ScoreRecord``.  Items waiting in the outbound queue carry a typed
payload tagged with their target table so they can be validated again on the
retry path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

logger = logging.getLogger("healthgenie.wearables")

# Local relation names; the remote backend uses the same names.
TABLE_BIOMETRICS = "biometrics"
TABLE_HEALTH_SCORES = "health_scores"
TABLE_SYNC_QUEUE = "sync_queue"
TABLE_BIOMETRIC_SUMMARIES = "biometric_summaries"

# Numeric metrics a sample may carry.  Each one is independently nullable.
METRIC_FIELDS: tuple[str, ...] = (
    "heart_rate",
    "heart_rate_variability",
    "resting_heart_rate",
    "heart_rate_min",
    "heart_rate_max",
    "steps",
    "distance",
    "active_energy",
    "blood_oxygen",
    "blood_oxygen_min",
    "blood_oxygen_max",
    "body_temperature",
    "sleep_total",
    "sleep_deep",
    "sleep_light",
    "sleep_rem",
    "sleep_awake",
)

SLEEP_FIELDS: tuple[str, ...] = (
    "sleep_total",
    "sleep_deep",
    "sleep_light",
    "sleep_rem",
    "sleep_awake",
)

# Keys of the nested ``sleep_analysis`` block some acquisition layers send.
_SLEEP_ANALYSIS_KEYS: dict[str, str] = {
    "total_sleep_time": "sleep_total",
    "deep_sleep": "sleep_deep",
    "light_sleep": "sleep_light",
    "rem_sleep": "sleep_rem",
    "awake": "sleep_awake",
}

# Activity labels that count as "at rest" for resting-metric averaging.
RESTING_ACTIVITY_LABELS: frozenset[str] = frozenset({"no activity", "rest"})


def utc_now() -> datetime:
    """Return the current UTC time as a naive datetime (storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO string or datetime into a naive UTC datetime.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp.
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_naive_utc(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def _coerce_float(key: str, value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug("Dropping non-numeric value for %s: %r", key, value)
        return None


# ---------------------------------------------------------------------------
# Samples and scores
# ---------------------------------------------------------------------------


@dataclass
class BiometricSample:
    """One timestamped observation from the wearable.

    All metrics are optional because the device reports sparse subsets.
    ``sequence_id`` is assigned by the store on insert and is the eviction
    order key; ``timestamp`` may go backwards after clock adjustments.

    Attributes:
        timestamp:              Observation time (naive UTC).
        heart_rate:             Instantaneous heart rate (bpm).
        heart_rate_variability: HRV SDNN/RMSSD (ms).
        resting_heart_rate:     Resting heart rate (bpm).
        heart_rate_min:         Session minimum heart rate.
        heart_rate_max:         Session maximum heart rate.
        steps:                  Cumulative step count for the day.
        distance:               Cumulative distance for the day (m).
        active_energy:          Cumulative active energy for the day (kcal).
        blood_oxygen:           SpO2 (%).
        blood_oxygen_min:       Session minimum SpO2.
        blood_oxygen_max:       Session maximum SpO2.
        body_temperature:       Body temperature (°C).
        sleep_total:            Last sleep period, total minutes.
        sleep_deep:             Deep sleep minutes.
        sleep_light:            Light sleep minutes.
        sleep_rem:              REM sleep minutes.
        sleep_awake:            Minutes awake during the sleep period.
        current_activity:       Activity label reported by the device.
        is_synced:              True once the remote backend accepted it.
        sequence_id:            Store-assigned, strictly increasing.
    """

    timestamp: datetime
    heart_rate: float | None = None
    heart_rate_variability: float | None = None
    resting_heart_rate: float | None = None
    heart_rate_min: float | None = None
    heart_rate_max: float | None = None
    steps: float | None = None
    distance: float | None = None
    active_energy: float | None = None
    blood_oxygen: float | None = None
    blood_oxygen_min: float | None = None
    blood_oxygen_max: float | None = None
    body_temperature: float | None = None
    sleep_total: float | None = None
    sleep_deep: float | None = None
    sleep_light: float | None = None
    sleep_rem: float | None = None
    sleep_awake: float | None = None
    current_activity: str | None = None
    is_synced: bool = False
    sequence_id: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BiometricSample":
        """Build a sample from a loosely typed acquisition map.

        Unknown keys are ignored, numeric strings are coerced, a missing
        timestamp defaults to now, and a nested ``sleep_analysis`` block is
        flattened into the sleep fields.

        Args:
            data: Key/value map delivered by the acquisition layer.

        Returns:
            A new, unsynced BiometricSample.
        """
        raw_ts = data.get("timestamp")
        timestamp = parse_timestamp(raw_ts) if raw_ts is not None else utc_now()

        metrics: dict[str, float | None] = {
            key: _coerce_float(key, data.get(key)) for key in METRIC_FIELDS
        }

        sleep_block = data.get("sleep_analysis")
        if isinstance(sleep_block, Mapping):
            for src_key, dst_key in _SLEEP_ANALYSIS_KEYS.items():
                if metrics[dst_key] is None:
                    metrics[dst_key] = _coerce_float(dst_key, sleep_block.get(src_key))

        activity = data.get("current_activity")
        return cls(
            timestamp=timestamp,
            current_activity=str(activity) if activity is not None else None,
            **metrics,
        )

    @property
    def is_empty(self) -> bool:
        """True if the sample carries no metric at all."""
        return all(getattr(self, key) is None for key in METRIC_FIELDS)

    @property
    def has_sleep(self) -> bool:
        return bool(self.sleep_total and self.sleep_total > 0)

    @property
    def at_rest(self) -> bool:
        """True if resting metrics from this sample are trustworthy."""
        if self.current_activity is None:
            return True
        return self.current_activity.strip().lower() in RESTING_ACTIVITY_LABELS

    def metrics(self) -> dict[str, Any]:
        """Return all metric columns plus the activity label."""
        out: dict[str, Any] = {key: getattr(self, key) for key in METRIC_FIELDS}
        out["current_activity"] = self.current_activity
        return out


@dataclass
class CategoryScores:
    """The five category scores plus the weighted composite, each 0–100."""

    overall: float = 50.0
    cardiovascular: float = 50.0
    sleep: float = 50.0
    activity: float = 50.0
    recovery: float = 50.0
    stress: float = 50.0

    def as_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ScoreRecord:
    """A persisted composite score.

    Lifecycle is independent of samples: score rows are never evicted by the
    sample capacity rule, only pruned once synced and aged out.
    """

    timestamp: datetime
    overall_score: float
    cardiovascular_score: float | None = None
    sleep_score: float | None = None
    activity_score: float | None = None
    recovery_score: float | None = None
    stress_score: float | None = None
    confidence_level: float = 0.0
    device_id: str | None = None
    is_synced: bool = False
    id: int | None = None

    @classmethod
    def from_scores(
        cls,
        scores: CategoryScores,
        confidence: float = 0.0,
        device_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> "ScoreRecord":
        return cls(
            timestamp=timestamp or utc_now(),
            overall_score=scores.overall,
            cardiovascular_score=scores.cardiovascular,
            sleep_score=scores.sleep,
            activity_score=scores.activity,
            recovery_score=scores.recovery,
            stress_score=scores.stress,
            confidence_level=confidence,
            device_id=device_id,
        )


# ---------------------------------------------------------------------------
# Queue payloads (discriminated by target table)
# ---------------------------------------------------------------------------


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SamplePayload(_PayloadBase):
    """Full serialized BiometricSample destined for the ``biometrics`` table."""

    kind: Literal["biometrics"] = "biometrics"
    timestamp: datetime
    sequence_id: int | None = None
    heart_rate: float | None = None
    heart_rate_variability: float | None = None
    resting_heart_rate: float | None = None
    heart_rate_min: float | None = None
    heart_rate_max: float | None = None
    steps: float | None = None
    distance: float | None = None
    active_energy: float | None = None
    blood_oxygen: float | None = None
    blood_oxygen_min: float | None = None
    blood_oxygen_max: float | None = None
    body_temperature: float | None = None
    sleep_total: float | None = None
    sleep_deep: float | None = None
    sleep_light: float | None = None
    sleep_rem: float | None = None
    sleep_awake: float | None = None
    current_activity: str | None = None

    @classmethod
    def from_sample(cls, sample: BiometricSample) -> "SamplePayload":
        return cls(
            timestamp=sample.timestamp,
            sequence_id=sample.sequence_id,
            **sample.metrics(),
        )

    def to_sample(self) -> BiometricSample:
        data = self.model_dump(exclude={"kind"})
        return BiometricSample(**data)


class ScorePayload(_PayloadBase):
    """Serialized ScoreRecord destined for the ``health_scores`` table."""

    kind: Literal["health_scores"] = "health_scores"
    timestamp: datetime
    overall_score: float
    cardiovascular_score: float | None = None
    sleep_score: float | None = None
    activity_score: float | None = None
    recovery_score: float | None = None
    stress_score: float | None = None
    confidence_level: float | None = 0.0
    device_id: str | None = None

    @classmethod
    def from_record(cls, record: ScoreRecord) -> "ScorePayload":
        return cls(
            timestamp=record.timestamp,
            overall_score=record.overall_score,
            cardiovascular_score=record.cardiovascular_score,
            sleep_score=record.sleep_score,
            activity_score=record.activity_score,
            recovery_score=record.recovery_score,
            stress_score=record.stress_score,
            confidence_level=record.confidence_level,
            device_id=record.device_id,
        )

    def to_record(self) -> ScoreRecord:
        data = self.model_dump(exclude={"kind"})
        data["confidence_level"] = data["confidence_level"] or 0.0
        return ScoreRecord(**data)


QueuePayload = Annotated[Union[SamplePayload, ScorePayload], Field(discriminator="kind")]

_payload_adapter: TypeAdapter[SamplePayload | ScorePayload] = TypeAdapter(QueuePayload)


def dump_payload(payload: SamplePayload | ScorePayload) -> str:
    """Serialize a queue payload to JSON text."""
    return payload.model_dump_json()


def load_payload(text: str) -> SamplePayload | ScorePayload:
    """Parse and validate queue payload JSON.

    Raises:
        pydantic.ValidationError: If the stored payload is malformed.
    """
    return _payload_adapter.validate_json(text)


@dataclass
class QueueItem:
    """A pending outbound mutation.

    Attributes:
        target_table: Remote table the payload is written to.
        record_id:    Local id of the source row (for tracing).
        action:       Mutation kind; only 'UPSERT' is produced today.
        payload:      Typed payload matching ``target_table``.
        retry_count:  Failed delivery attempts so far.
        created_at:   When the item was enqueued.
        last_attempt: When delivery was last attempted.
        id:           Queue row id, assigned on enqueue.
    """

    target_table: str
    record_id: int
    payload: SamplePayload | ScorePayload
    action: str = "UPSERT"
    retry_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    last_attempt: datetime | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        if self.payload.kind != self.target_table:
            raise ValueError(
                f"Payload kind '{self.payload.kind}' does not match "
                f"target table '{self.target_table}'"
            )
