"""Mapping between local records and remote table rows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from src.wearables.base import (
    BiometricSample,
    SamplePayload,
    ScorePayload,
    ScoreRecord,
    to_naive_utc,
)


def _aware(value: datetime) -> datetime:
    """Attach UTC to a naive stored timestamp for timestamptz columns."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def sample_row(user_id: str, sample: BiometricSample | SamplePayload) -> dict[str, Any]:
    if isinstance(sample, SamplePayload):
        sample = sample.to_sample()
    return {"user_id": user_id, "timestamp": _aware(sample.timestamp), **sample.metrics()}


def score_row(
    user_id: str, record: ScoreRecord | ScorePayload, device_id: str | None = None
) -> dict[str, Any]:
    """Remote ``health_scores`` row; ``device_id`` fills in when the score has none."""
    payload = record if isinstance(record, ScorePayload) else ScorePayload.from_record(record)
    row = payload.model_dump(exclude={"kind"})
    row["user_id"] = user_id
    row["device_id"] = payload.device_id or device_id
    row["timestamp"] = _aware(payload.timestamp)
    return row


def score_from_row(row: dict[str, Any]) -> ScoreRecord:
    """Build a local ScoreRecord from a downloaded ``health_scores`` row.

    Raises:
        pydantic.ValidationError: If the row is missing required columns.
    """
    record = ScorePayload.model_validate(row).to_record()
    record.timestamp = to_naive_utc(record.timestamp)
    return record
