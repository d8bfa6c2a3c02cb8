"""Per-day aggregates uploaded to the remote ``biometric_summaries`` table."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Sequence

from src.wearables.base import BiometricSample
from src.wearables.scoring.stats import chronological, mean, metric_values

logger = logging.getLogger("healthgenie.wearables.sync.summaries")

# Declared INTEGER remotely; Postgres refuses a float for them.
_INTEGER_COLUMNS = (
    "total_steps",
    "total_sleep_minutes",
    "deep_sleep_minutes",
    "rem_sleep_minutes",
    "light_sleep_minutes",
    "awake_minutes",
)


@dataclass
class DailySummary:
    """Aggregate of one calendar day of samples.

    Cumulative counters (steps, distance, energy) take the day's latest
    reading; sleep fields come from the latest reading carrying sleep data.

    Attributes:
        date:                 Calendar day (UTC).
        avg_heart_rate:       Mean heart rate (bpm).
        min_heart_rate:       Lowest heart rate or session minimum.
        max_heart_rate:       Highest heart rate or session maximum.
        avg_hrv:              Mean HRV (ms).
        avg_blood_oxygen:     Mean SpO2 (%).
        total_steps:          Step total for the day.
        total_distance:       Distance total for the day (m).
        active_energy_burned: Active energy total for the day (kcal).
        total_sleep_minutes:  Sleep period total.
        deep_sleep_minutes:   Deep sleep.
        rem_sleep_minutes:    REM sleep.
        light_sleep_minutes:  Light sleep.
        awake_minutes:        Awake during the sleep period.
        sample_count:         Samples the summary was built from.
    """

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
    sample_count: int = 0

    @classmethod
    def from_samples(cls, day: date, samples: Iterable[BiometricSample]) -> "DailySummary":
        """Aggregate the samples whose timestamp falls on ``day``."""
        todays = [s for s in chronological(samples) if s.timestamp.date() == day]
        heart_rates = metric_values(todays, "heart_rate")
        lows = heart_rates + metric_values(todays, "heart_rate_min")
        highs = heart_rates + metric_values(todays, "heart_rate_max")

        def latest(metric: str) -> float | None:
            values = metric_values(todays, metric)
            return values[-1] if values else None

        sleep = next((s for s in reversed(todays) if s.has_sleep), None)

        return cls(
            date=day,
            avg_heart_rate=mean(heart_rates),
            min_heart_rate=min(lows) if lows else None,
            max_heart_rate=max(highs) if highs else None,
            avg_hrv=mean(metric_values(todays, "heart_rate_variability")),
            avg_blood_oxygen=mean(metric_values(todays, "blood_oxygen")),
            total_steps=latest("steps"),
            total_distance=latest("distance"),
            active_energy_burned=latest("active_energy"),
            total_sleep_minutes=sleep.sleep_total if sleep else None,
            deep_sleep_minutes=sleep.sleep_deep if sleep else None,
            rem_sleep_minutes=sleep.sleep_rem if sleep else None,
            light_sleep_minutes=sleep.sleep_light if sleep else None,
            awake_minutes=sleep.sleep_awake if sleep else None,
            sample_count=len(todays),
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DailySummary":
        """Build a summary from a downloaded row; unknown columns are ignored."""
        raw_date = row["date"]
        day = raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date)[:10])
        known = {k: v for k, v in row.items() if k in cls.__dataclass_fields__ and k != "date"}
        return cls(date=day, **known)

    def to_row(self, user_id: str) -> dict[str, Any]:
        """Remote row for ``user_id``; step and sleep counts are rounded to ints."""
        row = asdict(self)
        row.pop("sample_count")
        for column in _INTEGER_COLUMNS:
            if row[column] is not None:
                row[column] = int(round(row[column]))
        row["user_id"] = user_id
        return row


def touched_days(samples: Sequence[BiometricSample]) -> list[date]:
    """Distinct calendar days covered by the samples, oldest first."""
    return sorted({s.timestamp.date() for s in samples})


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Inclusive start and end datetimes of a calendar day."""
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1) - timedelta(microseconds=1)
