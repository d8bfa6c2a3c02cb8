"""Statistical primitives for long-term scoring.

Personal baselines, wear-time coverage and confidence, recency-blended metric
averages, per-day aggregation of cumulative counters, and an ordinary
least-squares trend slope.  Everything here is a pure function of the sample
windows passed in.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from typing import Iterable, Sequence

from src.wearables.base import BiometricSample
from src.wearables.config_loader import ConfidenceConfig

# Metrics whose averages only use samples taken at rest.
RESTING_METRICS: frozenset[str] = frozenset({"resting_heart_rate", "heart_rate_variability"})

# Metrics blended from the 24h and 7d windows for long-term scoring.
BLENDED_METRICS: tuple[str, ...] = (
    "heart_rate",
    "resting_heart_rate",
    "heart_rate_variability",
    "blood_oxygen",
    "steps",
    "active_energy",
    "distance",
)


@dataclass
class Baseline:
    """Personal reference values derived from the 30-day window.

    Attributes:
        resting_hr:  Mean resting heart rate (bpm).
        hrv:         Mean HRV (ms).
        daily_steps: Mean of per-day step totals.
        sleep_hours: Mean of per-night sleep totals (hours).
        defaulted:   Metrics that fell back to population defaults.
    """

    resting_hr: float
    hrv: float
    daily_steps: float
    sleep_hours: float
    defaulted: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class HistoryWindows:
    """The three sample windows long-term scoring reads.

    Each list may be in any order; helpers sort where order matters.

    Attributes:
        now:       Reference time the windows end at.
        last_24h:  Samples from the last 24 hours.
        last_7d:   Samples from the last 7 days.
        last_30d:  Samples from the last 30 days.
    """

    now: datetime
    last_24h: list[BiometricSample] = field(default_factory=list)
    last_7d: list[BiometricSample] = field(default_factory=list)
    last_30d: list[BiometricSample] = field(default_factory=list)


@dataclass
class DataQuality:
    """Wear-time coverage per window and the blended confidence."""

    confidence: float
    coverage_24h: float
    coverage_7d: float
    coverage_30d: float
    wear_hours: int


def mean(values: Sequence[float]) -> float | None:
    return sum(values) / len(values) if values else None


def std_dev(values: Sequence[float]) -> float:
    """Population standard deviation; 0.0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    m = sum(values) / len(values)
    return math.sqrt(sum((v - m) ** 2 for v in values) / len(values))


def metric_values(
    samples: Iterable[BiometricSample], metric: str, resting_only: bool = False
) -> list[float]:
    """Collect non-null values of a metric, optionally only from samples at rest."""
    values: list[float] = []
    for sample in samples:
        value = getattr(sample, metric)
        if value is None:
            continue
        if resting_only and not sample.at_rest:
            continue
        values.append(float(value))
    return values


def average(samples: Sequence[BiometricSample], metric: str) -> float | None:
    """Mean of a metric over a window.  Resting metrics skip active samples."""
    return mean(metric_values(samples, metric, resting_only=metric in RESTING_METRICS))


def chronological(samples: Iterable[BiometricSample]) -> list[BiometricSample]:
    """Sort samples oldest first (timestamp, then sequence id)."""
    return sorted(samples, key=lambda s: (s.timestamp, s.sequence_id or 0))


def linear_trend(values: Sequence[float]) -> float:
    """Slope of the least-squares line through ``(index, value)`` pairs.

    Returns 0.0 for fewer than two points.
    """
    n = len(values)
    if n < 2:
        return 0.0
    sum_x = sum_y = sum_xy = sum_x2 = 0.0
    for i, y in enumerate(values):
        sum_x += i
        sum_y += y
        sum_xy += i * y
        sum_x2 += i * i
    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def metric_trend(samples: Sequence[BiometricSample], metric: str) -> float:
    """Trend of a metric over a window, in chronological order."""
    return linear_trend(metric_values(chronological(samples), metric))


def daily_totals(samples: Iterable[BiometricSample], metric: str) -> dict[date, float]:
    """Latest positive reading of a metric per calendar day.

    Steps, distance and energy are cumulative day counters, and sleep totals
    repeat on every sample after waking, so the day's last reading is its
    total.  Days without a positive reading are omitted.
    """
    by_day: dict[date, float] = {}
    for sample in chronological(samples):
        value = getattr(sample, metric)
        if value is None or value <= 0:
            continue
        by_day[sample.timestamp.date()] = float(value)
    return by_day


def compute_baseline(
    samples_30d: Sequence[BiometricSample], defaults: dict[str, float]
) -> Baseline:
    """Compute the personal baseline from the 30-day window.

    Each metric falls back to its population default when the window has no
    observation for it, which avoids dividing by zero and over-reacting on
    the first day.

    Args:
        samples_30d: Samples from the last 30 days.
        defaults:    Population defaults keyed like the Baseline fields.

    Returns:
        Baseline with ``defaulted`` listing the metrics that used defaults.
    """
    defaulted: list[str] = []

    def pick(name: str, value: float | None) -> float:
        if value is None or value <= 0:
            defaulted.append(name)
            return defaults[name]
        return value

    steps_by_day = daily_totals(samples_30d, "steps")
    sleep_minutes = mean(list(daily_totals(samples_30d, "sleep_total").values()))

    return Baseline(
        resting_hr=pick("resting_hr", mean(metric_values(samples_30d, "resting_heart_rate"))),
        hrv=pick("hrv", mean(metric_values(samples_30d, "heart_rate_variability"))),
        daily_steps=pick("daily_steps", mean(list(steps_by_day.values()))),
        sleep_hours=pick(
            "sleep_hours", sleep_minutes / 60.0 if sleep_minutes is not None else None
        ),
        defaulted=defaulted,
    )


def fill_baseline_defaults(baseline: Baseline, defaults: dict[str, float]) -> Baseline:
    """Replace non-positive values of a supplied baseline with population defaults.

    Scorers divide by the resting HR, HRV and step baselines, so none may be
    zero or negative.
    """
    defaulted = list(baseline.defaulted)
    values: dict[str, float] = {}
    for name in ("resting_hr", "hrv", "daily_steps", "sleep_hours"):
        value = getattr(baseline, name)
        if value is None or value <= 0:
            values[name] = defaults[name]
            if name not in defaulted:
                defaulted.append(name)
    if not values:
        return baseline
    return replace(baseline, defaulted=defaulted, **values)


def coverage(observed: int, expected: float) -> float:
    """Fraction of expected samples actually observed, clamped to [0, 1]."""
    if expected <= 0:
        return 0.0
    return max(0.0, min(1.0, observed / expected))


def assess_data_quality(windows: HistoryWindows, cfg: ConfidenceConfig) -> DataQuality:
    """Blend wear-time coverage across the three windows into a confidence.

    ``confidence = w24 × cov(24h) + w7 × cov(7d) + w30 × cov(30d)``, each
    coverage being observed / expected-if-worn-continuously, clamped to 1.0.
    """
    per_day = cfg.samples_per_day
    cov_24h = coverage(len(windows.last_24h), per_day)
    cov_7d = coverage(len(windows.last_7d), per_day * 7)
    cov_30d = coverage(len(windows.last_30d), per_day * 30)
    confidence = (
        cov_24h * cfg.weight_24h + cov_7d * cfg.weight_7d + cov_30d * cfg.weight_30d
    )
    return DataQuality(
        confidence=round(min(1.0, confidence), 6),
        coverage_24h=cov_24h,
        coverage_7d=cov_7d,
        coverage_30d=cov_30d,
        wear_hours=round(len(windows.last_24h) / (per_day / 24)),
    )


def blended_recent_metrics(
    last_24h: Sequence[BiometricSample],
    last_7d: Sequence[BiometricSample],
    blend: dict[str, float],
) -> dict[str, float | None]:
    """Recency-weighted averages: ``w24 × avg(24h) + w7 × avg(7d)``.

    If only one window has a metric, that window's average is used alone;
    if neither has it the metric maps to None.
    """
    w24 = blend.get("last_24h", 0.7)
    w7 = blend.get("last_7d", 0.3)
    out: dict[str, float | None] = {}
    for metric in BLENDED_METRICS:
        recent = average(last_24h, metric)
        week = average(last_7d, metric)
        if recent is not None and week is not None:
            out[metric] = recent * w24 + week * w7
        else:
            out[metric] = recent if recent is not None else week
    return out
