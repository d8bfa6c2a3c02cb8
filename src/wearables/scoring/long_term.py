"""Long-term category scoring against the personal baseline.

Each scorer compares recency-blended metrics (see ``stats.blended_recent_metrics``)
to the 30-day baseline, adding trend adjustments where a weekly slope is
meaningful.  A metric missing from the recent windows is replaced by its
baseline value, which scores as "no deviation".
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from src.wearables.base import BiometricSample
from src.wearables.config_loader import ScoringConfig
from src.wearables.scoring.instant import clamp_score
from src.wearables.scoring.stats import (
    Baseline,
    HistoryWindows,
    chronological,
    daily_totals,
    mean,
    metric_trend,
    std_dev,
)

logger = logging.getLogger("healthgenie.wearables.scoring.long_term")

_PERFECT = 100.0


def score_cardiovascular(
    recent: dict[str, float | None],
    baseline: Baseline,
    last_7d: list[BiometricSample],
    config: ScoringConfig,
) -> float:
    rhr = recent.get("resting_heart_rate") or baseline.resting_hr
    hrv = recent.get("heart_rate_variability") or baseline.hrv

    score = _PERFECT
    deviation_pct = abs(rhr - baseline.resting_hr) / baseline.resting_hr * 100
    score -= config.band("long_term_rhr_deviation_pct").penalty(deviation_pct)
    score -= config.band("long_term_hrv_ratio").penalty(hrv / baseline.hrv)
    score -= config.band("long_term_blood_oxygen").penalty(recent.get("blood_oxygen"))
    score += config.trend("resting_hr").adjustment(metric_trend(last_7d, "resting_heart_rate"))
    return clamp_score(score)


def score_sleep(last_7d: list[BiometricSample], config: ScoringConfig) -> float:
    """Score average nightly sleep over the week and its night-to-night spread."""
    nightly_hours = [minutes / 60 for minutes in daily_totals(last_7d, "sleep_total").values()]
    if not nightly_hours:
        return config.confidence.neutral_score

    score = _PERFECT
    score -= config.band("long_term_sleep_hours").penalty(mean(nightly_hours))
    if len(nightly_hours) >= config.readiness.min_consistency_nights:
        score -= config.band("long_term_sleep_std_hours").penalty(std_dev(nightly_hours))
    return clamp_score(score)


def score_activity(
    baseline: Baseline, last_7d: list[BiometricSample], config: ScoringConfig
) -> float:
    """Score daily step totals against the baseline and the share of active days."""
    daily_steps = list(daily_totals(last_7d, "steps").values())
    if not daily_steps:
        return config.confidence.neutral_score

    score = _PERFECT
    score -= config.band("long_term_step_ratio").penalty(mean(daily_steps) / baseline.daily_steps)
    active_days = sum(1 for steps in daily_steps if steps >= config.readiness.active_day_steps)
    score -= config.band("long_term_active_day_rate").penalty(active_days / 7)
    return clamp_score(score)


def score_stress(
    recent: dict[str, float | None],
    baseline: Baseline,
    last_7d: list[BiometricSample],
    config: ScoringConfig,
) -> float:
    hrv = recent.get("heart_rate_variability") or baseline.hrv
    rhr = recent.get("resting_heart_rate") or baseline.resting_hr

    score = _PERFECT
    score -= config.band("long_term_stress_hrv_ratio").penalty(hrv / baseline.hrv)
    score -= config.band("long_term_rhr_elevation").penalty(rhr - baseline.resting_hr)
    score += config.trend("hrv").adjustment(metric_trend(last_7d, "heart_rate_variability"))
    return clamp_score(score)


def _morning_sample(
    samples: list[BiometricSample], now: datetime, config: ScoringConfig
) -> BiometricSample | None:
    """Most recent sample from this morning's window, if any."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start = midnight + timedelta(hours=config.readiness.morning_start_hour)
    end = midnight + timedelta(hours=config.readiness.morning_end_hour)
    in_window = [s for s in samples if start <= s.timestamp < end]
    return chronological(in_window)[-1] if in_window else None


def score_recovery(
    windows: HistoryWindows, baseline: Baseline, config: ScoringConfig
) -> float:
    """Readiness: this morning's HRV and resting HR against baseline, plus last night's sleep."""
    if not windows.last_24h:
        return config.confidence.neutral_score

    score = _PERFECT
    morning = _morning_sample(windows.last_24h, windows.now, config)
    if morning is not None:
        hrv_ratio = (
            morning.heart_rate_variability / baseline.hrv
            if morning.heart_rate_variability is not None
            else None
        )
        rhr_diff = (
            morning.resting_heart_rate - baseline.resting_hr
            if morning.resting_heart_rate is not None
            else None
        )
        score -= config.band("long_term_morning_hrv_ratio").penalty(hrv_ratio)
        score -= config.band("long_term_morning_rhr_diff").penalty(rhr_diff)

    last_night = max((s.sleep_total or 0.0 for s in windows.last_24h), default=0.0)
    score -= config.band("long_term_last_night_sleep_hours").penalty(last_night / 60)
    return clamp_score(score)
