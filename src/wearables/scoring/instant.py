"""Instantaneous category scoring from a single sample.

Every category starts at 100 and subtracts band penalties from
``scoring_config.yaml``.  Absent metrics take the table's ``missing`` penalty
instead of failing, so an entirely empty sample still produces scores.
"""

from __future__ import annotations

import logging

from src.wearables.base import BiometricSample, CategoryScores
from src.wearables.config_loader import ScoringConfig

logger = logging.getLogger("healthgenie.wearables.scoring.instant")

_PERFECT = 100.0


def clamp_score(value: float) -> float:
    return max(0.0, min(100.0, value))


def weighted_overall(scores: dict[str, float], weights: dict[str, float]) -> float:
    """Weighted sum of category scores, clamped to [0, 100]."""
    return clamp_score(sum(scores[category] * weight for category, weight in weights.items()))


def _score_cardiovascular(sample: BiometricSample, config: ScoringConfig) -> float:
    score = _PERFECT
    score -= config.band("instant_heart_rate").penalty(sample.heart_rate)
    score -= config.band("instant_hrv").penalty(sample.heart_rate_variability)
    score -= config.band("instant_blood_oxygen").penalty(sample.blood_oxygen)
    return clamp_score(score)


def _score_sleep(sample: BiometricSample, config: ScoringConfig) -> float:
    """Score the last night's sleep carried on the sample.

    Without any recorded sleep the category is neutral.
    """
    if not sample.has_sleep:
        return config.confidence.neutral_score

    total = sample.sleep_total or 0.0
    deep = sample.sleep_deep or 0.0
    rem = sample.sleep_rem or 0.0
    awake = sample.sleep_awake or 0.0

    score = _PERFECT
    score -= config.band("instant_sleep_duration").penalty(total)
    score -= config.band("instant_deep_sleep_pct").penalty(deep / total * 100)
    score -= config.band("instant_rem_sleep_pct").penalty(rem / total * 100)
    score -= config.band("instant_awake_pct").penalty(awake / (total + awake) * 100)
    return clamp_score(score)


def _score_activity(sample: BiometricSample, config: ScoringConfig) -> float:
    score = _PERFECT
    score -= config.band("instant_steps").penalty(sample.steps)
    score -= config.band("instant_distance").penalty(sample.distance)
    score -= config.band("instant_active_energy").penalty(sample.active_energy)
    return clamp_score(score)


def _score_recovery(sample: BiometricSample, config: ScoringConfig) -> float:
    score = _PERFECT
    score -= config.band("instant_resting_hr").penalty(sample.resting_heart_rate)
    score -= config.band("instant_recovery_hrv").penalty(sample.heart_rate_variability)
    score -= config.band("instant_body_temperature").penalty(sample.body_temperature)
    return clamp_score(score)


def _score_stress(sample: BiometricSample, config: ScoringConfig) -> float:
    score = _PERFECT
    score -= config.band("instant_stress_hrv").penalty(sample.heart_rate_variability)

    # Elevation of the current rate over the resting rate.
    elevation = None
    if sample.resting_heart_rate is not None:
        current = sample.heart_rate if sample.heart_rate is not None else sample.resting_heart_rate
        elevation = current - sample.resting_heart_rate
    score -= config.band("instant_hr_elevation").penalty(elevation)

    sleep_total = sample.sleep_total if sample.has_sleep else None
    score -= config.band("instant_stress_sleep").penalty(sleep_total)
    return clamp_score(score)


def score_sample(sample: BiometricSample, config: ScoringConfig) -> CategoryScores:
    """Compute all five category scores and the weighted overall for one sample.

    Args:
        sample: The sample to score.  Any field may be absent.
        config: Scoring configuration supplying bands and weights.

    Returns:
        CategoryScores with every value in [0, 100].
    """
    categories = {
        "cardiovascular": _score_cardiovascular(sample, config),
        "sleep": _score_sleep(sample, config),
        "activity": _score_activity(sample, config),
        "recovery": _score_recovery(sample, config),
        "stress": _score_stress(sample, config),
    }
    overall = weighted_overall(categories, config.instant_weights)
    logger.debug("Instant scores for sample %s: %s overall=%.1f", sample.sequence_id, categories, overall)
    return CategoryScores(overall=overall, **categories)
