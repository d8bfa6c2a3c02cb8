"""Health Genie score engine.

Two scoring modes share the category bands in ``scoring_config.yaml``:

* **Instant** scores a single sample and never fails, whatever it carries.
* **Long-term** scores recency-blended metrics against a personal 30-day
  baseline, with a confidence derived from wear-time coverage.  Below the
  confidence floor it returns a neutral result flagged ``insufficient_data``.

Usage::

    engine = ScoreEngine()
    scores = engine.instant_score(sample)
    result = engine.long_term_from_store(store)
    if result.prefer_long_term:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from src.wearables.base import BiometricSample, CategoryScores, ScoreRecord, utc_now
from src.wearables.config_loader import ScoringConfig, get_scoring_config
from src.wearables.scoring import long_term
from src.wearables.scoring.instant import score_sample, weighted_overall
from src.wearables.scoring.stats import (
    Baseline,
    DataQuality,
    HistoryWindows,
    assess_data_quality,
    blended_recent_metrics,
    compute_baseline,
    fill_baseline_defaults,
)

if TYPE_CHECKING:
    from src.wearables.storage.sample_store import SampleStore

logger = logging.getLogger("healthgenie.wearables.scoring")

INSUFFICIENT_DATA_MESSAGE = "Insufficient data. Wear your watch more for accurate scoring."

# Score → label, highest threshold first.
_STATUS_BANDS: tuple[tuple[float, str], ...] = (
    (90, "Excellent"),
    (75, "Good"),
    (60, "Fair"),
    (40, "Needs Attention"),
)

_RECOMMENDATION_THRESHOLD = 75

_RECOMMENDATIONS: dict[str, str] = {
    "cardiovascular": "Add regular cardio such as brisk walking or cycling to support heart health.",
    "sleep": "Aim for 7-9 hours of sleep on a consistent schedule.",
    "activity": "Work towards 10,000 steps a day and break up long periods of sitting.",
    "recovery": "Build in rest days and keep hydrated to help your body recover.",
    "stress": "Try breathing exercises or short meditation breaks to manage stress.",
}


@dataclass
class LongTermScore:
    """Result of a long-term scoring pass.

    Attributes:
        scores:            Category and overall scores (neutral when insufficient).
        confidence:        Blended wear-time coverage, 0.0–1.0.
        quality:           Per-window coverage behind ``confidence``.
        baseline:          Baseline the pass compared against.
        insufficient_data: True when confidence fell below the floor.
        prefer_long_term:  True when confidence reaches the preference threshold.
        message:           Human-readable note for the UI, if any.
        computed_at:       UTC timestamp.
    """

    scores: CategoryScores
    confidence: float
    quality: DataQuality
    baseline: Baseline
    insufficient_data: bool = False
    prefer_long_term: bool = False
    message: str | None = None
    computed_at: datetime = field(default_factory=utc_now)


class ScoreEngine:
    """Computes instant and long-term wellness scores.

    Args:
        config: Scoring configuration.  Defaults to the cached bundled config.
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self._config = config

    @property
    def config(self) -> ScoringConfig:
        return self._config or get_scoring_config()

    # ------------------------------------------------------------------
    # Instant
    # ------------------------------------------------------------------

    def instant_score(self, sample: BiometricSample) -> CategoryScores:
        """Score a single sample.  Absent metrics take their missing penalties."""
        return score_sample(sample, self.config)

    # ------------------------------------------------------------------
    # Long-term
    # ------------------------------------------------------------------

    def long_term_score(
        self, windows: HistoryWindows, baseline: Baseline | None = None
    ) -> LongTermScore:
        """Score the history windows against the personal baseline.

        Args:
            windows:  24h / 7d / 30d sample windows ending at ``windows.now``.
            baseline: Precomputed baseline; derived from ``windows.last_30d``
                      when omitted.

        Returns:
            LongTermScore.  Never raises for sparse or empty history.
        """
        config = self.config
        if baseline is None:
            baseline = compute_baseline(windows.last_30d, config.baseline_defaults)
        else:
            checked = fill_baseline_defaults(baseline, config.baseline_defaults)
            if checked is not baseline:
                logger.warning(
                    "Supplied baseline had non-positive values; defaulted %s", checked.defaulted
                )
            baseline = checked
        quality = assess_data_quality(windows, config.confidence)

        if quality.confidence < config.confidence.floor:
            neutral = config.confidence.neutral_score
            logger.info(
                "Long-term score withheld: confidence %.3f below floor %.2f",
                quality.confidence, config.confidence.floor,
            )
            return LongTermScore(
                scores=CategoryScores(
                    overall=neutral,
                    cardiovascular=neutral,
                    sleep=neutral,
                    activity=neutral,
                    recovery=neutral,
                    stress=neutral,
                ),
                confidence=quality.confidence,
                quality=quality,
                baseline=baseline,
                insufficient_data=True,
                prefer_long_term=False,
                message=INSUFFICIENT_DATA_MESSAGE,
            )

        recent = blended_recent_metrics(windows.last_24h, windows.last_7d, config.recent_blend)
        categories = {
            "cardiovascular": long_term.score_cardiovascular(recent, baseline, windows.last_7d, config),
            "sleep": long_term.score_sleep(windows.last_7d, config),
            "activity": long_term.score_activity(baseline, windows.last_7d, config),
            "recovery": long_term.score_recovery(windows, baseline, config),
            "stress": long_term.score_stress(recent, baseline, windows.last_7d, config),
        }
        overall = weighted_overall(categories, config.long_term_weights)
        logger.debug(
            "Long-term scores: %s overall=%.1f confidence=%.3f",
            categories, overall, quality.confidence,
        )
        return LongTermScore(
            scores=CategoryScores(overall=overall, **categories),
            confidence=quality.confidence,
            quality=quality,
            baseline=baseline,
            prefer_long_term=self.prefer_long_term(quality.confidence),
        )

    def long_term_from_store(
        self, store: "SampleStore", now: datetime | None = None
    ) -> LongTermScore:
        """Load the three windows from the store and score them."""
        now = now or utc_now()
        last_30d = store.query(now - timedelta(days=30), now)
        week_start = now - timedelta(days=7)
        day_start = now - timedelta(hours=24)
        windows = HistoryWindows(
            now=now,
            last_24h=[s for s in last_30d if s.timestamp >= day_start],
            last_7d=[s for s in last_30d if s.timestamp >= week_start],
            last_30d=last_30d,
        )
        return self.long_term_score(windows)

    def prefer_long_term(self, confidence: float) -> bool:
        """True when long-term scores are reliable enough to show instead of instant."""
        return confidence >= self.config.confidence.prefer_long_term

    # ------------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def health_status(score: float) -> str:
        for threshold, label in _STATUS_BANDS:
            if score >= threshold:
                return label
        return "Poor"

    @staticmethod
    def recommendations(scores: CategoryScores) -> list[str]:
        """One tip per category scoring under 75, in category order."""
        return [
            tip
            for category, tip in _RECOMMENDATIONS.items()
            if getattr(scores, category) < _RECOMMENDATION_THRESHOLD
        ]

    @staticmethod
    def to_record(
        scores: CategoryScores,
        confidence: float = 0.0,
        device_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> ScoreRecord:
        return ScoreRecord.from_scores(scores, confidence, device_id, timestamp)
