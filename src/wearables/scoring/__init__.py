"""Wellness scoring.

Modules:
    stats      - baselines, coverage/confidence, blended averages, OLS trend
    instant    - category scores from a single sample
    long_term  - category scores against the personal baseline
    engine     - ScoreEngine facade and LongTermScore result
"""

from src.wearables.scoring.engine import LongTermScore, ScoreEngine
from src.wearables.scoring.stats import Baseline, HistoryWindows

__all__ = ["Baseline", "HistoryWindows", "LongTermScore", "ScoreEngine"]
