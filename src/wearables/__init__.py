"""Health Genie wearable core.

This package handles biometric sample ingestion into a capacity-bounded local
store, durable queueing of unsynced data, reconciliation with the remote
backend, and instantaneous and baseline-relative wellness scoring.

Subpackages:
    storage/ - SQLite store, outbound queue, schema migrations
    scoring/ - Baselines, confidence, trends, category scoring
    sync/    - Single-flight sync coordinator, dedup, daily summaries

Core modules:
    base          - Canonical sample, score and queue payload models
    errors        - Exception hierarchy
    config_loader - Load/validate/hot-reload scoring_config.yaml
    service       - HealthGenie service container
"""

from src.wearables.base import (
    BiometricSample,
    CategoryScores,
    QueueItem,
    SamplePayload,
    ScorePayload,
    ScoreRecord,
)
from src.wearables.config_loader import ScoringConfig, get_scoring_config

__all__ = [
    "BiometricSample",
    "CategoryScores",
    "QueueItem",
    "SamplePayload",
    "ScorePayload",
    "ScoreRecord",
    "ScoringConfig",
    "get_scoring_config",
]
