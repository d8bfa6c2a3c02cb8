"""Load, validate, and hot-reload the Health Genie scoring configuration.

The config lives in ``scoring_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_scoring_config()`` to re-read from
disk after thresholds are tuned; no restart required.

Usage::

    from src.wearables.config_loader import get_scoring_config

    config = get_scoring_config()
    penalty = config.band("instant_hrv").penalty(38.0)    # 10
    weights = config.instant_weights                      # {'cardiovascular': 0.25, ...}
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("healthgenie.wearables.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "scoring_config.yaml"

CATEGORIES: tuple[str, ...] = ("cardiovascular", "sleep", "activity", "recovery", "stress")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class Band:
    """One threshold band.  Bounds are inclusive; ``None`` means unbounded."""

    penalty: float
    lower: float | None = None
    upper: float | None = None

    def contains(self, value: float) -> bool:
        if self.lower is not None and value < self.lower:
            return False
        if self.upper is not None and value > self.upper:
            return False
        return True


@dataclass
class BandTable:
    """Ordered bands for one metric; the first matching band wins."""

    name: str
    bands: list[Band]
    default: float = 0.0
    missing: float = 0.0

    def penalty(self, value: float | None) -> float:
        """Return the deduction for a value.

        Args:
            value: Metric value, or None when the metric is absent.

        Returns:
            Points to subtract from the category score.
        """
        if value is None:
            return self.missing
        for band in self.bands:
            if band.contains(value):
                return band.penalty
        return self.default


@dataclass
class TrendRule:
    """Bonus/penalty applied from the slope of a metric over a window."""

    decrease_below: float
    decrease_adjust: float
    increase_above: float
    increase_adjust: float

    def adjustment(self, slope: float) -> float:
        if slope < self.decrease_below:
            return self.decrease_adjust
        if slope > self.increase_above:
            return self.increase_adjust
        return 0.0


@dataclass
class ConfidenceConfig:
    """Data-quality thresholds for long-term scoring."""

    floor: float
    prefer_long_term: float
    samples_per_day: int
    neutral_score: float
    weight_24h: float
    weight_7d: float
    weight_30d: float


@dataclass
class ReadinessWindowConfig:
    """Morning window and activity settings used by readiness scoring."""

    morning_start_hour: int
    morning_end_hour: int
    active_day_steps: float
    min_consistency_nights: int


@dataclass
class ScoringConfig:
    """Complete, validated scoring configuration.

    This is the single in-memory representation of scoring_config.yaml.
    The score engine, baseline computation and confidence model read from
    this object.

    Attributes:
        version:           Config schema version string.
        instant_weights:   Category → weight for instantaneous scoring.
        long_term_weights: Category → weight for long-term scoring.
        confidence:        Confidence floor / preference thresholds.
        baseline_defaults: Population defaults used when history is missing.
        recent_blend:      Window → weight for recent-metric averaging.
        readiness:         Morning window and activity settings.
        trends:            Metric → TrendRule.
        bands:             Band table name → BandTable.
    """

    version: str
    instant_weights: dict[str, float]
    long_term_weights: dict[str, float]
    confidence: ConfidenceConfig
    baseline_defaults: dict[str, float]
    recent_blend: dict[str, float]
    readiness: ReadinessWindowConfig
    trends: dict[str, TrendRule]
    bands: dict[str, BandTable]
    _raw: dict = field(default_factory=dict, repr=False)

    def band(self, name: str) -> BandTable:
        """Return a band table by name.

        Raises:
            KeyError: If the table is not configured.
        """
        try:
            return self.bands[name]
        except KeyError:
            raise KeyError(
                f"No band table '{name}' in scoring config. "
                f"Available: {sorted(self.bands)}"
            ) from None

    def trend(self, metric: str) -> TrendRule:
        return self.trends[metric]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when scoring_config.yaml fails validation."""


# Band tables the score engine reads; a config missing any of them is invalid.
REQUIRED_BANDS: tuple[str, ...] = (
    "instant_heart_rate",
    "instant_hrv",
    "instant_blood_oxygen",
    "instant_sleep_duration",
    "instant_deep_sleep_pct",
    "instant_rem_sleep_pct",
    "instant_awake_pct",
    "instant_steps",
    "instant_distance",
    "instant_active_energy",
    "instant_resting_hr",
    "instant_recovery_hrv",
    "instant_body_temperature",
    "instant_stress_hrv",
    "instant_hr_elevation",
    "instant_stress_sleep",
    "long_term_rhr_deviation_pct",
    "long_term_hrv_ratio",
    "long_term_blood_oxygen",
    "long_term_sleep_hours",
    "long_term_sleep_std_hours",
    "long_term_step_ratio",
    "long_term_active_day_rate",
    "long_term_stress_hrv_ratio",
    "long_term_rhr_elevation",
    "long_term_morning_hrv_ratio",
    "long_term_morning_rhr_diff",
    "long_term_last_night_sleep_hours",
)

_DEFAULT_BASELINES: dict[str, float] = {
    "resting_hr": 65.0,
    "hrv": 40.0,
    "daily_steps": 7500.0,
    "sleep_hours": 7.5,
}


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml

    if not path.exists():
        raise FileNotFoundError(f"Scoring config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _to_float(value: Any, where: str, errors: list[str]) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        errors.append(f"{where} must be a number, got {value!r}")
        return None


def _build_weights(raw: dict, section: str, errors: list[str]) -> dict[str, float]:
    weights: dict[str, float] = {}
    for category in CATEGORIES:
        if category not in raw:
            errors.append(f"Missing weight '{category}' in section 'weights.{section}'")
            continue
        w = _to_float(raw[category], f"weights.{section}.{category}", errors)
        if w is None:
            continue
        if not (0.0 <= w <= 1.0):
            errors.append(f"weights.{section}.{category} = {w} is out of range [0.0, 1.0]")
        weights[category] = w
    unknown = set(raw) - set(CATEGORIES)
    if unknown:
        errors.append(f"Unknown categories in weights.{section}: {sorted(unknown)}")
    if len(weights) == len(CATEGORIES) and abs(sum(weights.values()) - 1.0) > 1e-6:
        errors.append(
            f"weights.{section} must sum to 1.0, got {sum(weights.values()):.3f}"
        )
    return weights


def _build_band_table(name: str, raw: Any, errors: list[str]) -> BandTable | None:
    if not isinstance(raw, dict):
        errors.append(f"bands.{name} must be a mapping")
        return None
    bands: list[Band] = []
    for i, entry in enumerate(raw.get("bands") or []):
        where = f"bands.{name}[{i}]"
        if not isinstance(entry, dict) or "penalty" not in entry:
            errors.append(f"{where} must be a mapping with a 'penalty'")
            continue
        penalty = _to_float(entry["penalty"], f"{where}.penalty", errors)
        lower = _to_float(entry.get("min"), f"{where}.min", errors)
        upper = _to_float(entry.get("max"), f"{where}.max", errors)
        if lower is not None and upper is not None and lower > upper:
            errors.append(f"{where}: min {lower} is greater than max {upper}")
        if penalty is not None and penalty < 0:
            errors.append(f"{where}.penalty must be non-negative")
        bands.append(Band(penalty=penalty or 0.0, lower=lower, upper=upper))
    if not bands:
        errors.append(f"bands.{name} has no bands")
    return BandTable(
        name=name,
        bands=bands,
        default=_to_float(raw.get("default", 0), f"bands.{name}.default", errors) or 0.0,
        missing=_to_float(raw.get("missing", 0), f"bands.{name}.missing", errors) or 0.0,
    )


def _validate_and_build(raw: dict) -> ScoringConfig:
    """Validate the raw YAML dict and construct a ScoringConfig.

    Performs structural validation and applies defaults for optional fields.

    Args:
        raw: Parsed YAML dict.

    Returns:
        Validated ScoringConfig instance.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Category weights ──
    weights_raw = raw.get("weights") or {}
    instant_weights = _build_weights(weights_raw.get("instant") or {}, "instant", errors)
    long_term_weights = _build_weights(weights_raw.get("long_term") or {}, "long_term", errors)

    # ── Confidence ──
    conf_raw = raw.get("confidence") or {}
    ww_raw = conf_raw.get("window_weights") or {}
    confidence = ConfidenceConfig(
        floor=float(conf_raw.get("floor", 0.3)),
        prefer_long_term=float(conf_raw.get("prefer_long_term", 0.5)),
        samples_per_day=int(conf_raw.get("samples_per_day", 5760)),
        neutral_score=float(conf_raw.get("neutral_score", 50)),
        weight_24h=float(ww_raw.get("last_24h", 0.3)),
        weight_7d=float(ww_raw.get("last_7d", 0.4)),
        weight_30d=float(ww_raw.get("last_30d", 0.3)),
    )
    if not (0.0 <= confidence.floor <= confidence.prefer_long_term <= 1.0):
        errors.append(
            "confidence thresholds must satisfy 0 <= floor <= prefer_long_term <= 1"
        )
    if confidence.samples_per_day <= 0:
        errors.append("confidence.samples_per_day must be positive")
    window_total = confidence.weight_24h + confidence.weight_7d + confidence.weight_30d
    if abs(window_total - 1.0) > 1e-6:
        errors.append(f"confidence.window_weights must sum to 1.0, got {window_total:.3f}")

    # ── Baseline defaults ──
    bd_raw = raw.get("baseline_defaults") or {}
    baseline_defaults = {
        key: float(bd_raw.get(key, default)) for key, default in _DEFAULT_BASELINES.items()
    }
    for key, val in baseline_defaults.items():
        if val <= 0:
            errors.append(f"baseline_defaults.{key} must be positive, got {val}")

    # ── Recent-metric blend ──
    rb_raw = raw.get("recent_blend") or {}
    recent_blend = {
        "last_24h": float(rb_raw.get("last_24h", 0.7)),
        "last_7d": float(rb_raw.get("last_7d", 0.3)),
    }

    # ── Readiness window ──
    rd_raw = raw.get("readiness") or {}
    readiness = ReadinessWindowConfig(
        morning_start_hour=int(rd_raw.get("morning_start_hour", 6)),
        morning_end_hour=int(rd_raw.get("morning_end_hour", 10)),
        active_day_steps=float(rd_raw.get("active_day_steps", 5000)),
        min_consistency_nights=int(rd_raw.get("min_consistency_nights", 3)),
    )
    if not (0 <= readiness.morning_start_hour < readiness.morning_end_hour <= 24):
        errors.append("readiness morning window must satisfy 0 <= start < end <= 24")

    # ── Trend rules ──
    trends: dict[str, TrendRule] = {}
    for metric in ("resting_hr", "hrv"):
        tr_raw = (raw.get("trends") or {}).get(metric)
        if not isinstance(tr_raw, dict):
            errors.append(f"Missing trend rule 'trends.{metric}'")
            continue
        trends[metric] = TrendRule(
            decrease_below=float(tr_raw.get("decrease_below", 0.0)),
            decrease_adjust=float(tr_raw.get("decrease_adjust", 0.0)),
            increase_above=float(tr_raw.get("increase_above", 0.0)),
            increase_adjust=float(tr_raw.get("increase_adjust", 0.0)),
        )

    # ── Bands ──
    bands_raw = raw.get("bands") or {}
    bands: dict[str, BandTable] = {}
    for name, table_raw in bands_raw.items():
        table = _build_band_table(name, table_raw, errors)
        if table is not None:
            bands[name] = table
    missing_bands = [name for name in REQUIRED_BANDS if name not in bands]
    if missing_bands:
        errors.append(f"Missing band tables: {', '.join(missing_bands)}")

    if errors:
        raise ConfigValidationError(
            f"scoring_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ScoringConfig(
        version=version,
        instant_weights=instant_weights,
        long_term_weights=long_term_weights,
        confidence=confidence,
        baseline_defaults=baseline_defaults,
        recent_blend=recent_blend,
        readiness=readiness,
        trends=trends,
        bands=bands,
        _raw=raw,
    )


def load_scoring_config(path: Path | None = None) -> ScoringConfig:
    """Load and validate the scoring config from disk.

    Args:
        path: Override path to YAML. Uses the bundled scoring_config.yaml by default.

    Returns:
        Validated ScoringConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded scoring config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Cached instance with hot-reload support
# ---------------------------------------------------------------------------

_config: ScoringConfig | None = None
_config_lock = threading.Lock()


def get_scoring_config() -> ScoringConfig:
    """Return the cached ScoringConfig, loading it on first call.

    Thread-safe.  Use ``reload_scoring_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_scoring_config()
    return _config


def reload_scoring_config(path: Path | None = None) -> ScoringConfig:
    """Reload the scoring config from disk and replace the cached instance.

    If validation fails, the old config is retained and the error is re-raised.

    Args:
        path: Override path to YAML. Defaults to bundled scoring_config.yaml.

    Returns:
        The newly loaded ScoringConfig.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_scoring_config(path)
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded scoring config: %s → %s", old_version, new_config.version)
    return new_config
