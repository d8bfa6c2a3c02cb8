"""Tests for scoring_config.yaml loading and validation."""

from __future__ import annotations

import copy
import textwrap
from pathlib import Path

import pytest
import yaml

from src.wearables.config_loader import (
    CATEGORIES,
    REQUIRED_BANDS,
    Band,
    BandTable,
    ConfigValidationError,
    ScoringConfig,
    TrendRule,
    _validate_and_build,
    get_scoring_config,
    load_scoring_config,
    reload_scoring_config,
)


class TestConfigLoading:
    """Tests for loading scoring_config.yaml."""

    def test_load_default_config(self, scoring_config: ScoringConfig) -> None:
        """The bundled scoring_config.yaml loads without errors."""
        assert scoring_config.version == "1.0"
        assert set(scoring_config.instant_weights) == set(CATEGORIES)
        assert set(scoring_config.long_term_weights) == set(CATEGORIES)

    def test_weights_sum_to_one(self, scoring_config: ScoringConfig) -> None:
        assert sum(scoring_config.instant_weights.values()) == pytest.approx(1.0)
        assert sum(scoring_config.long_term_weights.values()) == pytest.approx(1.0)

    def test_instant_and_long_term_weights_differ(self, scoring_config: ScoringConfig) -> None:
        """Long-term weighting shifts weight from recovery to stress."""
        assert scoring_config.instant_weights["recovery"] == pytest.approx(0.20)
        assert scoring_config.long_term_weights["recovery"] == pytest.approx(0.15)
        assert scoring_config.long_term_weights["stress"] == pytest.approx(0.20)

    def test_confidence_defaults(self, scoring_config: ScoringConfig) -> None:
        conf = scoring_config.confidence
        assert conf.floor == pytest.approx(0.3)
        assert conf.prefer_long_term == pytest.approx(0.5)
        assert conf.samples_per_day == 5760
        assert conf.weight_24h + conf.weight_7d + conf.weight_30d == pytest.approx(1.0)

    def test_baseline_defaults(self, scoring_config: ScoringConfig) -> None:
        assert scoring_config.baseline_defaults == {
            "resting_hr": 65.0,
            "hrv": 40.0,
            "daily_steps": 7500.0,
            "sleep_hours": 7.5,
        }

    def test_every_required_band_present(self, scoring_config: ScoringConfig) -> None:
        for name in REQUIRED_BANDS:
            assert scoring_config.band(name).bands, f"{name} has no bands"

    def test_unknown_band_raises_with_available_list(self, scoring_config: ScoringConfig) -> None:
        with pytest.raises(KeyError, match="Available"):
            scoring_config.band("nonexistent")

    def test_cached_config_is_reused(self) -> None:
        assert get_scoring_config() is get_scoring_config()


class TestBandTables:
    """Penalty lookup semantics."""

    def test_first_matching_band_wins(self) -> None:
        table = BandTable(
            name="t",
            bands=[Band(penalty=0, lower=50), Band(penalty=5, lower=40)],
            default=30,
            missing=10,
        )
        assert table.penalty(60) == 0
        assert table.penalty(45) == 5
        assert table.penalty(10) == 30
        assert table.penalty(None) == 10

    def test_bounds_are_inclusive(self) -> None:
        band = Band(penalty=0, lower=60, upper=80)
        assert band.contains(60)
        assert band.contains(80)
        assert not band.contains(80.01)

    def test_instant_heart_rate_bands(self, scoring_config: ScoringConfig) -> None:
        hr = scoring_config.band("instant_heart_rate")
        assert hr.penalty(70) == 0
        assert hr.penalty(55) == 5
        assert hr.penalty(85) == 10
        assert hr.penalty(95) == 20
        assert hr.penalty(120) == 30
        assert hr.penalty(45) == 15
        assert hr.penalty(None) == 10

    def test_instant_hrv_bands(self, scoring_config: ScoringConfig) -> None:
        hrv = scoring_config.band("instant_hrv")
        assert hrv.penalty(38.0) == 10
        assert hrv.penalty(15.0) == 30

    def test_trend_rule(self) -> None:
        rule = TrendRule(decrease_below=-0.5, decrease_adjust=5, increase_above=1.0, increase_adjust=-10)
        assert rule.adjustment(-1.0) == 5
        assert rule.adjustment(0.0) == 0
        assert rule.adjustment(2.0) == -10


class TestConfigValidation:
    """Structural validation of raw config dicts."""

    @pytest.fixture
    def raw(self, scoring_config: ScoringConfig) -> dict:
        return copy.deepcopy(scoring_config._raw)

    def test_valid_raw_builds(self, raw: dict) -> None:
        assert isinstance(_validate_and_build(raw), ScoringConfig)

    def test_weights_not_summing_to_one_rejected(self, raw: dict) -> None:
        raw["weights"]["instant"]["stress"] = 0.5
        with pytest.raises(ConfigValidationError, match="must sum to 1.0"):
            _validate_and_build(raw)

    def test_missing_weight_rejected(self, raw: dict) -> None:
        del raw["weights"]["long_term"]["sleep"]
        with pytest.raises(ConfigValidationError, match="Missing weight 'sleep'"):
            _validate_and_build(raw)

    def test_floor_above_prefer_threshold_rejected(self, raw: dict) -> None:
        raw["confidence"]["floor"] = 0.8
        with pytest.raises(ConfigValidationError, match="confidence thresholds"):
            _validate_and_build(raw)

    def test_window_weights_must_sum_to_one(self, raw: dict) -> None:
        raw["confidence"]["window_weights"]["last_7d"] = 0.9
        with pytest.raises(ConfigValidationError, match="window_weights"):
            _validate_and_build(raw)

    def test_non_positive_baseline_rejected(self, raw: dict) -> None:
        raw["baseline_defaults"]["hrv"] = 0
        with pytest.raises(ConfigValidationError, match="baseline_defaults.hrv"):
            _validate_and_build(raw)

    def test_inverted_band_rejected(self, raw: dict) -> None:
        raw["bands"]["instant_heart_rate"]["bands"][0] = {"min": 90, "max": 60, "penalty": 0}
        with pytest.raises(ConfigValidationError, match="greater than max"):
            _validate_and_build(raw)

    def test_missing_band_table_rejected(self, raw: dict) -> None:
        del raw["bands"]["instant_steps"]
        with pytest.raises(ConfigValidationError, match="instant_steps"):
            _validate_and_build(raw)

    def test_errors_are_collected(self, raw: dict) -> None:
        """All problems are reported in one exception."""
        raw["weights"]["instant"]["stress"] = 0.5
        raw["baseline_defaults"]["hrv"] = -1
        with pytest.raises(ConfigValidationError, match="2 validation error"):
            _validate_and_build(raw)


class TestReload:
    """File loading and hot reload."""

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_scoring_config(tmp_path / "absent.yaml")

    def test_malformed_yaml_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(textwrap.dedent("""\
            weights:
              instant: [unclosed
        """))
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_scoring_config(path)

    def test_reload_replaces_cached_instance(
        self, tmp_path: Path, scoring_config: ScoringConfig
    ) -> None:
        raw = copy.deepcopy(scoring_config._raw)
        raw["version"] = "2.0"
        path = tmp_path / "scoring.yaml"
        path.write_text(yaml.safe_dump(raw))

        reloaded = reload_scoring_config(path)
        try:
            assert reloaded.version == "2.0"
            assert get_scoring_config() is reloaded
        finally:
            reload_scoring_config()

    def test_failed_reload_keeps_previous_config(self, tmp_path: Path) -> None:
        before = get_scoring_config()
        path = tmp_path / "broken.yaml"
        path.write_text("weights: {}\n")
        with pytest.raises(ConfigValidationError):
            reload_scoring_config(path)
        assert get_scoring_config() is before
