"""
Tests for configuration, unit loading and the sample splitter.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from cate_policy.config import EngineConfig
from cate_policy.data_loader import (
    generate_synthetic_experiment,
    load_external_scores,
    load_units,
)
from cate_policy.errors import SplitError
from cate_policy.sampling import draw_training_mask, split_sample

# ──────────────────────────────────────────────
# config
# ──────────────────────────────────────────────


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.split_probability == 0.5
        assert config.num_lift_groups == 20
        assert len(config.top_percent_grid) == 101
        assert config.top_percent_grid[0] == 0.0
        assert config.top_percent_grid[-1] == 1.0
        assert config.top_percent_grid[37] == pytest.approx(0.37)

    def test_from_mapping_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown configuration options"):
            EngineConfig.from_mapping({"margin": 1.0, "budget": 10})

    def test_invalid_penalty_rule(self):
        with pytest.raises(ValueError, match="penalty_rule"):
            EngineConfig(penalty_rule="aic")

    def test_invalid_split_probability(self):
        with pytest.raises(ValueError, match="split_probability"):
            EngineConfig(split_probability=1.0)

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "margin: 2.0\ncost: 1.0\nestimators: [ols]\ntop_percent_grid: [0.0, 0.5, 1.0]\n",
            encoding="utf-8",
        )
        config = EngineConfig.from_yaml(path)
        assert config.margin == 2.0
        assert config.estimators == ("ols",)
        assert config.top_percent_grid == (0.0, 0.5, 1.0)

    def test_replace_returns_copy(self):
        config = EngineConfig()
        changed = config.replace(seed=1)
        assert changed.seed == 1
        assert config.seed == 42


# ──────────────────────────────────────────────
# data_loader
# ──────────────────────────────────────────────


class TestLoadUnits:
    def test_canonical_columns(self):
        df = pd.DataFrame(
            {"cust": [1, 2, 3, 4], "treated": [0, 1, 0, 1], "spend": [1.0, 2.0, 3.0, 4.0],
             "age": [30, 40, 50, 60]}
        )
        units = load_units(df, id_col="cust", treatment_col="treated", outcome_col="spend")
        assert list(units.frame.columns) == ["id", "W", "y", "propensity", "age"]
        assert units.covariates == ("age",)
        assert units.propensity.eq(0.5).all()

    def test_explicit_propensity(self):
        df = pd.DataFrame({"id": [1, 2, 3], "W": [0, 1, 1], "y": [1.0, 2.0, 3.0], "x": [0, 1, 2]})
        units = load_units(df, propensity=0.5)
        assert units.propensity.eq(0.5).all()

    def test_propensity_column_is_honoured(self):
        df = pd.DataFrame(
            {"id": [1, 2, 3, 4], "W": [1, 1, 1, 0], "y": [1.0, 2.0, 3.0, 4.0],
             "propensity": 0.5, "x": [0.0, 1.0, 2.0, 3.0]}
        )
        units = load_units(df)
        assert units.propensity.eq(0.5).all()
        assert units.covariates == ("x",)

    def test_propensity_column_conflicting_with_argument(self):
        df = pd.DataFrame(
            {"id": [1, 2], "W": [1, 0], "y": [1.0, 2.0], "propensity": 0.5, "x": [0.0, 1.0]}
        )
        assert load_units(df, propensity=0.5).propensity.eq(0.5).all()
        with pytest.raises(ValueError, match="conflicts"):
            load_units(df, propensity=0.7)

    def test_raises_on_varying_propensity_column(self):
        df = pd.DataFrame(
            {"id": [1, 2], "W": [1, 0], "y": [1.0, 2.0], "propensity": [0.4, 0.6],
             "x": [0.0, 1.0]}
        )
        with pytest.raises(ValueError, match="single design probability"):
            load_units(df)

    def test_raises_on_certain_treatment_with_controls(self):
        df = pd.DataFrame({"id": [1, 2], "W": [1, 0], "y": [1.0, 2.0], "x": [0.0, 1.0]})
        with pytest.raises(ValueError, match="propensity=1"):
            load_units(df, propensity=1.0)

    def test_raises_on_missing_columns(self):
        df = pd.DataFrame({"a": [1], "b": [2]})
        with pytest.raises(ValueError, match="Missing required columns"):
            load_units(df)

    def test_raises_on_non_binary_treatment(self):
        df = pd.DataFrame({"id": [1, 2], "W": [0, 2], "y": [1.0, 2.0], "x": [0.0, 1.0]})
        with pytest.raises(ValueError, match="binary"):
            load_units(df)

    def test_raises_on_duplicate_ids(self):
        df = pd.DataFrame({"id": [1, 1], "W": [0, 1], "y": [1.0, 2.0], "x": [0.0, 1.0]})
        with pytest.raises(ValueError, match="duplicate"):
            load_units(df)

    def test_raises_on_missing_values(self):
        df = pd.DataFrame({"id": [1, 2], "W": [0, 1], "y": [1.0, None], "x": [0.0, 1.0]})
        with pytest.raises(ValueError, match="missing values"):
            load_units(df)

    def test_raises_on_non_numeric_covariate(self):
        df = pd.DataFrame({"id": [1, 2], "W": [0, 1], "y": [1.0, 2.0], "city": ["a", "b"]})
        with pytest.raises(ValueError, match="numeric"):
            load_units(df)

    def test_subset_returns_new_table(self, synthetic_experiment):
        units, _ = synthetic_experiment
        mask = np.zeros(len(units), dtype=bool)
        mask[:10] = True
        part = units.subset(mask)
        assert len(part) == 10
        assert len(units) == 2_000
        assert part.covariates == units.covariates


class TestExternalScores:
    def test_indexed_by_id(self):
        df = pd.DataFrame({"id": [10, 11], "tau": [0.5, -0.5]})
        scores = load_external_scores(df)
        assert scores.loc[11] == -0.5

    def test_raises_on_missing_column(self):
        with pytest.raises(ValueError, match="Missing columns"):
            load_external_scores(pd.DataFrame({"id": [1]}))


class TestSyntheticExperiment:
    def test_shapes_and_ids(self):
        frame, tau = generate_synthetic_experiment(n=100, seed=1, id_offset=500)
        assert len(frame) == 100
        assert len(tau) == 100
        assert frame["id"].iloc[0] == 500
        assert frame["W"].isin([0, 1]).all()

    def test_carries_design_propensity(self):
        frame, _ = generate_synthetic_experiment(n=200, seed=3, propensity=0.3)
        assert frame["propensity"].eq(0.3).all()
        units = load_units(frame)
        assert units.propensity.eq(0.3).all()
        assert "propensity" not in units.covariates


# ──────────────────────────────────────────────
# sampling
# ──────────────────────────────────────────────


class TestSplitSample:
    def test_same_seed_same_split(self, synthetic_experiment):
        units, _ = synthetic_experiment
        first = split_sample(units, 0.5, seed=11)
        second = split_sample(units, 0.5, seed=11)
        pd.testing.assert_frame_equal(first.training.frame, second.training.frame)
        pd.testing.assert_frame_equal(first.validation.frame, second.validation.frame)

    def test_mask_is_bit_identical(self):
        np.testing.assert_array_equal(
            draw_training_mask(1_000, 0.3, seed=5), draw_training_mask(1_000, 0.3, seed=5)
        )

    def test_cohorts_partition_population(self, synthetic_experiment):
        units, _ = synthetic_experiment
        cohort = split_sample(units, 0.5, seed=3)
        train_ids = set(cohort.training.ids)
        valid_ids = set(cohort.validation.ids)
        assert train_ids.isdisjoint(valid_ids)
        assert train_ids | valid_ids == set(units.ids)

    def test_different_seeds_differ(self, synthetic_experiment):
        units, _ = synthetic_experiment
        a = split_sample(units, 0.5, seed=1)
        b = split_sample(units, 0.5, seed=2)
        assert set(a.training.ids) != set(b.training.ids)

    def test_empty_cohort_raises(self):
        df = pd.DataFrame({"id": [1], "W": [1], "y": [1.0], "x": [0.0]})
        units = load_units(df)
        with pytest.raises(SplitError, match="seed=9"):
            split_sample(units, 0.5, seed=9)
