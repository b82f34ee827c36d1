"""
End-to-end tests for split validation and temporal validation.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from cate_policy.config import EngineConfig
from cate_policy.data_loader import generate_synthetic_experiment, load_units
from cate_policy.model import ExternalScoreModel
from cate_policy.pipeline import evaluate_scores, run_split_validation, run_temporal_validation
from cate_policy.policy import TARGET_EVERYBODY, TARGET_NOBODY

# ──────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────


@pytest.fixture
def fast_config() -> EngineConfig:
    return EngineConfig(
        cv_folds=3,
        num_lift_groups=10,
        top_percent_grid=(0.0, 0.25, 0.5, 0.75, 1.0),
        seed=123,
    )


@pytest.fixture
def history_and_later():
    history_frame, _ = generate_synthetic_experiment(n=1_500, seed=1)
    later_frame, later_tau = generate_synthetic_experiment(n=800, seed=2, id_offset=10_000)
    return load_units(history_frame), load_units(later_frame), later_tau


# ──────────────────────────────────────────────
# evaluate_scores
# ──────────────────────────────────────────────


class TestEvaluateScores:
    def test_report_tables(self, synthetic_scores, fast_config):
        report = evaluate_scores(synthetic_scores, ["oracle"], fast_config)

        assert set(report.lift_tables) == {"oracle"}
        assert len(report.lift_tables["oracle"]) == 10
        assert report.policy_table["name"].tolist() == [TARGET_NOBODY, TARGET_EVERYBODY, "oracle"]
        assert report.profit_curves["oracle"].points["top_percent"].tolist() == [
            0.0, 0.25, 0.5, 0.75, 1.0,
        ]
        assert list(report.top_percent_table.columns) == [
            "name", "best_top_percent", "best_profit",
        ]


# ──────────────────────────────────────────────
# Split validation
# ──────────────────────────────────────────────


class TestSplitValidation:
    def test_fits_on_training_scores_validation(self, synthetic_experiment, fast_config):
        units, _ = synthetic_experiment
        report = run_split_validation(units, fast_config)

        cohort = report.cohort
        assert len(cohort.training) + len(cohort.validation) == len(units)
        assert len(report.scores) == len(cohort.validation)
        assert set(report.scores["id"]) == set(cohort.validation.ids)
        assert set(report.lift_tables) == {"ols", "lasso"}
        assert {"tau_ols", "tau_lasso"} <= set(report.scores.columns)

    def test_reproducible(self, synthetic_experiment, fast_config):
        units, _ = synthetic_experiment
        first = run_split_validation(units, fast_config)
        second = run_split_validation(units, fast_config)
        pd.testing.assert_frame_equal(first.scores, second.scores)
        pd.testing.assert_frame_equal(first.policy_table, second.policy_table)

    def test_external_model_is_scored_like_the_others(self, synthetic_experiment, fast_config):
        units, true_tau = synthetic_experiment
        external = ExternalScoreModel(
            scores=pd.Series(true_tau, index=units.ids.to_numpy()), name="forest"
        )
        report = run_split_validation(units, fast_config.replace(estimators=("ols",)), external)

        assert set(report.lift_tables) == {"ols", "forest"}
        assert "forest" in report.policy_table["name"].tolist()
        expected = pd.Series(true_tau, index=units.ids.to_numpy()).reindex(report.scores["id"])
        np.testing.assert_allclose(report.scores["tau_forest"], expected.to_numpy())

    def test_ols_effects_track_truth(self, synthetic_experiment, fast_config):
        units, true_tau = synthetic_experiment
        report = run_split_validation(units, fast_config.replace(estimators=("ols",)))
        truth = pd.Series(true_tau, index=units.ids.to_numpy()).reindex(report.scores["id"])
        assert np.corrcoef(report.scores["tau_ols"], truth)[0, 1] > 0.9


# ──────────────────────────────────────────────
# Temporal validation
# ──────────────────────────────────────────────


class TestTemporalValidation:
    def test_refits_on_history_scores_later(self, history_and_later, fast_config):
        history, later, later_tau = history_and_later
        external = pd.Series(later_tau, index=later.ids.to_numpy())

        report = run_temporal_validation(history, later, fast_config, external_scores=external)

        assert len(report.scores) == len(later)
        assert set(report.models) == {"ols", "lasso"}
        assert set(report.lift_tables) == {"ols", "lasso", "external"}
        np.testing.assert_array_equal(report.scores["tau_external"].to_numpy(), later_tau)

    def test_overlapping_ids_rejected(self, history_and_later, fast_config):
        history, _, _ = history_and_later
        with pytest.raises(ValueError, match="shares"):
            run_temporal_validation(history, history, fast_config)

    def test_missing_external_scores_rejected(self, history_and_later, fast_config):
        history, later, later_tau = history_and_later
        partial = pd.Series(later_tau[:10], index=later.ids.to_numpy()[:10])
        with pytest.raises(ValueError, match="no external score"):
            run_temporal_validation(
                history, later, fast_config.replace(estimators=("ols",)), external_scores=partial
            )
