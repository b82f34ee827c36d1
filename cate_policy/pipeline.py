"""
End-to-end evaluation runs.

* :func:`run_split_validation` — split one experiment, fit on the training
  cohort, evaluate on the validation cohort.
* :func:`run_temporal_validation` — fit on the whole history, evaluate on a
  later, disjoint cohort.

Both hand their score table to :func:`evaluate_scores`, so lift tables and
policy tables are computed the same way regardless of provenance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from cate_policy.config import ID_COL, EngineConfig
from cate_policy.data_loader import UnitTable
from cate_policy.lift import lift_table
from cate_policy.model import ExternalScoreModel, FittedModel, make_estimator
from cate_policy.policy import ProfitCurve, compare_policies, profit_curve
from cate_policy.sampling import Cohort, split_sample
from cate_policy.scoring import score_column, score_units

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────
# Result container
# ──────────────────────────────────────────────


@dataclass
class EvaluationReport:
    """Everything produced by one evaluation run.

    Attributes:
        scores: Scored units (``id, W, y, propensity, tau_*``).
        lift_tables: Lift table per model name.
        policy_table: Threshold-policy comparison including baselines.
        profit_curves: Top-percent profit curve per model name.
        models: Fitted models, keyed by name.
        cohort: Train/validation split, when the run made one.
    """

    scores: pd.DataFrame
    lift_tables: dict[str, pd.DataFrame]
    policy_table: pd.DataFrame
    profit_curves: dict[str, ProfitCurve]
    models: dict[str, FittedModel] = field(default_factory=dict, repr=False)
    cohort: Optional[Cohort] = field(default=None, repr=False)

    @property
    def top_percent_table(self) -> pd.DataFrame:
        """Best point of every profit curve."""
        return pd.DataFrame(
            [
                {
                    "name": name,
                    "best_top_percent": curve.best_top_percent,
                    "best_profit": curve.best_profit,
                }
                for name, curve in self.profit_curves.items()
            ],
            columns=["name", "best_top_percent", "best_profit"],
        )


# ──────────────────────────────────────────────
# Shared evaluation
# ──────────────────────────────────────────────


def evaluate_scores(
    scores: pd.DataFrame,
    model_names: Sequence[str],
    config: EngineConfig | None = None,
) -> EvaluationReport:
    """Lift tables, policy comparison and profit curves for scored units."""
    config = config or EngineConfig()
    columns = {name: score_column(name) for name in model_names}

    lift_tables = {
        name: lift_table(
            scores,
            col,
            n_groups=config.num_lift_groups,
            confidence=config.confidence_level,
        )
        for name, col in columns.items()
    }
    policy_table = compare_policies(
        scores, columns, config.margin, config.cost, config.profit_scale
    )
    curves = {
        name: profit_curve(
            scores,
            col,
            config.margin,
            config.cost,
            grid=config.top_percent_grid,
            scale=config.profit_scale,
        )
        for name, col in columns.items()
    }
    return EvaluationReport(
        scores=scores,
        lift_tables=lift_tables,
        policy_table=policy_table,
        profit_curves=curves,
    )


def fit_models(units: UnitTable, config: EngineConfig) -> dict[str, FittedModel]:
    """Fit every configured in-core estimator on *units*."""
    models: dict[str, FittedModel] = {}
    for name in config.estimators:
        models[name] = make_estimator(name, config).fit(units)
    return models


# ──────────────────────────────────────────────
# Runs
# ──────────────────────────────────────────────


def run_split_validation(
    units: UnitTable,
    config: EngineConfig | None = None,
    external: ExternalScoreModel | None = None,
) -> EvaluationReport:
    """Fit on a seeded training cohort and evaluate on the validation cohort.

    Args:
        units: Whole experiment.
        config: Engine options.
        external: Optional externally scored model covering the validation ids.

    Returns:
        :class:`EvaluationReport` over the validation cohort.
    """
    config = config or EngineConfig()
    cohort = split_sample(units, config.split_probability, config.seed)

    models = fit_models(cohort.training, config)
    if external is not None:
        models[external.name] = external

    scores = score_units(cohort.validation, models)
    report = evaluate_scores(scores, list(models), config)
    report.models = models
    report.cohort = cohort
    return report


def run_temporal_validation(
    history: UnitTable,
    later: UnitTable,
    config: EngineConfig | None = None,
    external_scores: pd.Series | None = None,
    external_name: str = "external",
) -> EvaluationReport:
    """Refit on the entire history and evaluate on a later cohort.

    Args:
        history: Full historical experiment (no split).
        later: Later-period cohort with disjoint units.
        config: Engine options.
        external_scores: Already computed external effects for *later*,
            indexed by unit id.  Passed through unchanged.
        external_name: Model name for the passed-through column.

    Returns:
        :class:`EvaluationReport` over *later*.
    """
    config = config or EngineConfig()

    overlap = np.intersect1d(history.ids.to_numpy(), later.ids.to_numpy())
    if len(overlap):
        raise ValueError(
            f"Later cohort shares {len(overlap)} ids with the history, "
            f"e.g. {overlap[:5].tolist()}."
        )

    models = fit_models(history, config)
    logger.info(
        "Refitted %s on %d historical units; scoring %d later units.",
        list(models), len(history), len(later),
    )
    scores = score_units(later, models)

    names = list(models)
    if external_scores is not None:
        passthrough = external_scores.reindex(scores[ID_COL].to_numpy())
        if passthrough.isna().any():
            raise ValueError(
                f"{int(passthrough.isna().sum())} later units have no external score."
            )
        scores[score_column(external_name)] = passthrough.to_numpy(dtype=float)
        names.append(external_name)

    report = evaluate_scores(scores, names, config)
    report.models = models
    return report
