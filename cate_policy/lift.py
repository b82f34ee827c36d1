"""
Lift tables: out-of-sample validation of predicted effects.

Units are bucketed by predicted effect into equal-frequency groups; within
each group the empirical effect is the treated/control difference in mean
outcome, which is unbiased under complete randomization.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Callable

import numpy as np
import pandas as pd
from scipy import stats

from cate_policy.config import OUTCOME_COL, TREATMENT_COL
from cate_policy.errors import BucketingError, UndefinedStatistic

logger = logging.getLogger(__name__)

LIFT_COLUMNS = [
    "bucket_index",
    "n_units",
    "n_treated",
    "n_control",
    "mean_score",
    "empirical_effect",
    "std_error",
    "ci_lower",
    "ci_upper",
    "lift",
]


@dataclass(frozen=True)
class GroupEffect:
    """Empirical treatment effect of one group of units."""

    effect: float
    std_error: float
    ci_lower: float
    ci_upper: float
    n_treated: int
    n_control: int


EffectStatistic = Callable[[np.ndarray, np.ndarray, float], GroupEffect]


# ──────────────────────────────────────────────
# Statistics
# ──────────────────────────────────────────────


def welch_effect(
    outcome: np.ndarray,
    treatment: np.ndarray,
    confidence: float = 0.95,
) -> GroupEffect:
    """Difference in means with a Welch-style standard error.

    The interval uses a Student t quantile with ``len(outcome) - 1`` degrees
    of freedom.  A group with no treated or no control units yields ``NaN``
    for every statistic and emits an :class:`UndefinedStatistic` warning.

    Args:
        outcome: Outcomes of the units in the group.
        treatment: 0/1 treatment indicators of the same units.
        confidence: Two-sided confidence level.

    Returns:
        A :class:`GroupEffect`.
    """
    outcome = np.asarray(outcome, dtype=float)
    treated = np.asarray(treatment).astype(bool)
    y1, y0 = outcome[treated], outcome[~treated]
    n1, n0 = len(y1), len(y0)

    if n1 == 0 or n0 == 0:
        warnings.warn(
            f"Group has {n1} treated and {n0} control units; effect is undefined.",
            UndefinedStatistic,
            stacklevel=2,
        )
        return GroupEffect(np.nan, np.nan, np.nan, np.nan, n1, n0)

    effect = float(y1.mean() - y0.mean())
    # A single unit in an arm has no variance estimate: the SE stays NaN.
    var1 = y1.var(ddof=1) if n1 > 1 else np.nan
    var0 = y0.var(ddof=1) if n0 > 1 else np.nan
    se = float(np.sqrt(var1 / n1 + var0 / n0))

    t_crit = stats.t.ppf(0.5 + confidence / 2, df=n1 + n0 - 1)
    return GroupEffect(effect, se, effect - t_crit * se, effect + t_crit * se, n1, n0)


# ──────────────────────────────────────────────
# Bucketing
# ──────────────────────────────────────────────


def assign_groups(scores: np.ndarray, n_groups: int) -> np.ndarray:
    """Assign each unit to one of *n_groups* equal-frequency buckets.

    Buckets are numbered from 0 (lowest scores) upwards.  Ties are broken by
    unit order, and bucket sizes differ by at most one.

    Raises:
        BucketingError: If there are fewer distinct scores than groups.
    """
    scores = np.asarray(scores, dtype=float)
    if n_groups < 1:
        raise BucketingError("n_groups must be at least 1.")
    if np.isnan(scores).any():
        raise BucketingError("Scores contain NaN values.")

    n_distinct = len(np.unique(scores))
    if n_distinct < n_groups:
        raise BucketingError(
            f"Cannot form {n_groups} groups from {n_distinct} distinct scores "
            f"({len(scores)} units)."
        )

    order = np.argsort(scores, kind="stable")
    ranks = np.empty(len(scores), dtype=int)
    ranks[order] = np.arange(len(scores))
    return ranks * n_groups // len(scores)


# ──────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────


def lift_table(
    df: pd.DataFrame,
    score_col: str,
    n_groups: int = 20,
    treatment_col: str = TREATMENT_COL,
    outcome_col: str = OUTCOME_COL,
    confidence: float = 0.95,
    statistic: EffectStatistic = welch_effect,
) -> pd.DataFrame:
    """Build the lift table of one model's scores.

    Args:
        df: Scored units (must contain *score_col*, *treatment_col* and
            *outcome_col*).
        score_col: Column with predicted effects.
        n_groups: Number of equal-frequency buckets.
        treatment_col: Column with the 0/1 treatment indicator.
        outcome_col: Column with observed outcomes.
        confidence: Two-sided confidence level of the intervals.
        statistic: Per-bucket effect statistic.

    Returns:
        One row per bucket, ascending by predicted score, with columns
        :data:`LIFT_COLUMNS`.  ``lift`` is ``100 * effect / mean effect``;
        undefined buckets are ``NaN`` and excluded from the mean.
    """
    missing = {score_col, treatment_col, outcome_col} - set(df.columns)
    if missing:
        raise ValueError(f"Missing columns in DataFrame: {missing}")

    scores = df[score_col].to_numpy(dtype=float)
    groups = assign_groups(scores, n_groups)
    outcome = df[outcome_col].to_numpy(dtype=float)
    treatment = df[treatment_col].to_numpy()

    rows = []
    for g in range(n_groups):
        in_group = groups == g
        stat = statistic(outcome[in_group], treatment[in_group], confidence)
        if np.isnan(stat.effect):
            logger.debug("Bucket %d of %s has an undefined effect.", g + 1, score_col)
        rows.append(
            {
                "bucket_index": g + 1,
                "n_units": int(in_group.sum()),
                "n_treated": stat.n_treated,
                "n_control": stat.n_control,
                "mean_score": float(scores[in_group].mean()),
                "empirical_effect": stat.effect,
                "std_error": stat.std_error,
                "ci_lower": stat.ci_lower,
                "ci_upper": stat.ci_upper,
            }
        )

    table = pd.DataFrame(rows, columns=LIFT_COLUMNS[:-1])
    effects = table["empirical_effect"].to_numpy(dtype=float)
    if np.isnan(effects).all():
        table["lift"] = np.nan
    else:
        with np.errstate(divide="ignore", invalid="ignore"):
            table["lift"] = 100.0 * effects / np.nanmean(effects)
    return table
