"""
Targeting policies and their profit on historical experiment data.

Two estimators are kept side by side:

* Threshold policies (``margin * tau > cost``) are evaluated with an
  inverse-propensity-weighted sum over units whose actual assignment matches
  the policy.
* The top-percent family is evaluated from matched conditional means in the
  targeted/untargeted, treated/control quadrants.

The two are not numerically equivalent in general and are reported under
different names.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from cate_policy.config import OUTCOME_COL, PROPENSITY_COL, TREATMENT_COL

logger = logging.getLogger(__name__)

DEFAULT_PROFIT_SCALE = 1000.0
TARGET_NOBODY = "target_nobody"
TARGET_EVERYBODY = "target_everybody"

# ──────────────────────────────────────────────
# Result containers
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class PolicyResult:
    """Estimated profit of one targeting policy.

    Attributes:
        name: Policy name (model name or baseline).
        targeted_fraction: Share of units the policy targets.
        estimated_profit: Profit per ``scale`` units.
        n_targeted: Number of targeted units.
    """

    name: str
    targeted_fraction: float
    estimated_profit: float
    n_targeted: int

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProfitCurve:
    """Profit of the top-percent policy family over a grid of fractions.

    Attributes:
        points: DataFrame with ``top_percent`` and ``estimated_profit``.
        best_top_percent: Fraction with the highest profit (first on ties).
        best_profit: Profit at that fraction.
    """

    points: pd.DataFrame = field(repr=False)
    best_top_percent: float
    best_profit: float


# ──────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────


def _check_columns(df: pd.DataFrame, *columns: str) -> None:
    missing = set(columns) - set(df.columns)
    if missing:
        raise ValueError(f"Missing columns in DataFrame: {missing}")


def _policy_scores(df: pd.DataFrame, score_col: str, margin: float, cost: float) -> np.ndarray:
    return margin * df[score_col].to_numpy(dtype=float) - cost


# ──────────────────────────────────────────────
# Threshold policies (IPW)
# ──────────────────────────────────────────────


def threshold_policy(scores: np.ndarray | pd.Series, margin: float, cost: float) -> np.ndarray:
    """Target a unit when its expected incremental margin exceeds the cost."""
    return margin * np.asarray(scores, dtype=float) > cost


def ipw_profit(
    df: pd.DataFrame,
    target: np.ndarray,
    margin: float,
    cost: float,
    scale: float = DEFAULT_PROFIT_SCALE,
    treatment_col: str = TREATMENT_COL,
    outcome_col: str = OUTCOME_COL,
    propensity_col: str = PROPENSITY_COL,
) -> float:
    """Inverse-propensity-weighted profit of a targeting decision.

    Only units whose actual assignment equals the policy's decision
    contribute; treated matches are weighted by ``1/p`` and control matches
    by ``1/(1-p)``.

    Args:
        df: Experiment units.
        target: Boolean decision per row of *df*.
        margin: Contribution per unit of outcome.
        cost: Cost of treating one unit.
        scale: Profit is reported per *scale* units.

    Returns:
        Estimated profit per *scale* units under the policy.

    Raises:
        ValueError: If a matched unit has a zero weight denominator.
    """
    _check_columns(df, treatment_col, outcome_col, propensity_col)
    target = np.asarray(target, dtype=bool)
    if target.shape != (len(df),):
        raise ValueError("target must have one entry per unit.")

    w = df[treatment_col].to_numpy(dtype=float)
    y = df[outcome_col].to_numpy(dtype=float)
    p = df[propensity_col].to_numpy(dtype=float)

    treated_match = (w == 1) & target
    control_match = (w == 0) & ~target
    if (p[treated_match] <= 0).any() or (p[control_match] >= 1).any():
        raise ValueError(
            "Matched units need a design propensity strictly inside (0, 1)."
        )

    weights = np.zeros(len(df))
    weights[treated_match] = 1.0 / p[treated_match]
    weights[control_match] = 1.0 / (1.0 - p[control_match])

    profit = margin * y - cost * w
    return float(scale * np.sum(weights * profit) / len(df))


def evaluate_threshold_policy(
    df: pd.DataFrame,
    score_col: str,
    margin: float,
    cost: float,
    scale: float = DEFAULT_PROFIT_SCALE,
    name: str | None = None,
) -> PolicyResult:
    """Apply ``margin * tau > cost`` and estimate its profit with IPW."""
    _check_columns(df, score_col)
    target = threshold_policy(df[score_col], margin, cost)
    return PolicyResult(
        name=name or score_col,
        targeted_fraction=float(target.mean()),
        estimated_profit=ipw_profit(df, target, margin, cost, scale),
        n_targeted=int(target.sum()),
    )


def baseline_policies(
    df: pd.DataFrame,
    margin: float,
    cost: float,
    scale: float = DEFAULT_PROFIT_SCALE,
) -> list[PolicyResult]:
    """Target nobody (cost = +inf) and target everybody (cost = -inf).

    The decisions come from the threshold rule with an infinite cost; the
    profit is still charged at the real *cost*.
    """
    results = []
    for name, forced_cost in ((TARGET_NOBODY, np.inf), (TARGET_EVERYBODY, -np.inf)):
        target = threshold_policy(np.zeros(len(df)), margin, forced_cost)
        results.append(
            PolicyResult(
                name=name,
                targeted_fraction=float(target.mean()),
                estimated_profit=ipw_profit(df, target, margin, cost, scale),
                n_targeted=int(target.sum()),
            )
        )
    return results


# ──────────────────────────────────────────────
# Top-percent family (matched means)
# ──────────────────────────────────────────────


def top_percent_target(scores: np.ndarray, fraction: float) -> np.ndarray:
    """Target exactly the ``round(fraction * n)`` highest-scoring units.

    Ties are broken by unit order.  ``fraction=0`` targets nobody and
    ``fraction=1`` targets everybody.
    """
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"fraction must lie in [0, 1], got {fraction}.")
    scores = np.asarray(scores, dtype=float)
    n_target = int(round(fraction * len(scores)))

    order = np.argsort(-scores, kind="stable")
    target = np.zeros(len(scores), dtype=bool)
    target[order[:n_target]] = True
    return target


def _matched_mean(y: np.ndarray, mask: np.ndarray) -> float:
    # An empty matched quadrant contributes zero by convention.
    return float(y[mask].mean()) if mask.any() else 0.0


def top_percent_profit(
    df: pd.DataFrame,
    score_col: str,
    fraction: float,
    margin: float,
    cost: float,
    scale: float = DEFAULT_PROFIT_SCALE,
    treatment_col: str = TREATMENT_COL,
    outcome_col: str = OUTCOME_COL,
) -> float:
    """Profit of targeting the top *fraction* of ``margin * tau - cost``.

    The targeted group is valued at the mean outcome of its treated units
    minus the cost; the untargeted group at the mean outcome of its control
    units.  Both are scaled by group size and reported per *scale* units.
    A group with no matching units contributes 0.
    """
    _check_columns(df, score_col, treatment_col, outcome_col)
    target = top_percent_target(_policy_scores(df, score_col, margin, cost), fraction)

    w = df[treatment_col].to_numpy() == 1
    y = df[outcome_col].to_numpy(dtype=float)

    n_target = int(target.sum())
    n_rest = len(df) - n_target

    matched_treated = target & w
    if matched_treated.any():
        targeted_value = n_target * (margin * _matched_mean(y, matched_treated) - cost)
    else:
        targeted_value = 0.0
    rest_value = n_rest * margin * _matched_mean(y, ~target & ~w)
    return float(scale * (targeted_value + rest_value) / len(df))


def profit_curve(
    df: pd.DataFrame,
    score_col: str,
    margin: float,
    cost: float,
    grid: Sequence[float] | None = None,
    scale: float = DEFAULT_PROFIT_SCALE,
) -> ProfitCurve:
    """Sweep the top-percent family over *grid* and locate the optimum.

    Args:
        df: Scored units.
        score_col: Column with predicted effects.
        margin: Contribution per unit of outcome.
        cost: Cost of treating one unit.
        grid: Fractions to evaluate; defaults to ``0.00..1.00`` by ``0.01``.
        scale: Profit is reported per *scale* units.

    Returns:
        A :class:`ProfitCurve`.
    """
    if grid is None:
        grid = np.round(np.linspace(0.0, 1.0, 101), 2)
    grid = [float(p) for p in grid]
    if not grid:
        raise ValueError("grid must contain at least one fraction.")

    profits = [top_percent_profit(df, score_col, p, margin, cost, scale) for p in grid]
    points = pd.DataFrame({"top_percent": grid, "estimated_profit": profits})

    best = int(np.argmax(points["estimated_profit"].to_numpy()))
    curve = ProfitCurve(
        points=points,
        best_top_percent=grid[best],
        best_profit=profits[best],
    )
    logger.info(
        "Best top-percent policy for %s: %.0f%% -> %.2f per %g units.",
        score_col, 100 * curve.best_top_percent, curve.best_profit, scale,
    )
    return curve


# ──────────────────────────────────────────────
# Comparison table
# ──────────────────────────────────────────────


def compare_policies(
    df: pd.DataFrame,
    score_cols: Mapping[str, str],
    margin: float,
    cost: float,
    scale: float = DEFAULT_PROFIT_SCALE,
) -> pd.DataFrame:
    """Threshold-policy profit of every model next to both baselines.

    Args:
        df: Scored units.
        score_cols: Mapping of policy name to score column.
        margin: Contribution per unit of outcome.
        cost: Cost of treating one unit.
        scale: Profit is reported per *scale* units.

    Returns:
        DataFrame with ``name, targeted_fraction, estimated_profit``.
    """
    results = baseline_policies(df, margin, cost, scale)
    results += [
        evaluate_threshold_policy(df, col, margin, cost, scale, name=name)
        for name, col in score_cols.items()
    ]
    table = pd.DataFrame([r.as_dict() for r in results])
    return table.loc[:, ["name", "targeted_fraction", "estimated_profit"]]
