"""
Unit tables for randomized experiments.

Supports three sources:
  1. An already-cleaned DataFrame or CSV keyed by unit id.
  2. A precomputed per-unit effect table for the external score adapter.
  3. A synthetic randomized experiment with a known effect (demo and tests).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from cate_policy.config import ID_COL, OUTCOME_COL, PROPENSITY_COL, TREATMENT_COL

logger = logging.getLogger(__name__)

_RESERVED_COLUMNS = (ID_COL, TREATMENT_COL, OUTCOME_COL, PROPENSITY_COL)

# ──────────────────────────────────────────────
# Unit table
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class UnitTable:
    """Read-only table of experimental units in canonical column names.

    Attributes:
        frame: One row per unit with ``id``, ``W``, ``y``, ``propensity``
            and the covariate columns.
        covariates: Ordered covariate column names.
    """

    frame: pd.DataFrame
    covariates: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def X(self) -> pd.DataFrame:
        return self.frame.loc[:, list(self.covariates)]

    @property
    def ids(self) -> pd.Series:
        return self.frame[ID_COL]

    @property
    def treatment(self) -> pd.Series:
        return self.frame[TREATMENT_COL]

    @property
    def outcome(self) -> pd.Series:
        return self.frame[OUTCOME_COL]

    @property
    def propensity(self) -> pd.Series:
        return self.frame[PROPENSITY_COL]

    def subset(self, mask: np.ndarray | pd.Series) -> UnitTable:
        """Return a new table holding the rows selected by a boolean *mask*."""
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (len(self.frame),):
            raise ValueError(
                f"Mask length {mask.shape[0]} does not match table length {len(self.frame)}."
            )
        frame = self.frame.loc[mask].reset_index(drop=True)
        return UnitTable(frame=frame, covariates=self.covariates)


# ──────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────


def _check_binary(values: pd.Series, column: str) -> None:
    bad = ~values.isin([0, 1])
    if bad.any():
        raise ValueError(
            f"Treatment column {column!r} must be binary 0/1; "
            f"found {sorted(values[bad].unique().tolist())[:5]}."
        )


def _infer_covariates(df: pd.DataFrame, exclude: set[str]) -> list[str]:
    return [c for c in df.columns if c not in exclude]


def _design_propensity(df: pd.DataFrame) -> Optional[float]:
    """Return the constant design probability stored in *df*, if any."""
    if PROPENSITY_COL not in df.columns:
        return None
    values = df[PROPENSITY_COL]
    if values.isna().any():
        raise ValueError("Unit table contains missing values; clean it upstream.")
    distinct = values.astype(float).unique()
    if len(distinct) != 1:
        raise ValueError(
            f"Column {PROPENSITY_COL!r} must hold a single design probability; "
            f"found {len(distinct)} distinct values."
        )
    return float(distinct[0])


# ──────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────


def load_units(
    df: pd.DataFrame,
    id_col: str = ID_COL,
    treatment_col: str = TREATMENT_COL,
    outcome_col: str = OUTCOME_COL,
    covariates: Optional[Sequence[str]] = None,
    propensity: Optional[float] = None,
) -> UnitTable:
    """Validate a cleaned experiment table and rename it to canonical columns.

    Args:
        df: One row per unit.  Must already be free of outliers and
            near-collinear covariates.
        id_col: Unique unit identifier.
        treatment_col: Binary treatment indicator.
        outcome_col: Real-valued outcome.
        covariates: Covariate columns in model order.  If ``None``, every
            column except the id, treatment, outcome and ``propensity`` is used.
        propensity: Known design probability of treatment.  If ``None``, a
            constant ``propensity`` column of *df* is used, and failing that
            the realised treated share.

    Returns:
        A :class:`UnitTable`.

    Raises:
        ValueError: On missing columns, non-binary treatment, duplicate ids,
            missing values, non-numeric covariates or an invalid or
            conflicting propensity.
    """
    if df.empty:
        raise ValueError("Unit table is empty.")

    missing = {id_col, treatment_col, outcome_col} - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    if covariates is None:
        exclude = {id_col, treatment_col, outcome_col, PROPENSITY_COL}
        covariates = _infer_covariates(df, exclude)
    covariates = list(covariates)

    missing_cov = set(covariates) - set(df.columns)
    if missing_cov:
        raise ValueError(f"Missing covariate columns: {missing_cov}")
    clashes = set(covariates) & set(_RESERVED_COLUMNS)
    if clashes:
        raise ValueError(f"Covariate names clash with reserved columns: {clashes}")

    used = [id_col, treatment_col, outcome_col, *covariates]
    if df[used].isna().any().any():
        raise ValueError("Unit table contains missing values; clean it upstream.")

    non_numeric = [c for c in covariates if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(f"Covariates must be numeric: {non_numeric}")

    if df[id_col].duplicated().any():
        raise ValueError(f"Column {id_col!r} contains duplicate ids.")

    _check_binary(df[treatment_col], treatment_col)

    treatment = df[treatment_col].astype(int).to_numpy()
    stored = _design_propensity(df)
    if stored is not None:
        if propensity is not None and not np.isclose(propensity, stored):
            raise ValueError(
                f"propensity={propensity} conflicts with the {PROPENSITY_COL!r} "
                f"column ({stored})."
            )
        propensity = stored
    if propensity is None:
        propensity = float(treatment.mean())
        logger.info("No design propensity given; using treated share %.4f.", propensity)
    if not 0.0 < propensity <= 1.0:
        raise ValueError(f"propensity must lie in (0, 1], got {propensity}.")
    if propensity == 1.0 and (treatment == 0).any():
        raise ValueError("propensity=1 is impossible when control units are present.")

    frame = pd.DataFrame(
        {
            ID_COL: df[id_col].to_numpy(),
            TREATMENT_COL: treatment,
            OUTCOME_COL: df[outcome_col].astype(float).to_numpy(),
            PROPENSITY_COL: float(propensity),
        }
    )
    for col in covariates:
        frame[col] = df[col].astype(float).to_numpy()

    return UnitTable(frame=frame, covariates=tuple(covariates))


def read_units_csv(path: str | Path, **kwargs) -> UnitTable:
    """Read a CSV and pass it through :func:`load_units`."""
    return load_units(pd.read_csv(path), **kwargs)


def load_external_scores(
    source: pd.DataFrame | str | Path,
    id_col: str = ID_COL,
    score_col: str = "tau",
) -> pd.Series:
    """Load a precomputed per-unit effect table keyed by unit id.

    Args:
        source: DataFrame or CSV path.
        id_col: Unit id column.
        score_col: Effect column.

    Returns:
        Float Series of effects indexed by unit id.
    """
    df = source if isinstance(source, pd.DataFrame) else pd.read_csv(source)

    missing = {id_col, score_col} - set(df.columns)
    if missing:
        raise ValueError(f"Missing columns in score table: {missing}")
    if df[id_col].duplicated().any():
        raise ValueError("Score table contains duplicate ids.")

    return pd.Series(
        df[score_col].astype(float).to_numpy(),
        index=pd.Index(df[id_col].to_numpy(), name=ID_COL),
        name=score_col,
    )


# ──────────────────────────────────────────────
# Synthetic data generation
# ──────────────────────────────────────────────


def generate_synthetic_experiment(
    n: int = 4_000,
    seed: int = 42,
    n_covariates: int = 5,
    propensity: float = 0.5,
    base_effect: float = 2.0,
    heterogeneity: float = 1.5,
    noise: float = 1.0,
    id_offset: int = 0,
) -> tuple[pd.DataFrame, np.ndarray]:
    """Generate a completely randomized experiment with a linear CATE.

    The true effect is ``base_effect + heterogeneity * (x0 - x1)``, so the
    interaction estimators are correctly specified.

    Args:
        n: Number of units.
        seed: Random seed for reproducibility.
        n_covariates: Number of standard-normal covariates (at least 2).
        propensity: Treatment probability.
        base_effect: Average treatment effect.
        heterogeneity: Strength of the effect heterogeneity.
        noise: Standard deviation of the outcome noise.
        id_offset: First unit id, so later cohorts get disjoint ids.

    Returns:
        Tuple of ``(frame, true_tau)`` where *frame* has columns
        ``id, W, y, propensity, x0..x{k-1}``.
    """
    if n_covariates < 2:
        raise ValueError("n_covariates must be at least 2.")

    rng = np.random.default_rng(seed)
    X = rng.standard_normal((n, n_covariates))
    treatment = rng.binomial(1, propensity, size=n)

    baseline = 10.0 + X @ np.linspace(1.0, 0.2, n_covariates)
    true_tau = base_effect + heterogeneity * (X[:, 0] - X[:, 1])
    outcome = baseline + true_tau * treatment + rng.normal(0.0, noise, size=n)

    frame = pd.DataFrame(X, columns=[f"x{i}" for i in range(n_covariates)])
    frame.insert(0, PROPENSITY_COL, float(propensity))
    frame.insert(0, OUTCOME_COL, outcome.round(4))
    frame.insert(0, TREATMENT_COL, treatment)
    frame.insert(0, ID_COL, np.arange(id_offset, id_offset + n))
    return frame, true_tau
