"""
CATE estimators: full-interaction OLS, cross-validated lasso, boosted
S-Learner, and an adapter for externally computed effect scores.

Every estimator takes a :class:`~cate_policy.data_loader.UnitTable` and
returns a new, immutable fitted model.  Outcome models score units through
:func:`~cate_policy.scoring.counterfactual_uplift`; the external adapter
returns its stored effects directly.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Union

import numpy as np
import pandas as pd
from sklearn.linear_model import Lasso, LassoCV
from sklearn.model_selection import KFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from xgboost import XGBRegressor

from cate_policy.config import TREATMENT_COL, EngineConfig
from cate_policy.data_loader import UnitTable, load_external_scores
from cate_policy.errors import EstimationError
from cate_policy.scoring import counterfactual_uplift

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────
# Defaults
# ──────────────────────────────────────────────

DEFAULT_LEARNER_PARAMS: dict[str, Any] = {
    "max_depth": 3,
    "n_estimators": 200,
    "learning_rate": 0.05,
    "random_state": 42,
    "objective": "reg:squarederror",
}

# Ratio between the smallest and the largest penalty of the lasso path.
_ALPHA_MIN_RATIO = 1e-3


# ──────────────────────────────────────────────
# Design matrix
# ──────────────────────────────────────────────


def interaction_name(covariate: str) -> str:
    return f"{covariate}:{TREATMENT_COL}"


def build_interaction_design(
    X: pd.DataFrame,
    treatment: pd.Series | np.ndarray | int,
) -> pd.DataFrame:
    """Covariates, the treatment flag, and every covariate×treatment term.

    Args:
        X: Covariate frame.
        treatment: Per-row treatment vector, or a scalar applied to all rows
            (used for counterfactual predictions).

    Returns:
        Float DataFrame with columns ``[*X.columns, "W", *"<x>:W"]``.
    """
    t = np.array(np.broadcast_to(np.asarray(treatment, dtype=float), (len(X),)))
    design = X.astype(float).reset_index(drop=True)
    design[TREATMENT_COL] = t
    for col in X.columns:
        design[interaction_name(col)] = design[col].to_numpy() * t
    return design


def _check_design_rank(design: pd.DataFrame, seed: int | None = None) -> None:
    """Raise if ``[1, design]`` does not have full column rank."""
    matrix = np.column_stack([np.ones(len(design)), design.to_numpy()])
    rank = int(np.linalg.matrix_rank(matrix))
    if rank < matrix.shape[1]:
        raise EstimationError(
            "Interaction design matrix is rank-deficient; remove collinear "
            "covariates before fitting",
            n_units=len(design),
            rank=rank,
            n_columns=matrix.shape[1],
            seed=seed,
        )
    logger.debug("Design matrix has full rank %d.", rank)


def _require_both_arms(units: UnitTable, seed: int | None = None) -> None:
    n_treated = int(units.treatment.sum())
    if n_treated == 0 or n_treated == len(units):
        raise EstimationError(
            "Cohort needs both treated and control units",
            n_units=len(units),
            seed=seed,
        )


# ──────────────────────────────────────────────
# Fitted models
# ──────────────────────────────────────────────


class FittedModel(ABC):
    """Anything that can produce a per-unit treatment effect."""

    name: str

    @abstractmethod
    def predict_uplift(self, units: UnitTable) -> np.ndarray:
        """Return per-unit CATE estimates."""


class FittedOutcomeModel(FittedModel):
    """Fitted model of the outcome given covariates and treatment."""

    covariates: tuple[str, ...]

    @abstractmethod
    def predict_outcome(self, units: UnitTable, treatment_override: int) -> np.ndarray:
        """Predict outcomes with the treatment flag forced to *treatment_override*."""

    def predict_uplift(self, units: UnitTable) -> np.ndarray:
        return counterfactual_uplift(self, units)

    def _covariate_frame(self, units: UnitTable) -> pd.DataFrame:
        missing = set(self.covariates) - set(units.frame.columns)
        if missing:
            raise ValueError(f"Units lack covariates used by {self.name!r}: {missing}")
        return units.frame.loc[:, list(self.covariates)]


@dataclass(frozen=True, eq=False)
class LinearOutcomeModel(FittedOutcomeModel):
    """Linear model over the interaction design."""

    name: str
    covariates: tuple[str, ...]
    intercept: float
    coefficients: pd.Series

    def predict_outcome(self, units: UnitTable, treatment_override: int) -> np.ndarray:
        design = build_interaction_design(self._covariate_frame(units), treatment_override)
        beta = self.coefficients.reindex(design.columns).to_numpy()
        return self.intercept + design.to_numpy() @ beta


@dataclass(frozen=True, eq=False)
class PenaltyPath:
    """Cross-validated error along the lasso penalty path.

    Attributes:
        alphas: Penalties, in decreasing order.
        mean_mse: Mean out-of-fold squared error per penalty.
        se_mse: Standard error of the out-of-fold error per penalty.
        alpha_min: Penalty with the smallest mean error.
        alpha_1se: Largest penalty within one standard error of the minimum.
    """

    alphas: np.ndarray
    mean_mse: np.ndarray
    se_mse: np.ndarray
    alpha_min: float
    alpha_1se: float

    @classmethod
    def from_fold_errors(cls, alphas: np.ndarray, mse_path: np.ndarray) -> PenaltyPath:
        """Build from an ``(n_alphas, n_folds)`` matrix of fold errors."""
        mean_mse = mse_path.mean(axis=1)
        se_mse = mse_path.std(axis=1, ddof=1) / np.sqrt(mse_path.shape[1])

        best = int(np.argmin(mean_mse))
        within = mean_mse <= mean_mse[best] + se_mse[best]
        return cls(
            alphas=np.asarray(alphas),
            mean_mse=mean_mse,
            se_mse=se_mse,
            alpha_min=float(alphas[best]),
            alpha_1se=float(np.max(alphas[within])),
        )


PenaltyRule = Union[str, Callable[[PenaltyPath], float]]

PENALTY_SELECTORS: dict[str, Callable[[PenaltyPath], float]] = {
    "min": lambda path: path.alpha_min,
    "1se": lambda path: path.alpha_1se,
}


def select_penalty(path: PenaltyPath, rule: PenaltyRule) -> float:
    """Apply a named or callable selection *rule* to a penalty path."""
    if callable(rule):
        return float(rule(path))
    try:
        return float(PENALTY_SELECTORS[rule](path))
    except KeyError:
        raise ValueError(
            f"Unknown penalty rule {rule!r}; expected one of {list(PENALTY_SELECTORS)}."
        ) from None


@dataclass(frozen=True, eq=False)
class PenalizedOutcomeModel(FittedOutcomeModel):
    """Lasso over the standardised interaction design."""

    name: str
    covariates: tuple[str, ...]
    pipeline: Pipeline = field(repr=False)
    penalty_path: PenaltyPath = field(repr=False)
    alpha: float

    def predict_outcome(self, units: UnitTable, treatment_override: int) -> np.ndarray:
        design = build_interaction_design(self._covariate_frame(units), treatment_override)
        return self.pipeline.predict(design)

    @property
    def coefficients(self) -> pd.Series:
        """Lasso coefficients on the standardised design."""
        lasso = self.pipeline.named_steps["lasso"]
        return pd.Series(lasso.coef_, index=self.pipeline.feature_names_in_)


@dataclass(frozen=True, eq=False)
class TreeOutcomeModel(FittedOutcomeModel):
    """Gradient-boosted outcome model with the treatment flag as a feature."""

    name: str
    covariates: tuple[str, ...]
    booster: XGBRegressor = field(repr=False)

    def predict_outcome(self, units: UnitTable, treatment_override: int) -> np.ndarray:
        features = self._covariate_frame(units).assign(**{TREATMENT_COL: treatment_override})
        return self.booster.predict(features)


@dataclass(frozen=True, eq=False)
class ExternalScoreModel(FittedModel):
    """Effects computed outside this system, looked up by unit id.

    Attributes:
        scores: Float Series of effects indexed by unit id.
        name: Model name used for the score column.
    """

    scores: pd.Series = field(repr=False)
    name: str = "external"

    @classmethod
    def from_table(
        cls,
        source: pd.DataFrame | str,
        id_col: str = "id",
        score_col: str = "tau",
        name: str = "external",
    ) -> ExternalScoreModel:
        return cls(scores=load_external_scores(source, id_col, score_col), name=name)

    def predict_uplift(self, units: UnitTable) -> np.ndarray:
        values = self.scores.reindex(units.ids.to_numpy())
        missing = values.isna()
        if missing.any():
            sample = units.ids[missing.to_numpy()].head(5).tolist()
            raise ValueError(
                f"{int(missing.sum())} units have no external score, e.g. {sample}."
            )
        return values.to_numpy(dtype=float)


# ──────────────────────────────────────────────
# Estimators
# ──────────────────────────────────────────────


class CATEEstimator(ABC):
    """Fits a :class:`FittedModel` on an arbitrary cohort."""

    name: str

    @abstractmethod
    def fit(self, units: UnitTable) -> FittedModel:
        """Fit on *units* and return a new fitted model."""


class InteractionOLS(CATEEstimator):
    """Ordinary least squares on covariates, treatment and all interactions."""

    def __init__(self, name: str = "ols") -> None:
        self.name = name

    def fit(self, units: UnitTable) -> LinearOutcomeModel:
        _require_both_arms(units)
        design = build_interaction_design(units.X, units.treatment)
        _check_design_rank(design)

        matrix = np.column_stack([np.ones(len(design)), design.to_numpy()])
        beta, *_ = np.linalg.lstsq(matrix, units.outcome.to_numpy(dtype=float), rcond=None)

        logger.info("Fitted %s on %d units (%d terms).", self.name, len(units), len(beta))
        return LinearOutcomeModel(
            name=self.name,
            covariates=units.covariates,
            intercept=float(beta[0]),
            coefficients=pd.Series(beta[1:], index=design.columns),
        )


class InteractionLasso(CATEEstimator):
    """Lasso on the interaction design with a cross-validated penalty.

    Args:
        penalty_rule: ``"min"``, ``"1se"`` or a callable taking a
            :class:`PenaltyPath` and returning the penalty to use.
        cv_folds: Number of cross-validation folds.
        n_alphas: Length of the penalty path.
        seed: Seed for the fold assignment.
        max_iter: Coordinate-descent iteration cap.
        name: Model name.
    """

    def __init__(
        self,
        penalty_rule: PenaltyRule = "min",
        cv_folds: int = 10,
        n_alphas: int = 100,
        seed: int | None = 42,
        max_iter: int = 10_000,
        name: str = "lasso",
    ) -> None:
        self.penalty_rule = penalty_rule
        self.cv_folds = cv_folds
        self.n_alphas = n_alphas
        self.seed = seed
        self.max_iter = max_iter
        self.name = name

    def _alpha_grid(self, Z: np.ndarray, y: np.ndarray) -> np.ndarray:
        alpha_max = np.max(np.abs(Z.T @ (y - y.mean()))) / len(y)
        if alpha_max <= 0:
            raise EstimationError(
                "Outcome is constant; no penalty path", n_units=len(y), seed=self.seed
            )
        return np.logspace(
            np.log10(alpha_max), np.log10(alpha_max * _ALPHA_MIN_RATIO), self.n_alphas
        )

    def penalty_path(self, units: UnitTable) -> PenaltyPath:
        """Cross-validate the penalty on *units* without refitting."""
        design = build_interaction_design(units.X, units.treatment)
        _check_design_rank(design, seed=self.seed)
        y = units.outcome.to_numpy(dtype=float)

        Z = StandardScaler().fit_transform(design)
        folds = KFold(n_splits=self.cv_folds, shuffle=True, random_state=self.seed)
        search = LassoCV(
            alphas=self._alpha_grid(Z, y),
            cv=folds,
            max_iter=self.max_iter,
        ).fit(Z, y)
        return PenaltyPath.from_fold_errors(search.alphas_, search.mse_path_)

    def fit(self, units: UnitTable) -> PenalizedOutcomeModel:
        _require_both_arms(units, seed=self.seed)
        path = self.penalty_path(units)
        alpha = select_penalty(path, self.penalty_rule)

        design = build_interaction_design(units.X, units.treatment)
        pipeline = Pipeline(
            [
                ("scale", StandardScaler()),
                ("lasso", Lasso(alpha=alpha, max_iter=self.max_iter)),
            ]
        ).fit(design, units.outcome.to_numpy(dtype=float))

        n_active = int(np.count_nonzero(pipeline.named_steps["lasso"].coef_))
        logger.info(
            "Fitted %s on %d units: alpha_min=%.5g alpha_1se=%.5g selected=%.5g "
            "(%d active terms).",
            self.name, len(units), path.alpha_min, path.alpha_1se, alpha, n_active,
        )
        return PenalizedOutcomeModel(
            name=self.name,
            covariates=units.covariates,
            pipeline=pipeline,
            penalty_path=path,
            alpha=alpha,
        )


class BoostedSLearner(CATEEstimator):
    """Single XGBoost outcome model with the treatment flag as a feature.

    Uplift is obtained by predicting twice, once with W=1 and once with
    W=0, and differencing.
    """

    def __init__(
        self,
        learner_params: dict[str, Any] | None = None,
        name: str = "xgb",
    ) -> None:
        self.learner_params: dict[str, Any] = (
            learner_params or DEFAULT_LEARNER_PARAMS.copy()
        )
        self.name = name

    def fit(self, units: UnitTable) -> TreeOutcomeModel:
        _require_both_arms(units, seed=self.learner_params.get("random_state"))
        features = units.X.assign(**{TREATMENT_COL: units.treatment.to_numpy()})
        booster = XGBRegressor(**self.learner_params)
        booster.fit(features, units.outcome.to_numpy(dtype=float))

        logger.info("Fitted %s on %d units.", self.name, len(units))
        return TreeOutcomeModel(name=self.name, covariates=units.covariates, booster=booster)


# ──────────────────────────────────────────────
# Registry
# ──────────────────────────────────────────────


def make_estimator(name: str, config: EngineConfig | None = None) -> CATEEstimator:
    """Build the in-core estimator registered under *name*."""
    config = config or EngineConfig()
    if name == "ols":
        return InteractionOLS()
    if name == "lasso":
        return InteractionLasso(
            penalty_rule=config.penalty_rule,
            cv_folds=config.cv_folds,
            seed=config.seed,
        )
    if name == "xgb":
        params = {**DEFAULT_LEARNER_PARAMS, "random_state": config.seed}
        return BoostedSLearner(learner_params=params)
    raise ValueError(f"Unknown estimator: {name!r}")
