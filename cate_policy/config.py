"""
Engine configuration.

A single frozen :class:`EngineConfig` carries every option the engine
recognises.  Build it directly, from a plain mapping, or from a YAML file.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import numpy as np
import yaml

# ──────────────────────────────────────────────
# Canonical column names
# ──────────────────────────────────────────────

ID_COL = "id"
TREATMENT_COL = "W"
OUTCOME_COL = "y"
PROPENSITY_COL = "propensity"
SCORE_PREFIX = "tau_"

PENALTY_RULES = ("min", "1se")
KNOWN_ESTIMATORS = ("ols", "lasso", "xgb")


def default_top_percent_grid() -> tuple[float, ...]:
    """Return ``0.00, 0.01, ..., 1.00``."""
    return tuple(float(p) for p in np.round(np.linspace(0.0, 1.0, 101), 2))


# ──────────────────────────────────────────────
# Config object
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class EngineConfig:
    """Options for splitting, estimation, lift tables and policy evaluation.

    Attributes:
        split_probability: Probability that a unit lands in the training cohort.
        seed: Seed for the splitter, the CV folds and the boosted learner.
        num_lift_groups: Number of equal-frequency buckets in a lift table.
        margin: Contribution per unit of outcome.
        cost: Cost of treating one unit.
        top_percent_grid: Fractions swept by the top-percent policy family.
        profit_scale: Profit is reported per this many units.
        confidence_level: Two-sided confidence level of the lift intervals.
        cv_folds: Folds used to pick the lasso penalty.
        penalty_rule: ``"min"`` or ``"1se"``.
        estimators: Names of the in-core estimators to fit.
    """

    split_probability: float = 0.5
    seed: int = 42
    num_lift_groups: int = 20
    margin: float = 0.3
    cost: float = 0.5
    top_percent_grid: tuple[float, ...] = field(default_factory=default_top_percent_grid)
    profit_scale: float = 1000.0
    confidence_level: float = 0.95
    cv_folds: int = 10
    penalty_rule: str = "min"
    estimators: tuple[str, ...] = ("ols", "lasso")

    def __post_init__(self) -> None:
        # Lists coming from YAML are normalised to tuples.
        object.__setattr__(
            self, "top_percent_grid", tuple(float(p) for p in self.top_percent_grid)
        )
        object.__setattr__(self, "estimators", tuple(self.estimators))

        if not 0.0 < self.split_probability < 1.0:
            raise ValueError("split_probability must lie strictly between 0 and 1.")
        if self.num_lift_groups < 1:
            raise ValueError("num_lift_groups must be at least 1.")
        if not self.top_percent_grid:
            raise ValueError("top_percent_grid must not be empty.")
        if any(not 0.0 <= p <= 1.0 for p in self.top_percent_grid):
            raise ValueError("top_percent_grid values must lie in [0, 1].")
        if self.profit_scale <= 0:
            raise ValueError("profit_scale must be positive.")
        if not 0.0 < self.confidence_level < 1.0:
            raise ValueError("confidence_level must lie strictly between 0 and 1.")
        if self.cv_folds < 2:
            raise ValueError("cv_folds must be at least 2.")
        if self.penalty_rule not in PENALTY_RULES:
            raise ValueError(
                f"penalty_rule must be one of {PENALTY_RULES}, got {self.penalty_rule!r}."
            )
        unknown = set(self.estimators) - set(KNOWN_ESTIMATORS)
        if unknown:
            raise ValueError(f"Unknown estimators: {sorted(unknown)}")

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> EngineConfig:
        """Build a config from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise ValueError(f"Unknown configuration options: {sorted(unknown)}")
        return cls(**dict(options))

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Read a YAML file whose top level is a mapping of options."""
        with Path(path).open("r", encoding="utf-8") as f:
            options = yaml.safe_load(f) or {}
        if not isinstance(options, dict):
            raise ValueError(f"Config file {path} must contain a mapping.")
        return cls.from_mapping(options)

    def replace(self, **changes: Any) -> EngineConfig:
        """Return a copy with *changes* applied."""
        return dataclasses.replace(self, **changes)
