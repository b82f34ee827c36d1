"""Shared fixtures for the targeting engine test suite."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from cate_policy.data_loader import UnitTable, generate_synthetic_experiment, load_units


@pytest.fixture
def synthetic_experiment() -> tuple[UnitTable, np.ndarray]:
    """Randomized experiment with a known linear effect and its true tau."""
    frame, true_tau = generate_synthetic_experiment(n=2_000, seed=7)
    return load_units(frame), true_tau


@pytest.fixture
def synthetic_scores(synthetic_experiment) -> pd.DataFrame:
    """Score table whose ``tau_oracle`` column holds the true effects."""
    units, true_tau = synthetic_experiment
    scores = units.frame.loc[:, ["id", "W", "y", "propensity"]].copy()
    scores["tau_oracle"] = true_tau
    return scores


@pytest.fixture
def eight_unit_scores() -> pd.DataFrame:
    """Balanced, noiseless 8-unit experiment: four +5 effects, four -5 effects."""
    treatment = np.array([1, 0, 1, 0, 1, 0, 1, 0])
    tau = np.array([5.0, 5.0, 5.0, 5.0, -5.0, -5.0, -5.0, -5.0])
    baseline = 10.0
    return pd.DataFrame(
        {
            "id": np.arange(8),
            "W": treatment,
            "y": baseline + tau * treatment,
            "propensity": 0.5,
            "tau_oracle": tau,
        }
    )


@pytest.fixture
def linear_units() -> UnitTable:
    """Noiseless data with ``tau = 2 + 0.5 * x1``."""
    rng = np.random.default_rng(3)
    n = 300
    x0 = rng.standard_normal(n)
    x1 = rng.standard_normal(n)
    w = rng.integers(0, 2, n)
    y = 1.0 + x0 - 0.5 * x1 + w * (2.0 + 0.5 * x1)
    df = pd.DataFrame({"id": np.arange(n), "W": w, "y": y, "x0": x0, "x1": x1})
    return load_units(df)
