"""
Counterfactual scoring.

The effect of a unit is the difference between two outcome predictions for
the same covariates, once with the treatment flag forced to 1 and once
forced to 0.  The model is never asked for its coefficients, so any outcome
model plugs in unchanged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Mapping, Sequence, Union

import numpy as np
import pandas as pd

from cate_policy.config import (
    ID_COL,
    OUTCOME_COL,
    PROPENSITY_COL,
    SCORE_PREFIX,
    TREATMENT_COL,
)
from cate_policy.data_loader import UnitTable

if TYPE_CHECKING:
    from cate_policy.model import FittedModel, FittedOutcomeModel

ModelCollection = Union[Sequence["FittedModel"], Mapping[str, "FittedModel"]]


def score_column(model_name: str) -> str:
    """Name of the score column holding *model_name*'s effects."""
    return f"{SCORE_PREFIX}{model_name}"


def counterfactual_uplift(model: FittedOutcomeModel, units: UnitTable) -> np.ndarray:
    """Return ``predict(W=1) - predict(W=0)`` for every unit."""
    treated = np.asarray(model.predict_outcome(units, treatment_override=1), dtype=float)
    control = np.asarray(model.predict_outcome(units, treatment_override=0), dtype=float)
    return treated - control


def score_units(units: UnitTable, models: ModelCollection) -> pd.DataFrame:
    """Score *units* with every model.

    Args:
        units: Units to score (not modified).
        models: Fitted models, as a sequence (named by ``model.name``) or a
            mapping of name to model.

    Returns:
        New DataFrame with ``id, W, y, propensity`` and one ``tau_<name>``
        column per model.
    """
    if isinstance(models, Mapping):
        named = list(models.items())
    else:
        named = [(m.name, m) for m in models]

    names = [name for name, _ in named]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate model names: {names}")

    scores = units.frame.loc[:, [ID_COL, TREATMENT_COL, OUTCOME_COL, PROPENSITY_COL]].copy()
    for name, model in named:
        scores[score_column(name)] = np.asarray(model.predict_uplift(units), dtype=float)
    return scores
