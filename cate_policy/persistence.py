"""Saving and reloading fitted models and score tables."""

from __future__ import annotations

import logging
from pathlib import Path

import joblib
import pandas as pd

from cate_policy.model import FittedModel

logger = logging.getLogger(__name__)


def save_model(model: FittedModel, path: str | Path) -> Path:
    """Serialise a fitted model with joblib."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(model, path)
    logger.info("Saved model %r to %s.", model.name, path)
    return path


def load_model(path: str | Path) -> FittedModel:
    """Load a model written by :func:`save_model`."""
    model = joblib.load(Path(path))
    if not isinstance(model, FittedModel):
        raise TypeError(f"{path} does not contain a fitted model (got {type(model).__name__}).")
    return model


def save_score_table(scores: pd.DataFrame, path: str | Path) -> Path:
    """Write a score table as CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    scores.to_csv(path, index=False)
    return path


def load_score_table(path: str | Path) -> pd.DataFrame:
    """Read a score table written by :func:`save_score_table` without float drift."""
    return pd.read_csv(path, float_precision="round_trip")
