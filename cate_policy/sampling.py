"""Seeded training/validation split of a unit table."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from cate_policy.data_loader import UnitTable
from cate_policy.errors import SplitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cohort:
    """Non-overlapping training and validation cohorts of one population."""

    training: UnitTable
    validation: UnitTable
    seed: int | None
    split_probability: float


def draw_training_mask(
    n_units: int,
    split_probability: float = 0.5,
    seed: int | None = None,
) -> np.ndarray:
    """Draw an i.i.d. Bernoulli(*split_probability*) training indicator.

    The same seed and length always give the same mask.
    """
    rng = np.random.default_rng(seed)
    return rng.random(n_units) < split_probability


def split_sample(
    units: UnitTable,
    split_probability: float = 0.5,
    seed: int | None = None,
) -> Cohort:
    """Partition *units* into training and validation cohorts.

    Args:
        units: Population in a fixed order.
        split_probability: Probability that a unit goes to training.
        seed: Seed for the generator.

    Returns:
        A :class:`Cohort`.

    Raises:
        SplitError: If either cohort ends up empty.
    """
    mask = draw_training_mask(len(units), split_probability, seed)
    n_train = int(mask.sum())

    if n_train == 0 or n_train == len(units):
        side = "training" if n_train == 0 else "validation"
        raise SplitError(
            f"Empty {side} cohort after partitioning",
            n_units=len(units),
            seed=seed,
            split_probability=split_probability,
        )

    logger.info(
        "Split %d units into %d training / %d validation (seed=%s).",
        len(units), n_train, len(units) - n_train, seed,
    )
    return Cohort(
        training=units.subset(mask),
        validation=units.subset(~mask),
        seed=seed,
        split_probability=split_probability,
    )
