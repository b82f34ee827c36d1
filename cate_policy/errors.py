"""
Error taxonomy for the targeting engine.

Estimation and splitting errors are fatal to a run.  Undefined per-bucket
statistics are not errors: they are reported as ``NaN`` and announced with
an :class:`UndefinedStatistic` warning.
"""

from __future__ import annotations


class CATEPolicyError(Exception):
    """Base class for every error raised by :mod:`cate_policy`."""


class EstimationError(CATEPolicyError):
    """The design matrix is degenerate and the model cannot be fitted.

    Args:
        message: Human readable description.
        n_units: Number of units in the cohort being fitted.
        rank: Numerical rank of the design matrix (with intercept).
        n_columns: Number of columns of the design matrix (with intercept).
        seed: Seed of the estimator that failed, if it uses one.
    """

    def __init__(
        self,
        message: str,
        n_units: int | None = None,
        rank: int | None = None,
        n_columns: int | None = None,
        seed: int | None = None,
    ) -> None:
        details = []
        if n_units is not None:
            details.append(f"n_units={n_units}")
        if seed is not None:
            details.append(f"seed={seed}")
        if rank is not None and n_columns is not None:
            details.append(f"rank={rank}/{n_columns}")
        full = f"{message} ({', '.join(details)})" if details else message
        super().__init__(full)
        self.n_units = n_units
        self.rank = rank
        self.n_columns = n_columns
        self.seed = seed


class SplitError(CATEPolicyError):
    """Partitioning left the training or the validation cohort empty."""

    def __init__(
        self,
        message: str,
        n_units: int,
        seed: int | None,
        split_probability: float,
    ) -> None:
        super().__init__(
            f"{message} (n_units={n_units}, seed={seed}, "
            f"split_probability={split_probability})"
        )
        self.n_units = n_units
        self.seed = seed
        self.split_probability = split_probability


class BucketingError(CATEPolicyError, ValueError):
    """Not enough distinct scores to form the requested number of groups."""


class UndefinedStatistic(RuntimeWarning):
    """A bucket or quadrant has zero treated or zero control units."""
