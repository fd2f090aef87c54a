"""
Weight engine: turns propensity scores and treatment into a scheme-tagged weight vector.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np

from propensitykit.exceptions import WeightComputationError
from propensitykit.propensity.model import PropensityScores
from propensitykit.weighting.schemes import WeightScheme


@dataclass(frozen=True)
class WeightVector:
    """
    Per-unit weights aligned one-to-one with the units they were computed for.

    Attributes
    ----------
    values : np.ndarray
        Weights; trimmed units carry 0.
    scheme : WeightScheme
        Scheme that produced the weights.
    kept : np.ndarray of bool
        False for units removed by trimming.
    """

    values: np.ndarray
    scheme: WeightScheme
    kept: np.ndarray

    def __post_init__(self):
        values = np.array(self.values, dtype=float).reshape(-1)
        kept = np.array(self.kept, dtype=bool).reshape(-1)
        if values.shape != kept.shape:
            raise ValueError(f"values ({values.shape[0]}) and kept ({kept.shape[0]}) must have the same length")
        values.setflags(write=False)
        kept.setflags(write=False)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "kept", kept)

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def __array__(self, dtype=None, copy=None):
        return np.array(self.values, dtype=dtype)

    @property
    def estimand(self) -> str:
        return self.scheme.estimand

    @property
    def n_kept(self) -> int:
        return int(self.kept.sum())

    @property
    def n_trimmed(self) -> int:
        return int((~self.kept).sum())

    @property
    def effective_sample_size(self) -> float:
        """Kish effective sample size (sum w)^2 / sum w^2."""
        w = self.values[self.kept]
        return float(w.sum() ** 2 / np.sum(w ** 2))


def _validate(p, t):
    p_arr = np.atleast_1d(np.asarray(p.values if isinstance(p, PropensityScores) else p, dtype=float)).reshape(-1)
    t_arr = np.atleast_1d(np.asarray(t)).reshape(-1)
    if p_arr.shape[0] != t_arr.shape[0]:
        raise ValueError(f"p has {p_arr.shape[0]} values but t has {t_arr.shape[0]}")
    if not np.all(np.isin(t_arr, (0, 1))):
        bad = int(np.flatnonzero(~np.isin(t_arr, (0, 1)))[0])
        raise ValueError(f"Treatment must be binary 0/1; unit {bad} has t={t_arr[bad]!r}")

    invalid = ~np.isfinite(p_arr) | (p_arr <= 0.0) | (p_arr >= 1.0)
    if np.any(invalid):
        idx = np.flatnonzero(invalid)
        first = int(idx[0])
        raise WeightComputationError(
            f"Propensity score of unit {first} is {p_arr[first]!r}, outside the open interval (0, 1) "
            f"({idx.size} unit(s) affected); configure a clip epsilon on the propensity model.",
            unit=first,
            value=float(p_arr[first]),
        )
    return p_arr, t_arr.astype(int)


def compute_weights(
    p: Union[PropensityScores, np.ndarray, float],
    t: Union[np.ndarray, int],
    scheme: WeightScheme,
) -> WeightVector:
    """
    Compute weights for every unit under ``scheme``.

    Parameters
    ----------
    p : PropensityScores, array-like or float
        Propensity scores, strictly inside (0, 1).
    t : array-like or int
        Treatment indicators (0/1), aligned with ``p``.
    scheme : WeightScheme
        Weight scheme instance (see :mod:`propensitykit.weighting.schemes`).

    Returns
    -------
    WeightVector

    Raises
    ------
    WeightComputationError
        If any p is non-finite or outside (0, 1), or a resulting weight is not
        positive and finite. The whole pass fails; no partial vector is returned.
    TrimmingError
        If a trimming policy empties a treatment arm.

    Examples
    --------
    >>> from propensitykit.weighting import IPTW, compute_weights
    >>> compute_weights([0.8, 0.3], [1, 0], IPTW()).values
    array([1.25      , 1.42857143])
    """
    if not isinstance(scheme, WeightScheme):
        raise TypeError(f"scheme must be a WeightScheme, got {type(scheme).__name__}")
    p_arr, t_arr = _validate(p, t)

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        w, kept = scheme.weights(p_arr, t_arr)
    w = np.asarray(w, dtype=float)

    bad = kept & (~np.isfinite(w) | (w <= 0.0))
    if np.any(bad):
        first = int(np.flatnonzero(bad)[0])
        raise WeightComputationError(
            f"Scheme {scheme.label} produced weight {w[first]!r} for unit {first} (p={p_arr[first]!r}, "
            f"t={t_arr[first]}); weights must be positive and finite.",
            unit=first,
            value=float(p_arr[first]),
        )
    return WeightVector(values=w, scheme=scheme, kept=kept)
