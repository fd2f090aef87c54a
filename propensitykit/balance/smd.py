"""
Covariate balance diagnostics based on standardized mean differences (SMD).

The SMD of covariate X is

    (weighted mean of X among treated - weighted mean among controls) / s_pooled

where ``s_pooled = sqrt((s1^2 + s0^2) / 2)`` uses the *unweighted* sample
variances of each arm on the full dataset. Keeping the denominator fixed makes
SMDs comparable across weight schemes: only the numerator moves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Union

import numpy as np
import pandas as pd

from propensitykit.data.units import UnitDataset
from propensitykit.weighting.engine import WeightVector

WeightsLike = Optional[Union[WeightVector, np.ndarray]]


@dataclass(frozen=True)
class CovariateBalance:
    unweighted: float
    weighted: float
    balanced: bool


@dataclass(frozen=True)
class BalanceReport:
    """
    Balance of every covariate before and after weighting.

    Attributes
    ----------
    covariates : Mapping[str, CovariateBalance]
        Per-covariate unweighted SMD, weighted SMD and whether the absolute
        weighted SMD is within ``threshold``.
    threshold : float
        Balance threshold on the absolute weighted SMD.
    scheme : str
        Label of the weight scheme (``"unweighted"`` when no weights were given).
    """

    covariates: Mapping[str, CovariateBalance]
    threshold: float = 0.1
    scheme: str = "unweighted"

    @property
    def passed(self) -> bool:
        """True when every covariate meets the threshold."""
        return all(entry.balanced for entry in self.covariates.values())

    @property
    def imbalanced(self) -> List[str]:
        """Covariates whose absolute weighted SMD exceeds the threshold."""
        return [name for name, entry in self.covariates.items() if not entry.balanced]

    @property
    def max_abs_weighted(self) -> float:
        return float(max(abs(entry.weighted) for entry in self.covariates.values()))

    def __getitem__(self, name: str) -> CovariateBalance:
        return self.covariates[name]

    def to_frame(self) -> pd.DataFrame:
        """One row per covariate with columns smd_unweighted, smd_weighted, balanced."""
        return pd.DataFrame(
            {
                "smd_unweighted": [e.unweighted for e in self.covariates.values()],
                "smd_weighted": [e.weighted for e in self.covariates.values()],
                "balanced": [e.balanced for e in self.covariates.values()],
            },
            index=pd.Index(list(self.covariates), name="covariate"),
        )


def _weights_array(dataset: UnitDataset, weights: WeightsLike) -> np.ndarray:
    n = len(dataset)
    if weights is None:
        return np.ones(n, dtype=float)
    w = np.asarray(weights.values if isinstance(weights, WeightVector) else weights, dtype=float).reshape(-1)
    if w.shape[0] != n:
        raise ValueError(f"weights has {w.shape[0]} entries but the dataset has {n} units")
    if np.any(~np.isfinite(w)) or np.any(w < 0):
        raise ValueError("weights must be finite and non-negative")
    return w


def _arm_means(x: np.ndarray, t: np.ndarray, w: np.ndarray, label: str) -> tuple:
    means = []
    for arm, name in ((1, "treated"), (0, "control")):
        mask = t == arm
        total = float(w[mask].sum())
        if total <= 0:
            raise ValueError(f"The {name} arm has zero total weight; cannot compute the mean of '{label}'.")
        means.append(float(np.sum(w[mask] * x[mask]) / total))
    return means[0], means[1]


def _pooled_sd(x: np.ndarray, t: np.ndarray) -> float:
    x1 = x[t == 1]
    x0 = x[t == 0]
    v1 = float(np.var(x1, ddof=1)) if x1.size > 1 else 0.0
    v0 = float(np.var(x0, ddof=1)) if x0.size > 1 else 0.0
    return float(np.sqrt(0.5 * (v1 + v0)))


def _smd_from_arrays(x: np.ndarray, t: np.ndarray, w: np.ndarray, label: str) -> float:
    mu1, mu0 = _arm_means(x, t, w, label)
    diff = mu1 - mu0
    s = _pooled_sd(x, t)
    if s <= 1e-16:
        if abs(diff) <= 1e-16:
            return 0.0
        return float(np.copysign(np.inf, diff))
    return float(diff / s)


def smd(dataset: UnitDataset, weights: WeightsLike, covariate: str) -> float:
    """
    Signed standardized mean difference of one covariate.

    Parameters
    ----------
    dataset : UnitDataset
        Units with treatment and covariates.
    weights : WeightVector, array-like or None
        Per-unit weights; ``None`` gives the unweighted SMD.
    covariate : str
        Covariate name.

    Returns
    -------
    float
        Treated-minus-control SMD; 0.0 when the covariate is constant in both
        arms with equal means, +/-inf when constant with different means.
    """
    x = dataset.covariate(covariate)
    t = dataset.treatment
    return _smd_from_arrays(x, t, _weights_array(dataset, weights), covariate)


def balance_report(dataset: UnitDataset, weights: WeightsLike, threshold: float = 0.1) -> BalanceReport:
    """
    Unweighted and weighted SMD of every covariate with threshold flags.

    Parameters
    ----------
    dataset : UnitDataset
    weights : WeightVector, array-like or None
    threshold : float, default 0.1
        Covariates with ``abs(weighted SMD) > threshold`` are flagged.

    Returns
    -------
    BalanceReport
    """
    threshold = float(threshold)
    if threshold <= 0:
        raise ValueError("threshold must be positive")
    t = dataset.treatment
    w = _weights_array(dataset, weights)
    ones = np.ones(len(dataset), dtype=float)

    entries: Dict[str, CovariateBalance] = {}
    for name in dataset.covariate_names:
        x = dataset.covariate(name)
        unweighted = _smd_from_arrays(x, t, ones, name)
        weighted = _smd_from_arrays(x, t, w, name)
        entries[name] = CovariateBalance(
            unweighted=unweighted,
            weighted=weighted,
            balanced=bool(abs(weighted) <= threshold),
        )

    if isinstance(weights, WeightVector):
        label = weights.scheme.label
    elif weights is None:
        label = "unweighted"
    else:
        label = "custom"
    return BalanceReport(covariates=entries, threshold=threshold, scheme=label)


def weighted_means(dataset: UnitDataset, weights: WeightsLike) -> pd.DataFrame:
    """Weighted covariate means by arm (columns ``treated``, ``control``, ``difference``)."""
    t = dataset.treatment
    w = _weights_array(dataset, weights)
    rows = {}
    for name in dataset.covariate_names:
        mu1, mu0 = _arm_means(dataset.covariate(name), t, w, name)
        rows[name] = {"treated": mu1, "control": mu0, "difference": mu1 - mu0}
    return pd.DataFrame.from_dict(rows, orient="index")
