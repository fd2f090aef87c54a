"""
Weighted (Hajek) treatment effect estimator with a sandwich standard error.
"""

from __future__ import annotations

import warnings
from typing import Optional, Union

import numpy as np

from propensitykit.data.units import UnitDataset
from propensitykit.inference.results import EstimationResult, check_estimand
from propensitykit.weighting.engine import WeightVector


def _wls_hc1(y: np.ndarray, t: np.ndarray, w: np.ndarray) -> tuple:
    """
    Weighted least squares of y on [1, t] with an HC1 sandwich covariance.

    V = n / (n - 2) * (Z'WZ)^-1 Z' diag(w^2 e^2) Z (Z'WZ)^-1
    """
    n = y.shape[0]
    Z = np.column_stack([np.ones(n), t])
    ZtW = Z.T * w
    bread = np.linalg.inv(ZtW @ Z)
    beta = bread @ (ZtW @ y)
    resid = y - Z @ beta
    score = Z * (w * resid)[:, None]
    meat = score.T @ score
    dof = n / (n - 2) if n > 2 else 1.0
    cov = dof * bread @ meat @ bread
    return beta, cov


def estimate_weighted_effect(
    dataset: UnitDataset,
    weights: Union[WeightVector, np.ndarray],
    outcome_field: str = "outcome",
    estimand: Optional[str] = None,
) -> EstimationResult:
    """
    Weighted difference in outcome means between treated and control units.

    The point estimate is the treatment coefficient of a weighted linear
    regression of the outcome on an intercept and the treatment indicator,
    which equals the difference of weighted arm means. The standard error
    is the HC1 heteroskedasticity-consistent sandwich estimate, so units with
    large weights inflate the variance. Only units with positive weight
    (i.e. not trimmed) enter.

    Parameters
    ----------
    dataset : UnitDataset
        Units the weights were computed for.
    weights : WeightVector or array-like
        Per-unit weights aligned with ``dataset``.
    outcome_field : str, default "outcome"
        ``"outcome"``, ``"outcome2"`` or an outcome column name.
    estimand : {"ATE", "ATT", "ATO"}, optional
        Label of the target population. Defaults to the scheme's estimand
        (``ATE`` for raw arrays).

    Returns
    -------
    EstimationResult
    """
    if isinstance(weights, WeightVector):
        w_all = np.asarray(weights.values, dtype=float)
        natural = weights.scheme.estimand
        method = f"weighted:{weights.scheme.label}"
    else:
        w_all = np.asarray(weights, dtype=float).reshape(-1)
        natural = None
        method = "weighted:custom"

    n = len(dataset)
    if w_all.shape[0] != n:
        raise ValueError(f"weights has {w_all.shape[0]} entries but the dataset has {n} units")
    if np.any(~np.isfinite(w_all)) or np.any(w_all < 0):
        raise ValueError("weights must be finite and non-negative")

    if estimand is None:
        target = natural or "ATE"
    else:
        target = check_estimand(estimand)
        if natural is not None and target != natural:
            warnings.warn(
                f"Estimand {target} requested for {method} weights, which target the {natural} population; "
                f"the result is labelled {target} but the formula is unchanged.",
                UserWarning,
                stacklevel=2,
            )

    y_all = dataset.outcome_array(outcome_field)
    t_all = dataset.treatment
    mask = w_all > 0
    w, y, t = w_all[mask], y_all[mask], t_all[mask].astype(float)

    n_treated = int(t.sum())
    n_control = int(t.size - n_treated)
    if n_treated == 0 or n_control == 0:
        arm = "treated" if n_treated == 0 else "control"
        raise ValueError(f"No {arm} units with positive weight; the effect is not estimable.")

    beta, cov = _wls_hc1(y, t, w)
    se = float(np.sqrt(max(float(cov[1, 1]), 0.0)))
    ess = float(w.sum() ** 2 / np.sum(w ** 2))

    return EstimationResult(
        estimate=float(beta[1]),
        std_error=se,
        estimand=target,
        effective_sample_size=ess,
        n_treated=n_treated,
        n_control=n_control,
        method=method,
        outcome=outcome_field,
    )
