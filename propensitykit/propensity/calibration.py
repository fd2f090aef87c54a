from __future__ import annotations

import numpy as np
import pandas as pd
from typing import Dict, Any, Optional, Union
from scipy.special import expit
from scipy.stats import rankdata

from propensitykit.data.units import UnitDataset
from propensitykit.propensity.model import PropensityScores


# Thresholds for flags (kept local to this module)
CAL_THRESHOLDS = dict(
    ece_warn=0.10,
    ece_strong=0.20,
    slope_warn_lo=0.8,
    slope_warn_hi=1.2,
    slope_strong_lo=0.6,
    slope_strong_hi=1.4,
    intercept_warn=0.2,
    intercept_strong=0.4,
)


def _as_array(scores: Union[PropensityScores, np.ndarray]) -> np.ndarray:
    if isinstance(scores, PropensityScores):
        return np.asarray(scores.values, dtype=float)
    return np.asarray(scores, dtype=float).ravel()


def auc_mann_whitney(p: np.ndarray, y: np.ndarray) -> float:
    """ROC AUC of scores ``p`` against binary labels ``y`` via the rank-sum statistic."""
    p = np.asarray(p, dtype=float).ravel()
    y = np.asarray(y, dtype=int).ravel()
    n1 = int(y.sum())
    n0 = int(y.size - n1)
    if n1 == 0 or n0 == 0:
        return float("nan")
    ranks = rankdata(p)
    return float((ranks[y == 1].sum() - n1 * (n1 + 1) / 2.0) / (n1 * n0))


def ece_binary(p: np.ndarray, y: np.ndarray, n_bins: int = 10) -> float:
    """
    Expected Calibration Error (ECE) for binary labels using equal-width bins on [0,1].

    Parameters
    ----------
    p : np.ndarray
        Predicted probabilities in [0,1]. Will be clipped to [0,1].
    y : np.ndarray
        Binary labels {0,1}.
    n_bins : int, default 10
        Number of bins.

    Returns
    -------
    float
        ECE value in [0,1].
    """
    p = np.clip(np.asarray(p, dtype=float), 0.0, 1.0)
    y = np.asarray(y, dtype=float)
    n_bins = int(n_bins)
    if p.size == 0 or y.size == 0 or p.size != y.size:
        return float("nan")

    b = np.clip((p * n_bins).astype(int), 0, n_bins - 1)
    sums = np.bincount(b, weights=p, minlength=n_bins)
    hits = np.bincount(b, weights=y, minlength=n_bins)
    cnts = np.bincount(b, minlength=n_bins).astype(float)
    mask = cnts > 0
    return float(
        np.average(
            np.abs(hits[mask] / cnts[mask] - sums[mask] / cnts[mask]),
            weights=cnts[mask] / cnts[mask].sum(),
        )
    )


def _logit(x: np.ndarray) -> np.ndarray:
    x = np.clip(x, 1e-12, 1.0 - 1e-12)
    return np.log(x / (1.0 - x))


def _logistic_recalibration(p: np.ndarray, y: np.ndarray, *, max_iter: int = 100, tol: float = 1e-8, ridge: float = 1e-8) -> tuple[float, float]:
    """
    Fit logistic recalibration model: Pr(T=1|p) = sigmoid(alpha + beta * logit(p)).
    Uses IRLS/Newton steps with a tiny ridge for numerical stability.

    Returns (alpha, beta).
    """
    z = _logit(np.asarray(p, dtype=float))
    y = np.asarray(y, dtype=float)
    X = np.column_stack([np.ones_like(z), z])
    theta = np.array([0.0, 1.0], dtype=float)

    for _ in range(max_iter):
        mu = np.clip(expit(X @ theta), 1e-12, 1.0 - 1e-12)
        W = mu * (1.0 - mu)
        H = (X.T * W) @ X + ridge * np.eye(2)
        g = X.T @ (y - mu)
        try:
            step = np.linalg.solve(H, g)
        except np.linalg.LinAlgError:
            step = np.linalg.pinv(H) @ g
        theta = theta + step
        if np.max(np.abs(step)) < tol:
            break

    return float(theta[0]), float(theta[1])


def calibration_report(
    scores: Union[PropensityScores, np.ndarray],
    dataset: UnitDataset,
    n_bins: int = 10,
    *,
    thresholds: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """
    Calibration report of propensity scores against the observed treatment.

    Returns a dictionary with:
      - auc: ROC AUC of the scores vs treatment (Mann-Whitney)
      - brier: Brier score (mean squared error)
      - ece: Expected Calibration Error (equal-width bins)
      - reliability_table: pd.DataFrame with per-bin stats
      - recalibration: {'intercept': alpha, 'slope': beta} from logistic recalibration
      - flags: {'ece': ..., 'slope': ..., 'intercept': ...} using GREEN/YELLOW/RED
    """
    p = _as_array(scores)
    y = np.asarray(dataset.treatment, dtype=int)
    if p.size == 0 or p.size != y.size:
        raise ValueError(f"scores ({p.size}) and dataset ({y.size}) must be non-empty and of the same length")

    p = np.clip(p, 1e-12, 1.0 - 1e-12)

    auc = auc_mann_whitney(p, y)
    brier = float(np.mean((p - y) ** 2))
    ece = ece_binary(p, y, n_bins=n_bins)

    n_bins = int(n_bins)
    b = np.clip((p * n_bins).astype(int), 0, n_bins - 1)
    cnts = np.bincount(b, minlength=n_bins).astype(int)
    sum_p = np.bincount(b, weights=p, minlength=n_bins)
    sum_y = np.bincount(b, weights=y, minlength=n_bins)

    with np.errstate(divide='ignore', invalid='ignore'):
        mean_p = np.where(cnts > 0, sum_p / cnts, np.nan)
        frac_pos = np.where(cnts > 0, sum_y / cnts, np.nan)
        abs_err = np.abs(frac_pos - mean_p)

    edges = np.linspace(0.0, 1.0, n_bins + 1)
    rel_df = pd.DataFrame({
        "bin": np.arange(n_bins),
        "lower": edges[:-1],
        "upper": edges[1:],
        "count": cnts,
        "mean_p": mean_p,
        "frac_treated": frac_pos,
        "abs_error": abs_err,
    })

    alpha, beta = _logistic_recalibration(p, y)

    thr = CAL_THRESHOLDS.copy()
    if isinstance(thresholds, dict):
        thr.update({k: float(v) for k, v in thresholds.items()})

    def _flag_ece(val: float) -> str:
        if np.isnan(val):
            return "NA"
        if val > thr["ece_strong"]:
            return "RED"
        if val > thr["ece_warn"]:
            return "YELLOW"
        return "GREEN"

    def _flag_slope(v: float) -> str:
        if np.isnan(v):
            return "NA"
        if v < thr["slope_strong_lo"] or v > thr["slope_strong_hi"]:
            return "RED"
        if v < thr["slope_warn_lo"] or v > thr["slope_warn_hi"]:
            return "YELLOW"
        return "GREEN"

    def _flag_intercept(a: float) -> str:
        if np.isnan(a):
            return "NA"
        if abs(a) > thr["intercept_strong"]:
            return "RED"
        if abs(a) > thr["intercept_warn"]:
            return "YELLOW"
        return "GREEN"

    return {
        "n": int(p.size),
        "n_bins": n_bins,
        "auc": auc,
        "brier": brier,
        "ece": ece,
        "reliability_table": rel_df,
        "recalibration": {"intercept": alpha, "slope": beta},
        "flags": {
            "ece": _flag_ece(ece),
            "slope": _flag_slope(beta),
            "intercept": _flag_intercept(alpha),
        },
        "thresholds": thr,
    }


def overlap_summary(
    scores: Union[PropensityScores, np.ndarray],
    dataset: UnitDataset,
    tail: float = 0.05,
) -> pd.DataFrame:
    """
    Per-arm distribution of propensity scores.

    Columns: n, min, q05, median, q95, max and the share of units with
    ``p < tail`` or ``p > 1 - tail``. Index: ``treated``, ``control``.
    """
    p = _as_array(scores)
    t = np.asarray(dataset.treatment, dtype=int)
    if p.size != t.size:
        raise ValueError(f"scores ({p.size}) and dataset ({t.size}) must have the same length")
    if not (0.0 < float(tail) < 0.5):
        raise ValueError("tail must be in (0, 0.5)")

    rows = {}
    for label, arm in (("treated", 1), ("control", 0)):
        pa = p[t == arm]
        if pa.size == 0:
            rows[label] = {"n": 0, "min": np.nan, "q05": np.nan, "median": np.nan,
                           "q95": np.nan, "max": np.nan, "share_tails": np.nan}
            continue
        rows[label] = {
            "n": int(pa.size),
            "min": float(pa.min()),
            "q05": float(np.quantile(pa, 0.05)),
            "median": float(np.median(pa)),
            "q95": float(np.quantile(pa, 0.95)),
            "max": float(pa.max()),
            "share_tails": float(np.mean((pa < tail) | (pa > 1.0 - tail))),
        }
    return pd.DataFrame.from_dict(rows, orient="index")


__all__ = ["auc_mann_whitney", "ece_binary", "calibration_report", "overlap_summary", "CAL_THRESHOLDS"]
