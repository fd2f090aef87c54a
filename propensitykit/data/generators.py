"""
Synthetic observational data with known propensity and outcome surfaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy.special import expit

from propensitykit.data.units import UnitDataset


GROUND_TRUTH_COLUMNS = ("y", "y2", "t", "propensity", "mu0", "mu1", "cate")


@dataclass(slots=True)
class ObservationalDataGenerator:
    """
    Generate observational datasets with controllable confounding.

    **Data model**

    - Covariates X ∈ R^k are drawn from ``confounder_specs`` (or iid N(0,1)).
    - Treatment is assigned by a logistic model:
        T ~ Bernoulli( sigmoid(alpha_t + sharpness * (X @ beta_t + g_t(X))) )
    - The primary outcome is continuous:
        Y = alpha_y + X @ beta_y + g_y(X) + T * tau(X) + ε,  ε ~ N(0, sigma_y^2)
    - If ``theta2`` is set, a secondary outcome shares the baseline but has its
      own constant effect and independent noise.

    **Returned columns**
      - y, y2 (optional), t
      - x1..xk (or names from the specs)
      - propensity: true P(T=1 | X)
      - mu0, mu1: E[Y | T=t, X]
      - cate: mu1 - mu0

    Parameters
    ----------
    theta : float, default=1.0
        Constant treatment effect if ``tau`` is None (the true ATE).
    tau : callable, optional
        Heterogeneous effect tau(X) -> (n,).
    beta_y, beta_t : array-like of shape (k,), optional
        Linear coefficients in the outcome baseline and the treatment score.
    g_y, g_t : callable, optional
        Non-linear terms added to the outcome baseline / treatment score.
    alpha_y, alpha_t : float
        Intercepts. ``alpha_t`` is recalibrated when ``target_t_rate`` is set.
    sigma_y : float, default=1.0
        Outcome noise standard deviation.
    theta2 : float, optional
        Effect on the secondary outcome; no secondary outcome when None.
    confounder_specs : list of dict, optional
        Each spec is one of
          {"name": str, "dist": "normal",    "mu": float, "sd": float}
          {"name": str, "dist": "uniform",   "a": float,  "b": float}
          {"name": str, "dist": "bernoulli", "p": float}
    k : int, default=3
        Number of iid N(0,1) covariates when no specs are given.
    target_t_rate : float in (0,1), optional
        Solve for ``alpha_t`` so the mean propensity matches this rate.
    propensity_sharpness : float, default=1.0
        Scales the covariate part of the treatment score (harder positivity when larger).
    seed : int, optional
        Random seed.

    Examples
    --------
    >>> gen = ObservationalDataGenerator(
    ...     theta=2.0,
    ...     beta_y=np.array([1.0, -0.5]),
    ...     beta_t=np.array([0.8, -0.4]),
    ...     seed=7,
    ... )
    >>> ds = gen.to_dataset(1_000)
    """

    theta: float = 1.0
    tau: Optional[Callable[[np.ndarray], np.ndarray]] = None

    beta_y: Optional[np.ndarray] = None
    beta_t: Optional[np.ndarray] = None
    g_y: Optional[Callable[[np.ndarray], np.ndarray]] = None
    g_t: Optional[Callable[[np.ndarray], np.ndarray]] = None

    alpha_y: float = 0.0
    alpha_t: float = 0.0
    sigma_y: float = 1.0
    theta2: Optional[float] = None

    confounder_specs: Optional[List[Dict[str, Any]]] = None
    k: int = 3

    target_t_rate: Optional[float] = None
    propensity_sharpness: float = 1.0
    seed: Optional[int] = None

    rng: np.random.Generator = field(init=False, repr=False)

    def __post_init__(self):
        self.rng = np.random.default_rng(self.seed)
        if self.confounder_specs is not None:
            self.k = len(self.confounder_specs)
        if self.sigma_y < 0:
            raise ValueError("sigma_y must be >= 0")
        if self.target_t_rate is not None and not (0.0 < float(self.target_t_rate) < 1.0):
            raise ValueError("target_t_rate must be in (0,1).")

    # ---------- Covariate sampling ----------

    def _sample_X(self, n: int) -> Tuple[np.ndarray, List[str]]:
        if self.confounder_specs is None:
            X = self.rng.normal(size=(n, self.k))
            return X, [f"x{i+1}" for i in range(self.k)]

        cols, names = [], []
        for spec in self.confounder_specs:
            name = spec.get("name") or f"x{len(names)+1}"
            dist = str(spec.get("dist", "normal")).lower()
            if dist == "normal":
                col = self.rng.normal(float(spec.get("mu", 0.0)), float(spec.get("sd", 1.0)), size=n)
            elif dist == "uniform":
                col = self.rng.uniform(float(spec.get("a", 0.0)), float(spec.get("b", 1.0)), size=n)
            elif dist == "bernoulli":
                col = self.rng.binomial(1, float(spec.get("p", 0.5)), size=n).astype(float)
            else:
                raise ValueError(f"Unknown dist: {dist}")
            cols.append(col.astype(float))
            names.append(name)
        return np.column_stack(cols), names

    # ---------- Structural pieces ----------

    def _linear(self, X: np.ndarray, beta: Optional[np.ndarray], label: str) -> np.ndarray:
        out = np.zeros(X.shape[0], dtype=float)
        if beta is None:
            return out
        b = np.asarray(beta, dtype=float).reshape(-1)
        if b.shape[0] != X.shape[1]:
            raise ValueError(f"{label} shape {b.shape} is incompatible with X shape {X.shape}")
        return X @ b

    def _treatment_score(self, X: np.ndarray) -> np.ndarray:
        Xf = np.asarray(X, dtype=float)
        score = self._linear(Xf, self.beta_t, "beta_t")
        if self.g_t is not None:
            score = score + np.asarray(self.g_t(Xf), dtype=float)
        return float(self.propensity_sharpness) * score

    def _baseline(self, X: np.ndarray) -> np.ndarray:
        Xf = np.asarray(X, dtype=float)
        loc = np.full(Xf.shape[0], float(self.alpha_y)) + self._linear(Xf, self.beta_y, "beta_y")
        if self.g_y is not None:
            loc = loc + np.asarray(self.g_y(Xf), dtype=float)
        return loc

    def _effect(self, X: np.ndarray) -> np.ndarray:
        if self.tau is None:
            return np.full(np.asarray(X).shape[0], float(self.theta))
        return np.asarray(self.tau(np.asarray(X, dtype=float)), dtype=float).reshape(-1)

    def _calibrate_alpha_t(self, X: np.ndarray, target: float) -> float:
        """Bisection on alpha_t so that mean propensity ~= target."""
        score = self._treatment_score(X)
        lo, hi = -50.0, 50.0

        def f(a: float) -> float:
            return float(expit(a + score).mean() - target)

        flo, fhi = f(lo), f(hi)
        if flo * fhi > 0:
            return lo if abs(flo) < abs(fhi) else hi
        for _ in range(60):
            mid = 0.5 * (lo + hi)
            fm = f(mid)
            if abs(fm) < 1e-6:
                return mid
            if fm > 0:
                hi = mid
            else:
                lo = mid
        return 0.5 * (lo + hi)

    # ---------- Public API ----------

    def generate(self, n: int) -> pd.DataFrame:
        """
        Draw a synthetic dataset of size ``n``.

        Returns
        -------
        pandas.DataFrame
            Outcome(s), treatment, covariates and the ground-truth columns
            ``propensity``, ``mu0``, ``mu1``, ``cate``.
        """
        n = int(n)
        if n <= 0:
            raise ValueError("n must be positive")
        X, names = self._sample_X(n)

        if self.target_t_rate is not None:
            self.alpha_t = self._calibrate_alpha_t(X, float(self.target_t_rate))
        propensity = expit(self.alpha_t + self._treatment_score(X))
        T = self.rng.binomial(1, propensity).astype(float)

        mu0 = self._baseline(X)
        mu1 = mu0 + self._effect(X)
        Y = np.where(T == 1, mu1, mu0) + self.rng.normal(0.0, self.sigma_y, size=n)

        df = pd.DataFrame({"y": Y})
        if self.theta2 is not None:
            df["y2"] = mu0 + T * float(self.theta2) + self.rng.normal(0.0, self.sigma_y, size=n)
        df["t"] = T
        for j, name in enumerate(names):
            df[name] = X[:, j]
        df["propensity"] = propensity
        df["mu0"] = mu0
        df["mu1"] = mu1
        df["cate"] = mu1 - mu0
        return df

    def to_dataset(self, n: int, confounders: Optional[Union[str, List[str]]] = None) -> UnitDataset:
        """
        Generate a dataset and convert it to a :class:`UnitDataset`.

        Parameters
        ----------
        n : int
            Number of units.
        confounders : str or list of str, optional
            Covariates to keep. Defaults to every generated covariate.
        """
        df = self.generate(n)
        if confounders is None:
            confounder_cols = [c for c in df.columns if c not in GROUND_TRUTH_COLUMNS]
        elif isinstance(confounders, str):
            confounder_cols = [confounders]
        else:
            confounder_cols = list(confounders)
        outcome2 = "y2" if "y2" in df.columns else None
        return UnitDataset.from_frame(df, treatment="t", outcome="y", confounders=confounder_cols, outcome2=outcome2)

    def oracle_nuisance(self):
        """
        Return the true nuisance functions ``(e, mu0, mu1)``.

        Each function maps a covariate matrix of shape (n, k) (all generated
        covariates, in generation order) to an array of shape (n,).
        """

        def e_of_x(X: np.ndarray) -> np.ndarray:
            X2 = np.atleast_2d(np.asarray(X, dtype=float))
            return expit(self.alpha_t + self._treatment_score(X2))

        def mu0_of_x(X: np.ndarray) -> np.ndarray:
            return self._baseline(np.atleast_2d(np.asarray(X, dtype=float)))

        def mu1_of_x(X: np.ndarray) -> np.ndarray:
            X2 = np.atleast_2d(np.asarray(X, dtype=float))
            return self._baseline(X2) + self._effect(X2)

        return e_of_x, mu0_of_x, mu1_of_x
