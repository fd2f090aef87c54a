"""
Result container shared by the effect estimators.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm

from propensitykit.weighting.schemes import ESTIMANDS


def check_estimand(estimand: str) -> str:
    value = str(estimand).upper()
    if value not in ESTIMANDS:
        raise ValueError(f"estimand must be one of {list(ESTIMANDS)}, got '{estimand}'")
    return value


@dataclass(frozen=True)
class EstimationResult:
    """
    Treatment effect estimate with its uncertainty.

    Attributes
    ----------
    estimate : float
        Point estimate of the effect.
    std_error : float
        Standard error (>= 0).
    estimand : str
        Target population: ``ATE``, ``ATT`` or ``ATO``.
    effective_sample_size : float
        Kish effective sample size of the weights used, (sum w)^2 / sum w^2.
    n_treated, n_control : int
        Units of each arm that entered the estimate.
    method : str
        Estimator label, e.g. ``"weighted:overlap"`` or ``"doubly_robust"``.
    outcome : str
        Outcome field the effect refers to.
    """

    estimate: float
    std_error: float
    estimand: str
    effective_sample_size: float
    n_treated: int
    n_control: int
    method: str = ""
    outcome: str = "outcome"

    def __post_init__(self):
        object.__setattr__(self, "estimand", check_estimand(self.estimand))
        if not (self.std_error >= 0):
            raise ValueError(f"std_error must be >= 0, got {self.std_error}")

    @property
    def z(self) -> float:
        return float(self.estimate / self.std_error) if self.std_error > 0 else float("nan")

    @property
    def p_value(self) -> float:
        """Two-sided normal p-value for H0: effect = 0."""
        z = self.z
        return float(2.0 * norm.sf(abs(z))) if np.isfinite(z) else float("nan")

    def confint(self, level: float = 0.95) -> Tuple[float, float]:
        """Normal-approximation confidence interval."""
        if not (0.0 < level < 1.0):
            raise ValueError("level must be in (0,1)")
        q = norm.ppf(0.5 + level / 2.0)
        return (float(self.estimate - q * self.std_error), float(self.estimate + q * self.std_error))

    def summary(self, level: float = 0.95) -> pd.DataFrame:
        lo, hi = self.confint(level)
        return pd.DataFrame(
            {
                "coef": [self.estimate],
                "std err": [self.std_error],
                "z": [self.z],
                "P>|z|": [self.p_value],
                f"{(1 - level) / 2 * 100:.1f} %": [lo],
                f"{(0.5 + level / 2) * 100:.1f} %": [hi],
                "ess": [self.effective_sample_size],
            },
            index=[f"{self.estimand} ({self.outcome})"],
        )
