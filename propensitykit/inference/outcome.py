"""
Arm-specific outcome regressions mu_t(X) = E[Y | T=t, X] for doubly-robust estimation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

import numpy as np
from sklearn.base import clone
from sklearn.linear_model import LinearRegression

from propensitykit.data.units import UnitDataset


@dataclass(frozen=True)
class OutcomeModel:
    """
    Fitted outcome regression for one treatment arm.

    Attributes
    ----------
    arm : int
        0 for mu0 (control), 1 for mu1 (treated).
    covariates : tuple of str
        Covariates used by the regression, in column order.
    estimator : Any
        Fitted scikit-learn regressor.
    outcome : str
        Outcome field the model was fitted on.
    """

    arm: int
    covariates: Tuple[str, ...]
    estimator: Any
    outcome: str = "outcome"

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predicted outcome for a covariate matrix ordered like ``covariates``."""
        X = np.atleast_2d(np.asarray(X, dtype=float))
        return np.asarray(self.estimator.predict(X), dtype=float).ravel()

    def predict_dataset(self, dataset: UnitDataset) -> np.ndarray:
        """Predicted outcome for every unit of ``dataset`` under this arm."""
        return self.predict(dataset.columns(self.covariates))


def fit_outcome_model(
    dataset: UnitDataset,
    arm: int,
    covariates: Optional[Sequence[str]] = None,
    estimator: Any = None,
    outcome_field: str = "outcome",
) -> OutcomeModel:
    """
    Fit E[Y | T=arm, X] on the units of one arm.

    Parameters
    ----------
    dataset : UnitDataset
    arm : {0, 1}
        Treatment arm whose units are used.
    covariates : sequence of str, optional
        Regressors; defaults to every dataset covariate.
    estimator : scikit-learn regressor, optional
        Cloned before fitting. Defaults to ``LinearRegression()``.
    outcome_field : str, default "outcome"

    Returns
    -------
    OutcomeModel
    """
    if arm not in (0, 1):
        raise ValueError(f"arm must be 0 or 1, got {arm!r}")
    names = tuple(dataset.covariate_names if covariates is None else covariates)
    mask = dataset.treatment == arm
    if not np.any(mask):
        raise ValueError(f"No units in arm {arm}; cannot fit the outcome model.")

    X = dataset.columns(names)[mask]
    y = dataset.outcome_array(outcome_field)[mask]
    model = clone(estimator) if estimator is not None else LinearRegression()
    model.fit(X, y)
    return OutcomeModel(arm=int(arm), covariates=names, estimator=model, outcome=outcome_field)
