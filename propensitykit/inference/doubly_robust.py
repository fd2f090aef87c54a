"""
Augmented inverse probability weighting (AIPW) estimator of the ATE.

For each unit the augmented contributions are

    treated term:  T (Y - mu1(X)) / p(X) + mu1(X)
    control term:  (1 - T) (Y - mu0(X)) / (1 - p(X)) + mu0(X)

and ATE_DR = mean(treated term) - mean(control term). The estimate is
consistent when either p(X) or the pair (mu0, mu1) is correctly specified.
When both are misspecified the bias of the worse model carries through; no
correction is attempted.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from sklearn.exceptions import NotFittedError
from sklearn.utils.validation import check_is_fitted

from propensitykit.data.units import UnitDataset
from propensitykit.exceptions import DoublyRobustError
from propensitykit.inference.outcome import OutcomeModel
from propensitykit.inference.results import EstimationResult
from propensitykit.propensity.model import PropensityModel


def _outcome_key(dataset: UnitDataset, field: str) -> str:
    # "outcome" and the loaded column name address the same vector
    if field == dataset.outcome_name:
        return "outcome"
    if dataset.outcome2_name is not None and field == dataset.outcome2_name:
        return "outcome2"
    return field


def _check_outcome_model(
    model: Optional[OutcomeModel], arm: int, dataset: UnitDataset, outcome_field: str
) -> OutcomeModel:
    component = f"outcome_model{arm}"
    if model is None:
        raise DoublyRobustError(f"{component} (mu{arm}) is missing.", component=component)
    if not isinstance(model, OutcomeModel):
        raise DoublyRobustError(
            f"{component} must be an OutcomeModel, got {type(model).__name__}.", component=component
        )
    if model.arm != arm:
        raise DoublyRobustError(
            f"{component} was fitted for arm {model.arm}, expected arm {arm}.", component=component
        )
    if _outcome_key(dataset, model.outcome) != _outcome_key(dataset, outcome_field):
        raise DoublyRobustError(
            f"{component} was fitted on outcome '{model.outcome}', not '{outcome_field}'.",
            component=component,
        )
    try:
        check_is_fitted(model.estimator)
    except (NotFittedError, TypeError) as exc:
        raise DoublyRobustError(f"{component} is not fitted: {exc}", component=component) from exc
    return model


def estimate_doubly_robust(
    dataset: UnitDataset,
    propensity_model: Optional[PropensityModel],
    outcome_model0: Optional[OutcomeModel],
    outcome_model1: Optional[OutcomeModel],
    outcome_field: str = "outcome",
) -> EstimationResult:
    """
    Doubly-robust (AIPW) ATE estimate.

    Parameters
    ----------
    dataset : UnitDataset
        Units to evaluate the estimator on.
    propensity_model : PropensityModel
        Fitted model for p(X); its clip keeps 1/p and 1/(1-p) finite.
    outcome_model0, outcome_model1 : OutcomeModel
        Fitted mu0 (arm 0) and mu1 (arm 1).
    outcome_field : str, default "outcome"
        Outcome both outcome models must have been fitted on.

    Returns
    -------
    EstimationResult
        ``estimand="ATE"``; the standard error is the influence-function
        estimate sqrt(var(phi) / n).

    Raises
    ------
    DoublyRobustError
        If any constituent model is missing, unfitted, not converged or fitted
        on a different outcome.
    """
    if propensity_model is None:
        raise DoublyRobustError("propensity_model is missing.", component="propensity_model")
    if not isinstance(propensity_model, PropensityModel):
        raise DoublyRobustError(
            f"propensity_model must be a PropensityModel, got {type(propensity_model).__name__}.",
            component="propensity_model",
        )
    if not propensity_model.converged:
        raise DoublyRobustError(
            f"propensity_model ({propensity_model.link_name} link) did not converge.",
            component="propensity_model",
        )
    mu0_model = _check_outcome_model(outcome_model0, 0, dataset, outcome_field)
    mu1_model = _check_outcome_model(outcome_model1, 1, dataset, outcome_field)

    p = propensity_model.scores(dataset).values
    if np.any((p <= 0.0) | (p >= 1.0)):
        first = int(np.flatnonzero((p <= 0.0) | (p >= 1.0))[0])
        raise DoublyRobustError(
            f"propensity_model predicts p={p[first]!r} for unit {first}; configure a clip epsilon.",
            component="propensity_model",
        )
    mu0 = mu0_model.predict_dataset(dataset)
    mu1 = mu1_model.predict_dataset(dataset)
    y = dataset.outcome_array(outcome_field)
    t = dataset.treatment.astype(float)

    treated_term = t * (y - mu1) / p + mu1
    control_term = (1.0 - t) * (y - mu0) / (1.0 - p) + mu0
    ate = float(np.mean(treated_term) - np.mean(control_term))

    n = len(dataset)
    phi = treated_term - control_term - ate
    se = float(np.sqrt(np.var(phi, ddof=1) / n)) if n > 1 else 0.0

    ipw = t / p + (1.0 - t) / (1.0 - p)
    ess = float(ipw.sum() ** 2 / np.sum(ipw ** 2))

    return EstimationResult(
        estimate=ate,
        std_error=se,
        estimand="ATE",
        effective_sample_size=ess,
        n_treated=dataset.n_treated,
        n_control=dataset.n_control,
        method="doubly_robust",
        outcome=outcome_field,
    )
