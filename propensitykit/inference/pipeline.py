"""
End-to-end runs: propensity fit -> weights -> balance -> estimate.

The scalar statistics ``weighted_effect`` and ``doubly_robust_effect`` are the
functions the bootstrap reruns on every resample.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, Optional

from propensitykit.balance.smd import BalanceReport, balance_report
from propensitykit.config import AnalysisConfig
from propensitykit.data.units import UnitDataset
from propensitykit.inference.bootstrap import BootstrapResult, bootstrap
from propensitykit.inference.doubly_robust import estimate_doubly_robust
from propensitykit.inference.outcome import fit_outcome_model
from propensitykit.inference.results import EstimationResult
from propensitykit.inference.weighted import estimate_weighted_effect
from propensitykit.propensity.model import PropensityModel, PropensityScores, fit_propensity
from propensitykit.weighting.engine import WeightVector, compute_weights


@dataclass(frozen=True)
class WeightingAnalysis:
    """Artifacts of one weighting run, for reporting collaborators."""

    propensity_model: PropensityModel
    scores: PropensityScores
    weights: WeightVector
    balance: BalanceReport
    result: EstimationResult


def _config(config: Optional[AnalysisConfig]) -> AnalysisConfig:
    return AnalysisConfig() if config is None else config


def run_weighting_analysis(
    dataset: UnitDataset,
    config: Optional[AnalysisConfig] = None,
    outcome_field: str = "outcome",
) -> WeightingAnalysis:
    """
    Fit the propensity model, weight, check balance and estimate the effect.

    Parameters
    ----------
    dataset : UnitDataset
    config : AnalysisConfig, optional
        Defaults to ``AnalysisConfig()`` (linear link, overlap weights).
    outcome_field : str, default "outcome"

    Returns
    -------
    WeightingAnalysis
    """
    cfg = _config(config)
    model = fit_propensity(dataset, covariates=cfg.covariates, link=cfg.propensity_link(), clip=cfg.clip)
    scores = model.scores(dataset)
    weights = compute_weights(scores, dataset.treatment, cfg.weight_scheme())
    balance = balance_report(dataset, weights, threshold=cfg.balance_threshold)
    result = estimate_weighted_effect(dataset, weights, outcome_field=outcome_field, estimand=cfg.estimand)
    return WeightingAnalysis(
        propensity_model=model,
        scores=scores,
        weights=weights,
        balance=balance,
        result=result,
    )


def run_doubly_robust(
    dataset: UnitDataset,
    config: Optional[AnalysisConfig] = None,
    outcome_field: str = "outcome",
    outcome_estimator: Any = None,
) -> EstimationResult:
    """Fit the propensity model and both outcome models, then compute the AIPW estimate."""
    cfg = _config(config)
    model = fit_propensity(dataset, covariates=cfg.covariates, link=cfg.propensity_link(), clip=cfg.clip)
    mu0 = fit_outcome_model(dataset, 0, covariates=cfg.covariates, estimator=outcome_estimator, outcome_field=outcome_field)
    mu1 = fit_outcome_model(dataset, 1, covariates=cfg.covariates, estimator=outcome_estimator, outcome_field=outcome_field)
    return estimate_doubly_robust(dataset, model, mu0, mu1, outcome_field=outcome_field)


def weighted_effect(dataset: UnitDataset, config: Optional[AnalysisConfig] = None, outcome_field: str = "outcome") -> float:
    """Point estimate of the weighted pipeline (no balance report)."""
    cfg = _config(config)
    model = fit_propensity(dataset, covariates=cfg.covariates, link=cfg.propensity_link(), clip=cfg.clip)
    weights = compute_weights(model.scores(dataset), dataset.treatment, cfg.weight_scheme())
    return estimate_weighted_effect(dataset, weights, outcome_field=outcome_field).estimate


def doubly_robust_effect(
    dataset: UnitDataset,
    config: Optional[AnalysisConfig] = None,
    outcome_field: str = "outcome",
    outcome_estimator: Any = None,
) -> float:
    return run_doubly_robust(dataset, config, outcome_field, outcome_estimator).estimate


def bootstrap_weighted(
    dataset: UnitDataset,
    config: Optional[AnalysisConfig] = None,
    outcome_field: str = "outcome",
    **kwargs,
) -> BootstrapResult:
    """Bootstrap the weighted pipeline using the replicate settings of ``config``."""
    cfg = _config(config)
    return bootstrap(
        dataset,
        partial(weighted_effect, config=cfg, outcome_field=outcome_field),
        cfg.n_bootstrap,
        n_jobs=cfg.n_jobs,
        random_state=cfg.random_state,
        max_failure_rate=cfg.max_failure_rate,
        **kwargs,
    )


def bootstrap_doubly_robust(
    dataset: UnitDataset,
    config: Optional[AnalysisConfig] = None,
    outcome_field: str = "outcome",
    outcome_estimator: Any = None,
    **kwargs,
) -> BootstrapResult:
    """Bootstrap the doubly-robust pipeline using the replicate settings of ``config``."""
    cfg = _config(config)
    return bootstrap(
        dataset,
        partial(doubly_robust_effect, config=cfg, outcome_field=outcome_field, outcome_estimator=outcome_estimator),
        cfg.n_bootstrap,
        n_jobs=cfg.n_jobs,
        random_state=cfg.random_state,
        max_failure_rate=cfg.max_failure_rate,
        **kwargs,
    )
