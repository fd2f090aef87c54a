"""
Treatment effect estimators and resampling-based uncertainty.
"""

from propensitykit.inference.results import EstimationResult
from propensitykit.inference.weighted import estimate_weighted_effect
from propensitykit.inference.outcome import OutcomeModel, fit_outcome_model
from propensitykit.inference.doubly_robust import estimate_doubly_robust
from propensitykit.inference.bootstrap import BootstrapResult, ReplicateFailure, bootstrap
from propensitykit.inference.pipeline import (
    WeightingAnalysis,
    bootstrap_doubly_robust,
    bootstrap_weighted,
    doubly_robust_effect,
    run_doubly_robust,
    run_weighting_analysis,
    weighted_effect,
)

__all__ = [
    "EstimationResult",
    "estimate_weighted_effect",
    "OutcomeModel",
    "fit_outcome_model",
    "estimate_doubly_robust",
    "BootstrapResult",
    "ReplicateFailure",
    "bootstrap",
    "WeightingAnalysis",
    "bootstrap_doubly_robust",
    "bootstrap_weighted",
    "doubly_robust_effect",
    "run_doubly_robust",
    "run_weighting_analysis",
    "weighted_effect",
]
