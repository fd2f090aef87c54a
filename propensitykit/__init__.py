"""
propensitykit: propensity-score weighting and doubly-robust treatment effect estimation.
"""

from propensitykit import balance
from propensitykit import data
from propensitykit import inference
from propensitykit import propensity
from propensitykit import weighting
from propensitykit.config import AnalysisConfig
from propensitykit.exceptions import (
    BootstrapError,
    DoublyRobustError,
    PropensityFitError,
    PropensityKitError,
    TrimmingError,
    WeightComputationError,
)

__version__ = "0.1.0"
__all__ = [
    "balance",
    "data",
    "inference",
    "propensity",
    "weighting",
    "AnalysisConfig",
    "BootstrapError",
    "DoublyRobustError",
    "PropensityFitError",
    "PropensityKitError",
    "TrimmingError",
    "WeightComputationError",
]
