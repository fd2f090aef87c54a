"""
Propensity-score weight schemes, trimming policies and the weight engine.
"""

from propensitykit.weighting.schemes import (
    ESTIMANDS,
    Entropy,
    IPTW,
    Matching,
    Overlap,
    StabilizedIPTW,
    TreatedOdds,
    Trimmed,
    WeightScheme,
    scheme_from_name,
)
from propensitykit.weighting.trimming import QuantileTrim, RangeTrim, TrimPolicy, trim_mask
from propensitykit.weighting.engine import WeightVector, compute_weights

__all__ = [
    "ESTIMANDS",
    "Entropy",
    "IPTW",
    "Matching",
    "Overlap",
    "StabilizedIPTW",
    "TreatedOdds",
    "Trimmed",
    "WeightScheme",
    "scheme_from_name",
    "QuantileTrim",
    "RangeTrim",
    "TrimPolicy",
    "trim_mask",
    "WeightVector",
    "compute_weights",
]
