"""
Propensity score models and diagnostics.
"""

from propensitykit.propensity.model import (
    AdditiveSmoothLink,
    LogisticLink,
    PropensityLink,
    PropensityModel,
    PropensityScores,
    fit_propensity,
    resolve_link,
)
from propensitykit.propensity.calibration import calibration_report, overlap_summary

__all__ = [
    "AdditiveSmoothLink",
    "LogisticLink",
    "PropensityLink",
    "PropensityModel",
    "PropensityScores",
    "fit_propensity",
    "resolve_link",
    "calibration_report",
    "overlap_summary",
]
