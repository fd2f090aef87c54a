"""
Error taxonomy for propensitykit.

Every error carries the identity of the unit, covariate, arm or model that
caused it so that data-quality problems can be traced back to their source.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


class PropensityKitError(Exception):
    """Base class for estimation failures raised by propensitykit."""


class PropensityFitError(PropensityKitError):
    """The propensity model could not be fitted.

    Raised for rank-deficient covariate matrices, non-convergence of the
    Newton iterations (including perfect separation) and single-arm data.
    """

    def __init__(
        self,
        message: str,
        *,
        link: Optional[str] = None,
        covariates: Optional[Sequence[str]] = None,
    ):
        self.link = link
        self.covariates: Tuple[str, ...] = tuple(covariates) if covariates is not None else ()
        prefix = f"[link={link}] " if link else ""
        super().__init__(prefix + message)


class WeightComputationError(PropensityKitError):
    """A weight could not be computed for a unit (probability outside (0,1))."""

    def __init__(self, message: str, *, unit: Optional[int] = None, value: Optional[float] = None):
        self.unit = unit
        self.value = value
        super().__init__(message)


class TrimmingError(PropensityKitError):
    """Trimming would remove every unit of a treatment arm."""

    def __init__(self, message: str, *, arm: Optional[str] = None, bounds: Optional[Tuple[float, float]] = None):
        self.arm = arm
        self.bounds = bounds
        super().__init__(message)


class DoublyRobustError(PropensityKitError):
    """A constituent model of the doubly-robust estimator is missing or unfitted."""

    def __init__(self, message: str, *, component: Optional[str] = None):
        self.component = component
        super().__init__(message)


class BootstrapError(PropensityKitError):
    """Too many bootstrap replicates failed for the run to be usable."""

    def __init__(self, message: str, *, n_failed: int = 0, n_attempted: int = 0):
        self.n_failed = int(n_failed)
        self.n_attempted = int(n_attempted)
        super().__init__(message)


__all__ = [
    "PropensityKitError",
    "PropensityFitError",
    "WeightComputationError",
    "TrimmingError",
    "DoublyRobustError",
    "BootstrapError",
]
