"""
Configuration surface for an analysis run.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional, Tuple

from propensitykit.propensity.model import DEFAULT_CLIP, PropensityLink, resolve_link
from propensitykit.weighting.schemes import ESTIMANDS, WeightScheme, scheme_from_name
from propensitykit.weighting.trimming import QuantileTrim, RangeTrim

TRIM_POLICIES = ("range", "quantile")


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Options recognised by the analysis pipeline.

    Parameters
    ----------
    link : str, default "linear"
        Propensity link: ``"linear"`` (logistic) or ``"additive"`` (smooth).
    scheme : str, default "overlap"
        ``iptw``, ``stabilized_iptw``, ``overlap``, ``matching``, ``entropy`` or ``att``.
    trim : {None, "range", "quantile"}
        Optional trimming policy wrapped around ``scheme``.
    trim_low, trim_high : float, default 0.1 / 0.9
        Bounds of the range policy.
    trim_quantile : float, default 0.05
        Quantile of the quantile policy.
    clip : float or None, default 1e-6
        Propensity clamp epsilon.
    balance_threshold : float, default 0.1
        Absolute SMD threshold for the balance report.
    estimand : {None, "ATE", "ATT", "ATO"}
        Result label; None uses the scheme's estimand.
    covariates : tuple of str, optional
        Covariates for the propensity and outcome models (default: all).
    n_bootstrap : int, default 1000
        Bootstrap replicates.
    n_jobs : int, default 1
        Bootstrap worker threads.
    max_failure_rate : float, default 0.1
        Maximum share of skipped bootstrap replicates.
    random_state : int, optional
        Seed for the bootstrap.
    """

    link: str = "linear"
    scheme: str = "overlap"
    trim: Optional[str] = None
    trim_low: float = 0.1
    trim_high: float = 0.9
    trim_quantile: float = 0.05
    clip: Optional[float] = DEFAULT_CLIP
    balance_threshold: float = 0.1
    estimand: Optional[str] = None
    covariates: Optional[Tuple[str, ...]] = None
    n_bootstrap: int = 1000
    n_jobs: int = 1
    max_failure_rate: float = 0.1
    random_state: Optional[int] = None

    def __post_init__(self):
        resolve_link(self.link)
        if str(self.scheme).strip().lower() == "trimmed":
            raise ValueError("scheme must name a base scheme; set trim='range' or trim='quantile' to trim it")
        scheme_from_name(self.scheme)
        if self.trim is not None:
            if str(self.trim).lower() not in TRIM_POLICIES:
                raise ValueError(f"trim must be None or one of {list(TRIM_POLICIES)}, got '{self.trim}'")
            self._policy()
        if self.clip is not None and not (0.0 < float(self.clip) < 0.5):
            raise ValueError("clip must be None or in (0, 0.5)")
        if float(self.balance_threshold) <= 0:
            raise ValueError("balance_threshold must be positive")
        if self.estimand is not None and str(self.estimand).upper() not in ESTIMANDS:
            raise ValueError(f"estimand must be None or one of {list(ESTIMANDS)}, got '{self.estimand}'")
        if self.covariates is not None:
            object.__setattr__(self, "covariates", tuple(self.covariates))
        if int(self.n_bootstrap) < 1:
            raise ValueError("n_bootstrap must be >= 1")
        if int(self.n_jobs) < 1:
            raise ValueError("n_jobs must be >= 1")
        if not (0.0 <= float(self.max_failure_rate) < 1.0):
            raise ValueError("max_failure_rate must be in [0, 1)")

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "AnalysisConfig":
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValueError(f"Unknown configuration options {unknown}; known options: {sorted(known)}")
        return cls(**dict(options))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def _policy(self):
        if str(self.trim).lower() == "range":
            return RangeTrim(low=float(self.trim_low), high=float(self.trim_high))
        return QuantileTrim(q=float(self.trim_quantile))

    def weight_scheme(self) -> WeightScheme:
        """The configured scheme, wrapped in :class:`Trimmed` when ``trim`` is set."""
        base = scheme_from_name(self.scheme)
        if self.trim is None:
            return base
        return scheme_from_name("trimmed", base=base, policy=self._policy())

    def propensity_link(self) -> PropensityLink:
        return resolve_link(self.link)
