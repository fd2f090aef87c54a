"""
Weight schemes as a closed family of scheme types.

Each scheme maps propensity scores ``p`` and treatment ``t`` to per-unit
weights through :meth:`WeightScheme.weights`; the engine dispatches on the
scheme object rather than on strings. Every scheme also names the estimand
its weights target.

==================  =======================  ========================  ========
scheme              treated (T=1)            control (T=0)             estimand
==================  =======================  ========================  ========
IPTW                1/p                      1/(1-p)                   ATE
StabilizedIPTW      mean(p)/p                mean(1-p)/(1-p)           ATE
Overlap             1-p                      p                         ATO
Matching            min(p,1-p)/p             min(p,1-p)/(1-p)          ATO
Entropy             h(p)/p                   h(p)/(1-p)                ATO
TreatedOdds         1                        p/(1-p)                   ATT
==================  =======================  ========================  ========

with ``h(p) = -p log p - (1-p) log(1-p)``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Dict, Tuple, Type

import numpy as np

from propensitykit.weighting.trimming import QuantileTrim, RangeTrim, TrimPolicy, trim_mask

ESTIMANDS = ("ATE", "ATT", "ATO")

_REGISTRY: Dict[str, Type["WeightScheme"]] = {}


def _unit_mean_per_arm(w: np.ndarray, t: np.ndarray, kept: np.ndarray) -> np.ndarray:
    w = w.copy()
    for arm in (0, 1):
        mask = kept & (t == arm)
        if np.any(mask):
            w[mask] = w[mask] / np.mean(w[mask])
    return w


class WeightScheme(ABC):
    """Base class of all weight schemes."""

    name: ClassVar[str] = ""
    natural_estimand: ClassVar[str] = "ATE"

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.name:
            _REGISTRY[cls.name] = cls

    @abstractmethod
    def raw_weights(self, p: np.ndarray, t: np.ndarray) -> np.ndarray:
        """Untrimmed weights for validated arrays ``p`` in (0,1) and ``t`` in {0,1}."""

    def weights(self, p: np.ndarray, t: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(weights, kept)``; trimmed units carry weight 0."""
        return self.raw_weights(p, t), np.ones(p.shape[0], dtype=bool)

    def restrict(self, w: np.ndarray, t: np.ndarray, kept: np.ndarray) -> np.ndarray:
        """Weights after dropping the units outside ``kept``."""
        return np.where(kept, w, 0.0)

    @property
    def estimand(self) -> str:
        return self.natural_estimand

    @property
    def label(self) -> str:
        return self.name


@dataclass(frozen=True)
class IPTW(WeightScheme):
    """Inverse probability of treatment weights; unbounded near p -> 0 or 1."""

    name: ClassVar[str] = "iptw"
    natural_estimand: ClassVar[str] = "ATE"

    def raw_weights(self, p, t):
        return np.where(t == 1, 1.0 / p, 1.0 / (1.0 - p))


@dataclass(frozen=True)
class StabilizedIPTW(WeightScheme):
    """
    IPTW scaled by the marginal treatment probability.

    With ``within_group=True`` (default) each arm is additionally rescaled so
    its weights average exactly 1, leaving relative weights within an arm
    unchanged. Under trimming the rescaling is redone over the kept units only.
    """

    within_group: bool = True

    name: ClassVar[str] = "stabilized_iptw"
    natural_estimand: ClassVar[str] = "ATE"

    def raw_weights(self, p, t):
        w = np.where(t == 1, np.mean(p) / p, np.mean(1.0 - p) / (1.0 - p))
        if self.within_group:
            w = _unit_mean_per_arm(w, t, np.ones(w.shape[0], dtype=bool))
        return w

    def restrict(self, w, t, kept):
        w = np.where(kept, w, 0.0)
        if self.within_group:
            w = _unit_mean_per_arm(w, t, kept)
        return w


@dataclass(frozen=True)
class Overlap(WeightScheme):
    """Overlap weights, bounded in (0, 1)."""

    name: ClassVar[str] = "overlap"
    natural_estimand: ClassVar[str] = "ATO"

    def raw_weights(self, p, t):
        return np.where(t == 1, 1.0 - p, p)


@dataclass(frozen=True)
class Matching(WeightScheme):
    """Matching weights: min(p, 1-p) over the probability of the received arm."""

    name: ClassVar[str] = "matching"
    natural_estimand: ClassVar[str] = "ATO"

    def raw_weights(self, p, t):
        m = np.minimum(p, 1.0 - p)
        return np.where(t == 1, m / p, m / (1.0 - p))


@dataclass(frozen=True)
class Entropy(WeightScheme):
    """Entropy weights: binary entropy of p over the probability of the received arm."""

    name: ClassVar[str] = "entropy"
    natural_estimand: ClassVar[str] = "ATO"

    def raw_weights(self, p, t):
        h = -(p * np.log(p) + (1.0 - p) * np.log1p(-p))
        return np.where(t == 1, h / p, h / (1.0 - p))


@dataclass(frozen=True)
class TreatedOdds(WeightScheme):
    """ATT weights: treated units keep weight 1, controls get the odds p/(1-p)."""

    name: ClassVar[str] = "att"
    natural_estimand: ClassVar[str] = "ATT"

    def raw_weights(self, p, t):
        return np.where(t == 1, 1.0, p / (1.0 - p))


@dataclass(frozen=True)
class Trimmed(WeightScheme):
    """
    Base scheme weights with units outside the trimming bounds set to 0.

    The base scheme decides how the kept units are reweighted; stabilized
    IPTW rescales them to average 1 per arm again.
    """

    base: WeightScheme
    policy: TrimPolicy

    name: ClassVar[str] = "trimmed"

    def __post_init__(self):
        if not isinstance(self.base, WeightScheme):
            raise TypeError(f"base must be a WeightScheme, got {type(self.base).__name__}")
        if not isinstance(self.policy, TrimPolicy):
            raise TypeError(f"policy must be a TrimPolicy, got {type(self.policy).__name__}")

    def raw_weights(self, p, t):
        return self.base.raw_weights(p, t)

    def weights(self, p, t):
        w, kept = self.base.weights(p, t)
        kept = kept & trim_mask(p, t, self.policy)
        return self.base.restrict(w, t, kept), kept

    def restrict(self, w, t, kept):
        return self.base.restrict(w, t, kept)

    @property
    def estimand(self) -> str:
        return self.base.estimand

    @property
    def label(self) -> str:
        return f"trimmed({self.base.label}, {self.policy.label})"


def scheme_from_name(name: str, **params) -> WeightScheme:
    """
    Build a scheme from its configuration name.

    ``"trimmed"`` expects ``base`` (scheme or name) plus either a ``policy``
    or ``trim="range"`` (``low``, ``high``) / ``trim="quantile"`` (``q``).
    """
    key = str(name).strip().lower().replace("-", "_")
    if key == "trimmed":
        base = params.pop("base", "iptw")
        if not isinstance(base, WeightScheme):
            base = scheme_from_name(base)
        policy = params.pop("policy", None)
        if policy is None:
            trim = str(params.pop("trim", "range")).lower()
            if trim == "range":
                policy = RangeTrim(**params)
            elif trim == "quantile":
                policy = QuantileTrim(**params)
            else:
                raise ValueError(f"Unknown trimming policy '{trim}'; expected 'range' or 'quantile'")
        elif params:
            raise ValueError(f"Unexpected parameters {sorted(params)} for a trimmed scheme with an explicit policy")
        return Trimmed(base=base, policy=policy)
    if key not in _REGISTRY:
        raise ValueError(f"Unknown weight scheme '{name}'; expected one of {sorted(_REGISTRY)}")
    return _REGISTRY[key](**params)


__all__ = [
    "ESTIMANDS",
    "WeightScheme",
    "IPTW",
    "StabilizedIPTW",
    "Overlap",
    "Matching",
    "Entropy",
    "TreatedOdds",
    "Trimmed",
    "scheme_from_name",
]
