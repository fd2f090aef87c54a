"""
Trimming policies: which units are kept based on their propensity score.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from propensitykit.exceptions import TrimmingError


class TrimPolicy(ABC):
    """Keeps units whose propensity lies inside ``bounds(p, t)`` (inclusive)."""

    @abstractmethod
    def bounds(self, p: np.ndarray, t: np.ndarray) -> Tuple[float, float]:
        """Return the (low, high) probability bounds for this sample."""

    @property
    @abstractmethod
    def label(self) -> str:
        ...


@dataclass(frozen=True)
class RangeTrim(TrimPolicy):
    """Fixed probability range ``[low, high]``."""

    low: float = 0.1
    high: float = 0.9

    def __post_init__(self):
        if not (0.0 <= float(self.low) < float(self.high) <= 1.0):
            raise ValueError(f"RangeTrim requires 0 <= low < high <= 1, got low={self.low}, high={self.high}")

    def bounds(self, p: np.ndarray, t: np.ndarray) -> Tuple[float, float]:
        return float(self.low), float(self.high)

    @property
    def label(self) -> str:
        return f"range[{self.low:g},{self.high:g}]"


@dataclass(frozen=True)
class QuantileTrim(TrimPolicy):
    """
    Sturmer-style asymmetric quantile cut.

    The lower bound is the ``q``-quantile of p among treated units and the
    upper bound is the ``(1 - q)``-quantile of p among control units; units of
    either arm outside ``[lower, upper]`` are removed.
    """

    q: float = 0.05

    def __post_init__(self):
        if not (0.0 < float(self.q) < 0.5):
            raise ValueError(f"QuantileTrim requires 0 < q < 0.5, got q={self.q}")

    def bounds(self, p: np.ndarray, t: np.ndarray) -> Tuple[float, float]:
        p_treated = p[t == 1]
        p_control = p[t == 0]
        if p_treated.size == 0 or p_control.size == 0:
            arm = "treated" if p_treated.size == 0 else "control"
            raise TrimmingError(f"Cannot compute quantile bounds: the {arm} arm is empty.", arm=arm)
        return float(np.quantile(p_treated, self.q)), float(np.quantile(p_control, 1.0 - self.q))

    @property
    def label(self) -> str:
        return f"quantile[{self.q:g}]"


def trim_mask(p: np.ndarray, t: np.ndarray, policy: TrimPolicy) -> np.ndarray:
    """
    Boolean mask of the units kept by ``policy``.

    Raises
    ------
    TrimmingError
        If no treated or no control unit survives.
    """
    p = np.asarray(p, dtype=float)
    t = np.asarray(t, dtype=int)
    low, high = policy.bounds(p, t)
    kept = (p >= low) & (p <= high)
    for arm_value, arm in ((1, "treated"), (0, "control")):
        in_arm = t == arm_value
        if not np.any(kept & in_arm):
            raise TrimmingError(
                f"Trimming policy {policy.label} with bounds [{low:.4g}, {high:.4g}] removes all "
                f"{int(in_arm.sum())} {arm} units; no treatment effect is estimable.",
                arm=arm,
                bounds=(low, high),
            )
    return kept
