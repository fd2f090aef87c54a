"""
Immutable unit-level data containers for propensity-score analyses.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import pandas.api.types as pdtypes


@dataclass(frozen=True)
class Unit:
    """
    A single observed unit.

    Parameters
    ----------
    treatment : int
        Treatment indicator, 0 (control) or 1 (treated).
    covariates : tuple of float
        Covariate values, ordered like the owning dataset's covariate names.
    outcome : float
        Primary outcome.
    outcome2 : float, optional
        Secondary outcome.
    """

    treatment: int
    covariates: Tuple[float, ...]
    outcome: float
    outcome2: Optional[float] = None

    def __post_init__(self):
        if self.treatment not in (0, 1):
            raise ValueError(f"treatment must be 0 or 1, got {self.treatment!r}")
        object.__setattr__(self, "treatment", int(self.treatment))
        covs = tuple(float(v) for v in self.covariates)
        if not all(math.isfinite(v) for v in covs):
            raise ValueError(f"covariates must be finite, got {covs}")
        object.__setattr__(self, "covariates", covs)
        if not math.isfinite(float(self.outcome)):
            raise ValueError(f"outcome must be finite, got {self.outcome!r}")
        object.__setattr__(self, "outcome", float(self.outcome))
        if self.outcome2 is not None:
            if not math.isfinite(float(self.outcome2)):
                raise ValueError(f"outcome2 must be finite, got {self.outcome2!r}")
            object.__setattr__(self, "outcome2", float(self.outcome2))


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


class UnitDataset:
    """
    Fixed-order, immutable collection of :class:`Unit` records.

    The dataset keeps the covariate names and the names of the outcome fields
    so that results can be traced back to the source columns. Numeric views
    (treatment vector, covariate matrix, outcomes) are built once and are
    read-only.

    Parameters
    ----------
    units : Sequence[Unit]
        Units in a fixed order. Every unit must carry one value per covariate.
    covariate_names : Sequence[str]
        Ordered covariate names.
    outcome_name : str, default "outcome"
        Label of the primary outcome.
    outcome2_name : str, optional
        Label of the secondary outcome, if the units carry one.

    Examples
    --------
    >>> from propensitykit.data import Unit, UnitDataset
    >>> ds = UnitDataset(
    ...     [Unit(1, (0.5, 1.0), 2.0), Unit(0, (0.1, 0.0), 1.0)],
    ...     covariate_names=["age", "score"],
    ... )
    >>> ds.n_treated, ds.n_control
    (1, 1)
    """

    __slots__ = (
        "_units",
        "_covariate_names",
        "_outcome_name",
        "_outcome2_name",
        "_t",
        "_x",
        "_y",
        "_y2",
    )

    def __init__(
        self,
        units: Sequence[Unit],
        covariate_names: Sequence[str],
        outcome_name: str = "outcome",
        outcome2_name: Optional[str] = None,
    ):
        names = tuple(str(c) for c in covariate_names)
        if len(set(names)) != len(names):
            raise ValueError(f"Covariate names must be unique, got {list(names)}")
        units = tuple(units)
        if len(units) == 0:
            raise ValueError("UnitDataset requires at least one unit.")
        for i, u in enumerate(units):
            if not isinstance(u, Unit):
                raise TypeError(f"Element {i} is not a Unit: {type(u).__name__}")
            if len(u.covariates) != len(names):
                raise ValueError(
                    f"Unit {i} has {len(u.covariates)} covariates, expected {len(names)} ({list(names)})."
                )

        x = np.array([u.covariates for u in units], dtype=float).reshape(len(units), len(names))
        y2 = None
        if any(u.outcome2 is not None for u in units):
            if any(u.outcome2 is None for u in units):
                raise ValueError("outcome2 must be set for all units or for none.")
            y2 = _readonly(np.array([u.outcome2 for u in units], dtype=float))

        state = {
            "_units": units,
            "_covariate_names": names,
            "_outcome_name": str(outcome_name),
            "_outcome2_name": None if outcome2_name is None else str(outcome2_name),
            "_t": _readonly(np.array([u.treatment for u in units], dtype=int)),
            "_x": _readonly(x),
            "_y": _readonly(np.array([u.outcome for u in units], dtype=float)),
            "_y2": y2,
        }
        for key, value in state.items():
            object.__setattr__(self, key, value)

    def __setattr__(self, name, value):
        raise AttributeError("UnitDataset is immutable")

    # ---------- Construction ----------

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        treatment: str,
        outcome: str,
        confounders: Union[str, List[str]],
        outcome2: Optional[str] = None,
    ) -> "UnitDataset":
        """
        Build a dataset from a pandas DataFrame.

        The frame must not contain NaN values in the used columns; treatment,
        outcome(s) and covariates must be numeric and non-constant, and the
        treatment must be binary with both arms present.

        Parameters
        ----------
        df : pd.DataFrame
            Source data. Only the named columns are read.
        treatment : str
            Binary treatment column.
        outcome : str
            Primary outcome column.
        confounders : str or list of str
            Covariate column(s), in the order they should be stored.
        outcome2 : str, optional
            Secondary outcome column.

        Returns
        -------
        UnitDataset
        """
        conf_list = [confounders] if isinstance(confounders, str) else list(confounders)
        merged: List[str] = []
        for c in conf_list:
            if c not in merged:
                merged.append(c)
        if not merged:
            raise ValueError("At least one covariate column is required.")

        roles = {treatment: "treatment", outcome: "outcome"}
        if outcome2 is not None:
            roles[outcome2] = "outcome2"
        for c in merged:
            roles.setdefault(c, "covariate")
        used = [outcome] + ([outcome2] if outcome2 is not None else []) + [treatment] + merged

        all_columns = set(df.columns)
        for col in used:
            if col not in all_columns:
                raise ValueError(f"Column '{col}' specified as {roles[col]} does not exist in the DataFrame.")
        sub = df[used]
        if sub.isna().any().any():
            bad = [c for c in used if sub[c].isna().any()]
            raise ValueError(f"DataFrame contains NaN values in columns {bad}, which are not allowed.")
        for col in used:
            if not pdtypes.is_numeric_dtype(sub[col]) and not pdtypes.is_bool_dtype(sub[col]):
                raise ValueError(f"Column '{col}' specified as {roles[col]} must contain only int or float values.")
            std = sub[col].astype(float).std()
            if std == 0 or pd.isna(std):
                raise ValueError(
                    f"Column '{col}' specified as {roles[col]} is constant (has zero variance), "
                    f"which is not allowed for causal inference."
                )

        t = sub[treatment].astype(float).to_numpy()
        if not np.all(np.isin(t, [0.0, 1.0])):
            raise ValueError(f"Column '{treatment}' specified as treatment must be binary 0/1.")

        duplicated = int(sub.duplicated().sum())
        if duplicated > 0:
            warnings.warn(
                f"Found {duplicated} duplicate rows out of {len(sub)} total rows in the DataFrame. "
                f"Duplicate rows may affect the quality of causal inference results. "
                f"Consider removing duplicates if they are not intentional.",
                UserWarning,
                stacklevel=2,
            )

        x = sub[merged].astype(float).to_numpy()
        y = sub[outcome].astype(float).to_numpy()
        y2 = sub[outcome2].astype(float).to_numpy() if outcome2 is not None else None
        units = [
            Unit(
                treatment=int(t[i]),
                covariates=tuple(x[i]),
                outcome=y[i],
                outcome2=None if y2 is None else y2[i],
            )
            for i in range(len(sub))
        ]
        return cls(units, merged, outcome_name=outcome, outcome2_name=outcome2)

    def take(self, indices: Sequence[int]) -> "UnitDataset":
        """Return a new dataset made of the units at ``indices`` (repeats allowed)."""
        idx = np.asarray(indices, dtype=int)
        return UnitDataset(
            [self._units[i] for i in idx],
            self._covariate_names,
            outcome_name=self._outcome_name,
            outcome2_name=self._outcome2_name,
        )

    # ---------- Accessors ----------

    @property
    def units(self) -> Tuple[Unit, ...]:
        return self._units

    @property
    def covariate_names(self) -> List[str]:
        """List of covariate names, in storage order."""
        return list(self._covariate_names)

    @property
    def outcome_name(self) -> str:
        return self._outcome_name

    @property
    def outcome2_name(self) -> Optional[str]:
        return self._outcome2_name

    @property
    def treatment(self) -> np.ndarray:
        """Read-only 0/1 treatment vector."""
        return self._t

    @property
    def covariate_matrix(self) -> np.ndarray:
        """Read-only covariate matrix of shape (n, k)."""
        return self._x

    @property
    def n_treated(self) -> int:
        return int(self._t.sum())

    @property
    def n_control(self) -> int:
        return int(len(self._t) - self._t.sum())

    def covariate(self, name: str) -> np.ndarray:
        """Read-only column of a single covariate."""
        try:
            j = self._covariate_names.index(name)
        except ValueError:
            raise ValueError(f"Unknown covariate '{name}'; known covariates: {list(self._covariate_names)}")
        return self._x[:, j]

    def columns(self, names: Sequence[str]) -> np.ndarray:
        """Covariate sub-matrix for ``names`` (in the given order)."""
        idx = []
        for name in names:
            if name not in self._covariate_names:
                raise ValueError(f"Unknown covariate '{name}'; known covariates: {list(self._covariate_names)}")
            idx.append(self._covariate_names.index(name))
        return self._x[:, idx]

    def outcome_array(self, field: str = "outcome") -> np.ndarray:
        """
        Read-only outcome vector.

        ``field`` is either ``"outcome"``/``"outcome2"`` or the column name the
        outcome was loaded from.
        """
        if field in ("outcome", self._outcome_name):
            return self._y
        if field in ("outcome2",) or (self._outcome2_name is not None and field == self._outcome2_name):
            if self._y2 is None:
                raise ValueError("Dataset has no secondary outcome.")
            return self._y2
        raise ValueError(
            f"Unknown outcome field '{field}'; expected 'outcome', 'outcome2', "
            f"'{self._outcome_name}'" + (f" or '{self._outcome2_name}'" if self._outcome2_name else "")
        )

    def to_frame(self) -> pd.DataFrame:
        """Materialize the dataset as a DataFrame (a fresh copy)."""
        data = {self._outcome_name: self._y.copy()}
        if self._y2 is not None:
            data[self._outcome2_name or "outcome2"] = self._y2.copy()
        data["treatment"] = self._t.copy()
        for j, name in enumerate(self._covariate_names):
            data[name] = self._x[:, j].copy()
        return pd.DataFrame(data)

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[Unit]:
        return iter(self._units)

    def __getitem__(self, i: int) -> Unit:
        return self._units[i]

    def __repr__(self) -> str:
        return (
            f"UnitDataset(n={len(self)}, treated={self.n_treated}, control={self.n_control}, "
            f"outcome='{self._outcome_name}', covariates={list(self._covariate_names)})"
        )
