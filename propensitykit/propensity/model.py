"""
Propensity score models: P(T=1 | X) behind one interface with interchangeable links.

Two link strategies are provided:

- :class:`LogisticLink` - logistic regression, linear in the covariates.
- :class:`AdditiveSmoothLink` - additive logistic model with one penalised
  B-spline term per continuous covariate (binary covariates enter linearly).

Both are fit by Newton/IRLS iterations with step halving on the
(penalised) binomial log-likelihood. Predicted probabilities are clamped
to ``[clip, 1 - clip]`` before leaving the model.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.special import expit
from sklearn.preprocessing import SplineTransformer

from propensitykit.data.units import UnitDataset
from propensitykit.exceptions import PropensityFitError

logger = logging.getLogger(__name__)

DEFAULT_CLIP = 1e-6

_MAX_HALVINGS = 30
# |linear predictor| above this means fitted probabilities within ~1e-13 of 0 or 1
_SEPARATION_ETA = 30.0
# keeps the spline block positive definite when alpha=0
_SPLINE_RIDGE = 1e-6


@dataclass(frozen=True)
class PropensityScores:
    """
    Per-unit propensity scores aligned with a dataset.

    Parameters
    ----------
    values : array-like of shape (n,)
        Probabilities P(T=1 | X).
    link : str
        Name of the link that produced the scores.
    clip : float, optional
        Clamp epsilon applied to the values (None if unclamped).
    """

    values: np.ndarray
    link: str = "external"
    clip: Optional[float] = None

    def __post_init__(self):
        arr = np.array(self.values, dtype=float).reshape(-1)
        arr.setflags(write=False)
        object.__setattr__(self, "values", arr)

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def __array__(self, dtype=None, copy=None):
        return np.array(self.values, dtype=dtype)


@dataclass(frozen=True)
class LinkBasis:
    """Design-matrix builder learned by a link at fit time."""

    transform: Callable[[np.ndarray], np.ndarray]
    penalty: np.ndarray
    column_names: Tuple[str, ...]


class PropensityLink(ABC):
    """Strategy interface: learn a basis expansion and its penalty from X."""

    name: str = "link"

    @abstractmethod
    def fit_basis(self, X: np.ndarray, names: Sequence[str]) -> LinkBasis:
        """Return the basis (intercept first) and penalty matrix for covariates ``X``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class LogisticLink(PropensityLink):
    """Binomial GLM with a logit link, linear in the covariates."""

    name = "linear"

    def fit_basis(self, X: np.ndarray, names: Sequence[str]) -> LinkBasis:
        k = X.shape[1]

        def transform(Z: np.ndarray) -> np.ndarray:
            Z = np.asarray(Z, dtype=float)
            return np.column_stack([np.ones(Z.shape[0]), Z])

        return LinkBasis(
            transform=transform,
            penalty=np.zeros((k + 1, k + 1)),
            column_names=("intercept",) + tuple(names),
        )


class AdditiveSmoothLink(PropensityLink):
    """
    Additive logistic model with penalised B-spline terms (P-splines).

    Continuous covariates are expanded with scikit-learn's
    ``SplineTransformer``; a second-order difference penalty of strength
    ``alpha`` on each covariate's spline coefficients controls wiggliness.
    Knots sit at quantiles of the covariate and the spline columns are
    centred on their training means. Covariates with at most two distinct
    values enter linearly.

    Parameters
    ----------
    n_knots : int, default 5
        Number of knots per smooth term.
    degree : int, default 3
        Spline degree.
    alpha : float, default 1.0
        Smoothness penalty (0 gives unpenalised regression splines).
    """

    name = "additive"

    def __init__(self, n_knots: int = 5, degree: int = 3, alpha: float = 1.0):
        if int(n_knots) < 2:
            raise ValueError("n_knots must be >= 2")
        if int(degree) < 1:
            raise ValueError("degree must be >= 1")
        if float(alpha) < 0:
            raise ValueError("alpha must be >= 0")
        self.n_knots = int(n_knots)
        self.degree = int(degree)
        self.alpha = float(alpha)

    def __repr__(self) -> str:
        return f"AdditiveSmoothLink(n_knots={self.n_knots}, degree={self.degree}, alpha={self.alpha})"

    def _spline(self, x: np.ndarray) -> SplineTransformer:
        # quantile knots keep every basis function supported by data; fall back
        # to uniform knots when ties make quantiles coincide
        qs = np.quantile(x, np.linspace(0.0, 1.0, self.n_knots))
        knots = "quantile" if np.all(np.diff(qs) > 0) else "uniform"
        return SplineTransformer(
            n_knots=self.n_knots,
            degree=self.degree,
            knots=knots,
            include_bias=False,
            extrapolation="linear",
        ).fit(x.reshape(-1, 1))

    def fit_basis(self, X: np.ndarray, names: Sequence[str]) -> LinkBasis:
        k = X.shape[1]
        smooth = [j for j in range(k) if np.unique(X[:, j]).size > 2]
        linear = [j for j in range(k) if j not in smooth]
        col_names = ["intercept"] + [names[j] for j in linear]

        splines = [self._spline(X[:, j]) for j in smooth]
        # spline columns are centred on their training means so they are
        # near-orthogonal to the intercept
        centres = [sp.transform(X[:, [j]]).mean(axis=0) for sp, j in zip(splines, smooth)]
        block = self.n_knots + self.degree - 2 if smooth else 0
        for j in smooth:
            col_names.extend(f"s({names[j]})_{b}" for b in range(block))

        def transform(Z: np.ndarray) -> np.ndarray:
            Z = np.asarray(Z, dtype=float)
            parts = [np.ones((Z.shape[0], 1)), Z[:, linear]]
            for sp, j, centre in zip(splines, smooth, centres):
                parts.append(sp.transform(Z[:, [j]]) - centre)
            return np.hstack(parts)

        p = 1 + len(linear) + block * len(smooth)
        penalty = np.zeros((p, p))
        if smooth:
            S = _SPLINE_RIDGE * np.eye(block)
            if self.alpha > 0 and block >= 2:
                order = min(2, block - 1)
                D = np.diff(np.eye(block), n=order, axis=0)
                S = S + self.alpha * (D.T @ D)
            start = 1 + len(linear)
            for s in range(len(smooth)):
                lo = start + s * block
                penalty[lo:lo + block, lo:lo + block] = S

        return LinkBasis(transform=transform, penalty=penalty, column_names=tuple(col_names))


_LINK_ALIASES = {
    "linear": LogisticLink,
    "logistic": LogisticLink,
    "logit": LogisticLink,
    "additive": AdditiveSmoothLink,
    "additive-smooth": AdditiveSmoothLink,
    "additive_smooth": AdditiveSmoothLink,
    "smooth": AdditiveSmoothLink,
    "gam": AdditiveSmoothLink,
}


def resolve_link(link: Union[str, PropensityLink]) -> PropensityLink:
    """Turn a configuration value into a link strategy instance."""
    if isinstance(link, PropensityLink):
        return link
    if isinstance(link, str):
        key = link.strip().lower()
        if key in _LINK_ALIASES:
            return _LINK_ALIASES[key]()
        raise ValueError(f"Unknown propensity link '{link}'; expected one of {sorted(set(_LINK_ALIASES))}")
    raise TypeError(f"link must be a string or PropensityLink, got {type(link).__name__}")


def _clip(p: np.ndarray, eps: Optional[float]) -> np.ndarray:
    if eps is None:
        return p
    return np.clip(p, eps, 1.0 - eps)


def _collinear_covariates(X: np.ndarray, names: Sequence[str]) -> List[str]:
    """Covariates that are linear combinations of the intercept and earlier covariates."""
    Z = np.column_stack([np.ones(X.shape[0]), X])
    if np.linalg.matrix_rank(Z) == Z.shape[1]:
        return []
    kept = [0]
    bad = []
    for j in range(X.shape[1]):
        cand = kept + [j + 1]
        if np.linalg.matrix_rank(Z[:, cand]) < len(cand):
            bad.append(names[j])
        else:
            kept.append(j + 1)
    return bad


def _penalised_loglik(Z: np.ndarray, t: np.ndarray, beta: np.ndarray, penalty: np.ndarray) -> float:
    eta = Z @ beta
    return float(np.sum(t * eta - np.logaddexp(0.0, eta)) - 0.5 * beta @ penalty @ beta)


def _newton_logistic(
    Z: np.ndarray,
    t: np.ndarray,
    penalty: np.ndarray,
    *,
    max_iter: int,
    tol: float,
    link_name: str,
    covariates: Sequence[str],
) -> Tuple[np.ndarray, int]:
    """
    Penalised logistic regression by Newton-Raphson with step halving.

    A step is halved until it does not decrease the penalised log-likelihood.
    Iterations stop after a full step whose relative change of the penalised
    deviance is below ``tol``.

    Returns (coefficients, iterations). Raises PropensityFitError on a singular
    Hessian, divergence, a step that cannot be improved or when ``max_iter`` is
    reached.
    """
    rate = float(np.mean(t))
    beta = np.zeros(Z.shape[1], dtype=float)
    beta[0] = np.log(rate / (1.0 - rate))
    objective = _penalised_loglik(Z, t, beta, penalty)
    change = np.inf

    for it in range(1, max_iter + 1):
        mu = expit(Z @ beta)
        W = mu * (1.0 - mu)
        grad = Z.T @ (t - mu) - penalty @ beta
        H = (Z.T * W) @ Z + penalty
        try:
            step = np.linalg.solve(H, grad)
        except np.linalg.LinAlgError:
            raise PropensityFitError(
                f"Singular Hessian at iteration {it}; the treatment is (quasi-)perfectly "
                f"separated by covariates {list(covariates)}.",
                link=link_name,
                covariates=covariates,
            )
        if not np.all(np.isfinite(step)):
            raise PropensityFitError(
                f"Coefficients diverged at iteration {it}; check covariates {list(covariates)} "
                f"for perfect separation.",
                link=link_name,
                covariates=covariates,
            )

        scale = 1.0
        slack = 1e-12 * (abs(objective) + 1.0)
        for _ in range(_MAX_HALVINGS):
            candidate = beta + scale * step
            new_objective = _penalised_loglik(Z, t, candidate, penalty)
            if np.isfinite(new_objective) and new_objective >= objective - slack:
                break
            scale *= 0.5
        else:
            raise PropensityFitError(
                f"Step halving could not improve the penalised log-likelihood at iteration {it}; "
                f"check covariates {list(covariates)} for separation or extreme values.",
                link=link_name,
                covariates=covariates,
            )

        beta = candidate
        change = abs(new_objective - objective)
        objective = new_objective
        logger.debug(
            "newton iteration %d: step scale=%g, penalised loglik=%.10g, change=%.3e",
            it, scale, objective, change,
        )
        # deviance = -2 * loglik, so the relative change is the same on either scale
        if scale == 1.0 and change <= tol * (abs(objective) + 0.1):
            return beta, it

    raise PropensityFitError(
        f"Did not converge within {max_iter} iterations (last log-likelihood change={change:.3g}); "
        f"check covariates {list(covariates)} for perfect separation.",
        link=link_name,
        covariates=covariates,
    )


@dataclass(frozen=True)
class PropensityModel:
    """
    A fitted propensity model.

    Instances are produced by :func:`fit_propensity`; every prediction method
    is side-effect free.
    """

    link: PropensityLink
    covariates: Tuple[str, ...]
    coef: np.ndarray
    basis: LinkBasis = field(repr=False)
    clip: Optional[float] = DEFAULT_CLIP
    n_iter: int = 0
    converged: bool = True
    log_likelihood: float = float("nan")

    def __post_init__(self):
        coef = np.array(self.coef, dtype=float)
        coef.setflags(write=False)
        object.__setattr__(self, "coef", coef)

    @property
    def link_name(self) -> str:
        return self.link.name

    def linear_predictor(self, X: np.ndarray) -> np.ndarray:
        X = np.atleast_2d(np.asarray(X, dtype=float))
        if X.shape[1] != len(self.covariates):
            raise ValueError(
                f"Expected {len(self.covariates)} covariate columns {list(self.covariates)}, got {X.shape[1]}"
            )
        return self.basis.transform(X) @ self.coef

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """Clamped P(T=1 | X) for a covariate matrix ordered like ``covariates``."""
        return _clip(expit(self.linear_predictor(X)), self.clip)

    def predict(self, covariates: Union[Mapping[str, float], Sequence[float]]) -> float:
        """
        Propensity score of a single unit.

        Parameters
        ----------
        covariates : mapping or sequence
            Either ``{name: value}`` containing every model covariate, or a
            sequence aligned with :attr:`covariates`.
        """
        if isinstance(covariates, Mapping):
            missing = [c for c in self.covariates if c not in covariates]
            if missing:
                raise ValueError(f"Missing covariates {missing} for propensity prediction")
            row = [float(covariates[c]) for c in self.covariates]
        else:
            row = [float(v) for v in covariates]
            if len(row) != len(self.covariates):
                raise ValueError(
                    f"Expected {len(self.covariates)} covariate values {list(self.covariates)}, got {len(row)}"
                )
        return float(self.predict_proba(np.asarray(row).reshape(1, -1))[0])

    def scores(self, dataset: UnitDataset) -> PropensityScores:
        """Propensity scores for every unit of ``dataset``."""
        values = self.predict_proba(dataset.columns(self.covariates))
        return PropensityScores(values=values, link=self.link.name, clip=self.clip)


def fit_propensity(
    dataset: UnitDataset,
    covariates: Optional[Sequence[str]] = None,
    link: Union[str, PropensityLink] = "linear",
    *,
    clip: Optional[float] = DEFAULT_CLIP,
    max_iter: int = 100,
    tol: float = 1e-10,
) -> PropensityModel:
    """
    Fit P(T=1 | X) on a dataset.

    Parameters
    ----------
    dataset : UnitDataset
        Units with a binary treatment.
    covariates : sequence of str, optional
        Covariates entering the model. Defaults to all dataset covariates.
    link : str or PropensityLink, default "linear"
        ``"linear"`` (logistic) or ``"additive"`` (penalised splines), or a
        link instance.
    clip : float or None, default 1e-6
        Predictions are clamped to ``[clip, 1 - clip]``; None disables clamping.
    max_iter : int, default 100
        Maximum Newton iterations.
    tol : float, default 1e-10
        Convergence tolerance on the relative change of the penalised deviance.

    Returns
    -------
    PropensityModel

    Raises
    ------
    PropensityFitError
        Single-arm treatment, rank-deficient covariates, separation or
        non-convergence.
    """
    strategy = resolve_link(link)
    names = list(dataset.covariate_names if covariates is None else covariates)
    if not names:
        raise ValueError("At least one covariate is required to fit a propensity model.")
    if clip is not None and not (0.0 < float(clip) < 0.5):
        raise ValueError("clip must be None or in (0, 0.5)")
    if int(max_iter) < 1:
        raise ValueError("max_iter must be >= 1")

    X = np.asarray(dataset.columns(names), dtype=float)
    t = dataset.treatment.astype(float)
    n_treated = int(t.sum())
    if n_treated == 0 or n_treated == len(t):
        arm = "control" if n_treated == 0 else "treated"
        raise PropensityFitError(
            f"Treatment has a single arm (all {arm}); P(T=1|X) is not estimable.",
            link=strategy.name,
            covariates=names,
        )

    collinear = _collinear_covariates(X, names)
    if collinear:
        raise PropensityFitError(
            f"Covariate matrix is rank-deficient: {collinear} are perfectly collinear with "
            f"the intercept and preceding covariates.",
            link=strategy.name,
            covariates=collinear,
        )

    basis = strategy.fit_basis(X, names)
    Z = basis.transform(X)
    coef, n_iter = _newton_logistic(
        Z,
        t,
        basis.penalty,
        max_iter=int(max_iter),
        tol=float(tol),
        link_name=strategy.name,
        covariates=names,
    )

    eta = Z @ coef
    extreme = np.abs(eta) > _SEPARATION_ETA
    if np.any(extreme):
        raise PropensityFitError(
            f"Treatment is (quasi-)perfectly separated by covariates {names}: {int(extreme.sum())} "
            f"of {len(t)} fitted probabilities are numerically 0 or 1.",
            link=strategy.name,
            covariates=names,
        )
    loglik = float(np.sum(t * eta - np.logaddexp(0.0, eta)))
    logger.debug("fitted %s propensity model on %d units in %d iterations", strategy.name, len(t), n_iter)

    return PropensityModel(
        link=strategy,
        covariates=tuple(names),
        coef=coef,
        basis=basis,
        clip=None if clip is None else float(clip),
        n_iter=n_iter,
        converged=True,
        log_likelihood=loglik,
    )
