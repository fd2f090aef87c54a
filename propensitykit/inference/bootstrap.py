"""
Nonparametric bootstrap over units, run on a thread pool.

Each replicate resamples units with replacement, reruns a statistic (usually
the full propensity fit -> weight -> estimate pipeline) and returns a scalar.
Replicates are independent: their seeds are spawned from one
``numpy.random.SeedSequence`` and results are aggregated without regard to
completion order. A replicate that raises a library error is recorded as
skipped; the run fails only when the skip rate exceeds ``max_failure_rate``.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import warnings
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from propensitykit.data.units import UnitDataset
from propensitykit.exceptions import BootstrapError, PropensityKitError

logger = logging.getLogger(__name__)

DEFAULT_REPLICATES = 1000

# Errors that mark a single replicate as skipped instead of aborting the run.
REPLICATE_ERRORS = (PropensityKitError, np.linalg.LinAlgError, ValueError)


@dataclass(frozen=True)
class ReplicateFailure:
    index: int
    error: str
    message: str


@dataclass(frozen=True)
class BootstrapResult:
    """
    Empirical bootstrap distribution of a scalar statistic.

    Attributes
    ----------
    estimates : np.ndarray
        Successful replicate estimates, sorted ascending.
    failures : tuple of ReplicateFailure
        Skipped replicates with the error that caused them.
    n_requested : int
        Replicates requested.
    cancelled : bool
        True when the run stopped early (cancel event or timeout); the
        collected estimates remain valid for inference on fewer replicates.
    """

    estimates: np.ndarray
    failures: Tuple[ReplicateFailure, ...]
    n_requested: int
    cancelled: bool = False

    def __post_init__(self):
        est = np.sort(np.asarray(self.estimates, dtype=float).reshape(-1))
        est.setflags(write=False)
        object.__setattr__(self, "estimates", est)

    @property
    def n_completed(self) -> int:
        return int(self.estimates.shape[0])

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    @property
    def std_error(self) -> float:
        if self.n_completed < 2:
            return float("nan")
        return float(np.std(self.estimates, ddof=1))

    def percentile_interval(self, level: float = 0.95) -> Tuple[float, float]:
        if not (0.0 < level < 1.0):
            raise ValueError("level must be in (0,1)")
        if self.n_completed == 0:
            return (float("nan"), float("nan"))
        alpha = (1.0 - level) / 2.0
        lo, hi = np.quantile(self.estimates, [alpha, 1.0 - alpha])
        return (float(lo), float(hi))


def _resample_indices(t: np.ndarray, rng: np.random.Generator, stratify: bool) -> np.ndarray:
    n = t.shape[0]
    if not stratify:
        return rng.integers(0, n, size=n)
    parts = []
    for arm in (0, 1):
        idx = np.flatnonzero(t == arm)
        if idx.size:
            parts.append(rng.choice(idx, size=idx.size, replace=True))
    return np.concatenate(parts)


def _run_replicate(
    index: int,
    seed: np.random.SeedSequence,
    dataset: UnitDataset,
    statistic: Callable[[UnitDataset], float],
    stratify: bool,
):
    rng = np.random.default_rng(seed)
    try:
        sample = dataset.take(_resample_indices(dataset.treatment, rng, stratify))
        value = float(statistic(sample))
        if not np.isfinite(value):
            raise ValueError(f"statistic returned a non-finite value ({value})")
        return index, value, None
    except REPLICATE_ERRORS as exc:
        return index, None, ReplicateFailure(index=index, error=type(exc).__name__, message=str(exc))


def bootstrap(
    dataset: UnitDataset,
    statistic: Callable[[UnitDataset], float],
    n_replicates: int = DEFAULT_REPLICATES,
    *,
    n_jobs: int = 1,
    random_state: Optional[int] = None,
    max_failure_rate: float = 0.1,
    stratify: bool = True,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> BootstrapResult:
    """
    Bootstrap distribution of ``statistic`` over resampled datasets.

    Parameters
    ----------
    dataset : UnitDataset
        Original sample.
    statistic : callable
        ``statistic(dataset) -> float``; must not share mutable state across calls.
    n_replicates : int, default 1000
        Number of bootstrap replicates.
    n_jobs : int, default 1
        Worker threads.
    random_state : int, optional
        Root seed; identical seeds give identical replicate estimates.
    max_failure_rate : float, default 0.1
        Maximum share of skipped replicates before the run fails.
    stratify : bool, default True
        Resample within each treatment arm so arm sizes are preserved.
    cancel_event : threading.Event, optional
        Setting the event stops the run; collected replicates are kept.
    timeout : float, optional
        Seconds to wait for replicates before stopping with partial results.

        On cancellation or timeout, queued replicates are dropped and the
        function returns without waiting. Replicates already running keep
        their worker thread until ``statistic`` returns; their results are
        discarded and never reach the returned :class:`BootstrapResult`.

    Returns
    -------
    BootstrapResult

    Raises
    ------
    BootstrapError
        If no replicate succeeds or the skip rate exceeds ``max_failure_rate``.
    """
    n_replicates = int(n_replicates)
    if n_replicates < 1:
        raise ValueError("n_replicates must be >= 1")
    if int(n_jobs) < 1:
        raise ValueError("n_jobs must be >= 1")
    if not (0.0 <= float(max_failure_rate) < 1.0):
        raise ValueError("max_failure_rate must be in [0, 1)")

    seeds = np.random.SeedSequence(random_state).spawn(n_replicates)
    estimates: List[float] = []
    failures: List[ReplicateFailure] = []
    cancelled = False

    executor = concurrent.futures.ThreadPoolExecutor(max_workers=int(n_jobs))
    try:
        futures = [
            executor.submit(_run_replicate, i, seeds[i], dataset, statistic, stratify)
            for i in range(n_replicates)
        ]
        try:
            for fut in concurrent.futures.as_completed(futures, timeout=timeout):
                if fut.cancelled():
                    continue
                _, value, failure = fut.result()
                if failure is None:
                    estimates.append(value)
                else:
                    failures.append(failure)
                    logger.debug("bootstrap replicate %d skipped: %s", failure.index, failure.message)
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
        except concurrent.futures.TimeoutError:
            cancelled = True
        if cancelled:
            for fut in futures:
                fut.cancel()
    finally:
        executor.shutdown(wait=not cancelled, cancel_futures=True)

    n_attempted = len(estimates) + len(failures)
    logger.debug("bootstrap finished: %d ok, %d skipped, cancelled=%s", len(estimates), len(failures), cancelled)

    if n_attempted > 0 and len(failures) / n_attempted > float(max_failure_rate):
        sample = "; ".join(f"#{f.index} {f.error}: {f.message}" for f in failures[:3])
        raise BootstrapError(
            f"{len(failures)} of {n_attempted} bootstrap replicates failed, above the allowed rate "
            f"{max_failure_rate:.3g}. First failures: {sample}",
            n_failed=len(failures),
            n_attempted=n_attempted,
        )
    if not estimates and not cancelled:
        raise BootstrapError("No bootstrap replicate succeeded.", n_failed=len(failures), n_attempted=n_attempted)
    if failures:
        warnings.warn(
            f"Skipped {len(failures)} of {n_attempted} bootstrap replicates after estimation errors.",
            RuntimeWarning,
            stacklevel=2,
        )
    if cancelled:
        warnings.warn(
            f"Bootstrap stopped early after {n_attempted} of {n_replicates} replicates; "
            f"results are based on the completed replicates.",
            RuntimeWarning,
            stacklevel=2,
        )

    return BootstrapResult(
        estimates=np.asarray(estimates, dtype=float),
        failures=tuple(sorted(failures, key=lambda f: f.index)),
        n_requested=n_replicates,
        cancelled=cancelled,
    )
