import threading
import time

import numpy as np
import pytest

from propensitykit import AnalysisConfig, BootstrapError, PropensityFitError, TrimmingError
from propensitykit.data import ObservationalDataGenerator
from propensitykit.inference import BootstrapResult, bootstrap, weighted_effect


@pytest.fixture(scope="module")
def dataset():
    gen = ObservationalDataGenerator(
        theta=1.0,
        beta_y=np.array([1.0, 0.5]),
        beta_t=np.array([0.5, -0.5]),
        k=2,
        seed=99,
    )
    return gen.to_dataset(300)


def _mean_difference(ds):
    y, t = ds.outcome_array(), ds.treatment
    return float(y[t == 1].mean() - y[t == 0].mean())


def test_same_seed_gives_identical_estimates(dataset):
    a = bootstrap(dataset, _mean_difference, 50, n_jobs=1, random_state=0)
    b = bootstrap(dataset, _mean_difference, 50, n_jobs=4, random_state=0)
    np.testing.assert_array_equal(a.estimates, b.estimates)
    assert a.n_completed == 50 and a.n_failed == 0
    assert not a.cancelled

    c = bootstrap(dataset, _mean_difference, 50, random_state=1)
    assert not np.array_equal(a.estimates, c.estimates)


def test_full_pipeline_statistic(dataset):
    res = bootstrap(dataset, lambda ds: weighted_effect(ds, AnalysisConfig()), 30, n_jobs=3, random_state=5)
    assert res.n_completed == 30
    assert res.std_error > 0
    lo, hi = res.percentile_interval(0.9)
    assert lo < hi
    assert np.all(np.diff(res.estimates) >= 0)


def test_stratified_resampling_preserves_arm_sizes(dataset):
    res = bootstrap(dataset, lambda ds: float(ds.n_treated), 20, random_state=2)
    assert np.all(res.estimates == dataset.n_treated)

    res = bootstrap(dataset, lambda ds: float(ds.n_treated), 20, random_state=2, stratify=False)
    assert not np.all(res.estimates == dataset.n_treated)


def _failing_every(k):
    lock = threading.Lock()
    calls = [0]

    def statistic(ds):
        with lock:
            calls[0] += 1
            current = calls[0]
        if current % k == 0:
            raise PropensityFitError("synthetic failure", link="linear")
        return _mean_difference(ds)

    return statistic


def test_failed_replicates_are_skipped(dataset):
    with pytest.warns(RuntimeWarning, match="Skipped 5 of 50"):
        res = bootstrap(dataset, _failing_every(10), 50, random_state=0, max_failure_rate=0.2)
    assert res.n_completed == 45
    assert res.n_failed == 5
    assert all(f.error == "PropensityFitError" for f in res.failures)


def test_failure_rate_above_threshold_raises(dataset):
    with pytest.raises(BootstrapError) as exc:
        bootstrap(dataset, _failing_every(10), 50, random_state=0, max_failure_rate=0.05)
    assert exc.value.n_failed == 5
    assert exc.value.n_attempted == 50


def test_all_replicates_failing_raises(dataset):
    def statistic(ds):
        raise TrimmingError("arm emptied", arm="control")

    with pytest.raises(BootstrapError):
        bootstrap(dataset, statistic, 10, random_state=0, max_failure_rate=0.99)


def test_unexpected_errors_propagate(dataset):
    def statistic(ds):
        raise RuntimeError("bug in statistic")

    with pytest.raises(RuntimeError, match="bug in statistic"):
        bootstrap(dataset, statistic, 5, random_state=0)


def test_cancel_event_stops_with_partial_results(dataset):
    event = threading.Event()
    lock = threading.Lock()
    calls = [0]

    def statistic(ds):
        with lock:
            calls[0] += 1
            if calls[0] >= 5:
                event.set()
        return _mean_difference(ds)

    with pytest.warns(RuntimeWarning, match="stopped early"):
        res = bootstrap(dataset, statistic, 200, n_jobs=1, random_state=0, cancel_event=event)
    assert res.cancelled
    assert 0 < res.n_completed < 200
    assert np.all(np.isfinite(res.estimates))


def test_timeout_stops_with_partial_results(dataset):
    def statistic(ds):
        time.sleep(0.05)
        return _mean_difference(ds)

    with pytest.warns(RuntimeWarning, match="stopped early"):
        res = bootstrap(dataset, statistic, 200, n_jobs=1, random_state=0, timeout=0.5)
    assert res.cancelled
    assert res.n_completed < 200


def test_invalid_arguments(dataset):
    with pytest.raises(ValueError):
        bootstrap(dataset, _mean_difference, 0)
    with pytest.raises(ValueError):
        bootstrap(dataset, _mean_difference, 10, n_jobs=0)
    with pytest.raises(ValueError):
        bootstrap(dataset, _mean_difference, 10, max_failure_rate=1.0)


def test_result_container():
    res = BootstrapResult(estimates=[3.0, 1.0, 2.0], failures=(), n_requested=3)
    np.testing.assert_array_equal(res.estimates, [1.0, 2.0, 3.0])
    assert res.std_error == pytest.approx(1.0)
    with pytest.raises(ValueError):
        res.estimates[0] = 0.0
    empty = BootstrapResult(estimates=[], failures=(), n_requested=3, cancelled=True)
    assert np.isnan(empty.std_error)
    assert all(np.isnan(v) for v in empty.percentile_interval())


def test_replicates_running_at_timeout_are_discarded(dataset):
    started = threading.Event()
    finished = threading.Event()
    calls = [0]

    def statistic(ds):
        calls[0] += 1
        started.set()
        time.sleep(0.4)
        finished.set()
        return _mean_difference(ds)

    with pytest.warns(RuntimeWarning, match="stopped early"):
        res = bootstrap(dataset, statistic, 20, n_jobs=1, random_state=0, timeout=0.1)
    assert started.is_set()
    assert not finished.is_set()
    assert res.cancelled and res.n_completed == 0

    assert finished.wait(5.0)
    time.sleep(0.05)
    assert res.n_completed == 0
    assert calls[0] == 1
