import warnings

import numpy as np
import pytest

from propensitykit.data import ObservationalDataGenerator
from propensitykit.inference import estimate_weighted_effect
from propensitykit.propensity import fit_propensity
from propensitykit.weighting import (
    IPTW,
    Overlap,
    RangeTrim,
    TreatedOdds,
    Trimmed,
    compute_weights,
)


@pytest.fixture(scope="module")
def dataset():
    gen = ObservationalDataGenerator(
        theta=2.0,
        theta2=-1.0,
        beta_y=np.array([1.0, -0.8, 0.5]),
        beta_t=np.array([0.7, 0.4, -0.3]),
        seed=17,
    )
    return gen.to_dataset(4000)


@pytest.fixture(scope="module")
def scores(dataset):
    return fit_propensity(dataset).scores(dataset)


def test_estimate_is_difference_of_weighted_means(dataset, scores):
    w = compute_weights(scores, dataset.treatment, Overlap())
    res = estimate_weighted_effect(dataset, w)

    y, t, wv = dataset.outcome_array(), dataset.treatment, w.values
    expected = np.average(y[t == 1], weights=wv[t == 1]) - np.average(y[t == 0], weights=wv[t == 0])
    assert res.estimate == pytest.approx(expected, rel=1e-10)
    assert res.estimand == "ATO"
    assert res.method == "weighted:overlap"
    assert res.effective_sample_size == pytest.approx(wv.sum() ** 2 / np.sum(wv ** 2))
    assert res.n_treated == dataset.n_treated and res.n_control == dataset.n_control


def test_recovers_constant_effect(dataset, scores):
    for scheme in (IPTW(), Overlap(), TreatedOdds()):
        res = estimate_weighted_effect(dataset, compute_weights(scores, dataset.treatment, scheme))
        assert abs(res.estimate - 2.0) < 0.3
        assert res.std_error > 0


def test_secondary_outcome(dataset, scores):
    w = compute_weights(scores, dataset.treatment, Overlap())
    res = estimate_weighted_effect(dataset, w, outcome_field="outcome2")
    assert res.outcome == "outcome2"
    assert abs(res.estimate + 1.0) < 0.3


def test_repeated_calls_are_bit_identical(dataset, scores):
    w = compute_weights(scores, dataset.treatment, IPTW())
    first = estimate_weighted_effect(dataset, w)
    second = estimate_weighted_effect(dataset, w)
    assert first == second


def test_hc1_standard_error_with_unit_weights(dataset):
    y, t = dataset.outcome_array(), dataset.treatment
    res = estimate_weighted_effect(dataset, np.ones(len(dataset)))

    n, n1, n0 = len(dataset), int(t.sum()), int((1 - t).sum())
    e1 = y[t == 1] - y[t == 1].mean()
    e0 = y[t == 0] - y[t == 0].mean()
    hc0 = np.sum(e1 ** 2) / n1 ** 2 + np.sum(e0 ** 2) / n0 ** 2
    assert res.std_error == pytest.approx(np.sqrt(hc0 * n / (n - 2)), rel=1e-8)
    assert res.estimand == "ATE"
    assert res.method == "weighted:custom"


def test_trimmed_units_do_not_enter(dataset, scores):
    w = compute_weights(scores, dataset.treatment, Trimmed(base=IPTW(), policy=RangeTrim(0.2, 0.8)))
    res = estimate_weighted_effect(dataset, w)
    assert res.n_treated + res.n_control == w.n_kept
    assert w.n_trimmed > 0
    assert res.method == "weighted:trimmed(iptw, range[0.2,0.8])"


def test_estimand_label(dataset, scores):
    w = compute_weights(scores, dataset.treatment, TreatedOdds())
    assert estimate_weighted_effect(dataset, w).estimand == "ATT"

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert estimate_weighted_effect(dataset, w, estimand="att").estimand == "ATT"

    with pytest.warns(UserWarning, match="Estimand ATE"):
        res = estimate_weighted_effect(dataset, w, estimand="ATE")
    assert res.estimand == "ATE"

    with pytest.raises(ValueError):
        estimate_weighted_effect(dataset, w, estimand="CATE")


def test_result_summary(dataset, scores):
    res = estimate_weighted_effect(dataset, compute_weights(scores, dataset.treatment, Overlap()))
    lo, hi = res.confint(0.95)
    assert lo < res.estimate < hi
    assert res.p_value < 1e-6
    table = res.summary()
    assert list(table.columns) == ["coef", "std err", "z", "P>|z|", "2.5 %", "97.5 %", "ess"]
    assert table.index[0] == "ATO (outcome)"


def test_invalid_weights(dataset):
    with pytest.raises(ValueError):
        estimate_weighted_effect(dataset, np.ones(5))
    w = np.where(dataset.treatment == 1, 0.0, 1.0)
    with pytest.raises(ValueError, match="No treated units"):
        estimate_weighted_effect(dataset, w)
