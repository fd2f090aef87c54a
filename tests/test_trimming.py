import numpy as np
import pytest

from propensitykit import TrimmingError
from propensitykit.weighting import (
    IPTW,
    Overlap,
    QuantileTrim,
    RangeTrim,
    StabilizedIPTW,
    Trimmed,
    compute_weights,
    trim_mask,
)


def test_range_trim_removes_exactly_out_of_bounds_units():
    p = np.linspace(0.02, 0.98, 49)
    t = np.tile([0, 1], 25)[:49]
    scheme = Trimmed(base=IPTW(), policy=RangeTrim(0.1, 0.9))
    w = compute_weights(p, t, scheme)

    expected_kept = (p >= 0.1) & (p <= 0.9)
    np.testing.assert_array_equal(w.kept, expected_kept)
    assert np.all(w.values[~expected_kept] == 0.0)

    untrimmed = compute_weights(p, t, IPTW()).values
    np.testing.assert_allclose(w.values[expected_kept], untrimmed[expected_kept])
    assert w.n_trimmed == int((~expected_kept).sum())
    assert w.estimand == "ATE"


def test_range_trim_emptying_an_arm_raises():
    p = np.array([0.55, 0.58, 0.7, 0.1, 0.2, 0.45])
    t = np.array([1, 1, 1, 0, 0, 0])
    with pytest.raises(TrimmingError) as exc:
        compute_weights(p, t, Trimmed(base=Overlap(), policy=RangeTrim(0.5, 0.6)))
    assert exc.value.arm == "control"
    assert exc.value.bounds == (0.5, 0.6)


def test_quantile_trim_bounds():
    rng = np.random.default_rng(8)
    p = rng.uniform(0.02, 0.98, size=500)
    t = rng.binomial(1, p)
    policy = QuantileTrim(q=0.05)

    low, high = policy.bounds(p, t)
    assert low == pytest.approx(np.quantile(p[t == 1], 0.05))
    assert high == pytest.approx(np.quantile(p[t == 0], 0.95))

    kept = trim_mask(p, t, policy)
    np.testing.assert_array_equal(kept, (p >= low) & (p <= high))
    assert 0 < kept.sum() < p.size


def test_quantile_trim_on_empty_arm():
    with pytest.raises(TrimmingError) as exc:
        QuantileTrim().bounds(np.array([0.2, 0.4]), np.array([1, 1]))
    assert exc.value.arm == "control"


def test_invalid_policies():
    with pytest.raises(ValueError):
        RangeTrim(0.6, 0.4)
    with pytest.raises(ValueError):
        QuantileTrim(q=0.5)
    with pytest.raises(TypeError):
        Trimmed(base="iptw", policy=RangeTrim())


def test_trimmed_stabilized_weights_average_one_over_kept_units():
    rng = np.random.default_rng(21)
    p = rng.uniform(0.02, 0.98, size=600)
    t = rng.binomial(1, p)
    w = compute_weights(p, t, Trimmed(base=StabilizedIPTW(), policy=RangeTrim(0.1, 0.9)))

    kept = w.kept
    assert 0 < kept.sum() < p.size
    assert w.values[kept & (t == 1)].mean() == pytest.approx(1.0)
    assert w.values[kept & (t == 0)].mean() == pytest.approx(1.0)
    assert np.all(w.values[~kept] == 0.0)

    # relative weights of the kept treated units still follow 1/p
    treated = kept & (t == 1)
    ratio = w.values[treated] * p[treated]
    np.testing.assert_allclose(ratio, ratio[0])
