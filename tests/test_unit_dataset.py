"""
Tests for Unit and UnitDataset.
"""

import numpy as np
import pandas as pd
import pytest

from propensitykit.data import Unit, UnitDataset


@pytest.fixture
def frame():
    rng = np.random.default_rng(42)
    n = 50
    return pd.DataFrame({
        "y": rng.normal(size=n),
        "y2": rng.normal(size=n),
        "t": np.tile([0, 1], n // 2),
        "age": rng.normal(40, 10, size=n),
        "score": rng.uniform(size=n),
        "label": ["a"] * n,
    })


def test_from_frame_builds_aligned_views(frame):
    ds = UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders=["age", "score"], outcome2="y2")

    assert len(ds) == 50
    assert ds.n_treated == 25 and ds.n_control == 25
    assert ds.covariate_names == ["age", "score"]
    np.testing.assert_array_equal(ds.treatment, frame["t"].to_numpy())
    np.testing.assert_allclose(ds.covariate("score"), frame["score"].to_numpy())
    np.testing.assert_allclose(ds.outcome_array("outcome"), frame["y"].to_numpy())
    np.testing.assert_allclose(ds.outcome_array("y2"), frame["y2"].to_numpy())
    np.testing.assert_allclose(ds.columns(["score", "age"])[:, 1], frame["age"].to_numpy())


def test_from_frame_single_confounder_string(frame):
    ds = UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders="age")
    assert ds.covariate_names == ["age"]
    with pytest.raises(ValueError, match="no secondary outcome"):
        ds.outcome_array("outcome2")


def test_from_frame_rejects_nan(frame):
    frame.loc[3, "age"] = np.nan
    with pytest.raises(ValueError, match="NaN"):
        UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders=["age"])


def test_from_frame_rejects_missing_column(frame):
    with pytest.raises(ValueError, match="does not exist"):
        UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders=["income"])


def test_from_frame_rejects_non_numeric(frame):
    with pytest.raises(ValueError, match="int or float"):
        UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders=["label"])


def test_from_frame_rejects_constant_column(frame):
    frame["const"] = 1.0
    with pytest.raises(ValueError, match="constant"):
        UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders=["const"])


def test_from_frame_rejects_non_binary_treatment(frame):
    frame["t"] = np.tile([0, 1, 2, 1, 0], 10)
    with pytest.raises(ValueError, match="binary"):
        UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders=["age"])


def test_from_frame_warns_on_duplicates():
    df = pd.DataFrame({"y": [1.0, 1.0, 2.0, 3.0], "t": [1, 1, 0, 0], "x": [0.5, 0.5, 0.1, 0.2]})
    with pytest.warns(UserWarning, match="duplicate"):
        ds = UnitDataset.from_frame(df, treatment="t", outcome="y", confounders=["x"])
    assert len(ds) == 4


def test_dataset_is_immutable(frame):
    ds = UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders=["age"])
    with pytest.raises(AttributeError):
        ds.foo = 1
    with pytest.raises(ValueError):
        ds.treatment[0] = 1
    with pytest.raises(ValueError):
        ds.covariate_matrix[0, 0] = 0.0
    with pytest.raises(ValueError):
        ds.outcome_array()[0] = 0.0


def test_take_allows_repeats_and_keeps_names(frame):
    ds = UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders=["age", "score"], outcome2="y2")
    sub = ds.take([0, 0, 5])
    assert len(sub) == 3
    assert sub.covariate_names == ds.covariate_names
    assert sub[0] == sub[1] == ds[0]
    assert sub.outcome_array("outcome2")[2] == ds.outcome_array("outcome2")[5]


def test_to_frame_round_trips_values(frame):
    ds = UnitDataset.from_frame(frame, treatment="t", outcome="y", confounders=["age"])
    out = ds.to_frame()
    assert list(out.columns) == ["y", "treatment", "age"]
    np.testing.assert_allclose(out["age"].to_numpy(), frame["age"].to_numpy())


def test_unit_validation():
    with pytest.raises(ValueError):
        Unit(treatment=2, covariates=(1.0,), outcome=0.0)
    with pytest.raises(ValueError):
        Unit(treatment=1, covariates=(np.nan,), outcome=0.0)
    with pytest.raises(ValueError):
        Unit(treatment=1, covariates=(1.0,), outcome=np.inf)
    u = Unit(treatment=1, covariates=[1, 2], outcome=3)
    assert u.covariates == (1.0, 2.0)


def test_dataset_rejects_inconsistent_units():
    with pytest.raises(ValueError, match="covariates"):
        UnitDataset([Unit(1, (1.0,), 0.0), Unit(0, (1.0, 2.0), 0.0)], covariate_names=["a"])
    with pytest.raises(ValueError, match="outcome2"):
        UnitDataset([Unit(1, (1.0,), 0.0, 1.0), Unit(0, (2.0,), 0.0)], covariate_names=["a"])
    with pytest.raises(ValueError, match="unique"):
        UnitDataset([Unit(1, (1.0, 2.0), 0.0)], covariate_names=["a", "a"])
