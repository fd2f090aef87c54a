import numpy as np
import pytest

from propensitykit.data import ObservationalDataGenerator


def test_generate_columns_and_ground_truth():
    gen = ObservationalDataGenerator(
        theta=1.5,
        theta2=-0.5,
        beta_y=np.array([1.0, -0.5]),
        beta_t=np.array([0.8, 0.3]),
        k=2,
        seed=3,
    )
    df = gen.generate(500)
    assert list(df.columns) == ["y", "y2", "t", "x1", "x2", "propensity", "mu0", "mu1", "cate"]
    assert set(np.unique(df["t"])) == {0.0, 1.0}
    np.testing.assert_allclose(df["cate"], 1.5)
    assert df["propensity"].between(0, 1).all()


def test_seed_makes_draws_reproducible():
    kwargs = dict(beta_y=np.array([1.0, 2.0, 0.5]), beta_t=np.array([0.5, -0.5, 0.2]), seed=11)
    a = ObservationalDataGenerator(**kwargs).generate(200)
    b = ObservationalDataGenerator(**kwargs).generate(200)
    np.testing.assert_array_equal(a.to_numpy(), b.to_numpy())


def test_oracle_nuisance_matches_generated_columns():
    gen = ObservationalDataGenerator(
        theta=2.0,
        alpha_y=0.5,
        alpha_t=-0.2,
        beta_y=np.array([1.0, -1.0]),
        beta_t=np.array([0.4, 0.9]),
        k=2,
        seed=5,
    )
    df = gen.generate(300)
    e, mu0, mu1 = gen.oracle_nuisance()
    X = df[["x1", "x2"]].to_numpy()
    np.testing.assert_allclose(e(X), df["propensity"].to_numpy(), atol=1e-12)
    np.testing.assert_allclose(mu0(X), df["mu0"].to_numpy(), atol=1e-12)
    np.testing.assert_allclose(mu1(X), df["mu1"].to_numpy(), atol=1e-12)


def test_target_treatment_rate_is_calibrated():
    gen = ObservationalDataGenerator(beta_t=np.array([1.0, 0.5, -0.5]), target_t_rate=0.3, seed=0)
    df = gen.generate(5000)
    assert abs(df["propensity"].mean() - 0.3) < 1e-4


def test_confounder_specs_and_to_dataset():
    gen = ObservationalDataGenerator(
        confounder_specs=[
            {"name": "age", "dist": "normal", "mu": 40, "sd": 10},
            {"name": "income", "dist": "uniform", "a": 0, "b": 1},
            {"name": "member", "dist": "bernoulli", "p": 0.4},
        ],
        beta_t=np.array([0.02, 0.5, 0.3]),
        alpha_t=-0.8,
        seed=9,
    )
    ds = gen.to_dataset(400)
    assert ds.covariate_names == ["age", "income", "member"]
    assert set(np.unique(ds.covariate("member"))) == {0.0, 1.0}

    subset = gen.to_dataset(400, confounders=["income"])
    assert subset.covariate_names == ["income"]


def test_invalid_parameters():
    with pytest.raises(ValueError):
        ObservationalDataGenerator(target_t_rate=1.5)
    with pytest.raises(ValueError):
        ObservationalDataGenerator(sigma_y=-1.0)
    with pytest.raises(ValueError):
        ObservationalDataGenerator(beta_t=np.array([1.0, 2.0]), k=3, seed=0).generate(10)
