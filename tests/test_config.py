import pytest

from propensitykit import AnalysisConfig
from propensitykit.propensity import AdditiveSmoothLink, LogisticLink
from propensitykit.weighting import (
    IPTW,
    Overlap,
    QuantileTrim,
    RangeTrim,
    StabilizedIPTW,
    Trimmed,
)


def test_defaults():
    cfg = AnalysisConfig()
    assert isinstance(cfg.weight_scheme(), Overlap)
    assert isinstance(cfg.propensity_link(), LogisticLink)
    assert cfg.clip == 1e-6
    assert cfg.n_bootstrap == 1000
    assert cfg.balance_threshold == 0.1


def test_trimmed_schemes():
    scheme = AnalysisConfig(scheme="iptw", trim="range", trim_low=0.05, trim_high=0.95).weight_scheme()
    assert scheme == Trimmed(base=IPTW(), policy=RangeTrim(0.05, 0.95))

    scheme = AnalysisConfig(scheme="stabilized_iptw", trim="quantile", trim_quantile=0.1).weight_scheme()
    assert isinstance(scheme, Trimmed)
    assert isinstance(scheme.base, StabilizedIPTW)
    assert scheme.policy == QuantileTrim(0.1)


def test_from_dict_round_trip():
    options = {"link": "additive", "scheme": "matching", "covariates": ["x1", "x2"], "random_state": 7}
    cfg = AnalysisConfig.from_dict(options)
    assert isinstance(cfg.propensity_link(), AdditiveSmoothLink)
    assert cfg.covariates == ("x1", "x2")
    assert AnalysisConfig.from_dict(cfg.to_dict()) == cfg


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match="Unknown configuration options"):
        AnalysisConfig.from_dict({"schema": "iptw"})


@pytest.mark.parametrize(
    "options",
    [
        {"link": "probit"},
        {"scheme": "kernel"},
        {"scheme": "trimmed"},
        {"scheme": "Trimmed", "trim": "range"},
        {"trim": "winsor"},
        {"trim": "range", "trim_low": 0.9, "trim_high": 0.1},
        {"trim": "quantile", "trim_quantile": 0.6},
        {"clip": 0.7},
        {"balance_threshold": 0},
        {"estimand": "CATE"},
        {"n_bootstrap": 0},
        {"n_jobs": 0},
        {"max_failure_rate": 1.5},
    ],
)
def test_invalid_options(options):
    with pytest.raises(ValueError):
        AnalysisConfig(**options)


def test_config_is_frozen():
    cfg = AnalysisConfig()
    with pytest.raises(Exception):
        cfg.scheme = "iptw"


def test_trimmed_scheme_name_points_at_trim_option():
    with pytest.raises(ValueError, match="trim='range'"):
        AnalysisConfig(scheme="trimmed", trim="range")
