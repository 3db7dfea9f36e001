# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import numpy as np
import pytest

from missinghe.exceptions import ConfigurationError, SupportError
from missinghe.model import distributions as dist


@pytest.mark.parametrize(
    "name, outcome, expected",
    [
        ("normal", "e", dist.Normal),
        ("NORM", "c", dist.Normal),
        ("lnorm", "c", dist.LogNormal),
        ("bern", "e", dist.Bernoulli),
        ("nbinom", "e", dist.NegativeBinomial),
        ("weib", "e", dist.Weibull),
        ("gamma", "c", dist.Gamma),
    ],
)
def test_lookup_by_name_and_alias(name, outcome, expected):
    assert dist.get_distribution(name, outcome) is expected


def test_unknown_name_lists_options():
    with pytest.raises(ConfigurationError, match="dist_e='cauchy'"):
        dist.get_distribution("cauchy", "e")


@pytest.mark.parametrize("name", ["beta", "bernoulli", "poisson", "weibull"])
def test_effect_only_distributions_rejected_for_costs(name):
    with pytest.raises(ConfigurationError, match="cannot be used for the cost"):
        dist.get_distribution(name, "c")


def test_lognormal_rejected_for_effects():
    with pytest.raises(ConfigurationError):
        dist.get_distribution("lognormal", "e")


def test_supported_names():
    assert dist.supported_names("c") == ["gamma", "lognormal", "normal"]
    assert "negbin" in dist.supported_names("e")


def test_distributions_are_not_instantiated():
    with pytest.raises(TypeError):
        dist.Normal()


@pytest.mark.parametrize(
    "cls, values, expected",
    [
        (dist.Gamma, [0.0, 1.5], [False, True]),
        (dist.LogNormal, [-1.0, 2.0], [False, True]),
        (dist.Beta, [0.0, 0.5, 1.0], [False, True, False]),
        (dist.Bernoulli, [0.0, 1.0, 0.5, 2.0], [True, True, False, False]),
        (dist.Poisson, [0.0, 3.0, -1.0, 2.5], [True, True, False, False]),
        (dist.Exponential, [0.0, 4.0], [True, True]),
        (dist.Normal, [-1e6, np.inf], [True, False]),
    ],
)
def test_in_support(cls, values, expected):
    np.testing.assert_array_equal(cls.in_support(np.array(values)), expected)


def test_check_support_names_field():
    with pytest.raises(SupportError, match="dist_c='gamma'"):
        dist.Gamma.check_support(np.array([10.0, 0.0, 5.0]), "dist_c")


def test_support_error_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        dist.Beta.check_support(np.array([1.0]), "dist_e")


def test_support_grid_size():
    assert dist.Bernoulli.support_grid_size(np.array([0, 1])) == 2
    assert dist.Poisson.support_grid_size(np.array([2, 5])) == 31
    assert dist.NegativeBinomial.support_grid_size(np.array([40])) == 121
    with pytest.raises(TypeError):
        dist.Normal.support_grid_size(np.array([1.0]))


def test_inverse_link():
    eta = np.array([-1.0, 0.0, 2.0])
    np.testing.assert_allclose(dist.Normal.inverse_link(eta), eta)
    np.testing.assert_allclose(dist.Gamma.inverse_link(eta), np.exp(eta))
    np.testing.assert_allclose(
        dist.Bernoulli.inverse_link(eta), 1 / (1 + np.exp(-eta))
    )
    np.testing.assert_allclose(
        dist.LogNormal.inverse_link(eta, np.array([0.5, 0.5, 0.5])),
        np.exp(eta + 0.125),
    )
    with pytest.raises(ValueError):
        dist.LogNormal.inverse_link(eta)


def test_stan_expressions():
    assert dist.Normal.stan_lpdf("y", "eta", "s") == "normal_lpdf(y | eta, s)"
    assert dist.Gamma.stan_lpdf("y", "eta", "s", vectorized=True) == (
        "gamma_lpdf(y | square(exp(eta) ./ s), exp(eta) ./ square(s))"
    )
    assert dist.Bernoulli.stan_rng("eta") == "bernoulli_logit_rng(eta)"
    assert dist.LogNormal.stan_mean("eta", "s") == "exp(eta + square(s) / 2)"
    assert dist.Beta.stan_mean("eta") == "inv_logit(eta)"
    assert dist.Beta.stan_bounds() == "<lower=0, upper=1>"
    assert dist.Normal.stan_bounds() == ""


def test_metadata():
    assert dist.Normal.has_aux() and dist.Normal.AUX_PARAM == "sigma"
    assert not dist.Poisson.has_aux()
    assert dist.Beta.AUX_PARAM == "phi" and dist.Weibull.AUX_PARAM == "shape"
    assert dist.LogNormal.MEAN_USES_AUX and not dist.Gamma.MEAN_USES_AUX
    assert dist.Gamma.support_str() == "(0, inf)"
    assert dist.Bernoulli.support_str() == "integers in [0, 1]"
