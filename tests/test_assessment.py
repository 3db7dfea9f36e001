# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import numpy as np
import pytest

from typeguard import TypeCheckError

import missinghe as mhe

from missinghe.model.results.assessment import pic


@pytest.fixture
def result(trial_data, fit_kwargs):
    return mhe.selection(trial_data, "e ~ u0", "c ~ 1", **fit_kwargs)


@pytest.mark.parametrize("criterion", ["waic", "looic"])
def test_pointwise_criteria(result, criterion):
    ic = result.pic(criterion)
    assert np.isfinite(ic.value) and np.isfinite(ic.p_eff)
    assert ic.pointwise.sizes["obs"] == 159
    np.testing.assert_allclose(float(ic.pointwise.sum()), ic.value)


def test_dic(result):
    posterior = result.posterior
    loglik = sum(
        posterior[name] for name in ("loglik.e", "loglik.c", "loglik.me", "loglik.mc")
    )
    deviance = (-2 * loglik.sum("obs")).values.ravel()
    expected = deviance.mean() + deviance.var(ddof=1) / 2

    ic = result.pic("dic")
    assert ic.value == pytest.approx(expected)
    assert ic.p_eff == pytest.approx(deviance.var(ddof=1) / 2)
    assert ic.pointwise is None


def test_effect_module_includes_its_missingness_model(result):
    posterior = result.posterior
    deviance = (-2 * (posterior["loglik.e"] + posterior["loglik.me"]).sum("obs")).values
    deviance = deviance.ravel()
    ic = result.pic("dic", module="e")
    assert ic.value == pytest.approx(deviance.mean() + deviance.var(ddof=1) / 2)


def test_modules_differ(result):
    values = {module: result.pic("dic", module=module).value for module in ("total", "both", "e", "c")}
    assert len(set(values.values())) == 4


def test_pattern_total_includes_membership(trial_data, fit_kwargs):
    result = mhe.pattern(trial_data, "e ~ u0", "c ~ 1", **fit_kwargs)
    assert result.pic("dic", module="total").value != pytest.approx(
        result.pic("dic", module="both").value
    )


@pytest.mark.parametrize(
    "kwargs", [{"criterion": "bic"}, {"module": "me"}]
)
def test_unknown_options(result, kwargs):
    with pytest.raises(TypeCheckError):
        pic(result, **kwargs)


def test_str(result):
    assert str(result.pic("waic")).startswith("WAIC (total): ")
    assert str(result.pic("dic", module="c")).startswith("DIC (c): ")
