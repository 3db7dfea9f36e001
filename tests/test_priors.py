# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import warnings

import numpy as np
import pytest

from missinghe.exceptions import PriorError
from missinghe.model.config import build_config
from missinghe.model.priors import ROLES, active_roles, resolve_priors


def selection_config(dist_c="normal", type="MAR", ind=False, model_eff="e ~ u0"):
    return build_config(
        "selection",
        {"e": model_eff, "c": "c ~ 1", "me": "me ~ 1", "mc": "mc ~ u0"},
        "normal",
        dist_c,
        type,
        ind,
    )


def pattern_config():
    return build_config(
        "pattern", {"e": "e ~ 1", "c": "c ~ 1"}, "normal", "normal", "MAR", False,
        restriction="CC",
    )


def test_active_roles_of_selection_model():
    assert active_roles(selection_config()) == [
        "alpha0.prior",
        "alpha.prior",
        "beta0.prior",
        "beta_f.prior",
        "sigma.prior.e",
        "sigma.prior.c",
        "gamma0.prior.e",
        "gamma0.prior.c",
        "gamma.prior.c",
    ]


def test_active_roles_follow_the_configuration():
    roles = active_roles(selection_config(type="MNAR", ind=True))
    assert "beta_f.prior" not in roles
    assert {"delta.prior.e", "delta.prior.c"} <= set(roles)

    roles = active_roles(selection_config(model_eff="e ~ u0 + (1 | site)"))
    assert "alpha0.prior" not in roles
    assert {"mu.a.prior", "s.a.prior"} <= set(roles)

    assert "pattern.prior" in active_roles(pattern_config())


def test_defaults_are_converted_for_stan():
    resolved = resolve_priors(selection_config())
    np.testing.assert_allclose(resolved["prior.alpha0"], [0.0, 1e4])
    np.testing.assert_allclose(resolved["prior.alpha"], [0.0, 1e3])
    np.testing.assert_allclose(resolved["prior.gamma0.e"], [0.0, 1.0])
    np.testing.assert_allclose(resolved["prior.gamma.c"], [0.0, 10.0])
    np.testing.assert_allclose(resolved["prior.sigma.e"], [0.0, 10000.0])
    assert "prior.delta.e" not in resolved


def test_auxiliary_bounds_come_from_the_distribution():
    resolved = resolve_priors(selection_config(dist_c="lognormal"))
    np.testing.assert_allclose(resolved["prior.sigma.c"], [0.0, 100.0])


def test_overrides_replace_defaults_entry_by_entry():
    resolved = resolve_priors(
        selection_config(),
        {"alpha0.prior": (0.5, 4.0), "sigma.prior.c": [0.0, 500.0]},
    )
    np.testing.assert_allclose(resolved["prior.alpha0"], [0.5, 0.5])
    np.testing.assert_allclose(resolved["prior.sigma.c"], [0.0, 500.0])
    np.testing.assert_allclose(resolved["prior.beta0"], [0.0, 1e4])


def test_dirichlet_concentration():
    resolved = resolve_priors(pattern_config())
    assert float(resolved["prior.pattern"]) == 1.0
    resolved = resolve_priors(pattern_config(), {"pattern.prior": 2.5})
    assert float(resolved["prior.pattern"]) == 2.5
    with pytest.raises(PriorError, match="single positive"):
        resolve_priors(pattern_config(), {"pattern.prior": (1.0, 2.0)})


def test_unknown_role_raises():
    with pytest.raises(PriorError, match="Unknown prior role 'alpha0'"):
        resolve_priors(selection_config(), {"alpha0": (0, 1)})


def test_role_of_another_family_raises():
    with pytest.raises(PriorError, match="does not exist for pattern models"):
        resolve_priors(pattern_config(), {"delta.prior.e": (0, 1)})


def test_inactive_role_warns_and_is_ignored():
    with pytest.warns(UserWarning, match="beta_f.prior"):
        resolved = resolve_priors(selection_config(ind=True), {"beta_f.prior": (0, 1)})
    assert "prior.beta_f" not in resolved


def test_active_overrides_do_not_warn():
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        resolve_priors(selection_config(), {"beta_f.prior": (0, 1)})


@pytest.mark.parametrize(
    "role, value, match",
    [
        ("alpha0.prior", (0.0, 0.0), "precision"),
        ("alpha0.prior", (0.0, 1.0, 2.0), "pair"),
        ("alpha0.prior", (0.0, np.inf), "pair"),
        ("gamma0.prior.e", (0.0, -1.0), "scale"),
        ("sigma.prior.e", (5.0, 1.0), "lower < upper"),
        ("sigma.prior.e", (-1.0, 1.0), "non-negative"),
    ],
)
def test_invalid_hyperparameters(role, value, match):
    with pytest.raises(PriorError, match=match):
        resolve_priors(selection_config(), {role: value})


def test_data_names():
    assert ROLES["gamma0.prior.e"].data_name == "prior.gamma0.e"
    assert ROLES["gamma0.prior.e"].stan_name == "prior__gamma0__e"
    assert ROLES["mu.a.prior"].data_name == "prior.mu.a"
