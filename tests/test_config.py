# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import pytest

from missinghe.exceptions import ConfigurationError
from missinghe.model.config import build_config, parse_delta
from missinghe.model.distributions import Bernoulli, Gamma

SELECTION_FORMULAS = {"e": "e ~ u0", "c": "c ~ 1", "me": "me ~ 1", "mc": "mc ~ 1"}
PATTERN_FORMULAS = {"e": "e ~ u0", "c": "c ~ 1"}


def selection(dist_e="normal", dist_c="normal", type="MAR", ind=False, **kwargs):
    formulas = {**SELECTION_FORMULAS, **kwargs.pop("formulas", {})}
    return build_config("selection", formulas, dist_e, dist_c, type, ind, **kwargs)


def hurdle(formulas=None, type="SCAR", se=1.0, sc=None, dist_e="normal"):
    formulas = formulas or {"e": "e ~ u0", "c": "c ~ 1", "se": "se ~ 1"}
    return build_config(
        "hurdle", formulas, dist_e, "normal", type, False, se=se, sc=sc
    )


def test_selection_configuration():
    config = selection(dist_c="gamma", type="MNAR_eff")
    assert config.dist_c is Gamma
    assert config.submodels == ("e", "c", "me", "mc")
    assert config.mnar_e and not config.mnar_c
    assert config.joint
    assert config.effect_column == "e" and config.cost_column == "c"
    assert config.auxiliary_key("e") == "me"


def test_configuration_is_immutable():
    config = selection()
    with pytest.raises(AttributeError):
        config.type = "MNAR"
    with pytest.raises(TypeError):
        config.formulas["e"] = None


@pytest.mark.parametrize("type", ["SCAR", "MNAR_both", "mar"])
def test_invalid_selection_type(type):
    with pytest.raises(ConfigurationError, match=f"type='{type}'"):
        selection(type=type)


def test_hurdle_types():
    assert hurdle(type="SAR").type == "SAR"
    with pytest.raises(ConfigurationError, match="type='MAR'"):
        hurdle(type="MAR")


def test_invalid_distribution():
    with pytest.raises(ConfigurationError, match="dist_c"):
        selection(dist_c="beta")


def test_outcome_used_as_covariate():
    with pytest.raises(ConfigurationError, match="model_mc uses the outcome"):
        selection(formulas={"mc": "mc ~ e"})


def test_treatment_used_as_covariate():
    with pytest.raises(ConfigurationError, match="treatment column 't'"):
        selection(formulas={"e": "e ~ t"})


def test_missing_formula():
    with pytest.raises(ConfigurationError, match="model_mc"):
        build_config(
            "selection", {"e": "e ~ 1", "c": "c ~ 1", "me": "me ~ 1"},
            "normal", "normal", "MAR", False,
        )


def test_restriction_only_for_pattern_models():
    with pytest.raises(ConfigurationError, match="restriction"):
        selection(restriction="CC")


def test_pattern_restriction_and_delta():
    with pytest.raises(ConfigurationError, match="restriction='XX'"):
        build_config(
            "pattern", PATTERN_FORMULAS, "normal", "normal", "MAR", False,
            restriction="XX",
        )
    with pytest.raises(ConfigurationError, match="Delta_e"):
        build_config(
            "pattern", PATTERN_FORMULAS, "normal", "normal", "MNAR_eff", False,
            restriction="CC",
        )
    with pytest.warns(UserWarning, match="equivalent to MAR"):
        build_config(
            "pattern", PATTERN_FORMULAS, "normal", "normal", "MNAR_eff", False,
            restriction="AC", Delta_e=((0.0, 0.0), (0.0, 0.0)),
        )


def test_hurdle_needs_a_structural_value():
    with pytest.raises(ConfigurationError, match="at least one outcome"):
        hurdle(formulas={"e": "e ~ 1", "c": "c ~ 1"}, se=None)


def test_hurdle_submodels_follow_structural_values():
    config = hurdle(
        formulas={"e": "e ~ 1", "c": "c ~ 1", "sc": "sc ~ 1"}, se=None, sc=0.0
    )
    assert config.submodels == ("e", "c", "sc")
    assert config.auxiliary_key("e") is None
    assert config.auxiliary_key("c") == "sc"
    assert config.structural_value("c") == 0.0


def test_hurdle_rejects_discrete_effects():
    with pytest.raises(ConfigurationError, match="discrete"):
        hurdle(dist_e="bernoulli")


def test_scar_requires_intercept_only_structural_model():
    formulas = {"e": "e ~ 1", "c": "c ~ 1", "se": "se ~ u0"}
    with pytest.raises(ConfigurationError, match="type='SAR'"):
        hurdle(formulas=formulas)
    assert hurdle(formulas=formulas, type="SAR").formulas["se"].terms == ("u0",)


def test_marginalisation_of_discrete_effects():
    assert selection(dist_e="bernoulli").marginalise_e
    assert selection(dist_e="poisson", ind=True, type="MNAR_eff").marginalise_e
    assert not selection(dist_e="bernoulli", ind=True).marginalise_e
    assert selection(dist_e="bern").dist_e is Bernoulli


def test_correlated_normal():
    assert selection().correlated_normal
    assert not selection(ind=True).correlated_normal
    assert not selection(dist_c="gamma").correlated_normal


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, None),
        (0.5, ((0.5, 0.5), (0.5, 0.5))),
        ((-1, 1), ((-1.0, 1.0), (-1.0, 1.0))),
        (((-1, 0), (0, 2)), ((-1.0, 0.0), (0.0, 2.0))),
    ],
)
def test_parse_delta(value, expected):
    assert parse_delta(value, "Delta_e") == expected


@pytest.mark.parametrize("value", [(1, 2, 3), (2, 1), ((0, 1), (3, 2))])
def test_parse_delta_rejects_malformed_ranges(value):
    with pytest.raises(ConfigurationError, match="Delta_c"):
        parse_delta(value, "Delta_c")
