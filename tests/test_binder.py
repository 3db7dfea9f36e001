# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import numpy as np
import pandas as pd
import pytest

from missinghe.exceptions import (
    BindingError,
    ConfigurationError,
    FormulaError,
    SupportError,
)
from missinghe.model.binder import (
    PATTERNS,
    bind,
    encode_arms,
    generate_inits,
    resolve_bound,
    validate_inits,
)
from missinghe.model.config import build_config
from missinghe.model.priors import resolve_priors
from missinghe.model.stan import compile_model


def bind_selection(
    data, model_eff="e ~ u0", dist_e="normal", dist_c="normal", prior=None, **kw
):
    config = build_config(
        "selection",
        {"e": model_eff, "c": "c ~ 1", "me": "me ~ 1", "mc": "mc ~ 1"},
        dist_e,
        dist_c,
        kw.pop("type", "MAR"),
        kw.pop("ind", False),
        **kw,
    )
    return config, bind(config, data, resolve_priors(config, prior))


def bind_pattern(data, restriction="CC"):
    config = build_config(
        "pattern", {"e": "e ~ u0", "c": "c ~ 1"}, "normal", "normal", "MAR", False,
        restriction=restriction,
    )
    return config, bind(config, data, resolve_priors(config))


def bind_hurdle(data, se=1.0, sc=None, d_e=None, d_c=None):
    formulas = {"e": "e ~ 1", "c": "c ~ 1"}
    if se is not None:
        formulas["se"] = "se ~ 1"
    if sc is not None:
        formulas["sc"] = "sc ~ 1"
    config = build_config(
        "hurdle", formulas, "normal", "normal", "SCAR", False, se=se, sc=sc
    )
    return config, bind(config, data, resolve_priors(config), d_e=d_e, d_c=d_c)


def test_arms_follow_sorted_treatment_values():
    data = pd.DataFrame({"t": ["new", "old", "new"]})
    arm, labels = encode_arms(data, "t")
    assert labels == ("new", "old")
    np.testing.assert_array_equal(arm, [1, 2, 1])


@pytest.mark.parametrize("values", [[1, 1, 1], [1, 2, 3], [1, None, 2]])
def test_treatment_must_have_two_values(values):
    with pytest.raises(ConfigurationError, match="Treatment column 't'"):
        encode_arms(pd.DataFrame({"t": values}), "t")


def test_outcome_entries(trial_data):
    _, bound = bind_selection(trial_data)
    data = bound.data
    missing_e = trial_data["e"].isna().to_numpy()

    assert data["N"] == 159
    np.testing.assert_array_equal(data["n.arm"], [75, 84])
    np.testing.assert_array_equal(data["m.e"], missing_e.astype(int))
    assert data["N.mis.e"] + data["N.obs.e"] == 159
    np.testing.assert_array_equal(data["idx.mis.e"], np.flatnonzero(missing_e) + 1)
    assert bound.coords["mis.e"] == list(trial_data.index[missing_e])
    assert bound.coords["arm"] == [1, 2]
    assert bound.arm_labels == (1, 2)
    assert list(bound.index) == list(trial_data.index)


def test_design_of_numeric_and_factor_covariates(trial_data):
    _, bound = bind_selection(trial_data, model_eff="e ~ u0 + sex")
    design = bound.designs["e"]
    assert design.columns == ("(Intercept)", "u0", "sexM")
    np.testing.assert_allclose(design.X[:, 0], 1.0)
    np.testing.assert_allclose(design.X[:, 2], (trial_data["sex"] == "M").to_numpy())
    assert design.mean_X.shape == (2, 3)
    np.testing.assert_allclose(
        design.mean_X[0, 1], trial_data["u0"][trial_data["t"] == 1].mean()
    )
    assert bound.coords["coef.e"] == ["(Intercept)", "u0", "sexM"]
    assert bound.data["K.me"] == 1


def test_random_effects_design(trial_data):
    _, bound = bind_selection(trial_data, model_eff="e ~ u0 + (1 | site)")
    design = bound.designs["e"]
    assert design.columns == ("u0",)
    assert design.random.columns == ("(Intercept)",)
    assert bound.data["J.e"] == 5
    assert bound.coords["cluster.e"] == ["s1", "s2", "s3", "s4", "s5"]
    assert set(bound.data["clus.e"]) <= {1, 2, 3, 4, 5}


def test_covariate_missingness_is_rejected(trial_data):
    trial_data.iloc[3, trial_data.columns.get_loc("u0")] = np.nan
    with pytest.raises(ConfigurationError, match="Covariate 'u0'"):
        bind_selection(trial_data)


def test_absent_column(trial_data):
    with pytest.raises(FormulaError, match="age"):
        bind_selection(trial_data, model_eff="e ~ age")


def test_discrete_missing_values_are_encoded(binary_data):
    config, bound = bind_selection(binary_data, dist_e="bernoulli", dist_c="gamma")
    e = bound.data["e"]
    assert e.dtype.kind == "i"
    assert set(e[bound.data["idx.mis.e"] - 1]) == {-1}
    assert set(e[bound.data["idx.obs.e"] - 1]) <= {0, 1}
    assert config.marginalise_e and bound.data["G.e"] == 2


def test_support_violation(zero_cost_data):
    with pytest.raises(SupportError, match="dist_c='gamma'"):
        bind_selection(zero_cost_data, dist_c="gamma")


def test_priors_are_part_of_the_data(trial_data):
    _, bound = bind_selection(trial_data)
    assert "prior__alpha0" in bound.stan_data
    assert "n__arm" in bound.stan_data


def test_patterns_are_realised_combinations(trial_data):
    _, bound = bind_pattern(trial_data)
    combos = set(
        zip(trial_data["e"].isna().astype(int), trial_data["c"].isna().astype(int))
    )
    assert len(bound.patterns) == len(combos) <= 4
    assert bound.data["P"] == len(combos)
    assert bound.data["n.pat"].sum() == 159
    np.testing.assert_array_equal(bound.data["n.pat"].sum(axis=1), [75, 84])
    assert list(bound.patterns) == [
        name for combo, name in PATTERNS.items() if combo in combos
    ]


def test_complete_case_restriction(trial_data):
    _, bound = bind_pattern(trial_data, restriction="CC")
    patterns = list(bound.patterns)
    complete = patterns.index("complete")
    for outcome, missing_patterns in (
        ("e", ("e_missing", "both_missing")),
        ("c", ("c_missing", "both_missing")),
    ):
        sets = bound.pattern_sets[outcome]
        for name in missing_patterns:
            if name in patterns:
                assert sets[patterns.index(name)] == sets[complete]
                assert bound.data[f"unid.{outcome}"][patterns.index(name)] == 1
    assert bound.coords["set.e"][0] == "complete"


def test_available_case_restriction(trial_data):
    _, bound = bind_pattern(trial_data, restriction="AC")
    patterns = list(bound.patterns)
    sets = bound.pattern_sets["e"]
    donor = sets[patterns.index("c_missing")]
    assert sets[patterns.index("e_missing")] == donor
    assert sets[patterns.index("both_missing")] == donor
    assert donor != sets[patterns.index("complete")]


def test_restriction_needs_its_donor_pattern():
    data = pd.DataFrame(
        {
            "e": [np.nan, 0.5, np.nan, 0.7],
            "c": [10.0, np.nan, 12.0, np.nan],
            "t": [1, 1, 2, 2],
            "u0": [0.1, 0.2, 0.3, 0.4],
        }
    )
    with pytest.raises(ConfigurationError, match="complete-case"):
        bind_pattern(data, restriction="CC")


def test_structural_indicators(hurdle_data):
    _, bound = bind_hurdle(hurdle_data)
    d = bound.data["d.e"]
    e = hurdle_data["e"].to_numpy()
    np.testing.assert_array_equal(d[np.isnan(e)], -1)
    np.testing.assert_array_equal(d[e == 1.0], 1)
    assert bound.data["N.known.e"] == int((d != -1).sum())
    assert bound.data["value.se"] == 1.0
    assert bound.data["N.cont.e"] == int(((d == 0) | (d == -1)).sum())
    assert bound.data["N.mix.c"] + bound.data["N.nomix.c"] == bound.data["N.cont.c"]


def test_structural_indicator_override(hurdle_data):
    missing = hurdle_data["e"].isna()
    hurdle_data["d_e"] = np.nan
    hurdle_data.loc[missing, "d_e"] = 1.0
    _, bound = bind_hurdle(hurdle_data, d_e="d_e")
    np.testing.assert_array_equal(bound.data["d.e"][missing.to_numpy()], 1)
    assert bound.data["N.mix.c"] == 0


def test_structural_override_without_structural_value(hurdle_data):
    hurdle_data["d_c"] = 0.0
    with pytest.raises(ConfigurationError, match="sc is None"):
        bind_hurdle(hurdle_data, d_c="d_c")


def test_resolve_bound():
    data = {"prior__sigma__e": np.array([0.5, 20.0]), "P": 3}
    assert resolve_bound(None, data) is None
    assert resolve_bound("0", data) == 0.0
    assert resolve_bound("prior__sigma__e[2]", data) == 20.0
    assert resolve_bound("P", data) == 3.0


def compiled(trial_data, **kwargs):
    config, bound = bind_selection(trial_data, **kwargs)
    return compile_model(config, bound.designs), bound.stan_data


def test_generated_inits_respect_supports(trial_data):
    model, data = compiled(trial_data, prior={"sigma.prior.e": (0.5, 2.0)})
    inits = generate_inits(model, data, 3, np.random.default_rng(0))
    assert len(inits) == 3
    names = {variable.stan_name for variable in model.parameters}
    for init in inits:
        assert set(init) == names
        assert np.all((init["sigma__e"] > 0.5) & (init["sigma__e"] < 2.0))
        assert init["alpha"].shape == (2, 2)
        assert init["e__mis"].shape == (data["N__mis__e"],)


def test_pattern_inits_are_simplexes(trial_data):
    config, bound = bind_pattern(trial_data)
    model = compile_model(config, bound.designs)
    (init,) = generate_inits(model, bound.stan_data, 1, np.random.default_rng(1))
    np.testing.assert_allclose(init["pi__p"].sum(axis=-1), 1.0)
    assert init["pi__p"].shape == (2, bound.data["P"])


def test_validate_inits_accepts_display_names(trial_data):
    model, data = compiled(trial_data)
    inits = generate_inits(model, data, 2, np.random.default_rng(0))
    renamed = [
        {name.replace("__", "."): value for name, value in init.items()}
        for init in inits
    ]
    validated = validate_inits(model, data, renamed, 2)
    assert set(validated[0]) == set(inits[0])


@pytest.mark.parametrize(
    "change, match",
    [
        (lambda inits: inits[:1], "one initial-value structure per chain"),
        (lambda inits: [{**i, "bogus": 1.0} for i in inits], "unknown parameter"),
        (
            lambda inits: [{k: v for k, v in i.items() if k != "beta"} for i in inits],
            "missing initial values",
        ),
        (
            lambda inits: [{**i, "sigma__e": np.ones(3)} for i in inits],
            "expected \\(2,\\)",
        ),
    ],
)
def test_validate_inits_errors(trial_data, change, match):
    model, data = compiled(trial_data)
    inits = generate_inits(model, data, 2, np.random.default_rng(0))
    with pytest.raises(BindingError, match=match):
        validate_inits(model, data, change(inits), 2)
