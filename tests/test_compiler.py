# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import pytest

from missinghe.model.binder import bind
from missinghe.model.config import build_config
from missinghe.model.priors import resolve_priors
from missinghe.model.stan import compile_model
from missinghe.model.stan.program import Fragment, StanProgram, StanVariable


def compile_and_bind(data, family, formulas, dist_e="normal", dist_c="normal",
                     type="MAR", ind=False, **kwargs):
    config = build_config(family, formulas, dist_e, dist_c, type, ind, **kwargs)
    bound = bind(config, data, resolve_priors(config))
    return compile_model(config, bound.designs), bound


def compile_for(data, family, formulas, *args, **kwargs):
    return compile_and_bind(data, family, formulas, *args, **kwargs)[0]


SELECTION = {"e": "e ~ u0", "c": "c ~ 1", "me": "me ~ 1", "mc": "mc ~ 1"}


def output_names(model):
    return {variable.name for variable in model.outputs}


def test_declaration():
    variable = StanVariable(
        "sigma.e", "vector", (2,), lower="prior__sigma__e[1]", upper="prior__sigma__e[2]"
    )
    assert variable.declaration() == (
        "vector<lower=prior__sigma__e[1], upper=prior__sigma__e[2]>[2] sigma__e"
    )
    assert StanVariable("z.a", "matrix", ("J.e", "Q.e"), array_dims=(2,)).declaration() == (
        "array[2] matrix[J__e, Q__e] z__a"
    )
    assert StanVariable("pat", "int", array_dims=("N",), lower="1").declaration() == (
        "array[N] int<lower=1> pat"
    )


def test_shape_and_dim_names():
    variable = StanVariable(
        "a", "matrix", ("J.e", "Q.e"), array_dims=(2,),
        dim_names=("arm", "cluster.e", "re.e"),
    )
    assert variable.shape({"J__e": 5, "Q__e": 1}) == (2, 5, 1)
    assert variable.size({"J__e": 5, "Q__e": 1}) == 10
    assert variable.all_dim_names == ("arm", "cluster.e", "re.e")
    assert StanVariable("x", "vector", (3,)).all_dim_names == ("x_dim_0",)


def test_program_layout():
    program = StanProgram(
        [
            Fragment(data=[StanVariable("N", "int", lower="1")]),
            Fragment(
                data=[StanVariable("N", "int", lower="1")],
                parameters=[StanVariable("mu", "real")],
                model=["mu ~ normal(0, 1)"],
                generated=[StanVariable("y", "real")],
                generated_locals=["real z"],
                generated_statements=["z = mu", "y = 2 * z"],
            ),
        ]
    )
    assert program.code == (
        "data {\n"
        "    int<lower=1> N;\n"
        "}\n"
        "parameters {\n"
        "    real mu;\n"
        "}\n"
        "model {\n"
        "    mu ~ normal(0, 1);\n"
        "}\n"
        "generated quantities {\n"
        "    real y;\n"
        "    {\n"
        "        real z;\n"
        "        z = mu;\n"
        "        y = 2 * z;\n"
        "    }\n"
        "}\n"
    )


def test_conflicting_declarations():
    program = StanProgram(
        [
            Fragment(data=[StanVariable("N", "int", lower="1")]),
            Fragment(data=[StanVariable("N", "int")]),
        ]
    )
    with pytest.raises(ValueError, match="Conflicting declarations of 'N'"):
        program.data_block


@pytest.mark.parametrize(
    "family, formulas, kwargs",
    [
        ("selection", SELECTION, {"type": "MNAR"}),
        ("pattern", {"e": "e ~ u0", "c": "c ~ 1"}, {"restriction": "AC"}),
        ("hurdle", {"e": "e ~ 1", "c": "c ~ 1", "se": "se ~ 1"}, {"type": "SCAR", "se": 1.0}),
    ],
)
def test_compilation_is_deterministic(trial_data, hurdle_data, family, formulas, kwargs):
    data = hurdle_data if family == "hurdle" else trial_data
    first = compile_for(data, family, formulas, **kwargs)
    second = compile_for(data, family, formulas, **kwargs)
    assert first.code == second.code
    assert first.outputs == second.outputs


@pytest.mark.parametrize(
    "family, formulas, kwargs",
    [
        ("selection", {**SELECTION, "e": "e ~ u0 + (1 | site)"}, {"type": "MNAR"}),
        (
            "pattern",
            {"e": "e ~ u0", "c": "c ~ 1"},
            {"type": "MNAR", "restriction": "AC",
             "Delta_e": ((-0.1, 0.0), (-0.1, 0.0)), "Delta_c": ((0.0, 1.0), (0.0, 1.0))},
        ),
        ("hurdle", {"e": "e ~ u0", "c": "c ~ 1", "se": "se ~ u0"}, {"type": "SAR", "se": 1.0}),
    ],
)
def test_declared_data_is_bound(trial_data, hurdle_data, family, formulas, kwargs):
    data = hurdle_data if family == "hurdle" else trial_data
    model, bound = compile_and_bind(data, family, formulas, **kwargs)
    declared = {variable.stan_name for variable in model.data}
    assert declared <= set(bound.stan_data)
    for variable in model.data:
        assert f" {variable.stan_name};" in model.code


def test_selection_outputs(trial_data):
    model = compile_for(trial_data, "selection", SELECTION)
    names = output_names(model)
    assert {"alpha", "beta", "gamma.e", "gamma.c", "beta_f", "sigma.e", "sigma.c",
            "lp.e", "lp.c", "p.e", "p.c", "rho", "imp.e", "imp.c",
            "loglik.e", "loglik.c", "loglik.me", "loglik.mc"} <= names
    assert "delta.e" not in names and "rep.e" not in names
    assert "e.mis" not in names
    assert model.monitors[:2] == ("mu.e", "mu.c")
    assert model.output_dims["alpha"] == ["coef.e", "arm"]
    assert "target += bernoulli_logit_lpmf(m__e | eta__me);" in model.code


def test_selection_assumptions_change_the_program(trial_data):
    mar = compile_for(trial_data, "selection", SELECTION)
    mnar = compile_for(trial_data, "selection", SELECTION, type="MNAR_eff")
    ind = compile_for(trial_data, "selection", SELECTION, ind=True)
    assert mar.code != mnar.code
    assert "delta.e" in output_names(mnar) and "delta.c" not in output_names(mnar)
    assert "eta__me += delta__e[arm] .* e__full;" in mnar.code
    assert "beta_f" not in output_names(ind) and "rho" not in output_names(ind)
    assert "beta_f" not in ind.code


def test_selection_with_discrete_effects(binary_data):
    model = compile_for(binary_data, "selection", SELECTION, "bernoulli", "gamma")
    assert "log_sum_exp(lq)" in model.code
    assert "e__full[n] = categorical_rng(softmax(lq)) - 1;" in model.code
    assert "e.mis" not in {variable.name for variable in model.parameters}
    assert "sigma.e" not in output_names(model)
    assert "rho" not in output_names(model)


def test_selection_random_effects(trial_data):
    formulas = {**SELECTION, "e": "e ~ u0 + (1 | site)"}
    model = compile_for(trial_data, "selection", formulas)
    names = output_names(model)
    assert {"mu.a", "s.a", "a"} <= names
    assert "z.a" not in names
    assert model.output_dims["a"] == ["arm", "cluster.e", "re.e"]


def test_optional_outputs(trial_data):
    model = compile_for(
        trial_data, "selection", SELECTION, ppc=True, save_imputed=False
    )
    names = output_names(model)
    assert {"rep.e", "rep.c"} <= names
    assert "imp.e" not in names


def test_pattern_outputs(trial_data):
    model = compile_for(
        trial_data, "pattern", {"e": "e ~ u0", "c": "c ~ 1"}, type="MNAR_eff",
        restriction="CC", Delta_e=((-0.2, 0.0), (-0.2, 0.0)),
    )
    names = output_names(model)
    assert {"pi.p", "lp.e.p", "lp.c.p", "Delta.e", "loglik.pat"} <= names
    assert "Delta.c" not in names
    assert model.derived == ("mu.e", "mu.c", "alpha.p", "beta.p")
    assert model.derived_dims["alpha.p"] == ("pattern", "coef.e", "arm")
    assert "n__pat[t] ~ multinomial(pi__p[t])" in model.code


def test_pattern_lognormal_costs_report_sigma_per_pattern(trial_data):
    trial_data["c"] = trial_data["c"].abs() + 1
    model = compile_for(
        trial_data, "pattern", {"e": "e ~ 1", "c": "c ~ 1"}, dist_c="lognormal",
        restriction="CC",
    )
    assert "sigma.c.p" in output_names(model)
    assert "sigma.e.p" not in output_names(model)


def test_hurdle_without_structural_costs(hurdle_data):
    model = compile_for(
        hurdle_data, "hurdle", {"e": "e ~ 1", "c": "c ~ 1", "se": "se ~ 1"},
        type="SCAR", se=1.0,
    )
    names = output_names(model)
    assert {"gamma.e", "p.e", "lp.e", "lp.c", "beta_f"} <= names
    assert "gamma.c" not in names and "p.c" not in names
    assert "d__c" not in model.code
    assert "log_mix(inv_logit(eta__se[n])" in model.code


def test_hurdle_with_both_structural_values(hurdle_data):
    hurdle_data.loc[hurdle_data["c"].notna(), "c"] = hurdle_data["c"].abs()
    hurdle_data.iloc[0, hurdle_data.columns.get_loc("c")] = 0.0
    model = compile_for(
        hurdle_data,
        "hurdle",
        {"e": "e ~ 1", "c": "c ~ 1", "se": "se ~ 1", "sc": "sc ~ 1"},
        type="SCAR",
        se=1.0,
        sc=0.0,
    )
    names = output_names(model)
    assert {"gamma.e", "gamma.c", "p.e", "p.c"} <= names
    assert "if (d__c[n] != 1) {" in model.code


def test_write(tmp_path, trial_data):
    model = compile_for(trial_data, "selection", SELECTION)
    path = tmp_path / "model.stan"
    model.write(str(path))
    assert path.read_text(encoding="utf-8") == model.code
