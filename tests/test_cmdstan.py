# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Short fits through CmdStan. Skipped when no CmdStan installation is found."""

import numpy as np
import pytest

from cmdstanpy import cmdstan_path, format_stan_file

import missinghe as mhe

from .test_compiler import SELECTION, compile_for


def _has_cmdstan() -> bool:
    try:
        cmdstan_path()
    except ValueError:
        return False
    return True


pytestmark = pytest.mark.skipif(not _has_cmdstan(), reason="CmdStan is not installed")

SAMPLING = {"n_iter": 100, "n_chains": 2, "seed": 42}


def check_result(result, trial_data):
    assert list(result.posterior.data_vars)[:2] == ["mu.e", "mu.c"]
    assert result.posterior.sizes["draw"] == 100
    assert np.isfinite(result.economics.icer_draws.values).any()
    assert len(result.imputed("c")) == int(trial_data["c"].isna().sum())


def test_selection(trial_data, tmp_path):
    path = tmp_path / "selection.stan"
    result = mhe.selection(
        trial_data, "e ~ u0", "c ~ 1", type="MNAR_eff", save_model=str(path), **SAMPLING
    )
    check_result(result, trial_data)
    assert path.exists()


def test_selection_discrete(binary_data):
    result = mhe.selection(
        binary_data, "e ~ 1", "c ~ 1", dist_e="bernoulli", dist_c="gamma", **SAMPLING
    )
    check_result(result, binary_data)
    imputed = result.imputed("e")
    assert ((imputed["mean"] >= 0) & (imputed["mean"] <= 1)).all()


def test_pattern(trial_data):
    result = mhe.pattern(
        trial_data, "e ~ u0", "c ~ 1", type="MNAR", Delta_e=(-0.1, 0), Delta_c=(0, 50),
        **SAMPLING,
    )
    check_result(result, trial_data)


def test_hurdle(hurdle_data):
    result = mhe.hurdle(hurdle_data, "e ~ u0", "c ~ u0 + (1 | site)", se=1, **SAMPLING)
    check_result(result, hurdle_data)
    assert result.posterior["b"].dims == ("chain", "draw", "arm", "cluster.c", "re.c")


def test_pattern_mnar_with_null_offsets_matches_mar(trial_data):
    mar = mhe.pattern(trial_data, "e ~ u0", "c ~ 1", **SAMPLING)
    with pytest.warns(UserWarning, match="equivalent to MAR"):
        mnar = mhe.pattern(
            trial_data, "e ~ u0", "c ~ 1", type="MNAR", Delta_e=(0.0, 0.0),
            Delta_c=(0.0, 0.0), **SAMPLING,
        )
    assert (mnar.posterior["Delta.e"] == 0).all() and (mnar.posterior["Delta.c"] == 0).all()
    for name, tolerance in (("mu.e", 0.02), ("mu.c", 50.0)):
        np.testing.assert_allclose(
            mnar.posterior[name].mean(("chain", "draw")).values,
            mar.posterior[name].mean(("chain", "draw")).values,
            atol=tolerance,
        )


@pytest.fixture
def positive_cost_data(trial_data):
    return trial_data.assign(c=trial_data["c"].abs() + 1)


@pytest.fixture
def two_hurdle_data(hurdle_data):
    hurdle_data.loc[hurdle_data["c"].notna(), "c"] = hurdle_data["c"].abs()
    hurdle_data.iloc[0, hurdle_data.columns.get_loc("c")] = 0.0
    return hurdle_data


PATTERN = {"e": "e ~ u0", "c": "c ~ 1"}


@pytest.mark.parametrize(
    "data, family, formulas, kwargs",
    [
        ("trial_data", "selection", SELECTION, {}),
        ("trial_data", "selection", SELECTION, {"type": "MNAR"}),
        (
            "binary_data",
            "selection",
            SELECTION,
            {"dist_e": "bernoulli", "dist_c": "gamma"},
        ),
        (
            "trial_data",
            "selection",
            {**SELECTION, "e": "e ~ u0 + (1 | site)", "me": "me ~ 1 + (1 | site)"},
            {"type": "MNAR_eff", "ppc": True},
        ),
        ("trial_data", "pattern", PATTERN, {"restriction": "CC"}),
        (
            "trial_data",
            "pattern",
            PATTERN,
            {
                "type": "MNAR",
                "restriction": "AC",
                "Delta_e": ((-0.1, 0.0), (-0.1, 0.0)),
                "Delta_c": ((0.0, 50.0), (0.0, 50.0)),
            },
        ),
        (
            "positive_cost_data",
            "pattern",
            PATTERN,
            {"restriction": "CC", "dist_c": "lognormal"},
        ),
        (
            "hurdle_data",
            "hurdle",
            {"e": "e ~ u0", "c": "c ~ 1", "se": "se ~ u0"},
            {"type": "SAR", "se": 1.0},
        ),
        (
            "two_hurdle_data",
            "hurdle",
            {"e": "e ~ 1", "c": "c ~ 1", "se": "se ~ 1", "sc": "sc ~ 1"},
            {"type": "SCAR", "se": 1.0, "sc": 0.0},
        ),
    ],
)
def test_programs_parse(request, tmp_path, data, family, formulas, kwargs):
    model = compile_for(request.getfixturevalue(data), family, formulas, **kwargs)
    path = tmp_path / f"{family}.stan"
    model.write(str(path))

    # stanc exits with an error on any syntax or type problem
    format_stan_file(path, overwrite_file=True, backup=False)
    assert path.read_text(encoding="utf-8").strip()
