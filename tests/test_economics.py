# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import numpy as np
import pytest
import xarray as xr

from missinghe.model.results.economics import EconomicEvaluation


def arm_draws(control, new):
    """One chain of draws per arm."""
    return xr.DataArray(
        np.stack([control, new], axis=-1)[None].astype(float),
        dims=("chain", "draw", "arm"),
        coords={"arm": ["control", "new"]},
    )


@pytest.fixture
def evaluation():
    mu_e = arm_draws([0.5, 0.5, 0.5], [0.6, 0.52, 0.7])
    mu_c = arm_draws([100, 100, 100], [200, 110, 300])
    return EconomicEvaluation(mu_e, mu_c, wtp=[0, 750, 1e5])


def test_increments_are_reference_minus_comparator(evaluation):
    np.testing.assert_allclose(evaluation.delta_e.values, [[0.1, 0.02, 0.2]])
    np.testing.assert_allclose(evaluation.delta_c.values, [[100, 10, 200]])
    assert evaluation.reference_label == "new"
    assert evaluation.comparator_label == "control"


def test_icer_is_computed_per_draw(evaluation):
    np.testing.assert_allclose(evaluation.icer_draws.values, [[1000, 500, 1000]])
    assert evaluation.icer == pytest.approx(2500 / 3)

    ratio_of_means = float(evaluation.delta_c.mean() / evaluation.delta_e.mean())
    assert evaluation.icer != pytest.approx(ratio_of_means)


def test_icer_of_draws_without_incremental_effect():
    mu_e = arm_draws([0.5, 0.5, 0.5], [0.5, 0.5, 0.6])
    mu_c = arm_draws([100, 100, 100], [150, 100, 200])
    evaluation = EconomicEvaluation(mu_e, mu_c)
    with pytest.warns(UserWarning, match="2 draws have no incremental effect"):
        icer = evaluation.icer_draws.values[0]
    assert np.isposinf(icer[0]) and np.isnan(icer[1])
    assert icer[2] == pytest.approx(1000)


def test_reference_arm_can_be_switched():
    mu_e = arm_draws([0.5, 0.5], [0.6, 0.7])
    mu_c = arm_draws([100, 100], [200, 300])
    evaluation = EconomicEvaluation(mu_e, mu_c, ref=1)
    np.testing.assert_allclose(evaluation.delta_e.values, [[-0.1, -0.2]])
    assert evaluation.reference_label == "control"


def test_ceplane(evaluation):
    plane = evaluation.ceplane
    assert list(plane.columns) == ["delta_e", "delta_c"]
    np.testing.assert_allclose(plane["delta_c"], [100, 10, 200])


def test_net_benefit_and_ceac(evaluation):
    np.testing.assert_allclose(evaluation.ceac.values, [0, 1 / 3, 1])
    np.testing.assert_allclose(evaluation.eib.values[1], -70 / 3)
    assert evaluation.ceac.index.name == "wtp"


def test_summary_rows(evaluation):
    summary = evaluation.summary(prob=0.9)
    assert list(summary.index) == [
        "mu.e[control]",
        "mu.e[new]",
        "mu.c[control]",
        "mu.c[new]",
        "delta.e",
        "delta.c",
        "ICER",
    ]
    assert list(summary.columns) == ["mean", "sd", "lower", "upper"]
    assert summary.loc["ICER", "mean"] == pytest.approx(2500 / 3)
    assert summary.loc["mu.c[control]", "sd"] == 0


def test_default_wtp_grid(evaluation):
    default = EconomicEvaluation(evaluation.mu_e, evaluation.mu_c)
    assert default.wtp[0] == 0 and default.wtp[-1] == 50000
    assert len(default.ceac) == len(default.wtp)


def test_invalid_inputs(evaluation):
    with pytest.raises(ValueError, match="`ref` must be 1 or 2"):
        EconomicEvaluation(evaluation.mu_e, evaluation.mu_c, ref=3)
    with pytest.raises(ValueError, match="same shape"):
        EconomicEvaluation(evaluation.mu_e, evaluation.mu_c.isel(draw=[0, 1]))


def test_repr(evaluation):
    assert repr(evaluation).startswith("EconomicEvaluation(ref='new'")
