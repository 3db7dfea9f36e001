# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Conversion of raw sampler output into the posterior of a missinghe fit.

The sampler returns every variable of the Stan program keyed by its Stan
identifier. Post-processing keeps the monitored outputs, restores their display
names and named dimensions, and derives the per-arm mean effects and costs from
the link-scale means the program reports:

    - Selection models back-transform ``lp.e`` and ``lp.c`` with the inverse link
      of the outcome distribution.
    - Pattern-mixture models back-transform the pattern-specific means
      ``lp.e.p``/``lp.c.p`` and average them with the pattern membership
      probabilities ``pi.p`` of the *same* draw. They also expand the coefficient
      sets into per-pattern coefficients ``alpha.p``/``beta.p``.
    - Hurdle models mix the structural value and the back-transformed continuous
      mean with the structural probabilities ``p.e``/``p.c``.

All arithmetic is done on xarray objects indexed by ``chain`` and ``draw``, so
draws of different quantities are always combined draw by draw.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import arviz as az
import xarray as xr

from missinghe import utils

if TYPE_CHECKING:
    import pandas as pd

    from missinghe.model.binder import BoundData
    from missinghe.model.config import ModelConfig
    from missinghe.model.stan.program import CompiledModel

SAMPLE_DIMS = ("chain", "draw")


def collect_outputs(model: "CompiledModel", idata: az.InferenceData) -> xr.Dataset:
    """Select the monitored outputs of a sampler result and restore display names.

    :param model: The compiled model that was sampled
    :type model: CompiledModel
    :param idata: Sampler output. The posterior group must hold every monitored
        output of the model under its Stan identifier.
    :type idata: az.InferenceData

    :returns: The monitored outputs keyed by display name
    :rtype: xr.Dataset

    :raises ValueError: If the sampler output lacks a monitored variable
    """
    posterior = idata.posterior
    expected = [variable.stan_name for variable in model.outputs]
    if missing := [name for name in expected if name not in posterior.data_vars]:
        raise ValueError(
            f"The sampler output lacks the monitored variable(s): {', '.join(missing)}."
        )

    return posterior[expected].rename(
        {variable.stan_name: variable.name for variable in model.outputs}
    )


def _outcome_mean(
    config: "ModelConfig", outcome: str, lp: xr.DataArray, aux=None
) -> xr.DataArray:
    """Back-transform a link-scale mean, passing the auxiliary draws if needed."""
    dist = config.distribution(outcome)
    return dist.inverse_link(lp, aux if dist.MEAN_USES_AUX else None)


def _aux_draws(config: "ModelConfig", outcome: str, posterior: xr.Dataset, suffix=""):
    """Draws of the auxiliary parameter of an outcome, or None."""
    dist = config.distribution(outcome)
    if not dist.MEAN_USES_AUX:
        return None
    return posterior[f"{dist.AUX_PARAM}.{outcome}{suffix}"]


def _selection_means(
    config: "ModelConfig", posterior: xr.Dataset
) -> dict[str, xr.DataArray]:
    return {
        f"mu.{outcome}": _outcome_mean(
            config,
            outcome,
            posterior[f"lp.{outcome}"],
            _aux_draws(config, outcome, posterior),
        )
        for outcome in ("e", "c")
    }


def _pattern_means(
    config: "ModelConfig", posterior: xr.Dataset
) -> dict[str, xr.DataArray]:
    """Membership-weighted means over the realised patterns."""
    weights = posterior["pi.p"]
    means = {}
    for outcome in ("e", "c"):
        by_pattern = _outcome_mean(
            config,
            outcome,
            posterior[f"lp.{outcome}.p"],
            _aux_draws(config, outcome, posterior, ".p"),
        )
        means[f"mu.{outcome}"] = (weights * by_pattern).sum(dim="pattern")
    return means


def _hurdle_means(
    config: "ModelConfig", posterior: xr.Dataset
) -> dict[str, xr.DataArray]:
    """Means mixing the structural value and the continuous part."""
    means = {}
    for outcome in ("e", "c"):
        continuous = _outcome_mean(
            config,
            outcome,
            posterior[f"lp.{outcome}"],
            _aux_draws(config, outcome, posterior),
        )
        structural = config.structural_value(outcome)
        if structural is None:
            means[f"mu.{outcome}"] = continuous
        else:
            p = posterior[f"p.{outcome}"]
            means[f"mu.{outcome}"] = p * structural + (1 - p) * continuous
    return means


def _pattern_coefficients(
    model: "CompiledModel", bound: "BoundData", posterior: xr.Dataset
) -> dict[str, xr.DataArray]:
    """Coefficients of every realised pattern, borrowed sets included."""
    coefficients = {}
    for outcome, coef in (("e", "alpha"), ("c", "beta")):
        name = f"{coef}.p"
        if name not in model.derived:
            continue
        selector = xr.DataArray(
            bound.pattern_sets[outcome],
            dims="pattern",
            coords={"pattern": list(bound.patterns)},
        )
        coefficients[name] = (
            posterior[coef]
            .isel({f"set.{outcome}": selector})
            .drop_vars(f"set.{outcome}", errors="ignore")
        )
    return coefficients


def derive_quantities(
    config: "ModelConfig",
    model: "CompiledModel",
    bound: "BoundData",
    posterior: xr.Dataset,
) -> xr.Dataset:
    """Add the derived quantities of a model to its posterior.

    :param config: The model configuration
    :type config: ModelConfig
    :param model: The compiled model
    :type model: CompiledModel
    :param bound: The bound data
    :type bound: BoundData
    :param posterior: Monitored outputs keyed by display name
    :type posterior: xr.Dataset

    :returns: The posterior with the derived quantities first, in the order of
        :py:attr:`CompiledModel.monitors`
    :rtype: xr.Dataset
    """
    if config.family == "selection":
        derived = _selection_means(config, posterior)
    elif config.family == "pattern":
        derived = _pattern_means(config, posterior)
        derived.update(_pattern_coefficients(model, bound, posterior))
    else:
        derived = _hurdle_means(config, posterior)

    # Fix the dimension order of the derived quantities
    derived = {
        name: derived[name].transpose(*SAMPLE_DIMS, *model.derived_dims[name])
        for name in model.derived
    }
    return xr.Dataset({**derived, **posterior.data_vars})[list(model.monitors)]


def build_posterior(
    config: "ModelConfig",
    model: "CompiledModel",
    bound: "BoundData",
    idata: az.InferenceData,
) -> az.InferenceData:
    """Package sampler output into the posterior of a fit.

    :param config: The model configuration
    :type config: ModelConfig
    :param model: The compiled model
    :type model: CompiledModel
    :param bound: The bound data
    :type bound: BoundData
    :param idata: Raw sampler output
    :type idata: az.InferenceData

    :returns: InferenceData whose posterior holds the derived quantities and the
        monitored outputs under their display names. The sampler statistics are
        kept when the sampler reports them.
    :rtype: az.InferenceData
    """
    posterior = derive_quantities(
        config, model, bound, collect_outputs(model, idata)
    )
    groups = {"posterior": posterior}
    if "sample_stats" in idata.groups():
        groups["sample_stats"] = idata.sample_stats
    return az.InferenceData(**groups)


def pointwise_loglik(posterior: xr.Dataset, names: list[str]) -> xr.DataArray:
    """Sum per-individual log-likelihood outputs into one array over ``obs``.

    :param posterior: Posterior holding the ``loglik.*`` outputs
    :type posterior: xr.Dataset
    :param names: Display names of the outputs to add up
    :type names: list[str]

    :returns: Pointwise log-likelihood with dimensions ``chain``, ``draw``, ``obs``
    :rtype: xr.DataArray
    """
    total = posterior[names[0]]
    for name in names[1:]:
        total = total + posterior[name]
    return total.transpose(*SAMPLE_DIMS, "obs")


def summary_frame(draws: xr.DataArray, name: str, prob) -> "pd.DataFrame":
    """Summarize one posterior quantity into rows labelled by element.

    :param draws: Draws of the quantity
    :type draws: xr.DataArray
    :param name: Label of the quantity, used as the row-label prefix
    :type name: str
    :param prob: Credible-interval probability
    :type prob: custom_types.Float

    :returns: One row per element with columns ``mean``, ``sd``, ``lower``,
        ``upper``. Rows are labelled ``name[coord, ...]``.
    :rtype: pd.DataFrame
    """
    stats = xr.Dataset(utils.summarize_draws(draws, prob))
    return label_rows(stats, name)[["mean", "sd", "lower", "upper"]]


def label_rows(dataset: xr.Dataset, name: str) -> "pd.DataFrame":
    """Flatten a dataset of per-element statistics into labelled rows."""
    if len(dataset.dims) == 0:
        frame = dataset.expand_dims("_").to_dataframe()
        frame.index = [name]
        return frame

    # Rows follow the dimension order of the statistics
    dim_order = list(next(iter(dataset.data_vars.values())).dims)
    frame = dataset.to_dataframe(dim_order=dim_order)
    frame.index = [
        f"{name}[{', '.join(str(part) for part in (key if isinstance(key, tuple) else (key,)))}]"
        for key in frame.index
    ]
    return frame
