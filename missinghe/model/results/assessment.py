# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Predictive information criteria for fitted missinghe models.

The pointwise log-likelihood of each individual is reported by the Stan program
separately for every sub-model (``loglik.e``, ``loglik.c``, ``loglik.me``, ...).
A criterion is computed on the sum of the sub-models in the requested module:

    - ``"total"``: every sub-model, missingness and pattern models included
    - ``"both"``: the two outcome models
    - ``"e"`` / ``"c"``: a single outcome model, together with its missingness
      model in selection models

WAIC and LOOIC are computed by ArviZ; DIC is computed directly from the deviance
draws. All three are reported on the deviance scale (smaller is better).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, TYPE_CHECKING

import arviz as az
import xarray as xr

from missinghe.model.results.postprocess import SAMPLE_DIMS, pointwise_loglik

if TYPE_CHECKING:
    from missinghe.model.results.fit_result import FitResult

CRITERIA = ("waic", "looic", "dic")
MODULES = ("total", "both", "e", "c")

# Log-likelihood outputs making up each module, per family
MODULE_OUTPUTS: dict[str, dict[str, tuple[str, ...]]] = {
    "selection": {
        "total": ("loglik.e", "loglik.c", "loglik.me", "loglik.mc"),
        "both": ("loglik.e", "loglik.c"),
        "e": ("loglik.e", "loglik.me"),
        "c": ("loglik.c", "loglik.mc"),
    },
    "pattern": {
        "total": ("loglik.e", "loglik.c", "loglik.pat"),
        "both": ("loglik.e", "loglik.c"),
        "e": ("loglik.e",),
        "c": ("loglik.c",),
    },
    "hurdle": {
        "total": ("loglik.e", "loglik.c"),
        "both": ("loglik.e", "loglik.c"),
        "e": ("loglik.e",),
        "c": ("loglik.c",),
    },
}


@dataclass(frozen=True)
class InformationCriterion:
    """A predictive information criterion of a fit.

    :ivar criterion: Name of the criterion
    :ivar module: Sub-models it was computed on
    :ivar value: The criterion on the deviance scale
    :ivar p_eff: Effective number of parameters
    :ivar pointwise: Per-individual contributions on the deviance scale, if the
        criterion decomposes over individuals
    """

    criterion: str
    module: str
    value: float
    p_eff: float
    pointwise: Optional[xr.DataArray] = None

    def __str__(self) -> str:
        return (
            f"{self.criterion.upper()} ({self.module}): {self.value:.2f} "
            f"(effective parameters: {self.p_eff:.2f})"
        )


def _dic(loglik: xr.DataArray) -> tuple[float, float]:
    """DIC with the effective number of parameters taken as half the deviance
    variance."""
    deviance = -2 * loglik.sum(dim="obs")
    p_eff = float(deviance.var(dim=SAMPLE_DIMS, ddof=1)) / 2
    return float(deviance.mean()) + p_eff, p_eff


def pic(
    result: "FitResult",
    criterion: Literal["waic", "looic", "dic"] = "waic",
    module: Literal["total", "both", "e", "c"] = "total",
) -> InformationCriterion:
    """Compute a predictive information criterion of a fit.

    :param result: The fit
    :type result: FitResult
    :param criterion: One of ``"waic"``, ``"looic"`` or ``"dic"``. Defaults to
        ``"waic"``.
    :type criterion: Literal["waic", "looic", "dic"]
    :param module: Sub-models to assess: ``"total"``, ``"both"``, ``"e"`` or
        ``"c"``. Defaults to ``"total"``.
    :type module: Literal["total", "both", "e", "c"]

    :returns: The criterion
    :rtype: InformationCriterion

    :raises ValueError: If the criterion or module is unknown

    Example:
        >>> res.pic("looic", module="e").value
    """
    if criterion not in CRITERIA:
        raise ValueError(
            f"Unknown criterion '{criterion}'. Options are: {', '.join(CRITERIA)}."
        )
    if module not in MODULES:
        raise ValueError(
            f"Unknown module '{module}'. Options are: {', '.join(MODULES)}."
        )

    posterior = result.inference.posterior
    loglik = pointwise_loglik(
        posterior, list(MODULE_OUTPUTS[result.config.family][module])
    )

    if criterion == "dic":
        value, p_eff = _dic(loglik)
        return InformationCriterion(criterion, module, value, p_eff)

    idata = az.InferenceData(
        posterior=posterior[["mu.e", "mu.c"]],
        log_likelihood=xr.Dataset({"loglik": loglik}),
    )
    if criterion == "waic":
        elpd = az.waic(idata, pointwise=True, var_name="loglik")
        estimate, p_eff, pointwise = elpd.elpd_waic, elpd.p_waic, elpd.waic_i
    else:
        elpd = az.loo(idata, pointwise=True, var_name="loglik")
        estimate, p_eff, pointwise = elpd.elpd_loo, elpd.p_loo, elpd.loo_i

    return InformationCriterion(
        criterion=criterion,
        module=module,
        value=-2 * float(estimate),
        p_eff=float(p_eff),
        pointwise=-2 * pointwise,
    )

