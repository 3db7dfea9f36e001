# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Result of a missinghe fit.

A :py:class:`FitResult` bundles everything produced by one call to a fit entry
point: the configuration, the compiled model, the bound data, the posterior draws
(with the derived per-arm means first), and the economic evaluation built from
them. It is immutable; every method reads from the stored draws and computes its
summaries on demand, so a single result can be queried any number of times.

Summaries are always computed from draws: means, standard deviations, and
equal-tailed credible intervals are taken over the ``chain`` and ``draw``
dimensions of the quantity being reported, never of a transformed summary.
"""

from __future__ import annotations

import warnings

from dataclasses import dataclass
from typing import Literal, Optional, TYPE_CHECKING, Union

import arviz as az
import pandas as pd
import xarray as xr

from missinghe import plotting
from missinghe.defaults import (
    DEFAULT_ESS_THRESH,
    DEFAULT_PPC_NDISPLAY,
    DEFAULT_PROB,
    DEFAULT_RHAT_THRESH,
)
from missinghe.model.results import assessment
from missinghe.model.results.economics import EconomicEvaluation
from missinghe.model.results.postprocess import label_rows, summary_frame
from missinghe.model.stan.fragments import SUBMODEL_NAMES

if TYPE_CHECKING:
    from missinghe import custom_types
    from missinghe.model.binder import BoundData
    from missinghe.model.config import ModelConfig
    from missinghe.model.stan.program import CompiledModel

# Per-individual outputs that are not model parameters
POINTWISE_PREFIXES = ("loglik.", "rep.", "imp.")

# Per-individual outputs derived from other draws, left out of the diagnostics
DERIVED_PREFIXES = ("loglik.", "rep.")


@dataclass(frozen=True)
class FitResult:
    """Posterior of a fitted model together with everything needed to read it.

    :ivar config: The model configuration
    :ivar model: The compiled model, whose ``code`` is the Stan program
    :ivar bound: The data bound to the model
    :ivar inference: Posterior draws (and sampler statistics, when available)
    :ivar economics: Economic evaluation of the per-arm means

    Example:
        >>> res = mhe.selection(data=df, model_eff="e ~ u0", model_cost="c ~ 1")
        >>> res.coef()
        >>> res.economics.summary()
        >>> res.diagnose()
    """

    config: "ModelConfig"
    model: "CompiledModel"
    bound: "BoundData"
    inference: az.InferenceData
    economics: EconomicEvaluation

    def __post_init__(self):
        # Report convergence problems without raising
        rhat = self.diagnose(silent=True)["rhat"]
        if (failed := rhat[rhat > DEFAULT_RHAT_THRESH]).size > 0:
            warnings.warn(
                f"{failed.size} monitored quantities have R-hat above "
                f"{DEFAULT_RHAT_THRESH}: {', '.join(failed.index[:10])}"
                + (", ..." if failed.size > 10 else "")
                + ". Consider running more iterations."
            )

    @property
    def posterior(self) -> xr.Dataset:
        """Posterior draws of every monitored quantity, keyed by display name."""
        return self.inference.posterior

    @property
    def parameters(self) -> list[str]:
        """Monitored quantities other than per-individual outputs."""
        return [
            name
            for name in self.model.monitors
            if not name.startswith(POINTWISE_PREFIXES)
        ]

    @property
    def diagnosed(self) -> list[str]:
        """Monitored quantities checked for convergence: the parameters and the
        imputed values, but not the log-likelihoods or the replicates."""
        return [
            name
            for name in self.model.monitors
            if not name.startswith(DERIVED_PREFIXES) and self.posterior[name].size > 0
        ]

    @property
    def n_chains(self) -> int:
        """Number of chains."""
        return self.posterior.sizes["chain"]

    @property
    def n_draws(self) -> int:
        """Number of post-warmup draws per chain."""
        return self.posterior.sizes["draw"]

    def _coefficient_names(self) -> list[str]:
        """Fixed-effect coefficients and dependence parameters present in the fit."""
        names = []
        for key in self.config.submodels:
            coef = SUBMODEL_NAMES[key].coef
            if self.config.family == "pattern":
                coef = f"{coef}.p"
            names.append(coef)
        names.extend(["beta_f", "delta.e", "delta.c"])
        return [name for name in names if name in self.posterior.data_vars]

    def _random_names(self) -> list[str]:
        """Random-effect means, standard deviations, and cluster effects."""
        names = []
        for key in self.config.submodels:
            if self.bound.designs[key].random is None:
                continue
            random = SUBMODEL_NAMES[key].random
            names.extend([f"mu.{random}", f"s.{random}", random])
        return names

    def _table(self, names: list[str], prob: "custom_types.Float") -> pd.DataFrame:
        return pd.concat(
            [summary_frame(self.posterior[name], name, prob) for name in names]
        )

    def coef(
        self, prob: "custom_types.Float" = DEFAULT_PROB, random: bool = False
    ) -> pd.DataFrame:
        """Summarize the regression coefficients.

        :param prob: Credible-interval probability. Defaults to 0.95.
        :type prob: custom_types.Float
        :param random: Whether to report the random effects (group-level means,
            standard deviations, and cluster-specific effects) instead of the fixed
            effects. Defaults to False.
        :type random: bool

        :returns: One row per coefficient, labelled ``name[term, arm]``, with
            columns ``mean``, ``sd``, ``lower`` and ``upper``. Pattern-mixture
            models report the coefficients of every realised pattern, including
            those borrowed through the identifying restriction.
        :rtype: pd.DataFrame

        :raises ValueError: If ``random`` is True but the model has no random
            effects, or if the model has no fixed coefficients
        """
        if random:
            names = self._random_names()
            if not names:
                raise ValueError("The model has no random effects.")
        else:
            names = self._coefficient_names()
            if not names:
                raise ValueError("The model has no fixed coefficients.")
        return self._table(names, prob)

    def summary(self, prob: "custom_types.Float" = DEFAULT_PROB) -> pd.DataFrame:
        """Summarize the per-arm means, the increments, and the other model-level
        quantities (auxiliary parameters, missingness or structural probabilities,
        sensitivity offsets).

        :param prob: Credible-interval probability. Defaults to 0.95.
        :type prob: custom_types.Float

        :returns: One row per quantity
        :rtype: pd.DataFrame
        """
        extra = [
            name
            for name in (
                "p.e",
                "p.c",
                "sigma.e",
                "sigma.c",
                "phi.e",
                "phi.c",
                "shape.e",
                "shape.c",
                "rho",
                "Delta.e",
                "Delta.c",
                "pi.p",
            )
            if name in self.posterior.data_vars
        ]
        frames = [self.economics.summary(prob)]
        if extra:
            frames.append(self._table(extra, prob))
        return pd.concat(frames)

    def print(self, prob: "custom_types.Float" = DEFAULT_PROB) -> None:
        """Print the configuration, the coefficients, and the summary."""
        header = (
            f"{self.config.family.capitalize()} model ({self.config.type}): "
            f"e ~ {self.config.dist_e.NAME}, c ~ {self.config.dist_c.NAME}"
        )
        print(header)
        print("-" * len(header))
        print(
            f"{self.n_chains} chains of {self.n_draws} draws; "
            f"{len(self.bound.index)} individuals"
        )
        print()
        print("Coefficients:")
        print(self.coef(prob).to_string(float_format="{:.4g}".format))
        print()
        print("Summary:")
        print(self.summary(prob).to_string(float_format="{:.4g}".format))

    def diagnose(
        self,
        rhat_thresh: "custom_types.Float" = DEFAULT_RHAT_THRESH,
        ess_thresh: "custom_types.Float" = DEFAULT_ESS_THRESH,
        silent: bool = False,
    ) -> pd.DataFrame:
        """Compute convergence diagnostics of the parameters and imputed values.

        :param rhat_thresh: Largest acceptable R-hat. Defaults to 1.1.
        :type rhat_thresh: custom_types.Float
        :param ess_thresh: Smallest acceptable effective sample size per chain.
            Defaults to 100.
        :type ess_thresh: custom_types.Float
        :param silent: Whether to suppress the printed report. Defaults to False.
        :type silent: bool

        :returns: One row per element with columns ``rhat``, ``ess_bulk`` and
            ``ess_tail``. Failures are reported, never raised.
        :rtype: pd.DataFrame
        """
        draws = self.posterior[self.diagnosed]
        stats = {
            "rhat": az.rhat(draws),
            "ess_bulk": az.ess(draws, method="bulk"),
            "ess_tail": az.ess(draws, method="tail"),
        }
        table = pd.concat(
            [
                label_rows(
                    xr.Dataset({metric: values[name] for metric, values in stats.items()}),
                    name,
                )[list(stats)]
                for name in self.diagnosed
            ]
        )
        if silent:
            return table

        # Update the ess threshold based on the number of chains
        ess_thresh *= self.n_chains
        failures = {
            "rhat": table.index[table["rhat"] > rhat_thresh],
            "ess_bulk": table.index[table["ess_bulk"] < ess_thresh],
            "ess_tail": table.index[table["ess_tail"] < ess_thresh],
        }
        header = "Convergence diagnostics:"
        print(header)
        print("-" * len(header))
        for metric, failed in failures.items():
            print(
                f"{len(failed)} of {len(table)} ({len(failed) / len(table):.2%}) "
                f"quantities failed the {metric} test."
            )
            if len(failed) > 0:
                print("    " + ", ".join(failed))
        return table

    def imputed(
        self,
        outcome: "custom_types.Outcome" = "e",
        arm: Optional[Union[str, int]] = None,
        prob: "custom_types.Float" = DEFAULT_PROB,
    ) -> pd.DataFrame:
        """Summarize the imputed values of the missing entries of an outcome.

        :param outcome: ``"e"`` or ``"c"``. Defaults to ``"e"``.
        :type outcome: custom_types.Outcome
        :param arm: Treatment label to restrict the table to. Defaults to None (both
            arms).
        :type arm: Optional[Union[str, int]]
        :param prob: Credible-interval probability. Defaults to 0.95.
        :type prob: custom_types.Float

        :returns: One row per missing individual, indexed by the original row
            label, with the arm and the imputed-value summaries
        :rtype: pd.DataFrame

        :raises ValueError: If imputed values were not saved, or the arm is unknown
        """
        name = f"imp.{outcome}"
        if name not in self.posterior.data_vars:
            raise ValueError(
                "Imputed values were not saved; refit with save_imputed=True."
            )
        table = summary_frame(self.posterior[name], name, prob)
        missing = self.bound.data[f"idx.mis.{outcome}"] - 1
        arm_index = self.bound.data["arm"][missing] - 1
        table.index = pd.Index(self.bound.index[missing], name="obs")
        table.insert(0, "arm", [self.bound.arm_labels[t] for t in arm_index])
        if arm is not None:
            table = table[table["arm"] == self._arm_label(arm)]
        return table

    def _arm_label(self, arm: Union[str, int]):
        """Resolve a treatment label, or a one-based arm position, to a label."""
        if arm in self.bound.arm_labels:
            return arm
        if arm in (1, 2):
            return self.bound.arm_labels[int(arm) - 1]
        raise ValueError(
            f"Unknown arm {arm!r}. Options are: "
            f"{', '.join(str(label) for label in self.bound.arm_labels)}."
        )

    def ppc(
        self,
        outcome: "custom_types.Outcome" = "e",
        prob: "custom_types.Float" = DEFAULT_PROB,
    ) -> pd.DataFrame:
        """Compare the observed values of an outcome with their replicates.

        :param outcome: ``"e"`` or ``"c"``. Defaults to ``"e"``.
        :type outcome: custom_types.Outcome
        :param prob: Credible-interval probability. Defaults to 0.95.
        :type prob: custom_types.Float

        :returns: One row per individual with an observed outcome: the arm, the
            observed value, and the summary of its replicates
        :rtype: pd.DataFrame

        :raises ValueError: If the model was fitted without ``ppc=True``
        """
        replicates = self.replicates(outcome)
        observed = self.bound.data[f"idx.obs.{outcome}"] - 1
        table = summary_frame(replicates, f"rep.{outcome}", prob)
        table.index = pd.Index(self.bound.index, name="obs")
        table.insert(0, "observed", self.bound.data[outcome])
        table.insert(
            0, "arm", [self.bound.arm_labels[t - 1] for t in self.bound.data["arm"]]
        )
        return table.iloc[observed]

    def replicates(self, outcome: "custom_types.Outcome") -> xr.DataArray:
        """Posterior predictive replicates of an outcome.

        :raises ValueError: If the model was fitted without ``ppc=True``
        """
        if not self.config.ppc:
            raise ValueError(
                "Posterior predictive replicates were not generated; refit with "
                "ppc=True."
            )
        return self.posterior[f"rep.{outcome}"]

    def pic(
        self,
        criterion: Literal["waic", "looic", "dic"] = "waic",
        module: Literal["total", "both", "e", "c"] = "total",
    ) -> assessment.InformationCriterion:
        """Predictive information criterion. See
        :py:func:`~missinghe.model.results.assessment.pic`."""
        return assessment.pic(self, criterion=criterion, module=module)

    def plot_imputed(
        self,
        outcome: "custom_types.Outcome" = "e",
        arm: Optional[Union[str, int]] = None,
        kind: Literal["scatter", "hist"] = "scatter",
        prob: "custom_types.Float" = DEFAULT_PROB,
    ):
        """Plot observed and imputed values of an outcome. See
        :py:func:`~missinghe.plotting.plot_imputed`."""
        arm = None if arm is None else self._arm_label(arm)
        return plotting.plot_imputed(self, outcome=outcome, arm=arm, kind=kind, prob=prob)

    def plot_diagnostic(
        self,
        kind: Literal["trace", "density", "autocorr"] = "trace",
        parameter: Union[str, list[str]] = "all",
    ):
        """Plot sampler diagnostics. See :py:func:`~missinghe.plotting.plot_diagnostic`."""
        return plotting.plot_diagnostic(self, kind=kind, parameter=parameter)

    def plot_ppc(
        self,
        kind: Literal["density", "hist", "intervals"] = "density",
        outcome: "custom_types.Outcome" = "e",
        arm: Optional[Union[str, int]] = None,
        ndisplay: "custom_types.Integer" = DEFAULT_PPC_NDISPLAY,
    ):
        """Plot posterior predictive checks. See
        :py:func:`~missinghe.plotting.plot_ppc`."""
        arm = None if arm is None else self._arm_label(arm)
        return plotting.plot_ppc(
            self, kind=kind, outcome=outcome, arm=arm, ndisplay=ndisplay
        )

    def plot_ceplane(self, wtp: Optional["custom_types.Float"] = None):
        """Plot the cost-effectiveness plane. See
        :py:func:`~missinghe.plotting.plot_ceplane`."""
        return plotting.plot_ceplane(self.economics, wtp=wtp)

    def plot_ceac(self):
        """Plot the cost-effectiveness acceptability curve. See
        :py:func:`~missinghe.plotting.plot_ceac`."""
        return plotting.plot_ceac(self.economics)
