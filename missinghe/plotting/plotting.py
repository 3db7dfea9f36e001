# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Core plotting functions for missinghe fits.

The module leverages HoloViews and hvplot for the views of the data and of the
economic evaluation (imputed values, posterior predictive checks, the
cost-effectiveness plane and the acceptability curve), and ArviZ for the MCMC
diagnostics (trace, density and autocorrelation plots).

Users will not normally call these functions directly; they back the ``plot_*``
methods of :py:class:`~missinghe.model.results.fit_result.FitResult`.
"""

from __future__ import annotations

from typing import Literal, Optional, TYPE_CHECKING, Union

import arviz as az
import holoviews as hv
import hvplot.pandas  # pylint: disable=unused-import
import numpy as np
import pandas as pd

from missinghe.defaults import DEFAULT_PPC_NDISPLAY, DEFAULT_PROB

if TYPE_CHECKING:
    from missinghe import custom_types
    from missinghe.model.results.economics import EconomicEvaluation
    from missinghe.model.results.fit_result import FitResult

OUTCOME_LABELS = {"e": "Effectiveness", "c": "Cost"}

DIAGNOSTIC_PLOTS = {
    "trace": az.plot_trace,
    "density": az.plot_density,
    "autocorr": az.plot_autocorr,
}


def _outcome_frame(result: "FitResult", outcome: str, prob) -> pd.DataFrame:
    """Observed values and imputed-value summaries of an outcome, one row each.

    Observed rows carry their value in ``mean`` and a zero-width interval.
    """
    arms = [result.bound.arm_labels[t - 1] for t in result.bound.data["arm"]]
    observed = result.bound.data[f"idx.obs.{outcome}"] - 1
    frame = pd.DataFrame(
        {
            "position": observed,
            "arm": [arms[i] for i in observed],
            "mean": np.asarray(result.bound.data[outcome], dtype=float)[observed],
            "status": "observed",
        }
    )
    frame["lower"] = frame["mean"]
    frame["upper"] = frame["mean"]

    imputed = result.imputed(outcome, prob=prob)
    imputed_frame = pd.DataFrame(
        {
            "position": result.bound.data[f"idx.mis.{outcome}"] - 1,
            "arm": imputed["arm"].values,
            "mean": imputed["mean"].values,
            "lower": imputed["lower"].values,
            "upper": imputed["upper"].values,
            "status": "imputed",
        }
    )
    return pd.concat([frame, imputed_frame], ignore_index=True).sort_values(
        "position", ignore_index=True
    )


def plot_imputed(
    result: "FitResult",
    outcome: "custom_types.Outcome" = "e",
    arm=None,
    kind: Literal["scatter", "hist"] = "scatter",
    prob: "custom_types.Float" = DEFAULT_PROB,
) -> Union[hv.Overlay, hv.NdOverlay]:
    """Plot the observed and imputed values of an outcome.

    :param result: The fit
    :type result: FitResult
    :param outcome: ``"e"`` or ``"c"``. Defaults to ``"e"``.
    :type outcome: custom_types.Outcome
    :param arm: Treatment label to restrict the plot to. Defaults to None (both
        arms).
    :param kind: ``"scatter"`` plots every individual in row order, with the
        credible intervals of the imputed values; ``"hist"`` overlays the
        histograms of the observed values and the imputed means. Defaults to
        ``"scatter"``.
    :type kind: Literal["scatter", "hist"]
    :param prob: Credible-interval probability. Defaults to 0.95.
    :type prob: custom_types.Float

    :returns: The plot
    :rtype: Union[hv.Overlay, hv.NdOverlay]

    :raises ValueError: If ``kind`` is unknown
    """
    frame = _outcome_frame(result, outcome, prob)
    if arm is not None:
        frame = frame[frame["arm"] == arm]
    label = OUTCOME_LABELS[outcome]

    if kind == "scatter":
        imputed = frame[frame["status"] == "imputed"]
        return (
            frame.hvplot.scatter(
                x="position", y="mean", by="status", xlabel="Individual", ylabel=label
            )
            * hv.ErrorBars(
                (
                    imputed["position"],
                    imputed["mean"],
                    imputed["mean"] - imputed["lower"],
                    imputed["upper"] - imputed["mean"],
                ),
                vdims=["mean", "neg", "pos"],
            )
        )
    elif kind == "hist":
        return frame.hvplot.hist(
            y="mean", by="status", alpha=0.5, xlabel=label, ylabel="Count"
        )
    raise ValueError(f"Unknown plot kind '{kind}'. Options are: scatter, hist.")


def plot_diagnostic(
    result: "FitResult",
    kind: Literal["trace", "density", "autocorr"] = "trace",
    parameter: Union[str, list[str]] = "all",
):
    """Plot MCMC diagnostics with ArviZ.

    :param result: The fit
    :type result: FitResult
    :param kind: ``"trace"``, ``"density"`` or ``"autocorr"``. Defaults to
        ``"trace"``.
    :type kind: Literal["trace", "density", "autocorr"]
    :param parameter: A monitored quantity, a list of them, or ``"all"`` for every
        monitored quantity except the per-individual outputs. Defaults to
        ``"all"``.
    :type parameter: Union[str, list[str]]

    :returns: The ArviZ axes

    :raises ValueError: If ``kind`` or a parameter name is unknown
    """
    if kind not in DIAGNOSTIC_PLOTS:
        raise ValueError(
            f"Unknown plot kind '{kind}'. Options are: "
            f"{', '.join(DIAGNOSTIC_PLOTS)}."
        )
    if parameter == "all":
        names = result.parameters
    else:
        names = [parameter] if isinstance(parameter, str) else list(parameter)
        if unknown := [name for name in names if name not in result.parameters]:
            raise ValueError(
                f"Unknown parameter(s): {', '.join(unknown)}. Options are: "
                f"{', '.join(result.parameters)}."
            )
    return DIAGNOSTIC_PLOTS[kind](result.posterior, var_names=names)


def _draw_positions(n_total: int, ndisplay: int) -> np.ndarray:
    """Evenly spaced draw positions, at most ``ndisplay`` of them."""
    return np.unique(np.linspace(0, n_total - 1, min(ndisplay, n_total)).astype(int))


def plot_ppc(
    result: "FitResult",
    kind: Literal["density", "hist", "intervals"] = "density",
    outcome: "custom_types.Outcome" = "e",
    arm=None,
    ndisplay: "custom_types.Integer" = DEFAULT_PPC_NDISPLAY,
) -> hv.Overlay:
    """Compare the observed values of an outcome with posterior predictive
    replicates.

    :param result: The fit
    :type result: FitResult
    :param kind: ``"density"`` or ``"hist"`` overlay the distribution of the
        observed values on that of ``ndisplay`` replicated datasets;
        ``"intervals"`` plots the credible interval of each individual's
        replicates with the observed value. Defaults to ``"density"``.
    :type kind: Literal["density", "hist", "intervals"]
    :param outcome: ``"e"`` or ``"c"``. Defaults to ``"e"``.
    :type outcome: custom_types.Outcome
    :param arm: Treatment label to restrict the plot to. Defaults to None (both
        arms).
    :param ndisplay: Number of replicated datasets shown. Defaults to 15.
    :type ndisplay: custom_types.Integer

    :returns: The plot
    :rtype: hv.Overlay

    :raises ValueError: If the fit has no replicates or ``kind`` is unknown
    """
    label = OUTCOME_LABELS[outcome]
    summary = result.ppc(outcome)
    keep = np.ones(len(summary), dtype=bool)
    if arm is not None:
        keep = (summary["arm"] == arm).values

    if kind == "intervals":
        summary = summary[keep]
        x = np.arange(len(summary))
        return hv.ErrorBars(
            (
                x,
                summary["mean"],
                summary["mean"] - summary["lower"],
                summary["upper"] - summary["mean"],
            ),
            vdims=["replicate", "neg", "pos"],
        ) * hv.Scatter((x, summary["observed"]), vdims=[label]).opts(color="black")

    if kind not in ("density", "hist"):
        raise ValueError(
            f"Unknown plot kind '{kind}'. Options are: density, hist, intervals."
        )

    # Replicates of the individuals with an observed outcome, one column per draw
    observed = result.bound.data[f"idx.obs.{outcome}"] - 1
    replicates = (
        result.replicates(outcome)
        .stack(sample=("chain", "draw"))
        .transpose("obs", "sample")
        .values[observed][keep]
    )
    positions = _draw_positions(replicates.shape[1], int(ndisplay))
    frame = pd.DataFrame(
        replicates[:, positions], columns=[f"rep {i + 1}" for i in positions]
    )
    frame["observed"] = summary["observed"].values[keep]

    plot = getattr(frame.hvplot, "kde" if kind == "density" else "hist")
    replicated = plot(
        y=[column for column in frame.columns if column != "observed"],
        color="lightblue",
        alpha=0.3,
        legend=False,
    )
    return replicated * plot(y="observed", color="black", xlabel=label)


def plot_ceplane(
    economics: "EconomicEvaluation", wtp: Optional["custom_types.Float"] = None
) -> hv.Overlay:
    """Plot the cost-effectiveness plane.

    :param economics: The economic evaluation
    :type economics: EconomicEvaluation
    :param wtp: Willingness-to-pay threshold drawn as a line through the origin.
        Defaults to None (no line).
    :type wtp: Optional[custom_types.Float]

    :returns: The plot
    :rtype: hv.Overlay
    """
    plot = economics.ceplane.hvplot.scatter(
        x="delta_e",
        y="delta_c",
        alpha=0.4,
        xlabel="Incremental effectiveness",
        ylabel="Incremental cost",
        title=f"{economics.reference_label} vs {economics.comparator_label}",
    )
    plot = plot * hv.HLine(0).opts(color="grey") * hv.VLine(0).opts(color="grey")
    if wtp is not None:
        plot = plot * hv.Slope(float(wtp), 0).opts(color="red")
    return plot


def plot_ceac(economics: "EconomicEvaluation") -> hv.Curve:
    """Plot the cost-effectiveness acceptability curve.

    :param economics: The economic evaluation
    :type economics: EconomicEvaluation

    :returns: The plot
    :rtype: hv.Curve
    """
    return hv.Curve(
        (economics.wtp, economics.ceac.values),
        kdims=["Willingness to pay"],
        vdims=["Probability of cost-effectiveness"],
    ).opts(ylim=(0, 1))
