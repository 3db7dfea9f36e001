# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Economic evaluation of two-arm trials from posterior mean draws.

Every quantity is built draw by draw from the per-arm mean effects and costs and
only summarized at the end. The incremental cost-effectiveness ratio in
particular is the ratio of the incremental cost and incremental effect of the
same draw, never a ratio of posterior means.
"""

from __future__ import annotations

import warnings

from typing import Optional, TYPE_CHECKING

import numpy as np
import numpy.typing as npt
import pandas as pd
import xarray as xr

from missinghe import utils
from missinghe.defaults import DEFAULT_PROB, DEFAULT_REF_ARM, DEFAULT_WTP

if TYPE_CHECKING:
    from missinghe import custom_types


class EconomicEvaluation:
    """Incremental analysis of an intervention arm against a comparator.

    :param mu_e: Draws of the mean effect per arm, with dimensions ``chain``,
        ``draw`` and ``arm``
    :type mu_e: xr.DataArray
    :param mu_c: Draws of the mean cost per arm, with the same dimensions
    :type mu_c: xr.DataArray
    :param ref: One-based position of the reference (intervention) arm. Increments
        are the reference arm minus the comparator. Defaults to 2.
    :type ref: custom_types.Integer
    :param wtp: Grid of willingness-to-pay thresholds. Defaults to 0 to 50000 in
        steps of 100.
    :type wtp: Optional[npt.ArrayLike]

    :raises ValueError: If ``ref`` is not 1 or 2, or the draws have mismatched
        shapes

    Example:
        >>> ev = res.economics
        >>> ev.summary()
        >>> ev.ceac.head()
    """

    def __init__(
        self,
        mu_e: xr.DataArray,
        mu_c: xr.DataArray,
        ref: "custom_types.Integer" = DEFAULT_REF_ARM,
        wtp: Optional[npt.ArrayLike] = None,
    ):
        if ref not in (1, 2):
            raise ValueError(f"`ref` must be 1 or 2, got {ref}.")
        if mu_e.sizes != mu_c.sizes:
            raise ValueError("Effect and cost draws must have the same shape.")

        self.ref = int(ref)
        self.comparator = 3 - self.ref
        self.arm_labels = tuple(mu_e.coords["arm"].values.tolist())
        self.wtp = np.asarray(DEFAULT_WTP if wtp is None else wtp, dtype=float)
        self.mu_e = mu_e
        self.mu_c = mu_c

        # Incremental draws, reference minus comparator
        self.delta_e = self._increment(mu_e)
        self.delta_c = self._increment(mu_c)

    def _increment(self, draws: xr.DataArray) -> xr.DataArray:
        arms = draws.transpose("chain", "draw", "arm")
        return arms.isel(arm=self.ref - 1, drop=True) - arms.isel(
            arm=self.comparator - 1, drop=True
        )

    @property
    def reference_label(self):
        """Treatment label of the reference arm."""
        return self.arm_labels[self.ref - 1]

    @property
    def comparator_label(self):
        """Treatment label of the comparator arm."""
        return self.arm_labels[self.comparator - 1]

    @property
    def icer_draws(self) -> xr.DataArray:
        """Per-draw ratio of incremental cost to incremental effect.

        Draws with no incremental effect have an infinite ratio, or NaN when the
        incremental cost is also zero. These are kept and reported with a warning,
        so the mean and intervals of the ratio are then undefined.
        """
        if (zero := int((self.delta_e == 0).sum())) > 0:
            warnings.warn(
                f"{zero} draws have no incremental effect; their ICER is infinite "
                "or undefined."
            )
        with np.errstate(divide="ignore", invalid="ignore"):
            return self.delta_c / self.delta_e

    @property
    def icer(self) -> float:
        """Posterior mean of the per-draw ratios."""
        return float(self.icer_draws.mean())

    @property
    def ceplane(self) -> pd.DataFrame:
        """Incremental effect and cost of every draw, one row per draw."""
        return pd.DataFrame(
            {
                "delta_e": utils.flatten_draws(self.delta_e),
                "delta_c": utils.flatten_draws(self.delta_c),
            }
        )

    def _net_benefit(self) -> npt.NDArray:
        """Incremental net benefit, shape ``(n_draws, n_wtp)``."""
        delta_e = utils.flatten_draws(self.delta_e)
        delta_c = utils.flatten_draws(self.delta_c)
        return np.outer(delta_e, self.wtp) - delta_c[:, None]

    @property
    def eib(self) -> pd.Series:
        """Expected incremental benefit at each willingness-to-pay threshold."""
        return pd.Series(
            self._net_benefit().mean(axis=0),
            index=pd.Index(self.wtp, name="wtp"),
            name="eib",
        )

    @property
    def ceac(self) -> pd.Series:
        """Probability that the reference arm is cost-effective at each threshold."""
        return pd.Series(
            (self._net_benefit() > 0).mean(axis=0),
            index=pd.Index(self.wtp, name="wtp"),
            name="ceac",
        )

    def summary(self, prob: "custom_types.Float" = DEFAULT_PROB) -> pd.DataFrame:
        """Summarize the per-arm means, the increments, and the ICER.

        :param prob: Credible-interval probability. Defaults to 0.95.
        :type prob: custom_types.Float

        :returns: One row per quantity with columns ``mean``, ``sd``, ``lower``,
            ``upper``
        :rtype: pd.DataFrame
        """
        rows = {}
        for name, draws in (("mu.e", self.mu_e), ("mu.c", self.mu_c)):
            stats = utils.summarize_draws(draws, prob)
            for label in self.arm_labels:
                rows[f"{name}[{label}]"] = {
                    key: float(value.sel(arm=label)) for key, value in stats.items()
                }
        for name, draws in (
            ("delta.e", self.delta_e),
            ("delta.c", self.delta_c),
            ("ICER", self.icer_draws),
        ):
            rows[name] = {
                key: float(value)
                for key, value in utils.summarize_draws(draws, prob).items()
            }
        return pd.DataFrame.from_dict(rows, orient="index")[
            ["mean", "sd", "lower", "upper"]
        ]

    def __repr__(self) -> str:
        return (
            f"EconomicEvaluation(ref={self.reference_label!r}, "
            f"comparator={self.comparator_label!r}, ICER={self.icer:.4g})"
        )
