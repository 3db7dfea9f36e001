# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Plotting utilities for missinghe fits.

Users should not typically directly interact with these functions, which are used
internally to support the plotting methods of the result objects.

The plotting utilities are built on top of holoviews and hvplot, with ArviZ used
for the MCMC diagnostic plots.
"""

from .plotting import (
    plot_ceac,
    plot_ceplane,
    plot_diagnostic,
    plot_imputed,
    plot_ppc,
)
