# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Default configuration values for missinghe package components.

This module centralizes default values used across the package, including
sampling settings, Stan compilation options, diagnostic thresholds, and the
defaults of the economic-evaluation summary.

Default values cannot be programmatically altered. This documentation serves as a
reference for users and developers to understand the standard configuration used
by missinghe.
"""

from typing import Any

import numpy as np

# Sampling defaults
DEFAULT_N_ITER: int = 1000
"""Default number of post-warmup iterations drawn per chain.

:type: int
"""

DEFAULT_N_CHAINS: int = 2
"""Default number of MCMC chains. At least two are needed for R-hat.

:type: int
"""

DEFAULT_THIN: int = 1
"""Default thinning interval.

:type: int
"""

# Defaults for the Stan model
DEFAULT_FORCE_COMPILE: bool = False
"""Default setting for forcing Stan model recompilation.

:type: bool
"""

DEFAULT_STANC_OPTIONS: dict[str, Any] = {"O1": True}
"""Default options passed to the Stan compiler (stanc).

:type: dict[str, bool]
"""

DEFAULT_CPP_OPTIONS: dict[str, Any] = {}
"""Default C++ compilation options for Stan models.

:type: dict[str, Any]
"""

DEFAULT_MODEL_NAME: str = "missinghe_model"
"""Default name for generated Stan programs and executables.

:type: str
"""

# Defaults for diagnostics
DEFAULT_RHAT_THRESH: float = 1.1
"""Default acceptance threshold for the potential-scale-reduction statistic.

Parameters whose R-hat exceeds this value are reported as not converged.

:type: float
"""

DEFAULT_ESS_THRESH: int = 100  # Per chain
"""Default threshold for Effective Sample Size (ESS) per chain.

:type: int
"""

# Defaults for summaries
DEFAULT_PROB: float = 0.95
"""Default credible-interval probability for coefficient and summary tables.

:type: float
"""

DEFAULT_PPC_NDISPLAY: int = 15
"""Default number of replicated datasets shown by posterior predictive plots.

:type: int
"""

# Defaults for pattern-mixture models
DEFAULT_PATTERN_CONCENTRATION: float = 1.0
"""Symmetric Dirichlet concentration for the pattern-membership probabilities.

:type: float
"""

# Defaults for the truncation of discrete supports
DEFAULT_SUPPORT_MULTIPLIER: int = 3
"""Multiplier applied to the largest observed count when truncating the support
of Poisson and negative binomial effects for marginalisation.

:type: int
"""

DEFAULT_SUPPORT_FLOOR: int = 30
"""Smallest upper end of a truncated count support.

:type: int
"""

# Defaults for the economic evaluation
DEFAULT_REF_ARM: int = 2
"""Default reference (intervention) arm. Increments are ``ref`` minus the other arm.

:type: int
"""

DEFAULT_WTP: np.ndarray = np.linspace(0, 50000, 501)
"""Default grid of willingness-to-pay thresholds for the acceptability curve.

:type: np.ndarray
"""
