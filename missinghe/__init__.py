# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
missinghe: Bayesian cost-effectiveness analysis with missing data, built on Stan.

missinghe fits Bayesian models to individual-level trial data where the
effectiveness (``e``) and cost (``c``) outcomes are partially observed. Three model
families are available, each encoding a different set of assumptions about the
missingness or structural-value mechanism:

    - :py:func:`~missinghe.model.fit.selection`: selection models, which jointly
      model the outcomes and the probability of each outcome being missing
      (MAR or MNAR).
    - :py:func:`~missinghe.model.fit.pattern`: pattern-mixture models, which model
      the outcomes within each missingness pattern and identify unobserved patterns
      through restrictions and sensitivity parameters.
    - :py:func:`~missinghe.model.fit.hurdle`: hurdle models, which separate a
      structural (point-mass) component from the continuous part of each outcome.

For every valid combination of options, the package compiles an
assumption-specific Stan program, binds the trial data to it, runs the sampler
through CmdStanPy, and packages the posterior into a
:py:class:`~missinghe.model.results.fit_result.FitResult` carrying per-arm mean
effects and costs, imputed values, and an economic-evaluation summary.

Global Variables:
    RNG: Global random number generator for reproducible computations
    __version__: Package version string

Example:
    >>> import missinghe as mhe
    >>> mhe.manual_seed(42)
    >>> res = mhe.selection(
    ...     data=df, model_eff="e ~ u0", model_cost="c ~ 1", type="MAR"
    ... )
    >>> res.summary()
"""

from typing import Optional, TYPE_CHECKING

from typeguard import install_import_hook

import numpy as np

# Define the version
__version__ = "0.1.0"

# Set up type checking
install_import_hook("missinghe")

# Define the global random number generator
RNG: np.random.Generator
"""Global random number generator for missinghe.

Used to draw sampler seeds and generated initial values when the caller does not
pass a seed. It can be seeded using the manual_seed() function.

:type: np.random.Generator
"""

# Get custom types if TYPE_CHECKING is True
if TYPE_CHECKING:
    from missinghe import custom_types


def manual_seed(seed: Optional["custom_types.Integer"] = None):
    """Set the seed for the global random number generator.

    :param seed: Seed value for random number generation. If None, uses
                system entropy to generate a random seed.
    :type seed: Union[custom_types.Integer, None]

    Example:
        >>> import missinghe as mhe
        >>> mhe.manual_seed(42)
        >>> mhe.RNG.integers(0, 10)
    """
    global RNG  # pylint: disable=global-statement
    RNG = np.random.default_rng(seed)


manual_seed()  # Set the seed for the global random number generator

# Import objects that should be easily accessible from the package level
# pylint: disable=wrong-import-position
from missinghe import utils
from missinghe.model.fit import hurdle, pattern, selection

results = utils.lazy_import("missinghe.model.results")
plotting = utils.lazy_import("missinghe.plotting")
