# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Utility functions for the missinghe package.

This module provides various utility functions that support the core
functionality of missinghe, including:

    - Lazy importing mechanisms for performance optimization
    - Translation between display names (``mu.e``) and Stan identifiers (``mu__e``)
    - Draw-level summary helpers shared by the result classes

Users will not typically need to interact with this module directly--it is designed
to be used internally by missinghe.
"""

from __future__ import annotations

import importlib.util
import sys

from typing import TYPE_CHECKING

import numpy as np
import xarray as xr

if TYPE_CHECKING:
    from missinghe import custom_types


def lazy_import(name: str):
    """Import a module only when it is first needed.

    :param name: The fully qualified module name to import
    :type name: str

    :returns: The imported module
    :rtype: module

    :raises ImportError: If the specified module cannot be found

    .. note::
        If the module is already imported, returns the cached version
        from sys.modules for efficiency.
    """
    # Check if the module is already imported
    if name in sys.modules:
        return sys.modules[name]

    # If not, import it lazily (modified from here:
    # https://docs.python.org/3/library/importlib.html#implementing-lazy-imports)
    spec = importlib.util.find_spec(name)
    if spec is None:
        raise ImportError(f"Module '{name}' not found.")

    # Create the module with a lazy loader
    spec.loader = importlib.util.LazyLoader(spec.loader)
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    spec.loader.exec_module(module)
    return module


def to_stan_name(name: str) -> str:
    """Translate a display name into a Stan identifier.

    Stan identifiers cannot contain dots, so every dot is replaced with a double
    underscore.

    Example:
        >>> to_stan_name("mu.e")
        'mu__e'
    """
    return name.replace(".", "__")


def interval_bounds(prob: "custom_types.Float") -> tuple[float, float]:
    """Get the lower and upper quantiles of an equal-tailed credible interval.

    :param prob: Probability mass of the interval, strictly between 0 and 1
    :type prob: custom_types.Float

    :returns: Lower and upper quantiles
    :rtype: tuple[float, float]

    :raises ValueError: If ``prob`` is not strictly between 0 and 1
    """
    if not 0 < prob < 1:
        raise ValueError(f"`prob` must be strictly between 0 and 1, got {prob}.")
    tail = (1 - float(prob)) / 2
    return tail, 1 - tail


def summarize_draws(
    draws: xr.DataArray, prob: "custom_types.Float"
) -> dict[str, xr.DataArray]:
    """Summarize a draw array over its chain and draw dimensions.

    Every statistic is computed from the draws themselves: the mean, the standard
    deviation, and the equal-tailed credible interval at probability ``prob``.

    :param draws: Draws with ``chain`` and ``draw`` dimensions
    :type draws: xr.DataArray
    :param prob: Credible-interval probability
    :type prob: custom_types.Float

    :returns: Mapping from statistic name to the reduced DataArray
    :rtype: dict[str, xr.DataArray]
    """
    lower, upper = interval_bounds(prob)
    sample_dims = ("chain", "draw")
    return {
        "mean": draws.mean(dim=sample_dims),
        "sd": draws.std(dim=sample_dims, ddof=1),
        "lower": draws.quantile(lower, dim=sample_dims).drop_vars("quantile"),
        "upper": draws.quantile(upper, dim=sample_dims).drop_vars("quantile"),
    }


def flatten_draws(draws: xr.DataArray) -> np.ndarray:
    """Stack the chain and draw dimensions of a scalar-per-draw array.

    :param draws: DataArray with exactly the dimensions ``chain`` and ``draw``
    :type draws: xr.DataArray

    :returns: One-dimensional array ordered chain by chain
    :rtype: np.ndarray
    """
    return draws.transpose("chain", "draw").values.reshape(-1)
