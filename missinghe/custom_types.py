# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Custom type definitions for missinghe.

This module provides type aliases used throughout the package for scalars,
hyperparameter pairs, initial values, and draw arrays.

All imports are conditional on TYPE_CHECKING to avoid circular imports while
maintaining proper type hints for development and documentation tools.
"""

from typing import Literal, TYPE_CHECKING, Union

# Everything in this file is only imported if TYPE_CHECKING is True.
if TYPE_CHECKING:

    import numpy as np
    import numpy.typing as npt

# Scalar types
Integer = Union[int, "np.integer"]
"""Type alias for integer values.

Accepts both Python's built-in int and NumPy integer types.

:type: Union[int, np.integer]
"""

Float = Union[float, int, "np.floating", "np.integer"]
"""Type alias for real values.

Accepts Python and NumPy floating-point and integer types.

:type: Union[float, int, np.floating, np.integer]
"""

# Prior types
Hyperparameters = Union[tuple[Float, Float], list[Float], Float]
"""Type alias for a prior override. A pair for normal, uniform, and logistic roles
and a single value for the Dirichlet concentration role.

:type: Union[tuple[Float, Float], list[Float], Float]
"""

# Initial values and data
StanValue = Union[int, float, "npt.NDArray"]
"""Type alias for values passed to or returned by the sampler.

:type: Union[int, float, npt.NDArray]
"""

InitDict = dict[str, StanValue]
"""Type alias for the initial values of a single chain.

:type: dict[str, StanValue]
"""

# Configuration literals
Family = Literal["selection", "pattern", "hurdle"]
"""Type alias for the model families.

:type: Literal["selection", "pattern", "hurdle"]
"""

Outcome = Literal["e", "c"]
"""Type alias for the two outcomes.

:type: Literal["e", "c"]
"""
