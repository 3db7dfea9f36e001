"""Custom exception classes for the missinghe package.

This module defines the hierarchy of exceptions raised while validating a model
configuration, binding data to a compiled model, and checking user-supplied
initial values. All custom exceptions inherit from the base MissingHEError class
to allow for unified exception handling when needed.

Configuration and binding errors also inherit from ``ValueError`` so that code
catching the built-in exception keeps working. Failures reported by the external
sampler are not wrapped; they propagate unchanged to the caller.
"""


class MissingHEError(Exception):
    """Base class for all exceptions in the missinghe package.

    :param message: Error message describing the exception
    :type message: str

    Example:
        >>> try:
        ...     mhe.selection(data=df, model_eff="e ~ 1", model_cost="c ~ 1")
        ... except MissingHEError as e:
        ...     print(f"missinghe error occurred: {e}")
    """


class ConfigurationError(MissingHEError, ValueError):
    """Raised when a model configuration is invalid.

    Configuration errors are always raised before the sampler is invoked. The
    message names the offending field (e.g., ``dist_c``, ``type``, a column name).
    """


class SupportError(ConfigurationError):
    """Raised when observed data fall outside the support of the chosen distribution.

    For example, zero-valued costs modelled with a gamma distribution, which
    requires strictly positive values.
    """


class FormulaError(ConfigurationError):
    """Raised when a model formula is malformed or references absent columns."""


class PriorError(ConfigurationError):
    """Raised when a prior override names an unknown parameter role or carries
    invalid hyperparameters."""


class BindingError(MissingHEError, ValueError):
    """Raised when user-supplied initial values do not match the compiled model.

    This covers a wrong number of per-chain structures, missing or unknown
    parameter names, and arrays with the wrong shape.
    """
