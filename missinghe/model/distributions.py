# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Registry of the outcome distributions supported by missinghe.

Each supported distribution is described by a class carrying its canonical
metadata: the link function of its mean, the number of free parameters, the name
and default prior bounds of its auxiliary parameter, and its support. The classes
also know how to write their own Stan log-density and random-number-generator
expressions, which is all the model compilers need to emit an outcome block for
any distribution. Adding a distribution therefore only requires defining a new
subclass here; the compilers' control flow does not change.

The following distributions are currently supported:

Effects
^^^^^^^
- :py:class:`Normal` (``normal``, ``norm``)
- :py:class:`Beta` (``beta``)
- :py:class:`Gamma` (``gamma``)
- :py:class:`Exponential` (``exponential``, ``exp``)
- :py:class:`Weibull` (``weibull``, ``weib``)
- :py:class:`Logistic` (``logistic``, ``logis``)
- :py:class:`Bernoulli` (``bernoulli``, ``bern``)
- :py:class:`Poisson` (``poisson``, ``pois``)
- :py:class:`NegativeBinomial` (``negbin``, ``nbinom``)

Costs
^^^^^
- :py:class:`Normal`
- :py:class:`Gamma`
- :py:class:`LogNormal` (``lognormal``, ``lnorm``)

All distributions are parameterized by their mean, which is linked to a linear
predictor ``eta``. The mean parameterizations are: normal and logistic by location;
gamma by mean and standard deviation; beta by mean and precision
(``beta_proportion``); Weibull by mean and shape; negative binomial by mean and
overdispersion (``neg_binomial_2``). The log-normal linear predictor is the
log-scale mean, so its outcome-scale mean is ``exp(eta + sigma^2 / 2)``.
"""

from __future__ import annotations

from abc import ABC
from typing import Literal, Optional, TYPE_CHECKING

import numpy as np

from scipy import special

from missinghe.defaults import DEFAULT_SUPPORT_FLOOR, DEFAULT_SUPPORT_MULTIPLIER
from missinghe.exceptions import ConfigurationError, SupportError

if TYPE_CHECKING:
    from missinghe import custom_types

REGISTRY: dict[str, type["Distribution"]] = {}
"""Mapping from every accepted distribution name (canonical names and aliases) to
the class describing the distribution."""


class Distribution(ABC):
    """Base class for all outcome distributions.

    Subclasses are registered automatically under their canonical ``NAME`` and
    every name in ``ALIASES``.

    :cvar NAME: Canonical name of the distribution
    :type NAME: str
    :cvar ALIASES: Alternative names accepted from the user
    :type ALIASES: tuple[str, ...]
    :cvar OUTCOMES: Outcomes the distribution may be used for
    :type OUTCOMES: frozenset[str]
    :cvar LINK: Link function of the mean
    :type LINK: Literal["identity", "log", "logit"]
    :cvar N_PARAMS: Number of free parameters (mean included)
    :type N_PARAMS: int
    :cvar AUX_PARAM: Name of the auxiliary parameter, or None
    :type AUX_PARAM: Optional[str]
    :cvar AUX_BOUNDS: Default bounds of the uniform prior on the auxiliary parameter
    :type AUX_BOUNDS: tuple[float, float]
    :cvar LOWER_BOUND: Lower end of the support, or None if unbounded
    :cvar UPPER_BOUND: Upper end of the support, or None if unbounded
    :cvar LOWER_OPEN: Whether the lower end of the support is excluded
    :cvar UPPER_OPEN: Whether the upper end of the support is excluded
    :cvar DISCRETE: Whether the distribution is defined on integers
    :cvar MEAN_USES_AUX: Whether the outcome-scale mean depends on the auxiliary
        parameter as well as on the linear predictor
    """

    NAME: str = ""
    ALIASES: tuple[str, ...] = ()
    OUTCOMES: frozenset[str] = frozenset({"e"})
    LINK: Literal["identity", "log", "logit"] = "identity"
    N_PARAMS: int = 2
    AUX_PARAM: Optional[str] = None
    AUX_BOUNDS: tuple[float, float] = (0.0, 10000.0)
    LOWER_BOUND: Optional[float] = None
    UPPER_BOUND: Optional[float] = None
    LOWER_OPEN: bool = False
    UPPER_OPEN: bool = False
    DISCRETE: bool = False
    MEAN_USES_AUX: bool = False

    def __init_subclass__(cls, **kwargs):
        """Register the subclass under its name and aliases."""
        super().__init_subclass__(**kwargs)
        for name in (cls.NAME, *cls.ALIASES):
            REGISTRY[name] = cls

    def __init__(self):
        raise TypeError("Distributions are used as classes and never instantiated.")

    @classmethod
    def _mean_expr(cls, eta: str) -> str:
        """Stan expression for the mean given the linear predictor."""
        if cls.LINK == "identity":
            return eta
        elif cls.LINK == "log":
            return f"exp({eta})"
        return f"inv_logit({eta})"

    @classmethod
    def stan_lpdf(
        cls, y: str, eta: str, aux: Optional[str] = None, vectorized: bool = False
    ) -> str:
        """Write the Stan log-density (or log-mass) expression.

        :param y: Stan expression for the outcome
        :type y: str
        :param eta: Stan expression for the linear predictor on the link scale
        :type eta: str
        :param aux: Stan expression for the auxiliary parameter. Required when
            ``AUX_PARAM`` is not None.
        :type aux: Optional[str]
        :param vectorized: Whether ``eta`` and ``aux`` are vectors, in which case
            elementwise operators are used. Defaults to False.
        :type vectorized: bool

        :returns: Stan expression evaluating to a real
        :rtype: str
        """
        raise NotImplementedError

    @classmethod
    def stan_rng(cls, eta: str, aux: Optional[str] = None) -> str:
        """Write the Stan expression drawing one outcome for a scalar ``eta``."""
        raise NotImplementedError

    @classmethod
    def stan_mean(cls, eta: str, aux: Optional[str] = None) -> str:
        """Write the Stan expression of the outcome-scale mean.

        Works for scalar and vector arguments alike.
        """
        return cls._mean_expr(eta)

    @classmethod
    def inverse_link(cls, eta, aux=None):
        """Back-transform link-scale draws to outcome-scale means.

        Works on NumPy arrays and xarray objects alike; the draw index of ``eta``
        and ``aux`` must already be aligned.

        :param eta: Link-scale linear predictor draws
        :param aux: Auxiliary parameter draws (only used by the log-normal)

        :returns: Outcome-scale mean draws
        """
        if cls.LINK == "identity":
            return eta
        elif cls.LINK == "log":
            return np.exp(eta)
        return special.expit(eta)

    @classmethod
    def stan_bounds(cls) -> str:
        """Get the Stan declaration bounds matching the support, e.g. ``<lower=0>``."""
        bounds = []
        if cls.LOWER_BOUND is not None:
            bounds.append(f"lower={cls.LOWER_BOUND:g}")
        if cls.UPPER_BOUND is not None:
            bounds.append(f"upper={cls.UPPER_BOUND:g}")
        return f"<{', '.join(bounds)}>" if bounds else ""

    @classmethod
    def in_support(cls, values: np.ndarray) -> np.ndarray:
        """Elementwise check that values lie in the support of the distribution.

        :param values: Values to check. Must not contain missing entries.
        :type values: np.ndarray

        :returns: Boolean array, True where the value is in the support
        :rtype: np.ndarray
        """
        values = np.asarray(values, dtype=float)
        ok = np.isfinite(values)
        if cls.LOWER_BOUND is not None:
            ok &= (
                values > cls.LOWER_BOUND
                if cls.LOWER_OPEN
                else values >= cls.LOWER_BOUND
            )
        if cls.UPPER_BOUND is not None:
            ok &= (
                values < cls.UPPER_BOUND
                if cls.UPPER_OPEN
                else values <= cls.UPPER_BOUND
            )
        if cls.DISCRETE:
            ok &= np.equal(np.mod(values, 1), 0)
        return ok

    @classmethod
    def check_support(cls, values: np.ndarray, field: str) -> None:
        """Fail fast when observed values fall outside the support.

        :param values: Observed (non-missing) values
        :type values: np.ndarray
        :param field: Name of the configuration field the distribution came from
            (e.g., ``dist_c``); used in the error message
        :type field: str

        :raises SupportError: If any value lies outside the support
        """
        ok = cls.in_support(values)
        if not ok.all():
            bad = np.asarray(values, dtype=float)[~ok]
            raise SupportError(
                f"{field}='{cls.NAME}' requires values in {cls.support_str()}, but "
                f"{bad.size} observed value(s) fall outside it (e.g., {bad[0]:g})."
            )

    @classmethod
    def support_str(cls) -> str:
        """Human readable description of the support."""
        left = "(" if cls.LOWER_OPEN or cls.LOWER_BOUND is None else "["
        right = ")" if cls.UPPER_OPEN or cls.UPPER_BOUND is None else "]"
        lower = "-inf" if cls.LOWER_BOUND is None else f"{cls.LOWER_BOUND:g}"
        upper = "inf" if cls.UPPER_BOUND is None else f"{cls.UPPER_BOUND:g}"
        kind = "integers in " if cls.DISCRETE else ""
        return f"{kind}{left}{lower}, {upper}{right}"

    @classmethod
    def support_grid_size(cls, observed: np.ndarray) -> int:
        """Number of support points used when marginalising a missing discrete value.

        :param observed: Observed values of the outcome
        :type observed: np.ndarray

        :returns: Size of the grid ``0 .. size - 1``
        :rtype: int

        :raises TypeError: If the distribution is continuous
        """
        if not cls.DISCRETE:
            raise TypeError(f"{cls.NAME} is continuous and has no support grid.")
        if cls.UPPER_BOUND is not None:
            return int(cls.UPPER_BOUND) + 1
        largest = int(np.max(observed)) if len(observed) > 0 else 0
        return max(DEFAULT_SUPPORT_MULTIPLIER * largest, DEFAULT_SUPPORT_FLOOR) + 1

    @classmethod
    def has_aux(cls) -> bool:
        """Whether the distribution has an auxiliary parameter."""
        return cls.AUX_PARAM is not None


def _div(vectorized: bool) -> str:
    """Division operator for scalar or elementwise expressions."""
    return " ./ " if vectorized else " / "


class Normal(Distribution):
    """Normal outcome with identity link; auxiliary parameter is the standard
    deviation ``sigma``."""

    NAME = "normal"
    ALIASES = ("norm",)
    OUTCOMES = frozenset({"e", "c"})
    AUX_PARAM = "sigma"

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"normal_lpdf({y} | {eta}, {aux})"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"normal_rng({eta}, {aux})"


class Logistic(Distribution):
    """Logistic outcome with identity link; auxiliary parameter is the scale."""

    NAME = "logistic"
    ALIASES = ("logis",)
    AUX_PARAM = "sigma"

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"logistic_lpdf({y} | {eta}, {aux})"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"logistic_rng({eta}, {aux})"


class Beta(Distribution):
    """Beta outcome with logit link, parameterized by mean and precision ``phi``."""

    NAME = "beta"
    LINK = "logit"
    AUX_PARAM = "phi"
    AUX_BOUNDS = (0.0, 1000.0)
    LOWER_BOUND = 0.0
    UPPER_BOUND = 1.0
    LOWER_OPEN = True
    UPPER_OPEN = True

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"beta_proportion_lpdf({y} | inv_logit({eta}), {aux})"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"beta_proportion_rng(inv_logit({eta}), {aux})"


class Gamma(Distribution):
    """Gamma outcome with log link, parameterized by mean and standard deviation
    ``sigma`` (shape ``(mu / sigma)^2``, rate ``mu / sigma^2``)."""

    NAME = "gamma"
    OUTCOMES = frozenset({"e", "c"})
    LINK = "log"
    AUX_PARAM = "sigma"
    LOWER_BOUND = 0.0
    LOWER_OPEN = True

    @classmethod
    def _shape_rate(cls, eta: str, aux: str, vectorized: bool) -> str:
        div = _div(vectorized)
        return f"square(exp({eta}){div}{aux}), exp({eta}){div}square({aux})"

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"gamma_lpdf({y} | {cls._shape_rate(eta, aux, vectorized)})"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"gamma_rng({cls._shape_rate(eta, aux, False)})"


class Exponential(Distribution):
    """Exponential outcome with log link; the rate is ``exp(-eta)``."""

    NAME = "exponential"
    ALIASES = ("exp",)
    LINK = "log"
    N_PARAMS = 1
    LOWER_BOUND = 0.0

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"exponential_lpdf({y} | exp(-({eta})))"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"exponential_rng(exp(-({eta})))"


class Weibull(Distribution):
    """Weibull outcome with log link, parameterized by mean and ``shape``."""

    NAME = "weibull"
    ALIASES = ("weib",)
    LINK = "log"
    AUX_PARAM = "shape"
    AUX_BOUNDS = (0.0, 100.0)
    LOWER_BOUND = 0.0
    LOWER_OPEN = True

    @classmethod
    def _scale(cls, eta: str, aux: str, vectorized: bool) -> str:
        return f"exp({eta}){_div(vectorized)}tgamma(1 + inv({aux}))"

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"weibull_lpdf({y} | {aux}, {cls._scale(eta, aux, vectorized)})"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"weibull_rng({aux}, {cls._scale(eta, aux, False)})"


class LogNormal(Distribution):
    """Log-normal cost; the linear predictor is the log-scale mean and ``sigma`` the
    log-scale standard deviation."""

    NAME = "lognormal"
    ALIASES = ("lnorm",)
    OUTCOMES = frozenset({"c"})
    LINK = "log"
    AUX_PARAM = "sigma"
    AUX_BOUNDS = (0.0, 100.0)
    LOWER_BOUND = 0.0
    LOWER_OPEN = True
    MEAN_USES_AUX = True

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"lognormal_lpdf({y} | {eta}, {aux})"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"lognormal_rng({eta}, {aux})"

    @classmethod
    def stan_mean(cls, eta, aux=None):
        return f"exp({eta} + square({aux}) / 2)"

    @classmethod
    def inverse_link(cls, eta, aux=None):
        if aux is None:
            raise ValueError("The log-normal mean requires draws of `sigma`.")
        return np.exp(eta + aux**2 / 2)


class Bernoulli(Distribution):
    """Bernoulli effect with logit link."""

    NAME = "bernoulli"
    ALIASES = ("bern",)
    LINK = "logit"
    N_PARAMS = 1
    LOWER_BOUND = 0.0
    UPPER_BOUND = 1.0
    DISCRETE = True

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"bernoulli_logit_lpmf({y} | {eta})"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"bernoulli_logit_rng({eta})"


class Poisson(Distribution):
    """Poisson effect with log link."""

    NAME = "poisson"
    ALIASES = ("pois",)
    LINK = "log"
    N_PARAMS = 1
    LOWER_BOUND = 0.0
    DISCRETE = True

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"poisson_log_lpmf({y} | {eta})"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"poisson_log_rng({eta})"


class NegativeBinomial(Distribution):
    """Negative binomial effect with log link and overdispersion ``phi``."""

    NAME = "negbin"
    ALIASES = ("nbinom",)
    LINK = "log"
    AUX_PARAM = "phi"
    AUX_BOUNDS = (0.0, 1000.0)
    LOWER_BOUND = 0.0
    DISCRETE = True

    @classmethod
    def stan_lpdf(cls, y, eta, aux=None, vectorized=False):
        return f"neg_binomial_2_log_lpmf({y} | {eta}, {aux})"

    @classmethod
    def stan_rng(cls, eta, aux=None):
        return f"neg_binomial_2_log_rng({eta}, {aux})"


def get_distribution(
    name: str, outcome: "custom_types.Outcome", field: Optional[str] = None
) -> type[Distribution]:
    """Look up a distribution by name and check it can model the given outcome.

    :param name: Distribution name or alias (case insensitive)
    :type name: str
    :param outcome: ``"e"`` for effects or ``"c"`` for costs
    :type outcome: custom_types.Outcome
    :param field: Configuration field name used in error messages. Defaults to
        ``dist_<outcome>``.
    :type field: Optional[str]

    :returns: The distribution class
    :rtype: type[Distribution]

    :raises ConfigurationError: If the name is unknown or the distribution cannot
        be used for the outcome

    Example:
        >>> get_distribution("lnorm", "c")
        <class 'missinghe.model.distributions.LogNormal'>
    """
    field = field or f"dist_{outcome}"
    key = name.lower() if isinstance(name, str) else name
    if key not in REGISTRY:
        raise ConfigurationError(
            f"Unsupported distribution {field}='{name}'. Options are: "
            f"{', '.join(supported_names(outcome))}."
        )
    dist = REGISTRY[key]
    if outcome not in dist.OUTCOMES:
        raise ConfigurationError(
            f"{field}='{name}' cannot be used for the "
            f"{'effect' if outcome == 'e' else 'cost'} outcome. Options are: "
            f"{', '.join(supported_names(outcome))}."
        )
    return dist


def supported_names(outcome: "custom_types.Outcome") -> list[str]:
    """Canonical names of the distributions available for an outcome."""
    return sorted({dist.NAME for dist in REGISTRY.values() if outcome in dist.OUTCOMES})
