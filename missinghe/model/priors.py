# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Prior specification for the missinghe model families.

Every parameter of a compiled model that carries a user-adjustable prior is
described by a :py:class:`PriorRole`. A role knows its prior family, its default
hyperparameters, the model families it exists in, and the Stan data name its
hyperparameters are passed under. The available roles are enumerated in
:py:data:`ROLES`.

Hyperparameters are always given as a pair whose meaning depends on the family of
the role:

    - ``normal``: ``(mean, precision)``. Converted to ``(mean, sd)`` for Stan.
    - ``uniform``: ``(lower, upper)``.
    - ``logistic``: ``(location, scale)``.
    - ``dirichlet``: a single positive concentration shared by all patterns.

User overrides are merged over the defaults entry by entry: a role that is not
overridden keeps its default. Unknown role names raise a
:py:class:`~missinghe.exceptions.PriorError`. Roles that exist for the model family
but play no part in the configured model (e.g., ``beta_f.prior`` when ``ind=True``)
are ignored with a warning.

The defaults are weakly informative: normal priors are centred on zero with large
variances, except for the missingness dependence parameters ``delta`` which are
standard normal, and the missingness intercepts follow a standard logistic prior,
which is uniform on the probability scale.
"""

from __future__ import annotations

import warnings

from dataclasses import dataclass
from typing import Literal, Optional, TYPE_CHECKING

import numpy as np

from missinghe import utils
from missinghe.defaults import DEFAULT_PATTERN_CONCENTRATION
from missinghe.exceptions import PriorError

if TYPE_CHECKING:
    from missinghe import custom_types
    from missinghe.model.config import ModelConfig


@dataclass(frozen=True)
class PriorRole:
    """A parameter role with a user-adjustable prior.

    :ivar name: Name of the role as used in the ``prior`` argument
    :ivar family: Prior family, which defines the meaning of the hyperparameters
    :ivar default: Default hyperparameters. None for roles whose defaults depend on
        the configuration (the auxiliary-parameter bounds).
    :ivar families: Model families in which the role exists
    :ivar positive: Whether the parameter is positive, which requires a
        non-negative lower bound for uniform priors
    """

    name: str
    family: Literal["normal", "uniform", "logistic", "dirichlet"]
    default: Optional[tuple[float, ...]]
    families: frozenset[str] = frozenset({"selection", "pattern", "hurdle"})
    positive: bool = False

    @property
    def data_name(self) -> str:
        """Display name of the data entry carrying the hyperparameters.

        Example:
            >>> ROLES["gamma0.prior.e"].data_name
            'prior.gamma0.e'
        """
        parts = [part for part in self.name.split(".") if part != "prior"]
        return ".".join(["prior", *parts])

    @property
    def stan_name(self) -> str:
        """Stan identifier of the data entry carrying the hyperparameters."""
        return utils.to_stan_name(self.data_name)

    def to_stan(self, value: "custom_types.Hyperparameters") -> np.ndarray:
        """Validate hyperparameters and convert them to the form passed to Stan.

        :param value: Hyperparameters in the role's user-facing form
        :type value: custom_types.Hyperparameters

        :returns: Hyperparameters as passed to Stan. Normal priors are converted
            from precision to standard deviation.
        :rtype: np.ndarray

        :raises PriorError: If the hyperparameters are malformed
        """
        # The Dirichlet concentration is a scalar
        if self.family == "dirichlet":
            concentration = np.asarray(value, dtype=float)
            if concentration.ndim != 0 or not concentration > 0:
                raise PriorError(
                    f"'{self.name}' must be a single positive concentration, got "
                    f"{value!r}."
                )
            return concentration

        # Everything else is a pair
        pair = np.asarray(value, dtype=float)
        if pair.shape != (2,) or not np.all(np.isfinite(pair)):
            raise PriorError(
                f"'{self.name}' must be a pair of finite numbers, got {value!r}."
            )
        first, second = pair
        if self.family == "normal":
            if second <= 0:
                raise PriorError(
                    f"The precision of '{self.name}' must be positive, got {second}."
                )
            return np.array([first, 1 / np.sqrt(second)])
        elif self.family == "logistic":
            if second <= 0:
                raise PriorError(
                    f"The scale of '{self.name}' must be positive, got {second}."
                )
        elif self.family == "uniform":
            if not first < second:
                raise PriorError(
                    f"The bounds of '{self.name}' must satisfy lower < upper, got "
                    f"({first}, {second})."
                )
            if self.positive and first < 0:
                raise PriorError(
                    f"'{self.name}' is a positive parameter; its lower bound must be "
                    f"non-negative, got {first}."
                )
        return pair


_SELECTION_HURDLE = frozenset({"selection", "hurdle"})

ROLES: dict[str, PriorRole] = {
    role.name: role
    for role in (
        # Outcome regressions
        PriorRole("alpha0.prior", "normal", (0.0, 1e-8)),
        PriorRole("alpha.prior", "normal", (0.0, 1e-6)),
        PriorRole("beta0.prior", "normal", (0.0, 1e-8)),
        PriorRole("beta.prior", "normal", (0.0, 1e-6)),
        PriorRole("beta_f.prior", "normal", (0.0, 1e-6)),
        # Auxiliary parameters of the outcome distributions. Defaults come from the
        # distribution registry.
        PriorRole("sigma.prior.e", "uniform", None, positive=True),
        PriorRole("sigma.prior.c", "uniform", None, positive=True),
        # Outcome random effects
        PriorRole("mu.a.prior", "normal", (0.0, 1e-6)),
        PriorRole("s.a.prior", "uniform", (0.0, 100.0), positive=True),
        PriorRole("mu.b.prior", "normal", (0.0, 1e-6)),
        PriorRole("s.b.prior", "uniform", (0.0, 100.0), positive=True),
        # Missingness and structural-value models
        PriorRole("gamma0.prior.e", "logistic", (0.0, 1.0), _SELECTION_HURDLE),
        PriorRole("gamma0.prior.c", "logistic", (0.0, 1.0), _SELECTION_HURDLE),
        PriorRole("gamma.prior.e", "normal", (0.0, 0.01), _SELECTION_HURDLE),
        PriorRole("gamma.prior.c", "normal", (0.0, 0.01), _SELECTION_HURDLE),
        PriorRole("mu.g.prior.e", "normal", (0.0, 0.01), _SELECTION_HURDLE),
        PriorRole("mu.g.prior.c", "normal", (0.0, 0.01), _SELECTION_HURDLE),
        PriorRole(
            "s.g.prior.e", "uniform", (0.0, 100.0), _SELECTION_HURDLE, positive=True
        ),
        PriorRole(
            "s.g.prior.c", "uniform", (0.0, 100.0), _SELECTION_HURDLE, positive=True
        ),
        # MNAR dependence parameters of the selection model
        PriorRole("delta.prior.e", "normal", (0.0, 1.0), frozenset({"selection"})),
        PriorRole("delta.prior.c", "normal", (0.0, 1.0), frozenset({"selection"})),
        # Pattern membership probabilities
        PriorRole(
            "pattern.prior",
            "dirichlet",
            (DEFAULT_PATTERN_CONCENTRATION,),
            frozenset({"pattern"}),
        ),
    )
}
"""All prior roles, keyed by name."""


def active_roles(config: "ModelConfig") -> list[str]:
    """List the prior roles used by a configuration.

    :param config: The model configuration
    :type config: ModelConfig

    :returns: Names of the roles the compiled model declares, in a stable order
    :rtype: list[str]
    """
    active = []

    def add_regression(key: str, intercept_role: str, slope_role: str) -> None:
        """Add the roles of a fixed-effects regression."""
        formula = config.formulas[key]
        if formula.fixed_intercept:
            active.append(intercept_role)
        if len(formula.fixed_terms) > 0:
            active.append(slope_role)

    def add_random(key: str, mu_role: str, s_role: str) -> None:
        """Add the roles of a random-effects block."""
        if config.formulas[key].random is not None:
            active.extend((mu_role, s_role))

    # Outcome regressions
    add_regression("e", "alpha0.prior", "alpha.prior")
    add_regression("c", "beta0.prior", "beta.prior")
    if not config.ind:
        active.append("beta_f.prior")
    if config.dist_e.has_aux():
        active.append("sigma.prior.e")
    if config.dist_c.has_aux():
        active.append("sigma.prior.c")
    add_random("e", "mu.a.prior", "s.a.prior")
    add_random("c", "mu.b.prior", "s.b.prior")

    # Missingness or structural-value regressions
    for outcome in ("e", "c"):
        key = config.auxiliary_key(outcome)
        if key is None or key not in config.formulas:
            continue
        add_regression(key, f"gamma0.prior.{outcome}", f"gamma.prior.{outcome}")
        add_random(key, f"mu.g.prior.{outcome}", f"s.g.prior.{outcome}")

    # Family-specific roles
    if config.family == "selection":
        if config.mnar_e:
            active.append("delta.prior.e")
        if config.mnar_c:
            active.append("delta.prior.c")
    elif config.family == "pattern":
        active.append("pattern.prior")

    return active


def resolve_priors(
    config: "ModelConfig",
    prior: Optional[dict[str, "custom_types.Hyperparameters"]] = None,
) -> dict[str, np.ndarray]:
    """Merge user overrides over the default priors of a configuration.

    :param config: The model configuration
    :type config: ModelConfig
    :param prior: Mapping from role name to hyperparameters. Defaults to None (all
        defaults).
    :type prior: Optional[dict[str, custom_types.Hyperparameters]]

    :returns: Mapping from display data name (e.g., ``prior.alpha0``) to the
        hyperparameters passed to Stan, for every active role
    :rtype: dict[str, np.ndarray]

    :raises PriorError: If a role name is unknown, belongs to another model family,
        or carries invalid hyperparameters
    """
    prior = prior or {}

    # Unknown names fail loudly
    for name in prior:
        if name not in ROLES:
            raise PriorError(
                f"Unknown prior role '{name}'. Valid roles are: "
                f"{', '.join(sorted(ROLES))}."
            )
        if config.family not in ROLES[name].families:
            raise PriorError(
                f"Prior role '{name}' does not exist for {config.family} models."
            )

    # Known but unused names are reported and ignored
    active = active_roles(config)
    if unused := sorted(set(prior) - set(active)):
        warnings.warn(
            f"The following prior roles are not used by this model and are ignored: "
            f"{', '.join(unused)}."
        )

    # Merge
    resolved = {}
    for name in active:
        role = ROLES[name]
        if name in prior:
            value = prior[name]
        elif role.default is None:
            value = config.distribution(name[-1]).AUX_BOUNDS
        elif role.family == "dirichlet":
            value = role.default[0]
        else:
            value = role.default
        resolved[role.data_name] = role.to_stan(value)

    return resolved
