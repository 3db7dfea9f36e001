# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Immutable configuration records for a missinghe fit.

A :py:class:`ModelConfig` combines everything that determines the structure of the
compiled model: the model family, the outcome distributions, the missingness or
structural-value type, the independence flag, the parsed sub-model formulas (and
through them the random-effects structures), the pattern-mixture restriction and
sensitivity ranges, the hurdle structural values, and the output flags. It is
built and validated once per call to a fit entry point and never mutated
afterwards; every inconsistency is raised as a
:py:class:`~missinghe.exceptions.ConfigurationError` before anything else runs.
"""

from __future__ import annotations

import warnings

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, TYPE_CHECKING

import numpy as np

from missinghe.exceptions import ConfigurationError
from missinghe.model.distributions import Distribution, get_distribution
from missinghe.model.formula import Formula, RandomEffects, parse_formula

if TYPE_CHECKING:
    from missinghe import custom_types

__all__ = ["ModelConfig", "RandomEffects", "build_config", "parse_delta"]

# Valid assumption types per family
TYPES: dict[str, tuple[str, ...]] = {
    "selection": ("MAR", "MNAR_eff", "MNAR_cost", "MNAR"),
    "pattern": ("MAR", "MNAR_eff", "MNAR_cost", "MNAR"),
    "hurdle": ("SCAR", "SAR"),
}

# Name of the argument each sub-model formula is passed under
FORMULA_FIELDS: dict[str, str] = {
    "e": "model_eff",
    "c": "model_cost",
    "me": "model_me",
    "mc": "model_mc",
    "se": "model_se",
    "sc": "model_sc",
}

# Sub-models of each family, in compilation order
SUBMODELS: dict[str, tuple[str, ...]] = {
    "selection": ("e", "c", "me", "mc"),
    "pattern": ("e", "c"),
    "hurdle": ("e", "c", "se", "sc"),
}


@dataclass(frozen=True)
class ModelConfig:
    """Configuration of a single fit.

    :ivar family: The model family
    :ivar dist_e: Distribution of the effects
    :ivar dist_c: Distribution of the costs
    :ivar type: Missingness type (selection and pattern) or structural type (hurdle)
    :ivar ind: Whether effects and costs are modelled independently
    :ivar formulas: Parsed formulas keyed by sub-model (``e``, ``c``, ``me``,
        ``mc``, ``se``, ``sc``)
    :ivar restriction: Identifying restriction of pattern-mixture models, ``"CC"``
        or ``"AC"``
    :ivar Delta_e: Per-arm ``(lower, upper)`` sensitivity ranges on the link scale
        of the effects (pattern-mixture MNAR only)
    :ivar Delta_c: As ``Delta_e``, for the costs
    :ivar se: Structural value of the effects (hurdle only), or None
    :ivar sc: Structural value of the costs (hurdle only), or None
    :ivar trt: Name of the treatment-arm column
    :ivar ppc: Whether to generate posterior predictive replicates
    :ivar save_imputed: Whether to generate imputed values of missing outcomes
    """

    family: "custom_types.Family"
    dist_e: type[Distribution]
    dist_c: type[Distribution]
    type: str
    ind: bool
    formulas: Mapping[str, Formula]
    restriction: Optional[str] = None
    Delta_e: Optional[tuple[tuple[float, float], ...]] = None
    Delta_c: Optional[tuple[tuple[float, float], ...]] = None
    se: Optional[float] = None
    sc: Optional[float] = None
    trt: str = "t"
    ppc: bool = False
    save_imputed: bool = True

    def __post_init__(self):
        # Freeze the formula mapping
        object.__setattr__(self, "formulas", MappingProxyType(dict(self.formulas)))
        self._validate()

    def _validate(self) -> None:
        """Check the configuration for internal consistency."""
        # Family and type
        if self.family not in TYPES:
            raise ConfigurationError(f"Unknown model family '{self.family}'.")
        if self.type not in TYPES[self.family]:
            raise ConfigurationError(
                f"type='{self.type}' is not valid for {self.family} models. Options "
                f"are: {', '.join(TYPES[self.family])}."
            )

        # Distributions must be allowed for their outcome
        for outcome, dist in (("e", self.dist_e), ("c", self.dist_c)):
            if outcome not in dist.OUTCOMES:
                raise ConfigurationError(
                    f"dist_{outcome}='{dist.NAME}' cannot be used for this outcome."
                )

        # All sub-model formulas of the family must be present, with nothing extra
        expected = set(self.submodels)
        if missing := expected - set(self.formulas):
            raise ConfigurationError(
                "Missing formulas: "
                + ", ".join(FORMULA_FIELDS[key] for key in sorted(missing))
            )
        if extra := set(self.formulas) - expected:
            raise ConfigurationError(
                f"Formulas not used by {self.family} models: "
                + ", ".join(FORMULA_FIELDS[key] for key in sorted(extra))
            )

        # Formulas must not use the outcomes as covariates; dependence is set
        # through `ind` and `type`
        outcome_columns = {self.formulas["e"].response, self.formulas["c"].response}
        for key, formula in self.formulas.items():
            if clash := outcome_columns.intersection(formula.columns):
                raise ConfigurationError(
                    f"{FORMULA_FIELDS[key]} uses the outcome column(s) "
                    f"{', '.join(sorted(clash))} as covariates. Use `ind` and `type` "
                    "to configure the dependence on the outcomes."
                )
            if self.trt in formula.columns:
                raise ConfigurationError(
                    f"{FORMULA_FIELDS[key]} uses the treatment column '{self.trt}'; "
                    "all coefficients are already arm-specific."
                )
        if self.formulas["e"].response == self.formulas["c"].response:
            raise ConfigurationError(
                "model_eff and model_cost must have different responses."
            )

        # Family-specific checks
        if self.family == "pattern":
            self._validate_pattern()
        elif self.family == "hurdle":
            self._validate_hurdle()
        elif self.restriction is not None:
            raise ConfigurationError("`restriction` is only used by pattern models.")

    def _validate_pattern(self) -> None:
        """Checks specific to pattern-mixture models."""
        if self.restriction not in ("CC", "AC"):
            raise ConfigurationError(
                f"restriction='{self.restriction}' is not valid. Options are: CC, AC."
            )
        for outcome, mnar, delta in (
            ("e", self.mnar_e, self.Delta_e),
            ("c", self.mnar_c, self.Delta_c),
        ):
            if mnar and delta is None:
                raise ConfigurationError(
                    f"type='{self.type}' requires a sensitivity range `Delta_{outcome}`."
                )
            if mnar and np.allclose(delta, 0.0):
                warnings.warn(
                    f"Delta_{outcome} is zero; the {self.type} model is equivalent to "
                    "MAR for this outcome."
                )

    def _validate_hurdle(self) -> None:
        """Checks specific to hurdle models."""
        if self.se is None and self.sc is None:
            raise ConfigurationError(
                "Hurdle models need a structural value for at least one outcome "
                "(`se` or `sc`)."
            )
        if self.dist_e.DISCRETE:
            raise ConfigurationError(
                f"dist_e='{self.dist_e.NAME}' is discrete; hurdle models require a "
                "continuous effect distribution."
            )
        for outcome, value in (("e", self.se), ("c", self.sc)):
            if value is not None and not np.isfinite(value):
                raise ConfigurationError(f"s{outcome} must be finite, got {value}.")
        if self.type == "SCAR":
            for key in ("se", "sc"):
                if key in self.formulas and not self.formulas[key].is_intercept_only:
                    raise ConfigurationError(
                        f"type='SCAR' assumes structural values completely at random; "
                        f"{FORMULA_FIELDS[key]} must be intercept-only. Use "
                        "type='SAR' for covariate-dependent structural values."
                    )

    @property
    def submodels(self) -> tuple[str, ...]:
        """Sub-model keys present in this configuration, in compilation order."""
        keys = SUBMODELS[self.family]
        if self.family == "hurdle":
            keys = tuple(
                key
                for key in keys
                if key in ("e", "c")
                or (key == "se" and self.se is not None)
                or (key == "sc" and self.sc is not None)
            )
        return keys

    def auxiliary_key(self, outcome: "custom_types.Outcome") -> Optional[str]:
        """Key of the missingness or structural sub-model of an outcome, if any."""
        if self.family == "selection":
            return f"m{outcome}"
        elif self.family == "hurdle":
            key = f"s{outcome}"
            return key if key in self.submodels else None
        return None

    def distribution(self, outcome: "custom_types.Outcome") -> type[Distribution]:
        """Distribution of an outcome."""
        return self.dist_e if outcome == "e" else self.dist_c

    def structural_value(self, outcome: "custom_types.Outcome") -> Optional[float]:
        """Structural value of an outcome (hurdle models), or None."""
        return self.se if outcome == "e" else self.sc

    @property
    def joint(self) -> bool:
        """Whether the cost model depends on the effects."""
        return not self.ind

    @property
    def mnar_e(self) -> bool:
        """Whether effect missingness is not at random."""
        return self.type in ("MNAR_eff", "MNAR")

    @property
    def mnar_c(self) -> bool:
        """Whether cost missingness is not at random."""
        return self.type in ("MNAR_cost", "MNAR")

    @property
    def marginalise_e(self) -> bool:
        """Whether missing discrete effects are summed out of the likelihood.

        This is needed by selection models whenever a missing effect enters another
        sub-model: the cost model (joint modelling) or the effect missingness model
        (MNAR).
        """
        return (
            self.family == "selection"
            and self.dist_e.DISCRETE
            and (self.joint or self.mnar_e)
        )

    @property
    def correlated_normal(self) -> bool:
        """Whether both outcomes are normal and dependent, so that a correlation is
        reported."""
        return (
            self.joint
            and self.dist_e.NAME == "normal"
            and self.dist_c.NAME == "normal"
        )

    @property
    def effect_column(self) -> str:
        """Name of the effect column."""
        return self.formulas["e"].response

    @property
    def cost_column(self) -> str:
        """Name of the cost column."""
        return self.formulas["c"].response


def parse_delta(
    value, field: str
) -> Optional[tuple[tuple[float, float], tuple[float, float]]]:
    """Normalize a pattern-mixture sensitivity range to per-arm bounds.

    :param value: A scalar (a fixed offset for both arms), a ``(lower, upper)``
        pair (the same range for both arms), a pair of pairs (one range per arm),
        or None
    :param field: Argument name for error messages
    :type field: str

    :returns: ``((lower_1, upper_1), (lower_2, upper_2))`` or None
    :rtype: Optional[tuple[tuple[float, float], tuple[float, float]]]

    :raises ConfigurationError: If the value has the wrong shape or a lower bound
        exceeds its upper bound
    """
    if value is None:
        return None
    delta = np.asarray(value, dtype=float)
    if delta.ndim == 0:
        delta = np.full((2, 2), delta)
    elif delta.shape == (2,):
        delta = np.tile(delta, (2, 1))
    elif delta.shape != (2, 2):
        raise ConfigurationError(
            f"{field} must be a scalar, a (lower, upper) pair, or one pair per arm."
        )
    if not np.all(np.isfinite(delta)) or np.any(delta[:, 0] > delta[:, 1]):
        raise ConfigurationError(
            f"{field} must be finite with lower <= upper, got {delta.tolist()}."
        )
    return tuple((float(lower), float(upper)) for lower, upper in delta)


def build_config(
    family: "custom_types.Family",
    formulas: dict[str, str],
    dist_e: str,
    dist_c: str,
    type: str,  # pylint: disable=redefined-builtin
    ind: bool,
    **kwargs,
) -> ModelConfig:
    """Parse formulas and distribution names and build a validated configuration.

    :param family: The model family
    :type family: custom_types.Family
    :param formulas: Formula strings keyed by sub-model
    :type formulas: dict[str, str]
    :param dist_e: Name of the effect distribution
    :type dist_e: str
    :param dist_c: Name of the cost distribution
    :type dist_c: str
    :param type: Missingness or structural type
    :type type: str
    :param ind: Whether effects and costs are independent
    :type ind: bool
    :param kwargs: Remaining :py:class:`ModelConfig` fields

    :returns: The validated configuration
    :rtype: ModelConfig
    """
    parsed = {}
    for key, text in formulas.items():
        # Outcome formulas name their own response; auxiliary formulas use the key
        response = None if key in ("e", "c") else key
        parsed[key] = parse_formula(text, FORMULA_FIELDS[key], response=response)

    return ModelConfig(
        family=family,
        dist_e=get_distribution(dist_e, "e"),
        dist_c=get_distribution(dist_c, "c"),
        type=type,
        ind=ind,
        formulas=parsed,
        **kwargs,
    )
