# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Binding of a trial dataset to the inputs of a compiled model.

This module turns the user's table and the parsed formulas of a
:py:class:`~missinghe.model.config.ModelConfig` into:

    1. One design matrix per sub-model, with factor covariates expanded to dummy
       indicators (the first level in the data's natural ordering is the reference
       and is dropped), plus the per-arm covariate means used to evaluate mean
       effects and costs.
    2. Numeric arrays for the outcomes and the missingness, pattern, or
       structural indicators. Missing continuous outcomes are encoded as NaN and
       missing discrete outcomes as ``-1``; in both cases the index arrays passed
       alongside tell the model which entries are unknown quantities to be
       inferred rather than conditioned on.
    3. One initial-value structure per chain, either drawn from a safe,
       support-respecting range for every parameter of the compiled model or
       validated when supplied by the user.

All inputs are checked before anything is handed to the sampler. Invalid data
raise a :py:class:`~missinghe.exceptions.ConfigurationError` naming the offending
column, and invalid user initial values raise a
:py:class:`~missinghe.exceptions.BindingError`.
"""

from __future__ import annotations

import re

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, TYPE_CHECKING

import numpy as np
import numpy.typing as npt
import pandas as pd

from scipy import special

from missinghe import utils
from missinghe.exceptions import BindingError, ConfigurationError, FormulaError
from missinghe.model.config import FORMULA_FIELDS

if TYPE_CHECKING:
    from missinghe import custom_types
    from missinghe.model.config import ModelConfig
    from missinghe.model.stan.program import CompiledModel, StanVariable

# Missingness patterns in canonical order: (effect missing, cost missing)
PATTERNS: dict[tuple[int, int], str] = {
    (0, 0): "complete",
    (1, 0): "e_missing",
    (0, 1): "c_missing",
    (1, 1): "both_missing",
}

# Bounds of the form `name[index]` refer to an entry of a data vector
_INDEXED_BOUND_RE = re.compile(r"^([A-Za-z_]\w*)\[(\d+)\]$")


@dataclass(frozen=True)
class RandomDesign:
    """Random-effects part of a sub-model design.

    :ivar group: Name of the clustering column
    :ivar intercept: Whether the block has a random intercept
    :ivar columns: Names of the columns of ``W`` (``(Intercept)`` first if present)
    :ivar levels: Levels of the clustering variable, in cluster-index order
    :ivar W: Random-effects design matrix, one row per individual
    :ivar mean_W: Per-arm means of ``W``, shape ``(2, Q)``
    :ivar clusters: One-based cluster index of each individual
    """

    group: str
    intercept: bool
    columns: tuple[str, ...]
    levels: tuple
    W: npt.NDArray
    mean_W: npt.NDArray
    clusters: npt.NDArray

    @property
    def n_terms(self) -> int:
        """Number of random coefficients per cluster."""
        return len(self.columns)


@dataclass(frozen=True)
class Design:
    """Design of one sub-model.

    Only the structural flags (``has_intercept``, ``n_fixed``, and the random-effects
    ``intercept`` and ``n_terms``) affect the text of the compiled model; the
    matrices themselves are data.

    :ivar key: Sub-model key (``e``, ``c``, ``me``, ``mc``, ``se``, ``sc``)
    :ivar columns: Names of the fixed-effect columns of ``X``
    :ivar has_intercept: Whether ``X`` starts with an intercept column
    :ivar X: Fixed-effects design matrix
    :ivar mean_X: Per-arm means of ``X``, shape ``(2, K)``
    :ivar random: Random-effects design, or None
    """

    key: str
    columns: tuple[str, ...]
    has_intercept: bool
    X: npt.NDArray
    mean_X: npt.NDArray
    random: Optional[RandomDesign] = None

    @property
    def n_fixed(self) -> int:
        """Number of fixed coefficients per arm."""
        return len(self.columns)


@dataclass(frozen=True)
class BoundData:
    """Everything a compiled model needs from the dataset.

    :ivar data: Named numeric inputs, keyed by display name (``idx.mis.e``)
    :ivar designs: Sub-model designs keyed by sub-model
    :ivar coords: Coordinates of the named dimensions of the model outputs
    :ivar arm_labels: Original values of the treatment column, in arm order
    :ivar index: Index of the dataset rows
    :ivar patterns: Realised missingness patterns (pattern-mixture models only)
    :ivar pattern_sets: Zero-based parameter set used by each realised pattern,
        keyed by outcome (pattern-mixture models only)
    """

    data: dict[str, Any]
    designs: Mapping[str, Design]
    coords: dict[str, list]
    arm_labels: tuple
    index: pd.Index
    patterns: tuple[str, ...] = ()
    pattern_sets: dict[str, npt.NDArray] = field(default_factory=dict)

    @property
    def stan_data(self) -> dict[str, Any]:
        """The data keyed by Stan identifiers."""
        return {utils.to_stan_name(name): value for name, value in self.data.items()}


def _check_columns(data: pd.DataFrame, columns, field_name: str) -> None:
    """Fail if any column is absent from the dataset."""
    if missing := [column for column in columns if column not in data.columns]:
        raise FormulaError(
            f"{field_name} references column(s) absent from the data: "
            f"{', '.join(missing)}."
        )


def _expand_term(data: pd.DataFrame, term: str) -> tuple[list[str], npt.NDArray]:
    """Expand one covariate into design columns.

    Numeric columns are used as they are. Anything else is treated as a factor and
    expanded to dummy indicators of every level but the first.
    """
    column = data[term]
    if column.isna().any():
        raise ConfigurationError(
            f"Covariate '{term}' has missing values; covariate missingness is not "
            "supported."
        )

    # Numeric covariates
    if pd.api.types.is_numeric_dtype(column) and not pd.api.types.is_bool_dtype(
        column
    ):
        return [term], column.to_numpy(dtype=float)[:, None]

    # Factors. The first level is the reference.
    categorical = pd.Categorical(column)
    levels = list(categorical.categories)
    if len(levels) < 2:
        return [], np.empty((len(column), 0))
    names = [f"{term}{level}" for level in levels[1:]]
    dummies = np.stack(
        [np.asarray(categorical == level, dtype=float) for level in levels[1:]],
        axis=1,
    )
    return names, dummies


def _design_matrix(
    data: pd.DataFrame, terms: tuple[str, ...], intercept: bool
) -> tuple[list[str], npt.NDArray]:
    """Build a design matrix from an intercept flag and a list of covariates."""
    names = ["(Intercept)"] if intercept else []
    blocks = [np.ones((len(data), 1))] if intercept else []
    for term in terms:
        term_names, block = _expand_term(data, term)
        names.extend(term_names)
        blocks.append(block)
    matrix = np.concatenate(blocks, axis=1) if blocks else np.empty((len(data), 0))
    return names, matrix


def _arm_means(matrix: npt.NDArray, arm: npt.NDArray) -> npt.NDArray:
    """Per-arm column means of a design matrix, shape ``(2, n_columns)``."""
    return np.stack([matrix[arm == t].mean(axis=0) for t in (1, 2)])


def build_design(
    key: str, config: "ModelConfig", data: pd.DataFrame, arm: npt.NDArray
) -> Design:
    """Build the design of one sub-model.

    :param key: Sub-model key
    :type key: str
    :param config: The model configuration
    :type config: ModelConfig
    :param data: The dataset
    :type data: pd.DataFrame
    :param arm: One-based arm of each individual
    :type arm: npt.NDArray

    :returns: The design of the sub-model
    :rtype: Design

    :raises FormulaError: If the formula references absent columns
    :raises ConfigurationError: If a covariate has missing values
    """
    formula = config.formulas[key]
    field_name = FORMULA_FIELDS[key]
    _check_columns(data, formula.columns, field_name)

    # Fixed part
    columns, X = _design_matrix(data, formula.fixed_terms, formula.fixed_intercept)

    # Random part
    random = None
    if (block := formula.random) is not None:
        if data[block.group].isna().any():
            raise ConfigurationError(
                f"Clustering variable '{block.group}' of {field_name} has missing "
                "values."
            )
        groups = pd.Categorical(data[block.group])
        random_columns, W = _design_matrix(data, block.slopes, block.intercept)
        random = RandomDesign(
            group=block.group,
            intercept=block.intercept,
            columns=tuple(random_columns),
            levels=tuple(groups.categories),
            W=W,
            mean_W=_arm_means(W, arm),
            clusters=groups.codes.astype(int) + 1,
        )

    return Design(
        key=key,
        columns=tuple(columns),
        has_intercept=formula.fixed_intercept,
        X=X,
        mean_X=_arm_means(X, arm),
        random=random,
    )


def encode_arms(data: pd.DataFrame, trt: str) -> tuple[npt.NDArray, tuple]:
    """Map the treatment column onto arms 1 and 2.

    The sorted distinct values of the column become arms 1 and 2, in that order.

    :raises ConfigurationError: If the column is absent, has missing values, or
        does not have exactly two distinct values
    """
    if trt not in data.columns:
        raise ConfigurationError(f"Treatment column '{trt}' is absent from the data.")
    values = data[trt]
    if values.isna().any():
        raise ConfigurationError(f"Treatment column '{trt}' has missing values.")
    labels = tuple(sorted(pd.unique(values)))
    if len(labels) != 2:
        raise ConfigurationError(
            f"Treatment column '{trt}' must have exactly two distinct values, found "
            f"{len(labels)}: {list(labels)}."
        )
    arm = np.where(values.to_numpy() == labels[0], 1, 2)
    return arm, labels


def _outcome_values(data: pd.DataFrame, column: str, field_name: str) -> npt.NDArray:
    """Read an outcome column as floats with NaN for missing entries."""
    if column not in data.columns:
        raise ConfigurationError(
            f"Outcome column '{column}' ({field_name}) is absent from the data."
        )
    try:
        values = pd.to_numeric(data[column]).to_numpy(dtype=float)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(
            f"Outcome column '{column}' ({field_name}) must be numeric."
        ) from err
    if np.all(np.isnan(values)):
        raise ConfigurationError(f"Outcome column '{column}' has no observed values.")
    return values


def _indices(mask: npt.NDArray) -> npt.NDArray:
    """One-based positions where a mask is True."""
    return np.flatnonzero(mask).astype(int) + 1


def _outcome_data(
    outcome: str, values: npt.NDArray, discrete: bool
) -> dict[str, Any]:
    """Data entries shared by all families for one outcome."""
    missing = np.isnan(values)
    encoded = (
        np.where(missing, -1, np.nan_to_num(values)).astype(int) if discrete else values
    )
    return {
        outcome: encoded,
        f"m.{outcome}": missing.astype(int),
        f"N.mis.{outcome}": int(missing.sum()),
        f"idx.mis.{outcome}": _indices(missing),
        f"N.obs.{outcome}": int((~missing).sum()),
        f"idx.obs.{outcome}": _indices(~missing),
    }


def _design_data(design: Design) -> dict[str, Any]:
    """Data entries of a sub-model design."""
    key = design.key
    entries = {
        f"K.{key}": design.n_fixed,
        f"X.{key}": design.X,
        f"mean_X.{key}": design.mean_X,
    }
    if (random := design.random) is not None:
        entries.update(
            {
                f"J.{key}": len(random.levels),
                f"Q.{key}": random.n_terms,
                f"clus.{key}": random.clusters,
                f"W.{key}": random.W,
                f"mean_W.{key}": random.mean_W,
            }
        )
    return entries


def _design_coords(design: Design) -> dict[str, list]:
    """Coordinates of the dimensions introduced by a sub-model design."""
    coords = {f"coef.{design.key}": list(design.columns)}
    if (random := design.random) is not None:
        coords[f"re.{design.key}"] = list(random.columns)
        coords[f"cluster.{design.key}"] = list(random.levels)
    return coords


def _pattern_data(
    config: "ModelConfig", missing_e: npt.NDArray, missing_c: npt.NDArray, arm
) -> tuple[
    dict[str, Any], tuple[str, ...], dict[str, npt.NDArray], dict[str, list[str]]
]:
    """Patterns, pattern counts, and the parameter sets of each pattern."""
    # Realised patterns, in canonical order
    combos = list(zip(missing_e.astype(int), missing_c.astype(int)))
    realised = [combo for combo in PATTERNS if combo in set(combos)]
    position = {combo: i + 1 for i, combo in enumerate(realised)}
    pat = np.array([position[combo] for combo in combos], dtype=int)
    n_pat = np.stack(
        [np.bincount(pat[arm == t], minlength=len(realised) + 1)[1:] for t in (1, 2)]
    )

    entries = {"pat": pat, "P": len(realised), "n.pat": n_pat.astype(int)}
    sets = {}
    set_coords = {}
    for outcome, axis in (("e", 0), ("c", 1)):
        # Patterns where the outcome is observed have their own parameters
        identified = [combo for combo in realised if combo[axis] == 0]
        own = {combo: i for i, combo in enumerate(identified)}

        # The other available-case pattern observes this outcome but not the other
        available = tuple(1 if i != axis else 0 for i in range(2))
        complete = (0, 0)
        if config.restriction == "CC":
            donor = complete if complete in own else None
        else:
            donor = available if available in own else (
                complete if complete in own else None
            )

        set_index, unidentified = [], []
        for combo in realised:
            if combo in own:
                set_index.append(own[combo])
                unidentified.append(0)
                continue
            if donor is None:
                raise ConfigurationError(
                    f"restriction='{config.restriction}' needs a "
                    f"{'complete-case' if config.restriction == 'CC' else 'available-case'}"
                    f" pattern to identify the {outcome} parameters of pattern "
                    f"'{PATTERNS[combo]}', but none is present in the data."
                )
            set_index.append(own[donor])
            unidentified.append(1)

        sets[outcome] = np.array(set_index, dtype=int)
        set_coords[outcome] = [PATTERNS[combo] for combo in identified]
        entries.update(
            {
                f"S.{outcome}": len(identified),
                f"set.{outcome}": sets[outcome] + 1,
                f"unid.{outcome}": np.array(unidentified, dtype=int),
            }
        )

    return entries, tuple(PATTERNS[combo] for combo in realised), sets, set_coords


def _structural_indicator(
    outcome: str,
    values: npt.NDArray,
    value: float,
    override: Optional[pd.Series],
) -> npt.NDArray:
    """Structural indicator of an outcome: 1 structural, 0 not, -1 unknown."""
    missing = np.isnan(values)
    indicator = np.where(missing, -1, np.isclose(values, value).astype(int))
    if override is not None:
        given = pd.to_numeric(override, errors="coerce").to_numpy(dtype=float)
        given_missing = given[missing]
        known = ~np.isnan(given_missing)
        if not np.all(np.isin(given_missing[known], (0, 1))):
            raise ConfigurationError(
                f"d_{outcome} must contain 0, 1, or missing values for the individuals "
                f"with missing {outcome}."
            )
        filled = np.where(known, given_missing, -1).astype(int)
        indicator[missing] = filled
    return indicator.astype(int)


def _hurdle_data(
    config: "ModelConfig",
    values: dict[str, npt.NDArray],
    overrides: dict[str, Optional[pd.Series]],
) -> dict[str, Any]:
    """Structural indicators and the index sets of a hurdle model."""
    entries = {}
    indicators = {}
    n = len(values["e"])
    for outcome in ("e", "c"):
        missing = np.isnan(values[outcome])
        structural = config.structural_value(outcome)
        if structural is None:
            continuous = np.ones(n, dtype=bool)
        else:
            indicator = _structural_indicator(
                outcome, values[outcome], structural, overrides[outcome]
            )
            indicators[outcome] = indicator
            continuous = (indicator == 0) & ~missing | missing
            entries.update(
                {
                    f"value.s{outcome}": float(structural),
                    f"d.{outcome}": indicator,
                    f"N.known.{outcome}": int((indicator != -1).sum()),
                    f"idx.known.{outcome}": _indices(indicator != -1),
                }
            )
        entries[f"N.cont.{outcome}"] = int(continuous.sum())
        entries[f"idx.cont.{outcome}"] = _indices(continuous)
        entries[f"_cont.{outcome}"] = continuous

    # Costs whose effect has an unknown structural status are mixtures
    unknown_e = indicators["e"] == -1 if "e" in indicators else np.zeros(n, bool)
    continuous_c = entries.pop("_cont.c")
    entries.pop("_cont.e")
    entries.update(
        {
            "N.mix.c": int((continuous_c & unknown_e).sum()),
            "idx.mix.c": _indices(continuous_c & unknown_e),
            "N.nomix.c": int((continuous_c & ~unknown_e).sum()),
            "idx.nomix.c": _indices(continuous_c & ~unknown_e),
        }
    )
    return entries


def bind(
    config: "ModelConfig",
    data: pd.DataFrame,
    priors: dict[str, npt.NDArray],
    d_e: Optional[str] = None,
    d_c: Optional[str] = None,
) -> BoundData:
    """Bind a dataset to a model configuration.

    :param config: The validated model configuration
    :type config: ModelConfig
    :param data: The trial dataset, one row per individual
    :type data: pd.DataFrame
    :param priors: Resolved prior hyperparameters, keyed by data name
    :type priors: dict[str, npt.NDArray]
    :param d_e: Column overriding the structural indicator of missing effects
        (hurdle only). Defaults to None.
    :type d_e: Optional[str]
    :param d_c: As ``d_e``, for the costs. Defaults to None.
    :type d_c: Optional[str]

    :returns: The bound data
    :rtype: BoundData

    :raises ConfigurationError: On any data problem (absent columns, covariate
        missingness, treatment cardinality, support violations)
    """
    if not isinstance(data, pd.DataFrame):
        raise ConfigurationError("`data` must be a pandas DataFrame.")
    if len(data) == 0:
        raise ConfigurationError("`data` has no rows.")
    index = data.index
    data = data.reset_index(drop=True)

    arm, labels = encode_arms(data, config.trt)

    # Outcomes and support checks
    values = {
        "e": _outcome_values(data, config.effect_column, "model_eff"),
        "c": _outcome_values(data, config.cost_column, "model_cost"),
    }
    for outcome, values_ in values.items():
        observed = values_[~np.isnan(values_)]
        structural = config.structural_value(outcome)
        if structural is not None:
            observed = observed[~np.isclose(observed, structural)]
        config.distribution(outcome).check_support(observed, f"dist_{outcome}")

    # Common entries
    entries: dict[str, Any] = {
        "N": len(data),
        "arm": arm.astype(int),
        "n.arm": np.bincount(arm, minlength=3)[1:].astype(int),
    }
    coords: dict[str, list] = {
        "arm": list(labels),
        "obs": list(index),
    }
    for outcome in ("e", "c"):
        entries.update(
            _outcome_data(
                outcome,
                values[outcome],
                config.distribution(outcome).DISCRETE,
            )
        )
        coords[f"mis.{outcome}"] = list(index[np.isnan(values[outcome])])

    # Discrete effects summed out of the likelihood need a finite support
    if config.marginalise_e:
        entries["G.e"] = config.dist_e.support_grid_size(
            values["e"][~np.isnan(values["e"])]
        )

    # Designs
    designs = {}
    for key in config.submodels:
        designs[key] = build_design(key, config, data, arm)
        entries.update(_design_data(designs[key]))
        coords.update(_design_coords(designs[key]))

    # Family-specific entries
    patterns, pattern_sets = (), {}
    if config.family == "pattern":
        pattern_entries, patterns, pattern_sets, set_coords = _pattern_data(
            config, np.isnan(values["e"]), np.isnan(values["c"]), arm
        )
        entries.update(pattern_entries)
        coords["pattern"] = list(patterns)
        coords["set.e"] = set_coords["e"]
        coords["set.c"] = set_coords["c"]
        for outcome, mnar, delta in (
            ("e", config.mnar_e, config.Delta_e),
            ("c", config.mnar_c, config.Delta_c),
        ):
            if mnar:
                entries[f"range.Delta.{outcome}"] = np.array(delta, dtype=float)
    elif config.family == "hurdle":
        overrides = {}
        for outcome, column in (("e", d_e), ("c", d_c)):
            if column is not None:
                if config.structural_value(outcome) is None:
                    raise ConfigurationError(
                        f"d_{outcome} is given but s{outcome} is None; there is no "
                        f"structural component for the {outcome} outcome."
                    )
                if column not in data.columns:
                    raise ConfigurationError(
                        f"Column '{column}' (d_{outcome}) is absent from the data."
                    )
                overrides[outcome] = data[column]
            else:
                overrides[outcome] = None
        entries.update(_hurdle_data(config, values, overrides))

    entries.update(priors)

    return BoundData(
        data=entries,
        designs=designs,
        coords=coords,
        arm_labels=labels,
        index=index,
        patterns=patterns,
        pattern_sets=pattern_sets,
    )


def resolve_bound(expr: Optional[str], data: dict[str, Any]) -> Optional[float]:
    """Evaluate a declared bound: a literal or an entry of a data vector.

    :param expr: The bound as written in the Stan declaration (e.g., ``0`` or
        ``prior__sigma__e[2]``), or None
    :type expr: Optional[str]
    :param data: Data keyed by Stan identifier
    :type data: dict[str, Any]

    :returns: The bound, or None if the variable is unbounded on that side
    :rtype: Optional[float]
    """
    if expr is None:
        return None
    if match := _INDEXED_BOUND_RE.match(expr):
        name, position = match.groups()
        return float(np.asarray(data[name]).reshape(-1)[int(position) - 1])
    if expr in data:
        return float(data[expr])
    return float(expr)


def _draw_init(
    variable: "StanVariable", data: dict[str, Any], rng: np.random.Generator
) -> npt.NDArray:
    """Draw an initial value for one parameter.

    Unconstrained values are drawn uniformly on (-1, 1) and mapped into the
    support of the parameter, mirroring Stan's own initialization.
    """
    shape = variable.shape(data)

    # Simplexes start from a flat Dirichlet draw
    if variable.stan_type == "simplex":
        return rng.dirichlet(np.ones(shape[-1]), size=shape[:-1])

    raw = rng.uniform(-1, 1, size=shape)
    lower = resolve_bound(variable.lower, data)
    upper = resolve_bound(variable.upper, data)
    if lower is not None and upper is not None:
        return lower + (upper - lower) * special.expit(raw)
    elif lower is not None:
        return lower + np.exp(raw)
    elif upper is not None:
        return upper - np.exp(raw)
    return raw


def generate_inits(
    model: "CompiledModel",
    data: dict[str, Any],
    n_chains: "custom_types.Integer",
    rng: np.random.Generator,
) -> list["custom_types.InitDict"]:
    """Draw independent initial values for each chain.

    :param model: The compiled model
    :type model: CompiledModel
    :param data: Data keyed by Stan identifier
    :type data: dict[str, Any]
    :param n_chains: Number of chains
    :type n_chains: custom_types.Integer
    :param rng: Random number generator
    :type rng: np.random.Generator

    :returns: One mapping from Stan parameter name to initial value per chain.
        Zero-size parameters are omitted.
    :rtype: list[custom_types.InitDict]
    """
    return [
        {
            variable.stan_name: _draw_init(variable, data, rng)
            for variable in model.parameters
            if variable.size(data) > 0
        }
        for _ in range(n_chains)
    ]


def validate_inits(
    model: "CompiledModel",
    data: dict[str, Any],
    inits: list[dict[str, Any]],
    n_chains: "custom_types.Integer",
) -> list["custom_types.InitDict"]:
    """Check user-supplied initial values against the compiled model.

    Names may be given as display names (``sigma.e``) or Stan identifiers
    (``sigma__e``).

    :param model: The compiled model
    :type model: CompiledModel
    :param data: Data keyed by Stan identifier
    :type data: dict[str, Any]
    :param inits: One mapping per chain
    :type inits: list[dict[str, Any]]
    :param n_chains: Number of chains
    :type n_chains: custom_types.Integer

    :returns: The initial values keyed by Stan identifier, as NumPy arrays
    :rtype: list[custom_types.InitDict]

    :raises BindingError: If the number of structures differs from the number of
        chains, a required parameter is missing, a name is unknown, or a value has
        the wrong shape
    """
    if len(inits) != n_chains:
        raise BindingError(
            f"Expected one initial-value structure per chain ({n_chains}), got "
            f"{len(inits)}."
        )

    parameters = {
        variable.stan_name: variable
        for variable in model.parameters
        if variable.size(data) > 0
    }
    validated = []
    for chain, init in enumerate(inits, start=1):
        init = {utils.to_stan_name(name): value for name, value in init.items()}
        if unknown := sorted(set(init) - set(parameters)):
            raise BindingError(
                f"Chain {chain}: unknown parameter(s) in initial values: "
                f"{', '.join(unknown)}."
            )
        if missing := sorted(set(parameters) - set(init)):
            raise BindingError(
                f"Chain {chain}: missing initial values for: {', '.join(missing)}."
            )
        checked = {}
        for name, value in init.items():
            expected = parameters[name].shape(data)
            value = np.asarray(value, dtype=float)
            if value.shape != expected:
                raise BindingError(
                    f"Chain {chain}: initial value of '{name}' has shape {value.shape}, "
                    f"expected {expected}."
                )
            checked[name] = value
        validated.append(checked)
    return validated
