# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Fit entry points of missinghe.

Each entry point runs the same single-pass pipeline:

    1. Build and validate the :py:class:`~missinghe.model.config.ModelConfig`.
    2. Merge the prior overrides over the defaults of the active parameter roles.
    3. Bind the dataset: design matrices, outcome arrays, missingness or
       structural indicators, and family-specific data.
    4. Compile the Stan program of the configuration.
    5. Generate (or validate) one set of initial values per chain.
    6. Run the sampler.
    7. Post-process the draws into a
       :py:class:`~missinghe.model.results.fit_result.FitResult`.

Every configuration and binding error is raised before the sampler is invoked.
Errors reported by the sampler propagate unchanged.
"""

from __future__ import annotations

import warnings

from typing import Any, Callable, Optional, TYPE_CHECKING

import arviz as az
import numpy as np
import numpy.typing as npt
import pandas as pd

import missinghe

from missinghe.defaults import (
    DEFAULT_N_CHAINS,
    DEFAULT_N_ITER,
    DEFAULT_REF_ARM,
    DEFAULT_THIN,
)
from missinghe.exceptions import ConfigurationError
from missinghe.model.binder import bind, generate_inits, validate_inits
from missinghe.model.config import build_config, parse_delta
from missinghe.model.priors import resolve_priors
from missinghe.model.results.economics import EconomicEvaluation
from missinghe.model.results.fit_result import FitResult
from missinghe.model.results.postprocess import build_posterior
from missinghe.model.stan import compile_model
from missinghe.model.stan.stan_model import cmdstan_sampler

if TYPE_CHECKING:
    from missinghe import custom_types

Sampler = Callable[..., az.InferenceData]


def _check_sampling(n_iter, n_burnin, n_chains, thin) -> None:
    """Validate the sampling settings."""
    if n_iter < 1:
        raise ConfigurationError(f"n_iter must be at least 1, got {n_iter}.")
    if n_burnin < 0:
        raise ConfigurationError(f"n_burnin must be non-negative, got {n_burnin}.")
    if n_chains < 2:
        raise ConfigurationError(
            f"n_chains must be at least 2 for convergence diagnostics, got {n_chains}."
        )
    if thin < 1:
        raise ConfigurationError(f"thin must be at least 1, got {thin}.")


def _fit(
    family: "custom_types.Family",
    data: pd.DataFrame,
    formulas: dict[str, str],
    dist_e: str,
    dist_c: str,
    type: str,  # pylint: disable=redefined-builtin
    ind: bool,
    prior: Optional[dict[str, "custom_types.Hyperparameters"]],
    inits: Optional[list[dict[str, Any]]],
    n_iter: "custom_types.Integer",
    n_burnin: Optional["custom_types.Integer"],
    n_chains: "custom_types.Integer",
    thin: "custom_types.Integer",
    seed: Optional["custom_types.Integer"],
    save_model: Optional[str],
    sampler: Optional[Sampler],
    ref: "custom_types.Integer",
    wtp: Optional[npt.ArrayLike],
    d_e: Optional[str] = None,
    d_c: Optional[str] = None,
    **config_kwargs,
) -> FitResult:
    """Run the fit pipeline shared by all model families."""
    # Warm-up defaults to the number of sampling iterations
    n_burnin = n_iter if n_burnin is None else n_burnin
    _check_sampling(n_iter, n_burnin, n_chains, thin)
    if ref not in (1, 2):
        raise ConfigurationError(f"ref must be 1 or 2, got {ref}.")

    # Configure and bind
    config = build_config(family, formulas, dist_e, dist_c, type, ind, **config_kwargs)
    priors = resolve_priors(config, prior)
    bound = bind(config, data, priors, d_e=d_e, d_c=d_c)

    # Compile
    model = compile_model(config, bound.designs)
    if save_model is not None:
        model.write(save_model)

    # Initial values
    stan_data = bound.stan_data
    if inits is None:
        rng = missinghe.RNG if seed is None else np.random.default_rng(seed)
        inits = generate_inits(model, stan_data, n_chains, rng)
    else:
        inits = validate_inits(model, stan_data, inits, n_chains)

    # Sample
    idata = (sampler or cmdstan_sampler)(
        model=model,
        bound=bound,
        inits=inits,
        n_iter=n_iter,
        n_burnin=n_burnin,
        n_chains=n_chains,
        thin=thin,
        seed=seed,
    )

    # Package
    inference = build_posterior(config, model, bound, idata)
    economics = EconomicEvaluation(
        inference.posterior["mu.e"], inference.posterior["mu.c"], ref=ref, wtp=wtp
    )
    return FitResult(
        config=config,
        model=model,
        bound=bound,
        inference=inference,
        economics=economics,
    )


def selection(
    data: pd.DataFrame,
    model_eff: str,
    model_cost: str,
    model_me: str = "me ~ 1",
    model_mc: str = "mc ~ 1",
    dist_e: str = "normal",
    dist_c: str = "normal",
    type: str = "MAR",  # pylint: disable=redefined-builtin
    ind: bool = False,
    trt: str = "t",
    prior: Optional[dict[str, "custom_types.Hyperparameters"]] = None,
    inits: Optional[list[dict[str, Any]]] = None,
    n_iter: "custom_types.Integer" = DEFAULT_N_ITER,
    n_burnin: Optional["custom_types.Integer"] = None,
    n_chains: "custom_types.Integer" = DEFAULT_N_CHAINS,
    thin: "custom_types.Integer" = DEFAULT_THIN,
    ppc: bool = False,
    save_imputed: bool = True,
    save_model: Optional[str] = None,
    ref: "custom_types.Integer" = DEFAULT_REF_ARM,
    wtp: Optional[npt.ArrayLike] = None,
    seed: Optional["custom_types.Integer"] = None,
    sampler: Optional[Sampler] = None,
) -> FitResult:
    """Fit a selection model.

    The outcomes and their missingness indicators are modelled jointly: effects,
    costs given effects (unless ``ind``), and a logistic regression for the
    missingness of each outcome. Under MNAR the missingness of an outcome also
    depends on the (possibly unobserved) outcome itself.

    :param data: Individual-level trial data, one row per individual
    :type data: pd.DataFrame
    :param model_eff: Formula of the effects, e.g. ``"e ~ u0 + (1 | site)"``
    :type model_eff: str
    :param model_cost: Formula of the costs, e.g. ``"c ~ 1"``
    :type model_cost: str
    :param model_me: Formula of the effect missingness indicator. Defaults to
        ``"me ~ 1"``.
    :type model_me: str
    :param model_mc: Formula of the cost missingness indicator. Defaults to
        ``"mc ~ 1"``.
    :type model_mc: str
    :param dist_e: Effect distribution. Defaults to ``"normal"``.
    :type dist_e: str
    :param dist_c: Cost distribution. Defaults to ``"normal"``.
    :type dist_c: str
    :param type: ``"MAR"``, ``"MNAR_eff"``, ``"MNAR_cost"`` or ``"MNAR"``.
        Defaults to ``"MAR"``.
    :type type: str
    :param ind: Whether effects and costs are independent. Defaults to False.
    :type ind: bool
    :param trt: Treatment-arm column. Defaults to ``"t"``.
    :type trt: str
    :param prior: Prior overrides keyed by role (e.g., ``{"alpha0.prior": (0,
        1e-6)}``). Defaults to None.
    :type prior: Optional[dict[str, custom_types.Hyperparameters]]
    :param inits: One initial-value mapping per chain, keyed by display or Stan
        parameter name. Defaults to None (random, support-respecting values).
    :type inits: Optional[list[dict[str, Any]]]
    :param n_iter: Post-warmup iterations per chain. Defaults to 1000.
    :type n_iter: custom_types.Integer
    :param n_burnin: Warmup iterations per chain. Defaults to ``n_iter``.
    :type n_burnin: Optional[custom_types.Integer]
    :param n_chains: Number of chains, at least 2. Defaults to 2.
    :type n_chains: custom_types.Integer
    :param thin: Thinning interval. Defaults to 1.
    :type thin: custom_types.Integer
    :param ppc: Whether to generate posterior predictive replicates. Defaults to
        False.
    :type ppc: bool
    :param save_imputed: Whether to save the imputed missing outcomes. Defaults to
        True.
    :type save_imputed: bool
    :param save_model: Path to write the Stan program to. Defaults to None.
    :type save_model: Optional[str]
    :param ref: Reference (intervention) arm, 1 or 2. Defaults to 2.
    :type ref: custom_types.Integer
    :param wtp: Willingness-to-pay grid of the acceptability curve. Defaults to
        None (0 to 50000).
    :type wtp: Optional[npt.ArrayLike]
    :param seed: Seed of the sampler and of the generated initial values. Defaults
        to None (drawn from :py:data:`missinghe.RNG`).
    :type seed: Optional[custom_types.Integer]
    :param sampler: Sampler function. Defaults to None (CmdStan).
    :type sampler: Optional[Callable[..., az.InferenceData]]

    :returns: The fit
    :rtype: FitResult

    :raises ConfigurationError: On any invalid configuration or data, before the
        sampler runs
    :raises BindingError: If ``inits`` do not match the model

    Example:
        >>> res = mhe.selection(
        ...     data=df, model_eff="e ~ u0", model_cost="c ~ 1", type="MNAR_eff"
        ... )
        >>> res.economics.summary()
    """
    return _fit(
        "selection",
        data,
        {"e": model_eff, "c": model_cost, "me": model_me, "mc": model_mc},
        dist_e,
        dist_c,
        type,
        ind,
        prior=prior,
        inits=inits,
        n_iter=n_iter,
        n_burnin=n_burnin,
        n_chains=n_chains,
        thin=thin,
        seed=seed,
        save_model=save_model,
        sampler=sampler,
        ref=ref,
        wtp=wtp,
        trt=trt,
        ppc=ppc,
        save_imputed=save_imputed,
    )


def pattern(
    data: pd.DataFrame,
    model_eff: str,
    model_cost: str,
    dist_e: str = "normal",
    dist_c: str = "normal",
    type: str = "MAR",  # pylint: disable=redefined-builtin
    restriction: str = "CC",
    Delta_e=None,  # pylint: disable=invalid-name
    Delta_c=None,  # pylint: disable=invalid-name
    ind: bool = False,
    trt: str = "t",
    prior: Optional[dict[str, "custom_types.Hyperparameters"]] = None,
    inits: Optional[list[dict[str, Any]]] = None,
    n_iter: "custom_types.Integer" = DEFAULT_N_ITER,
    n_burnin: Optional["custom_types.Integer"] = None,
    n_chains: "custom_types.Integer" = DEFAULT_N_CHAINS,
    thin: "custom_types.Integer" = DEFAULT_THIN,
    ppc: bool = False,
    save_imputed: bool = True,
    save_model: Optional[str] = None,
    ref: "custom_types.Integer" = DEFAULT_REF_ARM,
    wtp: Optional[npt.ArrayLike] = None,
    seed: Optional["custom_types.Integer"] = None,
    sampler: Optional[Sampler] = None,
) -> FitResult:
    """Fit a pattern-mixture model.

    Individuals are grouped by which outcomes they have observed. Patterns that do
    not observe an outcome borrow its parameters from a donor pattern chosen by
    ``restriction``; under MNAR, the borrowed link-scale means are shifted by a
    sensitivity offset drawn uniformly from ``Delta_e``/``Delta_c``.

    :param restriction: Identifying restriction, ``"CC"`` (complete cases) or
        ``"AC"`` (available cases). Defaults to ``"CC"``.
    :type restriction: str
    :param Delta_e: Sensitivity range of the effects on the link scale: a scalar,
        a ``(lower, upper)`` pair, or one pair per arm. Required for
        ``"MNAR_eff"`` and ``"MNAR"``.
    :param Delta_c: As ``Delta_e``, for the costs. Required for ``"MNAR_cost"``
        and ``"MNAR"``.

    All other parameters are as in :py:func:`selection`.

    :returns: The fit
    :rtype: FitResult
    """
    deltas = {}
    for outcome, value, mnar_types in (
        ("e", Delta_e, ("MNAR_eff", "MNAR")),
        ("c", Delta_c, ("MNAR_cost", "MNAR")),
    ):
        delta = parse_delta(value, f"Delta_{outcome}")
        if delta is not None and type not in mnar_types:
            if not np.allclose(delta, 0.0):
                warnings.warn(
                    f"Delta_{outcome} is ignored under type='{type}'; the {outcome} "
                    "outcome is missing at random."
                )
            delta = None
        deltas[f"Delta_{outcome}"] = delta

    return _fit(
        "pattern",
        data,
        {"e": model_eff, "c": model_cost},
        dist_e,
        dist_c,
        type,
        ind,
        prior=prior,
        inits=inits,
        n_iter=n_iter,
        n_burnin=n_burnin,
        n_chains=n_chains,
        thin=thin,
        seed=seed,
        save_model=save_model,
        sampler=sampler,
        ref=ref,
        wtp=wtp,
        restriction=restriction,
        trt=trt,
        ppc=ppc,
        save_imputed=save_imputed,
        **deltas,
    )


def hurdle(
    data: pd.DataFrame,
    model_eff: str,
    model_cost: str,
    model_se: str = "se ~ 1",
    model_sc: str = "sc ~ 1",
    se: Optional["custom_types.Float"] = 1,
    sc: Optional["custom_types.Float"] = None,
    dist_e: str = "normal",
    dist_c: str = "normal",
    type: str = "SCAR",  # pylint: disable=redefined-builtin
    ind: bool = False,
    d_e: Optional[str] = None,
    d_c: Optional[str] = None,
    trt: str = "t",
    prior: Optional[dict[str, "custom_types.Hyperparameters"]] = None,
    inits: Optional[list[dict[str, Any]]] = None,
    n_iter: "custom_types.Integer" = DEFAULT_N_ITER,
    n_burnin: Optional["custom_types.Integer"] = None,
    n_chains: "custom_types.Integer" = DEFAULT_N_CHAINS,
    thin: "custom_types.Integer" = DEFAULT_THIN,
    ppc: bool = False,
    save_imputed: bool = True,
    save_model: Optional[str] = None,
    ref: "custom_types.Integer" = DEFAULT_REF_ARM,
    wtp: Optional[npt.ArrayLike] = None,
    seed: Optional["custom_types.Integer"] = None,
    sampler: Optional[Sampler] = None,
) -> FitResult:
    """Fit a hurdle model.

    Each outcome with a structural value is a mixture of a point mass at that
    value and a continuous distribution for the remaining values, with a logistic
    regression on the probability of the structural value.

    :param model_se: Formula of the structural-effect indicator. Only used when
        ``se`` is not None. Defaults to ``"se ~ 1"``.
    :type model_se: str
    :param model_sc: Formula of the structural-cost indicator. Only used when
        ``sc`` is not None. Defaults to ``"sc ~ 1"``.
    :type model_sc: str
    :param se: Structural value of the effects, or None. Defaults to 1.
    :type se: Optional[custom_types.Float]
    :param sc: Structural value of the costs, or None. Defaults to None.
    :type sc: Optional[custom_types.Float]
    :param type: ``"SCAR"`` (structural values completely at random) or ``"SAR"``
        (at random given covariates). Defaults to ``"SCAR"``.
    :type type: str
    :param d_e: Column with the known structural status (0/1) of individuals with
        a missing effect; missing entries are inferred. Defaults to None.
    :type d_e: Optional[str]
    :param d_c: As ``d_e``, for the costs. Defaults to None.
    :type d_c: Optional[str]

    All other parameters are as in :py:func:`selection`.

    :returns: The fit
    :rtype: FitResult
    """
    formulas = {"e": model_eff, "c": model_cost}
    if se is not None:
        formulas["se"] = model_se
    if sc is not None:
        formulas["sc"] = model_sc

    return _fit(
        "hurdle",
        data,
        formulas,
        dist_e,
        dist_c,
        type,
        ind,
        prior=prior,
        inits=inits,
        n_iter=n_iter,
        n_burnin=n_burnin,
        n_chains=n_chains,
        thin=thin,
        seed=seed,
        save_model=save_model,
        sampler=sampler,
        ref=ref,
        wtp=wtp,
        d_e=d_e,
        d_c=d_c,
        se=None if se is None else float(se),
        sc=None if sc is None else float(sc),
        trt=trt,
        ppc=ppc,
        save_imputed=save_imputed,
    )
