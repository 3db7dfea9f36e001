# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Stan program of the selection model family.

The joint distribution of the outcomes and the missingness indicators is factored
as ``p(e) p(c | e) p(m_e | e) p(m_c | c)``. Missing continuous outcomes are
parameters of the model. Missing discrete effects cannot be parameters; when they
enter another sub-model (the cost model through the dependence term, or the
effect missingness model under MNAR) they are summed out of the likelihood over
a finite support grid and drawn from their full conditional in the generated
quantities block. Otherwise the observed effects are conditioned on directly and
the missing ones imputed from the effect model.
"""

from __future__ import annotations

from typing import Mapping, TYPE_CHECKING

from missinghe.model.stan import fragments as fr
from missinghe.model.stan.program import (
    CompiledModel,
    Fragment,
    StanProgram,
    StanVariable,
)
from missinghe.utils import to_stan_name as S

if TYPE_CHECKING:
    from missinghe.model.binder import Design
    from missinghe.model.config import ModelConfig


def _effect_values(config: "ModelConfig") -> Fragment:
    """Observed and missing effects collected into ``e.full``."""
    if not config.dist_e.DISCRETE:
        return fr.missing_values("e", config.dist_e, "e.full")

    # Missing discrete entries hold -1 until imputed in generated quantities
    fragment = Fragment(shared_locals=["vector[N] e__full = to_vector(e)"])
    if config.marginalise_e:
        fragment.data.append(StanVariable("G.e", "int", lower="1"))
    return fragment


def _dependence_terms(config: "ModelConfig") -> list[str]:
    """Statements adding the effects to the cost and effect missingness predictors."""
    statements = []
    if config.joint:
        statements.append("eta__c += beta_f[arm] .* (e__full - tmu__e[arm])")
    if config.mnar_e:
        statements.append("eta__me += delta__e[arm] .* e__full")
    return statements


def _dependence(config: "ModelConfig") -> Fragment:
    """Cost-on-effect regression and MNAR dependence parameters."""
    fragment = Fragment()
    if config.joint:
        fragment.data.append(fr.prior_data("beta_f.prior"))
        fragment.parameters.append(
            StanVariable("beta_f", "vector", (2,), dim_names=("arm",))
        )
        fragment.model.append(f"beta_f ~ normal({fr.prior_args('beta_f.prior')})")

        # Effects are centred on their mean in each arm
        fragment.shared_locals.append("vector[2] tmu__e")
        fragment.shared.append(f"tmu__e = {config.dist_e.stan_mean('eta_bar__e')}")

    for outcome, mnar in (("e", config.mnar_e), ("c", config.mnar_c)):
        if not mnar:
            continue
        role = f"delta.prior.{outcome}"
        fragment.data.append(fr.prior_data(role))
        fragment.parameters.append(
            StanVariable(f"delta.{outcome}", "vector", (2,), dim_names=("arm",))
        )
        fragment.model.append(f"{S(f'delta.{outcome}')} ~ normal({fr.prior_args(role)})")

    # Cost missingness depends on the (always continuous) costs
    if config.mnar_c:
        fragment.shared.append("eta__mc += delta__c[arm] .* c__full")

    # Marginalised effects are only known once imputed in generated quantities
    if not config.marginalise_e:
        fragment.shared.extend(_dependence_terms(config))
    return fragment


def _row_log_density(config: "ModelConfig", effect: str) -> str:
    """Joint log-density of individual ``n``'s effect, cost, and effect
    missingness indicator, for the effect value ``effect``."""
    dist_e, dist_c = config.dist_e, config.dist_c
    eta_c = "eta__c[n]"
    if config.joint:
        eta_c = f"eta__c[n] + beta_f[arm[n]] * ({effect} - tmu__e[arm[n]])"
    eta_me = "eta__me[n]"
    if config.mnar_e:
        eta_me = f"eta__me[n] + delta__e[arm[n]] * {effect}"
    return " + ".join(
        [
            dist_e.stan_lpdf(effect, "eta__e[n]", fr.aux_local("e", dist_e, "[n]")),
            dist_c.stan_lpdf("c__full[n]", eta_c, fr.aux_local("c", dist_c, "[n]")),
            f"bernoulli_logit_lpmf(m__e[n] | {eta_me})",
        ]
    )


def _grid_log_density(config: "ModelConfig") -> list[str]:
    """Statements filling ``lq`` with the row log-density over the support grid."""
    return [
        "vector[G__e] lq",
        f"for (g in 1:G__e) lq[g] = {_row_log_density(config, '(g - 1)')}",
    ]


def _marginal_likelihood(config: "ModelConfig") -> Fragment:
    """Likelihood with missing discrete effects summed out of the joint density."""
    return Fragment(
        model=[
            "for (k in 1:N__obs__e) {",
            "int n = idx__obs__e[k]",
            f"target += {_row_log_density(config, 'e[n]')}",
            "}",
            "for (k in 1:N__mis__e) {",
            "int n = idx__mis__e[k]",
            *_grid_log_density(config),
            "target += log_sum_exp(lq)",
            "}",
        ],
        generated_statements=[
            "for (k in 1:N__mis__e) {",
            "int n = idx__mis__e[k]",
            *_grid_log_density(config),
            "e__full[n] = categorical_rng(softmax(lq)) - 1",
            "}",
            *_dependence_terms(config),
        ],
    )


def _likelihood(config: "ModelConfig") -> Fragment:
    """Outcome and missingness likelihoods."""
    dist_e, dist_c = config.dist_e, config.dist_c
    if config.marginalise_e:
        fragment = _marginal_likelihood(config)
    elif dist_e.DISCRETE:
        fragment = Fragment(
            model=[
                "target += "
                + dist_e.stan_lpdf(
                    "e[idx__obs__e]",
                    "eta__e[idx__obs__e]",
                    fr.aux_local("e", dist_e, "[idx__obs__e]"),
                    vectorized=True,
                ),
                "target += bernoulli_logit_lpmf(m__e | eta__me)",
            ],
            generated_statements=[
                "for (k in 1:N__mis__e) {",
                "int n = idx__mis__e[k]",
                "e__full[n] = "
                + dist_e.stan_rng("eta__e[n]", fr.aux_local("e", dist_e, "[n]")),
                "}",
            ],
        )
    else:
        fragment = Fragment(
            model=[
                "target += "
                + dist_e.stan_lpdf(
                    "e__full", "eta__e", fr.aux_local("e", dist_e), vectorized=True
                ),
                "target += bernoulli_logit_lpmf(m__e | eta__me)",
            ]
        )

    # The cost likelihood is part of the row densities when effects are summed out
    if not config.marginalise_e:
        fragment.model.append(
            "target += "
            + dist_c.stan_lpdf(
                "c__full", "eta__c", fr.aux_local("c", dist_c), vectorized=True
            )
        )
    fragment.model.append("target += bernoulli_logit_lpmf(m__c | eta__mc)")
    return fragment


def _outputs(config: "ModelConfig") -> list[Fragment]:
    """Generated quantities reported by the selection model."""
    dist_e, dist_c = config.dist_e, config.dist_c
    outputs = [fr.mean_output("e"), fr.mean_output("c")]

    # Mean missingness probabilities
    for outcome in ("e", "c"):
        name = f"p.{outcome}"
        outputs.append(
            Fragment(
                generated=[
                    StanVariable(
                        name, "vector", (2,), lower="0", upper="1", dim_names=("arm",)
                    )
                ],
                generated_statements=fr.arm_average(
                    S(name), f"inv_logit(eta__m{outcome}[n])"
                ),
            )
        )

    # Correlation between bivariate normal outcomes
    if config.correlated_normal:
        outputs.append(
            Fragment(
                generated=[
                    StanVariable(
                        "rho", "vector", (2,), dim_names=("arm",)
                    )
                ],
                generated_statements=[
                    "rho = beta_f .* sigma__e ./ sqrt(square(sigma__c)"
                    " + square(beta_f .* sigma__e))"
                ],
            )
        )

    # Pointwise log-likelihoods
    outputs.extend(
        [
            fr.observed_loglik("e", dist_e, "e", "eta__e"),
            fr.observed_loglik("c", dist_c, "c", "eta__c"),
            fr.indicator_loglik("me", "m__e"),
            fr.indicator_loglik("mc", "m__c"),
        ]
    )

    if config.ppc:
        outputs.extend(
            [
                fr.replicates(
                    "e", dist_e.stan_rng("eta__e[n]", fr.aux_local("e", dist_e, "[n]"))
                ),
                fr.replicates(
                    "c", dist_c.stan_rng("eta__c[n]", fr.aux_local("c", dist_c, "[n]"))
                ),
            ]
        )

    if config.save_imputed:
        outputs.append(
            Fragment(
                generated=[fr.imputed_output("e"), fr.imputed_output("c")],
                generated_statements=[
                    "imp__e = e__full[idx__mis__e]",
                    "imp__c = c__full[idx__mis__c]",
                ],
            )
        )
    return outputs


def compile_selection(
    config: "ModelConfig", designs: Mapping[str, "Design"]
) -> CompiledModel:
    """Compile the Stan program of a selection model.

    :param config: The model configuration
    :type config: ModelConfig
    :param designs: Sub-model designs keyed by sub-model
    :type designs: Mapping[str, Design]

    :returns: The compiled model
    :rtype: CompiledModel
    """
    dist_e, dist_c = config.dist_e, config.dist_c
    fragments = [
        fr.common_data(),
        fr.outcome_data("e", dist_e),
        fr.outcome_data("c", dist_c),
    ]
    for key in config.submodels:
        fragments.extend(
            [
                fr.design_data(key, designs[key]),
                fr.coefficients(key, designs[key]),
                fr.random_effects(key, designs[key]),
            ]
        )
    fragments.extend(
        [
            fr.aux_parameter("e", dist_e),
            fr.aux_parameter("c", dist_c),
            _effect_values(config),
            fr.missing_values("c", dist_c, "c.full"),
        ]
    )
    fragments.extend(fr.linear_predictor(key, designs[key]) for key in config.submodels)
    fragments.extend(fr.mean_predictor(key, designs[key]) for key in ("e", "c"))
    fragments.extend([_dependence(config), _likelihood(config)])
    fragments.extend(_outputs(config))

    return CompiledModel.from_program("selection", StanProgram(fragments))

