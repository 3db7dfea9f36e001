# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Stan program of the hurdle model family.

Each outcome with a structural value (e.g., a utility of exactly one, or a cost of
exactly zero) is a two-part mixture: a logistic regression on the probability of
the structural value and a continuous regression on the remaining values. The
structural status of an individual is observed when the outcome is, can be fixed
by the user for missing outcomes, and is otherwise unknown and marginalised.

Missing continuous parts are parameters of the model. When costs depend on
effects, the cost of an individual whose structural effect status is unknown is a
mixture over the two possible effect values.
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


def _index_data(name: str) -> list[StanVariable]:
    """A count and the one-based indices it counts."""
    return [
        StanVariable(f"N.{name}", "int", lower="0"),
        StanVariable(
            f"idx.{name}", "int", array_dims=(f"N.{name}",), lower="1", upper="N"
        ),
    ]


def _hurdle_data(config: "ModelConfig") -> Fragment:
    """Structural values and indicators, and the index sets of the likelihood."""
    data = []
    for outcome in ("e", "c"):
        if config.structural_value(outcome) is not None:
            data.extend(
                [
                    StanVariable(f"value.s{outcome}", "real"),
                    StanVariable(
                        f"d.{outcome}", "int", array_dims=("N",), lower="-1", upper="1"
                    ),
                    *_index_data(f"known.{outcome}"),
                ]
            )
        data.extend(_index_data(f"cont.{outcome}"))
    data.extend([*_index_data("mix.c"), *_index_data("nomix.c")])
    return Fragment(data=data)


def _effect_values(config: "ModelConfig") -> Fragment:
    """Effects with structural values filled in where the status is known."""
    fragment = Fragment(shared_locals=["vector[N] e__val"], shared=["e__val = e__lat"])
    if config.se is not None:
        fragment.shared.append("for (n in 1:N) if (d__e[n] == 1) e__val[n] = value__se")

        # Mean probability of the structural effect in each arm
        fragment.shared_locals.append("vector[2] pbar__se")
        fragment.shared.extend(fr.arm_average("pbar__se", "inv_logit(eta__se[n])"))
    return fragment


def _effect_mean(config: "ModelConfig") -> str:
    """Stan expression of the per-arm mean effect, structural part included."""
    mean = config.dist_e.stan_mean("eta_bar__e")
    if config.se is None:
        return mean
    return f"pbar__se * value__se + (1 - pbar__se) .* {mean}"


def _cost_predictor(effect: str) -> str:
    """Cost linear predictor of individual ``n`` for a given effect value."""
    return f"eta__c[n] + beta_f[arm[n]] * ({effect} - tmu__e[arm[n]])"


def _dependence(config: "ModelConfig") -> Fragment:
    """Regression of costs on effects, centred on the mean effect per arm."""
    if not config.joint:
        return Fragment(shared_locals=["vector[N] eta__cj"], shared=["eta__cj = eta__c"])
    return Fragment(
        data=[fr.prior_data("beta_f.prior")],
        parameters=[StanVariable("beta_f", "vector", (2,), dim_names=("arm",))],
        model=[f"beta_f ~ normal({fr.prior_args('beta_f.prior')})"],
        shared_locals=["vector[2] tmu__e", "vector[N] eta__cj"],
        shared=[
            f"tmu__e = {_effect_mean(config)}",
            "eta__cj = eta__c + beta_f[arm] .* (e__val - tmu__e[arm])",
        ],
    )


def _likelihood(config: "ModelConfig") -> Fragment:
    """Structural indicators and continuous parts of both outcomes."""
    dist_e, dist_c = config.dist_e, config.dist_c
    statements = [
        "target += "
        + dist_e.stan_lpdf(
            "e__lat[idx__cont__e]",
            "eta__e[idx__cont__e]",
            fr.aux_local("e", dist_e, "[idx__cont__e]"),
            vectorized=True,
        )
    ]
    for outcome in ("e", "c"):
        if config.structural_value(outcome) is not None:
            index = f"[{S(f'idx.known.{outcome}')}]"
            statements.append(
                f"target += bernoulli_logit_lpmf({S(f'd.{outcome}')}{index} | "
                f"{S(f'eta.s{outcome}')}{index})"
            )

    def cost_lpdf(index: str) -> str:
        return "target += " + dist_c.stan_lpdf(
            f"c__lat{index}",
            f"eta__cj{index}",
            fr.aux_local("c", dist_c, index),
            vectorized=True,
        )

    if config.joint and config.se is not None:
        # Costs of individuals with an unknown structural effect are mixtures
        aux = fr.aux_local("c", dist_c, "[n]")
        statements.extend(
            [
                cost_lpdf("[idx__nomix__c]"),
                "for (k in 1:N__mix__c) {",
                "int n = idx__mix__c[k]",
                "target += log_mix(inv_logit(eta__se[n]), "
                + dist_c.stan_lpdf("c__lat[n]", _cost_predictor("value__se"), aux)
                + ", "
                + dist_c.stan_lpdf("c__lat[n]", _cost_predictor("e__lat[n]"), aux)
                + ")",
                "}",
            ]
        )
    else:
        statements.append(cost_lpdf("[idx__cont__c]"))
    return Fragment(model=statements)


def _structural_imputation(config: "ModelConfig") -> Fragment:
    """Draw the unknown structural statuses and fill in the imputed outcomes."""
    fragment = Fragment()
    if config.se is not None:
        weights = [
            "real lp_s = log_inv_logit(eta__se[n])",
            "real lp_c = log1m_inv_logit(eta__se[n])",
        ]
        if config.joint:
            aux = fr.aux_local("c", config.dist_c, "[n]")
            cost_terms = [
                "lp_s += "
                + config.dist_c.stan_lpdf(
                    "c__lat[n]", _cost_predictor("value__se"), aux
                ),
                "lp_c += "
                + config.dist_c.stan_lpdf(
                    "c__lat[n]", _cost_predictor("e__lat[n]"), aux
                ),
            ]
            if config.sc is not None:
                cost_terms = ["if (d__c[n] != 1) {", *cost_terms, "}"]
            weights.extend(cost_terms)
        fragment.generated_statements.extend(
            [
                "for (k in 1:N__mis__e) {",
                "int n = idx__mis__e[k]",
                "if (d__e[n] == -1) {",
                *weights,
                "e__val[n] = bernoulli_rng(exp(lp_s - log_sum_exp(lp_s, lp_c)))"
                " ? value__se : e__lat[n]",
                "}",
                "}",
            ]
        )
        if config.joint:
            fragment.generated_statements.append(
                "eta__cj = eta__c + beta_f[arm] .* (e__val - tmu__e[arm])"
            )

    fragment.generated_locals.append("vector[N] c__val")
    fragment.generated_statements.append("c__val = c__lat")
    if config.sc is not None:
        fragment.generated_statements.extend(
            [
                "for (n in 1:N) {",
                "if (d__c[n] == 1) c__val[n] = value__sc",
                "else if (d__c[n] == -1) c__val[n] = bernoulli_logit_rng(eta__sc[n])"
                " ? value__sc : c__lat[n]",
                "}",
            ]
        )
    return fragment


def _loglik(config: "ModelConfig", outcome: str, eta: str) -> Fragment:
    """Pointwise log-likelihood of the observed values of an outcome."""
    dist = config.distribution(outcome)
    loglik = S(f"loglik.{outcome}")
    continuous = dist.stan_lpdf(
        f"{outcome}[n]", f"{eta}[n]", fr.aux_local(outcome, dist, "[n]")
    )
    if config.structural_value(outcome) is None:
        body = [f"{loglik}[n] = {continuous}"]
    else:
        d, eta_s = S(f"d.{outcome}"), S(f"eta.s{outcome}")
        body = [
            f"if ({d}[n] == 1) {loglik}[n] = bernoulli_logit_lpmf(1 | {eta_s}[n])",
            f"else {loglik}[n] = bernoulli_logit_lpmf(0 | {eta_s}[n]) + {continuous}",
        ]
    return Fragment(
        generated=[
            StanVariable(f"loglik.{outcome}", "vector", ("N",), dim_names=("obs",))
        ],
        generated_statements=[
            f"{loglik} = rep_vector(0, N)",
            f"for (k in 1:{S(f'N.obs.{outcome}')}) {{",
            f"int n = {S(f'idx.obs.{outcome}')}[k]",
            *body,
            "}",
        ],
    )


def _draw(config: "ModelConfig", outcome: str, eta: str) -> str:
    """Stan expression drawing a replicate of an outcome for individual ``n``."""
    dist = config.distribution(outcome)
    draw = dist.stan_rng(f"{eta}[n]", fr.aux_local(outcome, dist, "[n]"))
    if config.structural_value(outcome) is None:
        return draw
    return (
        f"bernoulli_logit_rng({S(f'eta.s{outcome}')}[n]) ? "
        f"{S(f'value.s{outcome}')} : {draw}"
    )


def _outputs(config: "ModelConfig") -> list[Fragment]:
    """Generated quantities reported by the hurdle model."""
    outputs = [fr.mean_output("e"), fr.mean_output("c")]

    # Mean probabilities of the structural values
    for outcome in ("e", "c"):
        if config.structural_value(outcome) is None:
            continue
        name = f"p.{outcome}"
        statements = (
            [f"{S(name)} = pbar__se"]
            if outcome == "e"
            else fr.arm_average(S(name), "inv_logit(eta__sc[n])")
        )
        outputs.append(
            Fragment(
                generated=[
                    StanVariable(
                        name, "vector", (2,), lower="0", upper="1", dim_names=("arm",)
                    )
                ],
                generated_statements=statements,
            )
        )

    outputs.extend([_loglik(config, "e", "eta__e"), _loglik(config, "c", "eta__cj")])

    if config.ppc:
        outputs.extend(
            [
                fr.replicates("e", _draw(config, "e", "eta__e")),
                fr.replicates("c", _draw(config, "c", "eta__cj")),
            ]
        )

    if config.save_imputed:
        outputs.append(
            Fragment(
                generated=[fr.imputed_output("e"), fr.imputed_output("c")],
                generated_statements=[
                    "imp__e = e__val[idx__mis__e]",
                    "imp__c = c__val[idx__mis__c]",
                ],
            )
        )
    return outputs


def compile_hurdle(
    config: "ModelConfig", designs: Mapping[str, "Design"]
) -> CompiledModel:
    """Compile the Stan program of a hurdle model.

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
        _hurdle_data(config),
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
            fr.missing_values("e", dist_e, "e.lat"),
            fr.missing_values("c", dist_c, "c.lat"),
        ]
    )
    fragments.extend(fr.linear_predictor(key, designs[key]) for key in config.submodels)
    fragments.extend(fr.mean_predictor(key, designs[key]) for key in ("e", "c"))
    fragments.extend(
        [
            _effect_values(config),
            _dependence(config),
            _likelihood(config),
            _structural_imputation(config),
        ]
    )
    fragments.extend(_outputs(config))

    return CompiledModel.from_program("hurdle", StanProgram(fragments))
