# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Stan program of the pattern-mixture model family.

Individuals are grouped by their missingness pattern (which outcomes are
observed). Each pattern that observes an outcome gets its own regression
parameters for it; patterns that do not observe an outcome borrow the parameters
of a donor pattern chosen by the identifying restriction (complete cases for
``CC``, the other available-case pattern for ``AC``). Under MNAR the borrowed
link-scale means are shifted by a sensitivity parameter ``Delta`` drawn uniformly
from a user-supplied range in each posterior draw.

Pattern membership probabilities per arm have a symmetric Dirichlet prior and a
multinomial likelihood on the pattern counts. The marginal mean of an outcome is
the membership-weighted average of the pattern-specific means, computed from the
draws during post-processing.
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


def _pattern_data() -> Fragment:
    """Pattern of each individual, pattern counts, and parameter sets."""
    data = [
        StanVariable("P", "int", lower="1"),
        StanVariable("pat", "int", array_dims=("N",), lower="1", upper="P"),
        StanVariable("n.pat", "int", array_dims=(2, "P"), lower="0"),
    ]
    for outcome in ("e", "c"):
        data.extend(
            [
                StanVariable(f"S.{outcome}", "int", lower="1"),
                StanVariable(
                    f"set.{outcome}",
                    "int",
                    array_dims=("P",),
                    lower="1",
                    upper=S(f"S.{outcome}"),
                ),
                StanVariable(
                    f"unid.{outcome}", "int", array_dims=("P",), lower="0", upper="1"
                ),
            ]
        )
    return Fragment(data=data)


def _pattern_probabilities() -> Fragment:
    """Per-arm pattern membership probabilities."""
    return Fragment(
        data=[fr.prior_data("pattern.prior")],
        parameters=[
            StanVariable(
                "pi.p", "simplex", ("P",), array_dims=(2,), dim_names=("arm", "pattern")
            )
        ],
        model=[
            "for (t in 1:2) pi__p[t] ~ dirichlet(rep_vector(prior__pattern, P))",
            "for (t in 1:2) n__pat[t] ~ multinomial(pi__p[t])",
        ],
    )


def _dependence(config: "ModelConfig") -> Fragment:
    """Regression of observed costs on observed effects, centred per effect set.

    Only individuals with an observed effect have their cost mean shifted. In the
    patterns where the effect is missing the costs keep the unadjusted mean of
    their parameter set, and the marginal cost means use those unadjusted means.
    """
    if not config.joint:
        return Fragment()
    return Fragment(
        data=[fr.prior_data("beta_f.prior")],
        parameters=[StanVariable("beta_f", "vector", (2,), dim_names=("arm",))],
        model=[f"beta_f ~ normal({fr.prior_args('beta_f.prior')})"],
        shared_locals=["array[S__e] vector[2] tmu__e"],
        shared=[
            f"for (s in 1:S__e) tmu__e[s] = {config.dist_e.stan_mean('eta_bar__e[s]')}",
            "for (n in 1:N) if (m__e[n] == 0) eta__c[n] += beta_f[arm[n]]"
            " * (e[n] - tmu__e[set__e[pat[n]]][arm[n]])",
        ],
    )


def _likelihood(config: "ModelConfig") -> Fragment:
    """Likelihood of the observed outcomes."""
    statements = []
    for outcome in ("e", "c"):
        dist = config.distribution(outcome)
        index = f"[{S(f'idx.obs.{outcome}')}]"
        statements.append(
            "target += "
            + dist.stan_lpdf(
                f"{outcome}{index}",
                f"{S(f'eta.{outcome}')}{index}",
                fr.aux_local(outcome, dist, index),
                vectorized=True,
            )
        )
    return Fragment(model=statements)


def _sensitivity(config: "ModelConfig") -> Fragment:
    """Sensitivity offsets of the unidentified patterns, drawn once per draw."""
    fragment = Fragment()
    for outcome, mnar in (("e", config.mnar_e), ("c", config.mnar_c)):
        if not mnar:
            continue
        delta, bounds = S(f"Delta.{outcome}"), S(f"range.Delta.{outcome}")
        fragment.data.append(StanVariable(f"range.Delta.{outcome}", "matrix", (2, 2)))
        fragment.generated.append(
            StanVariable(f"Delta.{outcome}", "vector", (2,), dim_names=("arm",))
        )
        fragment.generated_statements.append(
            f"for (t in 1:2) {delta}[t] = {bounds}[t, 1]"
            f" + ({bounds}[t, 2] - {bounds}[t, 1]) * uniform_rng(0, 1)"
        )
    return fragment


def _offset(config: "ModelConfig", outcome: str, pattern: str, arm: str) -> str:
    """Stan expression of the sensitivity offset added to a link-scale mean."""
    mnar = config.mnar_e if outcome == "e" else config.mnar_c
    if not mnar:
        return ""
    return f" + {S(f'unid.{outcome}')}[{pattern}] * {S(f'Delta.{outcome}')}{arm}"


def _outputs(config: "ModelConfig") -> list[Fragment]:
    """Generated quantities reported by the pattern-mixture model."""
    outputs = [_sensitivity(config)]

    # Pattern-specific link-scale means
    for outcome in ("e", "c"):
        name = f"lp.{outcome}.p"
        outputs.append(
            Fragment(
                generated=[
                    StanVariable(
                        name, "vector", (2,), array_dims=("P",), dim_names=("pattern", "arm")
                    )
                ],
                generated_statements=[
                    f"for (p in 1:P) {S(name)}[p] = "
                    f"{S(f'eta_bar.{outcome}')}[{S(f'set.{outcome}')}[p]]"
                    + _offset(config, outcome, "p", "")
                ],
            )
        )

        # Auxiliary parameters entering the outcome-scale mean, per pattern
        dist = config.distribution(outcome)
        if dist.MEAN_USES_AUX:
            aux = fr.aux_name(outcome, dist)
            outputs.append(
                Fragment(
                    generated=[
                        StanVariable(
                            f"{aux}.p",
                            "vector",
                            (2,),
                            array_dims=("P",),
                            dim_names=("pattern", "arm"),
                        )
                    ],
                    generated_statements=[
                        f"for (p in 1:P) {S(f'{aux}.p')}[p] = "
                        f"{S(aux)}[{S(f'set.{outcome}')}[p]]"
                    ],
                )
            )

    # Pointwise log-likelihoods, including the pattern membership
    outputs.extend(
        [
            fr.observed_loglik("e", config.dist_e, "e", "eta__e"),
            fr.observed_loglik("c", config.dist_c, "c", "eta__c"),
            Fragment(
                generated=[
                    StanVariable("loglik.pat", "vector", ("N",), dim_names=("obs",))
                ],
                generated_statements=[
                    "for (n in 1:N) loglik__pat[n] = "
                    "categorical_lpmf(pat[n] | pi__p[arm[n]])"
                ],
            ),
        ]
    )

    # Draws for individual n under the parameters of its pattern
    draws = {}
    for outcome in ("e", "c"):
        dist = config.distribution(outcome)
        draws[outcome] = dist.stan_rng(
            f"{S(f'eta.{outcome}')}[n]" + _offset(config, outcome, "pat[n]", "[arm[n]]"),
            fr.aux_local(outcome, dist, "[n]"),
        )

    if config.ppc:
        outputs.extend(fr.replicates(outcome, draws[outcome]) for outcome in ("e", "c"))

    if config.save_imputed:
        statements = []
        for outcome in ("e", "c"):
            statements.extend(
                [
                    f"for (k in 1:{S(f'N.mis.{outcome}')}) {{",
                    f"int n = {S(f'idx.mis.{outcome}')}[k]",
                    f"{S(f'imp.{outcome}')}[k] = {draws[outcome]}",
                    "}",
                ]
            )
        outputs.append(
            Fragment(
                generated=[fr.imputed_output("e"), fr.imputed_output("c")],
                generated_statements=statements,
            )
        )
    return outputs


def compile_pattern(
    config: "ModelConfig", designs: Mapping[str, "Design"]
) -> CompiledModel:
    """Compile the Stan program of a pattern-mixture model.

    :param config: The model configuration
    :type config: ModelConfig
    :param designs: Sub-model designs keyed by sub-model
    :type designs: Mapping[str, Design]

    :returns: The compiled model. Besides the outcome means, the pattern-specific
        coefficients ``alpha.p`` and ``beta.p`` are derived during post-processing.
    :rtype: CompiledModel
    """
    fragments = [
        fr.common_data(),
        fr.outcome_data("e", config.dist_e),
        fr.outcome_data("c", config.dist_c),
        _pattern_data(),
    ]
    for key in ("e", "c"):
        fragments.extend(
            [
                fr.design_data(key, designs[key]),
                fr.coefficients(key, designs[key], sets=True),
                fr.random_effects(key, designs[key]),
            ]
        )
    fragments.extend(
        [
            fr.aux_parameter("e", config.dist_e, sets=True),
            fr.aux_parameter("c", config.dist_c, sets=True),
            _pattern_probabilities(),
        ]
    )
    fragments.extend(
        fr.linear_predictor(key, designs[key], sets=True) for key in ("e", "c")
    )
    fragments.extend(fr.mean_predictor(key, designs[key], sets=True) for key in ("e", "c"))
    fragments.extend([_dependence(config), _likelihood(config)])
    fragments.extend(_outputs(config))

    # Coefficients of every pattern, with borrowed sets filled in
    derived = ["mu.e", "mu.c"]
    derived_dims = {"mu.e": ("arm",), "mu.c": ("arm",)}
    for key, coef in (("e", "alpha"), ("c", "beta")):
        if designs[key].n_fixed > 0:
            derived.append(f"{coef}.p")
            derived_dims[f"{coef}.p"] = ("pattern", f"coef.{key}", "arm")

    return CompiledModel.from_program(
        "pattern", StanProgram(fragments), tuple(derived), derived_dims
    )
