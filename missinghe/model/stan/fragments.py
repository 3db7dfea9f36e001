# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Text-fragment generators shared by the model families.

Each function here builds one :py:class:`~missinghe.model.stan.program.Fragment`
keyed by a part of the configuration: the data of a sub-model design, its
regression coefficients, its random effects, its linear predictor, the auxiliary
parameter of an outcome distribution, the imputation of a missing continuous
outcome, and the standard outputs (link-scale means, log-likelihoods, replicates).
The family compilers in :py:mod:`~missinghe.model.stan.selection`,
:py:mod:`~missinghe.model.stan.pattern`, and :py:mod:`~missinghe.model.stan.hurdle`
compose them with their own family-specific fragments.

Sub-models are identified by their key: ``e`` and ``c`` for the outcome
regressions, ``me`` and ``mc`` for the missingness regressions of selection models,
and ``se`` and ``sc`` for the structural-value regressions of hurdle models.
Names follow the convention ``<quantity>.<sub-model>`` (e.g., ``eta.me``), which is
written ``eta__me`` in Stan.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from missinghe.model.binder import Design
from missinghe.model.distributions import Distribution
from missinghe.model.priors import ROLES
from missinghe.model.stan.program import Fragment, StanVariable
from missinghe.utils import to_stan_name as S


@dataclass(frozen=True)
class SubModelNames:
    """Names used by the Stan text of one sub-model.

    :ivar key: Sub-model key
    :ivar outcome: Outcome the sub-model belongs to (``e`` or ``c``)
    :ivar coef: Display name of the coefficient matrix
    :ivar random: Display name of the random-effect array
    :ivar intercept_role: Prior role of the intercept
    :ivar slope_role: Prior role of the other coefficients
    :ivar mu_role: Prior role of the random-effect means
    :ivar s_role: Prior role of the random-effect standard deviations
    :ivar intercept_family: Stan family of the intercept prior
    """

    key: str
    outcome: str
    coef: str
    random: str
    intercept_role: str
    slope_role: str
    mu_role: str
    s_role: str
    intercept_family: Literal["normal", "logistic"]


def _auxiliary_names(key: str) -> SubModelNames:
    """Names of a missingness or structural-value sub-model."""
    outcome = key[-1]
    return SubModelNames(
        key=key,
        outcome=outcome,
        coef=f"gamma.{outcome}",
        random=f"g.{outcome}",
        intercept_role=f"gamma0.prior.{outcome}",
        slope_role=f"gamma.prior.{outcome}",
        mu_role=f"mu.g.prior.{outcome}",
        s_role=f"s.g.prior.{outcome}",
        intercept_family="logistic",
    )


SUBMODEL_NAMES: dict[str, SubModelNames] = {
    "e": SubModelNames(
        "e", "e", "alpha", "a", "alpha0.prior", "alpha.prior", "mu.a.prior",
        "s.a.prior", "normal",
    ),
    "c": SubModelNames(
        "c", "c", "beta", "b", "beta0.prior", "beta.prior", "mu.b.prior",
        "s.b.prior", "normal",
    ),
    **{key: _auxiliary_names(key) for key in ("me", "mc", "se", "sc")},
}
"""Stan names of every sub-model, keyed by sub-model."""


def prior_data(role: str) -> StanVariable:
    """Data declaration carrying the hyperparameters of a prior role."""
    prior_role = ROLES[role]
    if prior_role.family == "dirichlet":
        return StanVariable(prior_role.data_name, "real", lower="0")
    return StanVariable(prior_role.data_name, "vector", (2,))


def prior_args(role: str) -> str:
    """Stan arguments of a two-hyperparameter prior, e.g. ``prior__alpha[1], ...``."""
    name = ROLES[role].stan_name
    return f"{name}[1], {name}[2]"


def common_data() -> Fragment:
    """Sample size, arm of each individual, and arm sizes."""
    return Fragment(
        data=[
            StanVariable("N", "int", lower="1"),
            StanVariable("arm", "int", array_dims=("N",), lower="1", upper="2"),
            StanVariable("n.arm", "int", array_dims=(2,), lower="0"),
        ]
    )


def design_data(key: str, design: Design) -> Fragment:
    """Data of a sub-model design: the fixed and random design matrices."""
    data = [
        StanVariable(f"K.{key}", "int", lower="0"),
        StanVariable(f"X.{key}", "matrix", ("N", f"K.{key}")),
        StanVariable(f"mean_X.{key}", "matrix", (2, f"K.{key}")),
    ]
    if design.random is not None:
        data.extend(
            [
                StanVariable(f"J.{key}", "int", lower="1"),
                StanVariable(f"Q.{key}", "int", lower="1"),
                StanVariable(
                    f"clus.{key}",
                    "int",
                    array_dims=("N",),
                    lower="1",
                    upper=S(f"J.{key}"),
                ),
                StanVariable(f"W.{key}", "matrix", ("N", f"Q.{key}")),
                StanVariable(f"mean_W.{key}", "matrix", (2, f"Q.{key}")),
            ]
        )
    return Fragment(data=data)


def coefficients(key: str, design: Design, sets: bool = False) -> Fragment:
    """Arm-specific regression coefficients of a sub-model and their priors.

    :param key: Sub-model key
    :type key: str
    :param design: Design of the sub-model
    :type design: Design
    :param sets: Whether there is one coefficient matrix per parameter set
        (pattern-mixture models). Defaults to False.
    :type sets: bool

    :returns: The fragment. Empty if the sub-model has no fixed coefficients.
    :rtype: Fragment
    """
    names = SUBMODEL_NAMES[key]
    if design.n_fixed == 0:
        return Fragment()

    coef = S(names.coef)
    n_coef = S(f"K.{key}")
    set_count = f"S.{names.outcome}"
    fragment = Fragment(
        parameters=[
            StanVariable(
                names.coef,
                "matrix",
                (f"K.{key}", 2),
                array_dims=(set_count,) if sets else (),
                dim_names=((f"set.{names.outcome}",) if sets else ())
                + (f"coef.{key}", "arm"),
            )
        ]
    )

    # Priors: the intercept and the remaining coefficients have separate roles
    base = f"{coef}[s]" if sets else coef
    statements = []
    first_slope = 1
    if design.has_intercept:
        fragment.data.append(prior_data(names.intercept_role))
        statements.append(
            f"{base}[1] ~ {names.intercept_family}({prior_args(names.intercept_role)})"
        )
        first_slope = 2
    if design.n_fixed >= first_slope:
        fragment.data.append(prior_data(names.slope_role))
        target = base if first_slope == 1 else f"{base}[2:{n_coef}]"
        statements.append(
            f"to_vector({target}) ~ normal({prior_args(names.slope_role)})"
        )

    if sets:
        statements = [f"for (s in 1:{S(set_count)}) {{", *statements, "}"]
    fragment.model.extend(statements)
    return fragment


def random_effects(key: str, design: Design) -> Fragment:
    """Arm-specific random effects of a sub-model, in non-centered form.

    The effect of cluster ``j`` in arm ``t`` is ``mu[:, t] + s[:, t] .* z[t][j]'``
    with standard normal ``z``. The group-level means ``mu`` replace the fixed
    coefficients of the terms named in the random block; the between-group
    standard deviations ``s`` have a uniform prior.
    """
    names = SUBMODEL_NAMES[key]
    if design.random is None:
        return Fragment()

    r = S(names.random)
    mu, sd, z = S(f"mu.{names.random}"), S(f"s.{names.random}"), S(f"z.{names.random}")
    n_clusters, n_terms = S(f"J.{key}"), S(f"Q.{key}")
    s_prior = ROLES[names.s_role].stan_name
    return Fragment(
        data=[prior_data(names.mu_role), prior_data(names.s_role)],
        parameters=[
            StanVariable(
                f"mu.{names.random}",
                "matrix",
                (f"Q.{key}", 2),
                dim_names=(f"re.{key}", "arm"),
            ),
            StanVariable(
                f"s.{names.random}",
                "matrix",
                (f"Q.{key}", 2),
                lower=f"{s_prior}[1]",
                upper=f"{s_prior}[2]",
                dim_names=(f"re.{key}", "arm"),
            ),
            StanVariable(
                f"z.{names.random}",
                "matrix",
                (f"J.{key}", f"Q.{key}"),
                array_dims=(2,),
                monitor=False,
            ),
        ],
        transformed_parameters=[
            StanVariable(
                names.random,
                "matrix",
                (f"J.{key}", f"Q.{key}"),
                array_dims=(2,),
                dim_names=("arm", f"cluster.{key}", f"re.{key}"),
            )
        ],
        transformed_parameter_statements=[
            f"for (t in 1:2) {r}[t] = rep_matrix({mu}[:, t]', {n_clusters})"
            f" + diag_post_multiply({z}[t], {sd}[:, t])"
        ],
        model=[
            f"to_vector({mu}) ~ normal({prior_args(names.mu_role)})",
            f"to_vector({sd}) ~ uniform({prior_args(names.s_role)})",
            f"for (t in 1:2) to_vector({z}[t]) ~ std_normal()",
        ],
    )


def linear_predictor(key: str, design: Design, sets: bool = False) -> Fragment:
    """Per-individual linear predictor ``eta.<key>`` of a sub-model.

    :param key: Sub-model key
    :type key: str
    :param design: Design of the sub-model
    :type design: Design
    :param sets: Whether coefficients are chosen by the parameter set of each
        individual's missingness pattern. Defaults to False.
    :type sets: bool

    :returns: The fragment
    :rtype: Fragment
    """
    names = SUBMODEL_NAMES[key]
    eta, coef, X = S(f"eta.{key}"), S(names.coef), S(f"X.{key}")
    fragment = Fragment()
    if design.n_fixed == 0:
        fragment.shared_locals.append(f"vector[N] {eta} = rep_vector(0, N)")
    elif sets:
        set_index = S(f"set.{names.outcome}")
        fragment.shared_locals.append(f"vector[N] {eta}")
        fragment.shared.append(
            f"for (n in 1:N) {eta}[n] = {X}[n] * {coef}[{set_index}[pat[n]]][:, arm[n]]"
        )
    else:
        fragment.shared_locals.append(
            f"vector[N] {eta} = rows_dot_product({X}, {coef}[:, arm]')"
        )

    if design.random is not None:
        fragment.shared.append(
            f"for (n in 1:N) {eta}[n] += {S(f'W.{key}')}[n]"
            f" * {S(names.random)}[arm[n]][{S(f'clus.{key}')}[n]]'"
        )
    return fragment


def mean_predictor(key: str, design: Design, sets: bool = False) -> Fragment:
    """Link-scale linear predictor ``eta_bar.<key>`` at the per-arm covariate means.

    The random-effect contribution is evaluated at the group-level means.
    """
    names = SUBMODEL_NAMES[key]
    eta_bar, coef = S(f"eta_bar.{key}"), S(names.coef)
    index = "[s]" if sets else ""
    terms = []
    if design.n_fixed > 0:
        terms.append(f"{S(f'mean_X.{key}')}[t] * {coef}{index}[:, t]")
    if design.random is not None:
        terms.append(f"{S(f'mean_W.{key}')}[t] * {S(f'mu.{names.random}')}[:, t]")
    value = " + ".join(terms) if terms else "0"

    if sets:
        set_count = S(f"S.{names.outcome}")
        return Fragment(
            shared_locals=[f"array[{set_count}] vector[2] {eta_bar}"],
            shared=[
                f"for (s in 1:{set_count}) for (t in 1:2) {eta_bar}[s][t] = {value}"
            ],
        )
    return Fragment(
        shared_locals=[f"vector[2] {eta_bar}"],
        shared=[f"for (t in 1:2) {eta_bar}[t] = {value}"],
    )


def aux_name(outcome: str, dist: type[Distribution]) -> Optional[str]:
    """Display name of the auxiliary parameter of an outcome, e.g. ``phi.e``."""
    return f"{dist.AUX_PARAM}.{outcome}" if dist.has_aux() else None


def aux_parameter(outcome: str, dist: type[Distribution], sets: bool = False) -> Fragment:
    """Arm-specific auxiliary parameter of an outcome distribution.

    The parameter has a uniform prior whose bounds are data, and a local
    per-individual copy ``aux.<outcome>`` used by the likelihood statements.
    """
    if not dist.has_aux():
        return Fragment()
    name = aux_name(outcome, dist)
    role = f"sigma.prior.{outcome}"
    prior = ROLES[role].stan_name
    aux, local = S(name), S(f"aux.{outcome}")
    set_count = S(f"S.{outcome}")
    fragment = Fragment(
        data=[prior_data(role)],
        parameters=[
            StanVariable(
                name,
                "vector",
                (2,),
                array_dims=(f"S.{outcome}",) if sets else (),
                lower=f"{prior}[1]",
                upper=f"{prior}[2]",
                dim_names=((f"set.{outcome}",) if sets else ()) + ("arm",),
            )
        ],
    )
    if sets:
        fragment.model.append(
            f"for (s in 1:{set_count}) {aux}[s] ~ uniform({prior_args(role)})"
        )
        fragment.shared_locals.append(f"vector[N] {local}")
        fragment.shared.append(
            f"for (n in 1:N) {local}[n] = {aux}[{S(f'set.{outcome}')}[pat[n]]][arm[n]]"
        )
    else:
        fragment.model.append(f"{aux} ~ uniform({prior_args(role)})")
        fragment.shared_locals.append(f"vector[N] {local} = {aux}[arm]")
    return fragment


def aux_local(outcome: str, dist: type[Distribution], index: str = "") -> Optional[str]:
    """Stan expression of the per-individual auxiliary parameter, or None."""
    return f"{S(f'aux.{outcome}')}{index}" if dist.has_aux() else None


def outcome_data(outcome: str, dist: type[Distribution]) -> Fragment:
    """Outcome values, missingness indicators, and observed/missing index sets.

    Missing continuous values are NaN and missing discrete values are ``-1``; they
    are never read by the likelihood, which only touches the observed indices.
    """
    values = (
        StanVariable(outcome, "int", array_dims=("N",), lower="-1")
        if dist.DISCRETE
        else StanVariable(outcome, "vector", ("N",))
    )
    return Fragment(
        data=[
            values,
            StanVariable(f"m.{outcome}", "int", array_dims=("N",), lower="0", upper="1"),
            StanVariable(f"N.mis.{outcome}", "int", lower="0"),
            StanVariable(
                f"idx.mis.{outcome}",
                "int",
                array_dims=(f"N.mis.{outcome}",),
                lower="1",
                upper="N",
            ),
            StanVariable(f"N.obs.{outcome}", "int", lower="0"),
            StanVariable(
                f"idx.obs.{outcome}",
                "int",
                array_dims=(f"N.obs.{outcome}",),
                lower="1",
                upper="N",
            ),
        ]
    )


def support_bounds(dist: type[Distribution]) -> dict[str, Optional[str]]:
    """Declaration bounds matching the support of a distribution."""
    return {
        "lower": None if dist.LOWER_BOUND is None else f"{dist.LOWER_BOUND:g}",
        "upper": None if dist.UPPER_BOUND is None else f"{dist.UPPER_BOUND:g}",
    }


def missing_values(outcome: str, dist: type[Distribution], full: str) -> Fragment:
    """Missing continuous outcomes as parameters, filled into a local vector.

    :param outcome: ``e`` or ``c``
    :type outcome: str
    :param dist: Distribution of the outcome
    :type dist: type[Distribution]
    :param full: Display name of the local vector holding observed and missing
        values together
    :type full: str

    :returns: The fragment
    :rtype: Fragment
    """
    return Fragment(
        parameters=[
            StanVariable(
                f"{outcome}.mis",
                "vector",
                (f"N.mis.{outcome}",),
                monitor=False,
                **support_bounds(dist),
            )
        ],
        shared_locals=[f"vector[N] {S(full)} = {outcome}"],
        shared=[f"{S(full)}[{S(f'idx.mis.{outcome}')}] = {S(f'{outcome}.mis')}"],
    )


def arm_average(target: str, expression: str) -> list[str]:
    """Statements averaging a per-individual expression (of ``n``) within arms."""
    return [
        f"{target} = rep_vector(0, 2)",
        f"for (n in 1:N) {target}[arm[n]] += {expression}",
        f"{target} = {target} ./ to_vector(n__arm)",
    ]


def mean_output(key: str) -> Fragment:
    """Report the link-scale mean ``lp.<key>`` of an outcome regression."""
    return Fragment(
        generated=[StanVariable(f"lp.{key}", "vector", (2,), dim_names=("arm",))],
        generated_statements=[f"{S(f'lp.{key}')} = {S(f'eta_bar.{key}')}"],
    )


def observed_loglik(
    outcome: str, dist: type[Distribution], y: str, eta: str
) -> Fragment:
    """Pointwise log-likelihood of the observed values of an outcome.

    Entries of individuals with a missing outcome are zero.

    :param outcome: ``e`` or ``c``
    :param dist: Distribution of the outcome
    :param y: Stan expression of the outcome vector, indexed by ``n``
    :param eta: Stan expression of the linear-predictor vector, indexed by ``n``
    """
    loglik = S(f"loglik.{outcome}")
    return Fragment(
        generated=[
            StanVariable(f"loglik.{outcome}", "vector", ("N",), dim_names=("obs",))
        ],
        generated_statements=[
            f"{loglik} = rep_vector(0, N)",
            f"for (k in 1:{S(f'N.obs.{outcome}')}) {{",
            f"int n = {S(f'idx.obs.{outcome}')}[k]",
            f"{loglik}[n] = "
            + dist.stan_lpdf(f"{y}[n]", f"{eta}[n]", aux_local(outcome, dist, "[n]")),
            "}",
        ],
    )


def indicator_loglik(key: str, y: str) -> Fragment:
    """Pointwise log-likelihood of a binary indicator modelled by ``eta.<key>``."""
    loglik = S(f"loglik.{key}")
    return Fragment(
        generated=[StanVariable(f"loglik.{key}", "vector", ("N",), dim_names=("obs",))],
        generated_statements=[
            f"for (n in 1:N) {loglik}[n] = bernoulli_logit_lpmf({y}[n] | "
            f"{S(f'eta.{key}')}[n])"
        ],
    )


def replicates(outcome: str, draw: str) -> Fragment:
    """Posterior predictive replicate of an outcome for every individual.

    :param outcome: ``e`` or ``c``
    :param draw: Stan expression drawing one replicate for individual ``n``
    """
    return Fragment(
        generated=[StanVariable(f"rep.{outcome}", "vector", ("N",), dim_names=("obs",))],
        generated_statements=[f"for (n in 1:N) {S(f'rep.{outcome}')}[n] = {draw}"],
    )


def imputed_output(outcome: str) -> StanVariable:
    """Declaration of the imputed values of the missing entries of an outcome."""
    return StanVariable(
        f"imp.{outcome}",
        "vector",
        (f"N.mis.{outcome}",),
        dim_names=(f"mis.{outcome}",),
    )
