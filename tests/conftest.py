# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Shared fixtures: synthetic two-arm trials and a stand-in sampler.

The stand-in sampler never runs Stan. It draws independent values for every
monitored output of a compiled model, respecting the declared bounds and simplex
constraints. Draws are seeded by output name, so two models sharing an output get
the same draws of it. They are packaged exactly as the CmdStan sampler packages
them. This exercises the full pipeline (configuration, binding, compilation,
initial values, post-processing, economics) without a C++ toolchain.
"""

import zlib

import arviz as az
import numpy as np
import pandas as pd
import pytest

from missinghe.model.binder import resolve_bound

N_ARM = (75, 84)


class FakeSampler:
    """Callable with the sampler signature drawing support-respecting values.

    :param seed: Seed of the draws. Defaults to 0.
    :type seed: int
    """

    def __init__(self, seed: int = 0):
        self.seed = seed
        self.calls = []

    def _draw(self, variable, shape, data):
        rng = np.random.default_rng([self.seed, zlib.crc32(variable.name.encode())])
        if variable.stan_type == "simplex":
            return rng.dirichlet(np.ones(shape[-1]), size=shape[:-1])
        if variable.name.startswith("loglik."):
            return -np.abs(rng.normal(0, 1, size=shape))

        lower = resolve_bound(variable.lower, data)
        upper = resolve_bound(variable.upper, data)
        if lower is not None and upper is not None:
            return rng.uniform(lower, upper, size=shape)
        elif lower is not None:
            return lower + rng.exponential(1.0, size=shape)
        elif upper is not None:
            return upper - rng.exponential(1.0, size=shape)
        return rng.normal(0, 1, size=shape)

    def __call__(
        self, model, bound, inits, n_iter, n_burnin, n_chains, thin, seed=None
    ):
        self.calls.append(
            {
                "inits": inits,
                "n_iter": n_iter,
                "n_burnin": n_burnin,
                "n_chains": n_chains,
                "thin": thin,
                "seed": seed,
            }
        )
        data = bound.stan_data
        posterior = {
            variable.stan_name: self._draw(
                variable, (n_chains, n_iter, *variable.shape(data)), data
            )
            for variable in model.outputs
        }
        return az.from_dict(
            posterior=posterior, coords=bound.coords, dims=model.output_dims
        )


def make_trial_data(seed: int = 2024, p_missing: float = 0.35) -> pd.DataFrame:
    """Synthetic trial with normal outcomes, a numeric covariate, a sex factor, and
    a site cluster. Both outcomes are missing completely at random."""
    rng = np.random.default_rng(seed)
    n = sum(N_ARM)
    t = np.repeat([1, 2], N_ARM)
    u0 = rng.uniform(0.5, 0.9, size=n)
    e = 0.1 + 0.8 * u0 + 0.05 * (t == 2) + rng.normal(0, 0.05, size=n)
    c = 800 + 300 * (t == 2) + rng.normal(0, 100, size=n)
    e[rng.uniform(size=n) < p_missing] = np.nan
    c[rng.uniform(size=n) < p_missing] = np.nan
    return pd.DataFrame(
        {
            "e": e,
            "c": c,
            "t": t,
            "u0": u0,
            "sex": rng.choice(["F", "M"], size=n),
            "site": rng.choice(["s1", "s2", "s3", "s4", "s5"], size=n),
        },
        index=pd.Index([f"id{i:03d}" for i in range(n)], name="id"),
    )


@pytest.fixture
def trial_data():
    return make_trial_data()


@pytest.fixture
def binary_data():
    """Trial with a Bernoulli effect and gamma costs."""
    data = make_trial_data()
    rng = np.random.default_rng(7)
    observed_e = data["e"].notna()
    data.loc[observed_e, "e"] = (
        rng.uniform(size=observed_e.sum()) < 0.6
    ).astype(float)
    data["c"] = data["c"].abs() + 1
    return data


@pytest.fixture
def hurdle_data():
    """Trial where a share of the observed effects sit exactly at full health."""
    data = make_trial_data()
    rng = np.random.default_rng(11)
    observed = data["e"].notna().to_numpy()
    structural = observed & (rng.uniform(size=len(data)) < 0.3)
    data.loc[structural, "e"] = 1.0
    return data


@pytest.fixture
def zero_cost_data():
    """Trial with positive costs except for one zero."""
    data = make_trial_data()
    data["c"] = data["c"].abs() + 1
    first_observed = data.index[data["c"].notna()][0]
    data.loc[first_observed, "c"] = 0.0
    return data


@pytest.fixture
def fake_sampler():
    return FakeSampler()


@pytest.fixture
def fit_kwargs(fake_sampler):
    """Keyword arguments running a fit quickly with the stand-in sampler."""
    return {"n_iter": 200, "n_chains": 2, "seed": 1, "sampler": fake_sampler}
