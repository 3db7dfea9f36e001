# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""CmdStan execution of compiled missinghe models.

This module connects a :py:class:`~missinghe.model.stan.program.CompiledModel` to
CmdStan through CmdStanPy: the program is written to a working directory,
formatted, compiled, and sampled, and the resulting fit is converted to an ArviZ
``InferenceData`` object whose variables carry the named dimensions of the model.

Users will not normally interact with this module directly. The fit entry points
(:py:func:`~missinghe.model.fit.selection`, :py:func:`~missinghe.model.fit.pattern`,
:py:func:`~missinghe.model.fit.hurdle`) call :py:func:`cmdstan_sampler` unless
another sampler function is supplied.
"""

from __future__ import annotations

import os.path
import weakref

from tempfile import TemporaryDirectory
from typing import Any, Optional, TYPE_CHECKING

import arviz as az

from cmdstanpy import CmdStanModel, format_stan_file

import missinghe

from missinghe.defaults import (
    DEFAULT_CPP_OPTIONS,
    DEFAULT_FORCE_COMPILE,
    DEFAULT_MODEL_NAME,
    DEFAULT_STANC_OPTIONS,
)

if TYPE_CHECKING:
    from missinghe import custom_types
    from missinghe.model.binder import BoundData
    from missinghe.model.stan.program import CompiledModel


class StanModel(CmdStanModel):
    """CmdStanModel built from a compiled missinghe model.

    :param model: The compiled model
    :type model: CompiledModel
    :param output_dir: Directory for the Stan file and executable. Defaults to None
        (a temporary directory removed with the instance).
    :type output_dir: Optional[str]
    :param force_compile: Whether to recompile even if an executable exists.
        Defaults to False.
    :type force_compile: bool
    :param stanc_options: Options for the Stan compiler. Defaults to None (uses
        defaults).
    :type stanc_options: Optional[dict[str, Any]]
    :param cpp_options: Options for the C++ compiler. Defaults to None (uses
        defaults).
    :type cpp_options: Optional[dict[str, Any]]
    :param model_name: Name of the executable. Defaults to ``missinghe_model``.
    :type model_name: str
    """

    def __init__(
        self,
        model: "CompiledModel",
        output_dir: Optional[str] = None,
        force_compile: bool = DEFAULT_FORCE_COMPILE,
        stanc_options: Optional[dict[str, Any]] = None,
        cpp_options: Optional[dict[str, Any]] = None,
        model_name: str = DEFAULT_MODEL_NAME,
    ):
        # Set default options
        self._stanc_options = dict(stanc_options or DEFAULT_STANC_OPTIONS)
        cpp_options = dict(cpp_options or DEFAULT_CPP_OPTIONS)

        # Note the underlying compiled model
        self.model = model

        # Set the output directory and write the program
        self._set_output_dir(output_dir)
        self.stan_executable_path = os.path.join(self.output_dir, model_name)
        self.write_stan_program()

        # Initialize the CmdStanModel
        super().__init__(
            stan_file=self.stan_program_path,
            exe_file=(
                self.stan_executable_path
                if os.path.exists(self.stan_executable_path) and not force_compile
                else None
            ),
            force_compile=force_compile,
            stanc_options=self._stanc_options,
            cpp_options=cpp_options,
        )

    def _set_output_dir(self, output_dir: Optional[str]) -> None:
        """Configure the output directory, removing temporary ones with the model.

        :param output_dir: Directory path or None for a temporary directory
        :type output_dir: Optional[str]

        :raises FileNotFoundError: If the given directory does not exist
        """
        if output_dir is None:
            tempdir = TemporaryDirectory()
            weakref.finalize(self, tempdir.cleanup)
            output_dir = tempdir.name

        if not os.path.exists(output_dir):
            raise FileNotFoundError(f"Output directory {output_dir} does not exist.")

        self.output_dir = output_dir

    def write_stan_program(self) -> None:
        """Write the program to disk and apply Stan's canonical formatting."""
        self.model.write(self.stan_program_path)
        format_stan_file(
            self.stan_program_path,
            overwrite_file=True,
            canonicalize=True,
            stanc_options=self._stanc_options,
        )

    def sample(  # pylint: disable=arguments-differ
        self,
        bound: "BoundData",
        inits: list["custom_types.InitDict"],
        n_iter: "custom_types.Integer",
        n_burnin: "custom_types.Integer",
        n_chains: "custom_types.Integer",
        thin: "custom_types.Integer",
        seed: Optional["custom_types.Integer"] = None,
    ) -> az.InferenceData:
        """Run NUTS and convert the fit to ArviZ.

        :param bound: Data bound to the model
        :type bound: BoundData
        :param inits: One initial-value mapping per chain, keyed by Stan name
        :type inits: list[custom_types.InitDict]
        :param n_iter: Post-warmup iterations per chain
        :type n_iter: custom_types.Integer
        :param n_burnin: Warmup iterations per chain
        :type n_burnin: custom_types.Integer
        :param n_chains: Number of chains
        :type n_chains: custom_types.Integer
        :param thin: Thinning interval
        :type thin: custom_types.Integer
        :param seed: Sampler seed. Defaults to None, in which case one is drawn from
            the global random number generator.
        :type seed: Optional[custom_types.Integer]

        :returns: The posterior draws, with named dimensions and coordinates
        :rtype: az.InferenceData
        """
        # If a seed is not provided, use the global random number generator to get
        # one
        if seed is None:
            seed = int(missinghe.RNG.integers(0, 2**31 - 1))

        fit = CmdStanModel.sample(
            self,
            data=bound.stan_data,
            chains=n_chains,
            iter_sampling=n_iter,
            iter_warmup=n_burnin,
            thin=thin,
            seed=seed,
            inits=inits,
            show_progress=False,
        )
        return az.from_cmdstanpy(
            posterior=fit,
            coords=bound.coords,
            dims=self.model.output_dims,
        )

    @property
    def stan_program_path(self) -> str:
        """Path to the generated Stan program file."""
        return self.stan_executable_path + ".stan"


def cmdstan_sampler(
    model: "CompiledModel",
    bound: "BoundData",
    inits: list["custom_types.InitDict"],
    n_iter: "custom_types.Integer",
    n_burnin: "custom_types.Integer",
    n_chains: "custom_types.Integer",
    thin: "custom_types.Integer",
    seed: Optional["custom_types.Integer"] = None,
) -> az.InferenceData:
    """Compile a model with CmdStan and sample from its posterior.

    This is the default sampler of the fit entry points. Any function with the
    same signature returning an ``InferenceData`` whose posterior group holds the
    outputs of the model (keyed by Stan name) can be used in its place.

    :returns: The posterior draws
    :rtype: az.InferenceData
    """
    return StanModel(model).sample(
        bound=bound,
        inits=inits,
        n_iter=n_iter,
        n_burnin=n_burnin,
        n_chains=n_chains,
        thin=thin,
        seed=seed,
    )
