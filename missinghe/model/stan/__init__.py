# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Stan program generation and execution for missinghe.

This submodule turns a validated
:py:class:`~missinghe.model.config.ModelConfig` into a Stan program and runs it:

    - :py:mod:`~missinghe.model.stan.program` assembles programs from text
      fragments and freezes them into a
      :py:class:`~missinghe.model.stan.program.CompiledModel`.
    - :py:mod:`~missinghe.model.stan.fragments` holds the fragments shared by all
      families (designs, coefficients, random effects, linear predictors, outcome
      likelihoods, standard outputs).
    - :py:mod:`~missinghe.model.stan.selection`,
      :py:mod:`~missinghe.model.stan.pattern`, and
      :py:mod:`~missinghe.model.stan.hurdle` compose them into the program of each
      model family.
    - :py:mod:`~missinghe.model.stan.stan_model` compiles and samples a program
      with CmdStan.

Compilation is deterministic: the same configuration and the same design flags
always produce byte-identical program text.
"""

from __future__ import annotations

from typing import Mapping, TYPE_CHECKING

from missinghe.model.stan.hurdle import compile_hurdle
from missinghe.model.stan.pattern import compile_pattern
from missinghe.model.stan.program import CompiledModel
from missinghe.model.stan.selection import compile_selection

if TYPE_CHECKING:
    from missinghe.model.binder import Design
    from missinghe.model.config import ModelConfig

COMPILERS = {
    "selection": compile_selection,
    "pattern": compile_pattern,
    "hurdle": compile_hurdle,
}
"""Program compiler of each model family."""


def compile_model(
    config: "ModelConfig", designs: Mapping[str, "Design"]
) -> CompiledModel:
    """Compile the Stan program of a configuration.

    :param config: The model configuration
    :type config: ModelConfig
    :param designs: Sub-model designs keyed by sub-model. Only their structural
        flags (intercepts, numbers of terms, random-effect blocks) affect the text.
    :type designs: Mapping[str, Design]

    :returns: The compiled model
    :rtype: CompiledModel
    """
    return COMPILERS[config.family](config, designs)
