# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Assembly of Stan programs from text fragments.

A compiled model is built by concatenating :py:class:`Fragment` instances. Each
fragment carries the declarations and statements one piece of the model adds to
each block of a Stan program: a likelihood, a random-effects block, a missingness
model, a sensitivity parameter, and so on. :py:class:`StanProgram` merges the
fragments block by block, removes duplicate declarations, and lays the blocks out
with consistent indentation. The result is frozen into a :py:class:`CompiledModel`
holding the program text together with the declarations needed to bind data,
draw initial values, and name the outputs.

Local computations needed in both the ``model`` and ``generated quantities``
blocks (linear predictors, imputed-outcome vectors) are written once as *shared*
lines and emitted in both places. Generated quantities are computed inside a
nested scope so that only the declared outputs are written by the sampler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

import numpy as np

from missinghe import utils

# Function for combining a list of Stan code lines
DEFAULT_INDENTATION = 4

StanType = Literal["int", "real", "vector", "row_vector", "matrix", "simplex"]


@dataclass(frozen=True)
class StanVariable:
    """A variable declared in a Stan program.

    :ivar name: Display name (``sigma.e``); the Stan identifier replaces dots with
        double underscores
    :ivar stan_type: Base Stan type
    :ivar dims: Container dimensions of the base type (one for vectors and
        simplexes, two for matrices, none for scalars). Each entry is a literal
        size or the display name of an integer data entry.
    :ivar array_dims: Array dimensions wrapped around the base type
    :ivar lower: Lower bound as a Stan expression, or None
    :ivar upper: Upper bound as a Stan expression, or None
    :ivar dim_names: Coordinate names of the array dimensions followed by the
        container dimensions
    :ivar monitor: Whether the variable is reported in the posterior
    """

    name: str
    stan_type: StanType
    dims: tuple[Union[int, str], ...] = ()
    array_dims: tuple[Union[int, str], ...] = ()
    lower: Optional[str] = None
    upper: Optional[str] = None
    dim_names: tuple[str, ...] = ()
    monitor: bool = True

    @property
    def stan_name(self) -> str:
        """Stan identifier of the variable."""
        return utils.to_stan_name(self.name)

    @staticmethod
    def _format_dim(dim: Union[int, str]) -> str:
        return utils.to_stan_name(dim) if isinstance(dim, str) else str(dim)

    def declaration(self) -> str:
        """Stan declaration of the variable, without the trailing semicolon.

        Example:
            >>> StanVariable("z.a", "matrix", ("J.e", "Q.e"), array_dims=(2,)).declaration()
            'array[2] matrix[J__e, Q__e] z__a'
        """
        bounds = []
        if self.lower is not None:
            bounds.append(f"lower={self.lower}")
        if self.upper is not None:
            bounds.append(f"upper={self.upper}")
        text = self.stan_type + (f"<{', '.join(bounds)}>" if bounds else "")
        if self.dims:
            text += f"[{', '.join(self._format_dim(dim) for dim in self.dims)}]"
        if self.array_dims:
            text = (
                f"array[{', '.join(self._format_dim(dim) for dim in self.array_dims)}] "
                + text
            )
        return f"{text} {self.stan_name}"

    def shape(self, data: dict[str, Any]) -> tuple[int, ...]:
        """Resolve the full shape (array dimensions first) against Stan data.

        :param data: Data keyed by Stan identifier
        :type data: dict[str, Any]

        :returns: Shape of the variable
        :rtype: tuple[int, ...]
        """
        return tuple(
            int(data[utils.to_stan_name(dim)]) if isinstance(dim, str) else int(dim)
            for dim in (*self.array_dims, *self.dims)
        )

    def size(self, data: dict[str, Any]) -> int:
        """Number of scalar elements of the variable."""
        return int(np.prod(self.shape(data), dtype=int))

    @property
    def all_dim_names(self) -> tuple[str, ...]:
        """Coordinate names of every non-sample dimension."""
        n_dims = len(self.array_dims) + len(self.dims)
        if len(self.dim_names) == n_dims:
            return self.dim_names
        return tuple(f"{self.name}_dim_{i}" for i in range(n_dims))


@dataclass
class Fragment:
    """Declarations and statements one piece of a model adds to each block.

    :ivar data: Data declarations
    :ivar transformed_data: Statements of the transformed data block
    :ivar parameters: Parameter declarations
    :ivar transformed_parameters: Transformed parameter declarations
    :ivar transformed_parameter_statements: Statements defining them
    :ivar shared_locals: Local declarations emitted in both the model block and
        the generated quantities scope
    :ivar shared: Statements emitted in both places
    :ivar model_locals: Local declarations of the model block only
    :ivar model: Statements of the model block only
    :ivar generated: Output declarations of the generated quantities block
    :ivar generated_locals: Local declarations of the generated quantities scope
    :ivar generated_statements: Statements of the generated quantities scope
    """

    data: list[StanVariable] = field(default_factory=list)
    transformed_data: list[str] = field(default_factory=list)
    parameters: list[StanVariable] = field(default_factory=list)
    transformed_parameters: list[StanVariable] = field(default_factory=list)
    transformed_parameter_statements: list[str] = field(default_factory=list)
    shared_locals: list[str] = field(default_factory=list)
    shared: list[str] = field(default_factory=list)
    model_locals: list[str] = field(default_factory=list)
    model: list[str] = field(default_factory=list)
    generated: list[StanVariable] = field(default_factory=list)
    generated_locals: list[str] = field(default_factory=list)
    generated_statements: list[str] = field(default_factory=list)


def _unique(variables: list[StanVariable]) -> list[StanVariable]:
    """Drop repeated declarations, keeping the first one of each name."""
    seen = {}
    for variable in variables:
        if variable.name in seen:
            if seen[variable.name] != variable:
                raise ValueError(f"Conflicting declarations of '{variable.name}'.")
            continue
        seen[variable.name] = variable
    return list(seen.values())


class StanProgram:
    """A Stan program assembled from fragments.

    :param fragments: Fragments in dependency order. Statements of later fragments
        may use anything declared or computed by earlier ones.
    :type fragments: list[Fragment]
    """

    def __init__(self, fragments: list[Fragment]):
        self.fragments = list(fragments)

    def _collect(self, attribute: str) -> list:
        """Concatenate one attribute over all fragments."""
        collected = []
        for fragment in self.fragments:
            collected.extend(getattr(fragment, attribute))
        return collected

    @staticmethod
    def finalize_line(text: str, indentation_level: int) -> str:
        """Apply indentation and terminate statements with semicolons.

        :param text: Raw code text
        :type text: str
        :param indentation_level: Indentation level of the line
        :type indentation_level: int

        :returns: Formatted line
        :rtype: str
        """
        # Pad the input text with spaces
        formatted = f"{' ' * DEFAULT_INDENTATION * indentation_level}{text}"

        # Add a semicolon to the end if not a bracket, comment, or blank
        if text and text[-1] not in {"{", "}", ";"} and not text.startswith("//"):
            formatted += ";"

        return formatted

    def combine_lines(self, lines: list[str], indentation_level: int = 1) -> str:
        """Combine code lines, indenting the bodies of braced scopes.

        :param lines: Lines to combine
        :type lines: list[str]
        :param indentation_level: Indentation level of the outermost lines.
            Defaults to 1.
        :type indentation_level: int

        :returns: Combined code
        :rtype: str
        """
        # Nothing if no lines
        if len(lines) == 0:
            return ""

        formatted = []
        depth = indentation_level
        for line in lines:
            if line.startswith("}"):
                depth -= 1
            formatted.append(self.finalize_line(line, depth))
            if line.endswith("{"):
                depth += 1
        return "\n".join(formatted)

    def _block(self, name: str, lines: list[str]) -> str:
        """Wrap lines in a named block, or return nothing if there are none."""
        if len(lines) == 0:
            return ""
        return f"{name} {{\n" + self.combine_lines(lines) + "\n}"

    @property
    def data(self) -> list[StanVariable]:
        """All data declarations."""
        return _unique(self._collect("data"))

    @property
    def parameters(self) -> list[StanVariable]:
        """All parameter declarations."""
        return _unique(self._collect("parameters"))

    @property
    def transformed_parameters(self) -> list[StanVariable]:
        """All transformed parameter declarations."""
        return _unique(self._collect("transformed_parameters"))

    @property
    def generated(self) -> list[StanVariable]:
        """All generated quantity declarations."""
        return _unique(self._collect("generated"))

    def _scope(self, local_attribute: str, statement_attribute: str) -> list[str]:
        """Declarations then statements of the model or generated quantities scope.

        Shared lines are interleaved with the scope-specific lines fragment by
        fragment, so each fragment sees everything computed before it.
        """
        declarations, statements = [], []
        for fragment in self.fragments:
            declarations.extend(fragment.shared_locals)
            declarations.extend(getattr(fragment, local_attribute))
            statements.extend(fragment.shared)
            statements.extend(getattr(fragment, statement_attribute))
        return declarations + statements

    @property
    def data_block(self) -> str:
        """Stan data block."""
        return self._block(
            "data", [variable.declaration() for variable in self.data]
        )

    @property
    def transformed_data_block(self) -> str:
        """Stan transformed data block."""
        return self._block("transformed data", self._collect("transformed_data"))

    @property
    def parameters_block(self) -> str:
        """Stan parameters block."""
        return self._block(
            "parameters", [variable.declaration() for variable in self.parameters]
        )

    @property
    def transformed_parameters_block(self) -> str:
        """Stan transformed parameters block."""
        return self._block(
            "transformed parameters",
            [variable.declaration() for variable in self.transformed_parameters]
            + self._collect("transformed_parameter_statements"),
        )

    @property
    def model_block(self) -> str:
        """Stan model block."""
        return self._block("model", self._scope("model_locals", "model"))

    @property
    def generated_quantities_block(self) -> str:
        """Stan generated quantities block.

        Outputs are declared at the top level; everything else lives in a nested
        scope so that it is not written out.
        """
        scope = self._scope("generated_locals", "generated_statements")
        lines = [variable.declaration() for variable in self.generated]
        if scope:
            lines += ["{", *scope, "}"]
        return self._block("generated quantities", lines)

    @property
    def code(self) -> str:
        """The complete Stan program."""
        # Join steps that have contents
        return (
            "\n".join(
                val
                for val in (
                    self.data_block,
                    self.transformed_data_block,
                    self.parameters_block,
                    self.transformed_parameters_block,
                    self.model_block,
                    self.generated_quantities_block,
                )
                if len(val.strip()) > 0
            )
            + "\n"
        )


@dataclass(frozen=True)
class CompiledModel:
    """A generated Stan program and everything needed to run and read it.

    Built deterministically from a model configuration and the structural flags
    of the sub-model designs; never modified after construction.

    :ivar family: Model family the program was compiled for
    :ivar code: The Stan program
    :ivar data: Data the program declares
    :ivar parameters: Parameters the program declares, used for initial values
    :ivar outputs: Monitored variables written by the sampler, in monitor order
    :ivar derived: Display names of the quantities derived from the outputs
        during post-processing (e.g., ``mu.e``)
    :ivar derived_dims: Coordinate names of each derived quantity
    """

    family: str
    code: str
    data: tuple[StanVariable, ...]
    parameters: tuple[StanVariable, ...]
    outputs: tuple[StanVariable, ...]
    derived: tuple[str, ...] = ("mu.e", "mu.c")
    derived_dims: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_program(
        cls,
        family: str,
        program: StanProgram,
        derived: tuple[str, ...] = ("mu.e", "mu.c"),
        derived_dims: Optional[dict[str, tuple[str, ...]]] = None,
    ) -> "CompiledModel":
        """Freeze a Stan program into a compiled model."""
        outputs = [
            variable
            for variable in (
                *program.parameters,
                *program.transformed_parameters,
                *program.generated,
            )
            if variable.monitor
        ]
        return cls(
            family=family,
            code=program.code,
            data=tuple(program.data),
            parameters=tuple(program.parameters),
            outputs=tuple(outputs),
            derived=derived,
            derived_dims=derived_dims or {name: ("arm",) for name in derived},
        )

    @property
    def monitors(self) -> tuple[str, ...]:
        """Display names of every reported quantity: derived quantities first, then
        the sampler outputs."""
        return self.derived + tuple(variable.name for variable in self.outputs)

    def output(self, name: str) -> StanVariable:
        """Look up a monitored output by display name."""
        for variable in self.outputs:
            if variable.name == name:
                return variable
        raise KeyError(f"'{name}' is not an output of this model.")

    def has_output(self, name: str) -> bool:
        """Whether a display name is a monitored output of this model."""
        return any(variable.name == name for variable in self.outputs)

    @property
    def output_dims(self) -> dict[str, list[str]]:
        """Coordinate names of each output, keyed by Stan identifier, in the form
        ArviZ converters take as ``dims``."""
        return {
            variable.stan_name: list(variable.all_dim_names) for variable in self.outputs
        }

    def write(self, path: str) -> None:
        """Write the program text to a caller-supplied path.

        :param path: Destination file
        :type path: str
        """
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.code)
