# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Parsing of the model formulas passed to the fit entry points.

Formulas follow the familiar R notation, restricted to what the model compilers
support:

    - ``"e ~ age + sex"``: fixed effects with an intercept
    - ``"e ~ 0 + age"`` or ``"e ~ age - 1"``: fixed effects without an intercept
    - ``"e ~ age + (1 | site)"``: random intercept by ``site``
    - ``"e ~ (age | site)"`` or ``"e ~ (1 + age | site)"``: random intercept and
      random slope for ``age``
    - ``"e ~ (0 + age | site)"``: random slope only

At most one random-effects block is allowed per formula. Terms that appear in the
random-effects block are removed from the fixed part of the design, and a random
intercept removes the fixed intercept: the group-level means of the random block
take the place of the corresponding fixed coefficients.
"""

from __future__ import annotations

import re

from dataclasses import dataclass
from typing import Optional

from missinghe.exceptions import FormulaError

# Valid covariate and group names
_NAME = r"[A-Za-z_.][A-Za-z0-9_.]*"
_NAME_RE = re.compile(rf"^{_NAME}$")
_RANDOM_RE = re.compile(r"\(([^()|]*)\|([^()|]*)\)")
_NO_INTERCEPT_RE = re.compile(r"-\s*1(?![0-9.])")


@dataclass(frozen=True)
class RandomEffects:
    """Random-effects structure of one sub-model.

    :ivar group: Name of the clustering column
    :ivar intercept: Whether the intercept varies by group
    :ivar slopes: Covariates whose coefficients vary by group
    """

    group: str
    intercept: bool
    slopes: tuple[str, ...]

    @property
    def terms(self) -> tuple[str, ...]:
        """All covariates named in the block (the intercept excluded)."""
        return self.slopes


@dataclass(frozen=True)
class Formula:
    """A parsed sub-model formula.

    :ivar response: Name on the left-hand side of the ``~``
    :ivar intercept: Whether the formula has an intercept (fixed or random)
    :ivar terms: Covariates on the right-hand side, in order, random slopes included
    :ivar random: Random-effects structure, or None
    :ivar text: The formula as written by the user
    """

    response: str
    intercept: bool
    terms: tuple[str, ...]
    random: Optional[RandomEffects] = None
    text: str = ""

    @property
    def fixed_intercept(self) -> bool:
        """Whether the intercept is a fixed coefficient."""
        return self.intercept and not (self.random is not None and self.random.intercept)

    @property
    def fixed_terms(self) -> tuple[str, ...]:
        """Covariates with fixed coefficients."""
        random_terms = set(self.random.slopes) if self.random is not None else set()
        return tuple(term for term in self.terms if term not in random_terms)

    @property
    def columns(self) -> tuple[str, ...]:
        """All data columns the right-hand side references, group column included."""
        columns = list(self.terms)
        if self.random is not None:
            columns.append(self.random.group)
        return tuple(dict.fromkeys(columns))

    @property
    def is_intercept_only(self) -> bool:
        """Whether the formula has no covariates and no random effects."""
        return len(self.terms) == 0 and self.random is None

    def __str__(self) -> str:
        return self.text


def _split_terms(text: str, field: str) -> tuple[bool, list[str]]:
    """Split the fixed part of a right-hand side into an intercept flag and terms."""
    intercept = True
    if _NO_INTERCEPT_RE.search(text):
        intercept = False
        text = _NO_INTERCEPT_RE.sub("", text)

    terms = []
    for raw in text.split("+"):
        term = raw.strip()
        if term == "":
            continue
        if term == "1":
            intercept = True
        elif term == "0":
            intercept = False
        elif _NAME_RE.match(term):
            if term not in terms:
                terms.append(term)
        else:
            raise FormulaError(
                f"Unsupported term '{term}' in {field}. Only column names, '0', '1' "
                "and a single '(terms | group)' block are allowed."
            )
    return intercept, terms


def parse_formula(text: str, field: str, response: Optional[str] = None) -> Formula:
    """Parse a formula string.

    :param text: The formula, e.g. ``"e ~ age + (1 | site)"``
    :type text: str
    :param field: Name of the argument the formula came from, used in error
        messages (e.g., ``model_eff``)
    :type field: str
    :param response: Required left-hand side. If None, any valid name is accepted.
    :type response: Optional[str]

    :returns: The parsed formula
    :rtype: Formula

    :raises FormulaError: If the formula is malformed, has more than one random
        block, or its response differs from ``response``
    """
    if not isinstance(text, str) or text.count("~") != 1:
        raise FormulaError(
            f"{field} must be a string with exactly one '~', got {text!r}."
        )
    lhs, rhs = (part.strip() for part in text.split("~"))

    # Check the response
    if not _NAME_RE.match(lhs):
        raise FormulaError(f"Invalid response '{lhs}' in {field}.")
    if response is not None and lhs != response:
        raise FormulaError(
            f"The response of {field} must be '{response}', got '{lhs}'."
        )

    # Pull out the random-effects block
    blocks = _RANDOM_RE.findall(rhs)
    if len(blocks) > 1:
        raise FormulaError(
            f"{field} has {len(blocks)} random-effects blocks; at most one clustering "
            "variable is supported per sub-model."
        )
    fixed_text = _RANDOM_RE.sub("", rhs)
    if "(" in fixed_text or ")" in fixed_text or "|" in fixed_text:
        raise FormulaError(f"Malformed random-effects block in {field}: '{rhs}'.")

    intercept, terms = _split_terms(fixed_text, field)

    random = None
    if blocks:
        block_terms, group = blocks[0]
        group = group.strip()
        if not _NAME_RE.match(group):
            raise FormulaError(f"Invalid clustering variable '{group}' in {field}.")
        random_intercept, slopes = _split_terms(block_terms, field)
        if not random_intercept and not slopes:
            raise FormulaError(
                f"The random-effects block of {field} has neither an intercept nor "
                "slopes."
            )
        random = RandomEffects(
            group=group, intercept=random_intercept, slopes=tuple(slopes)
        )

        # Random slopes are terms of the model; a random intercept implies one
        for slope in slopes:
            if slope not in terms:
                terms.append(slope)
        if random_intercept:
            intercept = True

    return Formula(
        response=lhs,
        intercept=intercept,
        terms=tuple(terms),
        random=random,
        text=text.strip(),
    )
