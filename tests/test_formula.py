# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import pytest

from missinghe.exceptions import FormulaError
from missinghe.model.formula import parse_formula


def test_fixed_effects():
    formula = parse_formula("e ~ u0 + sex", "model_eff")
    assert formula.response == "e"
    assert formula.intercept and formula.fixed_intercept
    assert formula.terms == ("u0", "sex")
    assert formula.random is None
    assert str(formula) == "e ~ u0 + sex"


def test_intercept_only():
    formula = parse_formula("me ~ 1", "model_me", response="me")
    assert formula.is_intercept_only
    assert formula.intercept and formula.terms == ()


@pytest.mark.parametrize("text", ["e ~ 0 + u0", "e ~ u0 - 1"])
def test_no_intercept(text):
    formula = parse_formula(text, "model_eff")
    assert not formula.intercept
    assert formula.terms == ("u0",)


def test_random_intercept():
    formula = parse_formula("e ~ u0 + (1 | site)", "model_eff")
    assert formula.random.group == "site"
    assert formula.random.intercept
    assert formula.random.slopes == ()
    assert not formula.fixed_intercept
    assert formula.fixed_terms == ("u0",)
    assert formula.columns == ("u0", "site")


def test_random_slope_moves_out_of_fixed_part():
    formula = parse_formula("c ~ u0 + (u0 | site)", "model_cost")
    assert formula.random.intercept
    assert formula.random.slopes == ("u0",)
    assert formula.terms == ("u0",)
    assert formula.fixed_terms == ()
    assert not formula.fixed_intercept


def test_random_slope_only():
    formula = parse_formula("e ~ (0 + u0 | site)", "model_eff")
    assert not formula.random.intercept
    assert formula.random.slopes == ("u0",)
    assert formula.fixed_intercept


def test_duplicate_terms_are_merged():
    assert parse_formula("e ~ u0 + u0", "model_eff").terms == ("u0",)


@pytest.mark.parametrize(
    "text, match",
    [
        ("e ~ u0 ~ sex", "exactly one"),
        ("e u0", "exactly one"),
        ("e ~ log(u0)", "Malformed"),
        ("e ~ u0 * sex", "Unsupported term"),
        ("e ~ (1 | site) + (1 | region)", "random-effects blocks"),
        ("e ~ (0 | site)", "neither an intercept nor"),
        ("e ~ (1 | site", "Malformed"),
        ("2e ~ u0", "Invalid response"),
    ],
)
def test_malformed_formulas(text, match):
    with pytest.raises(FormulaError, match=match):
        parse_formula(text, "model_eff")


def test_response_must_match():
    with pytest.raises(FormulaError, match="must be 'mc'"):
        parse_formula("me ~ u0", "model_mc", response="mc")
