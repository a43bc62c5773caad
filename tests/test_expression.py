"""Tests for workflow_engine/core/workflows/expression.py."""

import pytest

from workflow_engine.core.workflows.expression import (
    ExpressionError,
    ExpressionParser,
    evaluate_expression,
    format_number,
    try_evaluate,
)


# ── ExpressionParser ──────────────────────────────────────────────────────────

class TestExpressionParser:

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("2 + 3", 5),
            ("2 + 3 * 4", 14),
            ("(2 + 3) * 4", 20),
            ("10 / 4", 2.5),
            ("-3 + 1", -2),
            ("--3", 3),
            ("7 % 3", 1),
            ("-7 % 3", -1),
            ("7.9 % 3", 1),
            ("  1.5  +  .5 ", 2),
        ],
    )
    def test_evaluates(self, text, expected):
        assert ExpressionParser(text).parse() == expected

    @pytest.mark.parametrize("text", ["2 / 0", "5 % 0", "1 +", "(1 + 2", "1 + 2)", "a + 1", "1..2"])
    def test_rejects_invalid(self, text):
        with pytest.raises(ExpressionError):
            ExpressionParser(text).parse()


# ── format_number ─────────────────────────────────────────────────────────────

class TestFormatNumber:

    def test_integral_float_has_no_decimal_point(self):
        assert format_number(3.0) == "3"

    def test_fraction_uses_shortest_digits(self):
        assert format_number(0.1 + 0.2) == "0.30000000000000004"
        assert format_number(2.5) == "2.5"

    def test_no_exponent_notation(self):
        assert format_number(1e-7) == "0.0000001"

    def test_negative(self):
        assert format_number(-4.0) == "-4"


# ── try_evaluate / evaluate_expression ────────────────────────────────────────

class TestEvaluate:

    def test_text_without_operators_passes_through(self):
        assert try_evaluate("hello") is None
        assert evaluate_expression("hello") == "hello"

    def test_plain_number_is_not_reformatted(self):
        assert evaluate_expression("007") == "007"

    def test_sum_of_integers(self):
        assert evaluate_expression("2 + 3") == "5"

    def test_float_sum_collapses_to_integer(self):
        assert evaluate_expression("2.5 + 0.5") == "3"

    def test_division_by_zero_falls_back_to_literal(self):
        assert try_evaluate("2 / 0") is None
        assert evaluate_expression("2 / 0") == "2 / 0"

    def test_operator_inside_words_is_left_alone(self):
        assert evaluate_expression("well-known") == "well-known"

    def test_whitespace_only(self):
        assert evaluate_expression("   ") == "   "
