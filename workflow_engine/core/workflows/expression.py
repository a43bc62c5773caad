"""
Arithmetic expression evaluation for set_variable steps

Grammar (recursive descent, float operands):
    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/" | "%") unary)*
    unary   := ("-" | "+") unary | primary
    primary := "(" expr ")" | number
    number  := digits with at most one "."

`%` truncates both operands to integers first and keeps the dividend's sign.
"""

import logging
import math
from decimal import Decimal
from typing import Optional

logger = logging.getLogger(__name__)

OPERATOR_CHARS = "+-*/%"


class ExpressionError(ValueError):
    """Raised when text is not a valid arithmetic expression"""


class ExpressionParser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def parse(self) -> float:
        value = self._add_sub()
        self._skip_whitespace()
        if self.pos < len(self.text):
            raise ExpressionError(f"unexpected character at position {self.pos}")
        return value

    def _skip_whitespace(self):
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def _peek(self) -> str:
        self._skip_whitespace()
        if self.pos < len(self.text):
            return self.text[self.pos]
        return ""

    def _add_sub(self) -> float:
        left = self._mul_div()
        while self._peek() in ("+", "-"):
            op = self.text[self.pos]
            self.pos += 1
            right = self._mul_div()
            left = left + right if op == "+" else left - right
        return left

    def _mul_div(self) -> float:
        left = self._unary()
        while self._peek() in ("*", "/", "%"):
            op = self.text[self.pos]
            self.pos += 1
            right = self._unary()
            if op == "*":
                left *= right
            elif op == "/":
                if right == 0:
                    raise ExpressionError("division by zero")
                left /= right
            else:
                if int(right) == 0:
                    raise ExpressionError("modulo by zero")
                left = math.fmod(int(left), int(right))
        return left

    def _unary(self) -> float:
        ch = self._peek()
        if ch == "-":
            self.pos += 1
            return -self._unary()
        if ch == "+":
            self.pos += 1
            return self._unary()
        return self._primary()

    def _primary(self) -> float:
        ch = self._peek()
        if not ch:
            raise ExpressionError("unexpected end of expression")
        if ch == "(":
            self.pos += 1
            value = self._add_sub()
            if self._peek() != ")":
                raise ExpressionError("missing closing parenthesis")
            self.pos += 1
            return value
        return self._number()

    def _number(self) -> float:
        start = self.pos
        seen_dot = False
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            if ch.isdigit() and ch.isascii():
                self.pos += 1
            elif ch == "." and not seen_dot:
                seen_dot = True
                self.pos += 1
            else:
                break
        literal = self.text[start : self.pos]
        if not literal or literal == ".":
            raise ExpressionError(f"expected number at position {start}")
        return float(literal)


def format_number(value: float) -> str:
    """Integer string when integral, otherwise the shortest plain decimal"""
    if value.is_integer():
        return str(int(value))
    # repr() gives the shortest round-trip digits; Decimal drops any exponent
    return format(Decimal(repr(value)), "f")


def try_evaluate(text: str) -> Optional[str]:
    """
    Evaluate text as arithmetic.

    Returns:
        The formatted result, or None if text has no operator characters or
        does not parse (including division/modulo by zero)
    """
    expr = text.strip()
    if not expr or not any(op in expr for op in OPERATOR_CHARS):
        return None
    try:
        value = ExpressionParser(expr).parse()
    except (ValueError, OverflowError) as e:
        logger.debug(f"  Not an arithmetic expression ({e}): {expr!r}")
        return None
    if not math.isfinite(value):
        return None
    return format_number(value)


def evaluate_expression(text: str) -> str:
    """Evaluate text if it is arithmetic, otherwise return it unchanged"""
    result = try_evaluate(text)
    return text if result is None else result
