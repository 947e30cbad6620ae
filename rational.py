"""Exact rational helpers for NumStack numbers.

Numbers are plain ``fractions.Fraction`` instances, which already keep
numerator and denominator in lowest terms with a positive denominator.
This module adds the NumStack-specific ways of producing and printing them.
"""

from __future__ import annotations
import math
import re
from fractions import Fraction
from typing import Union

# Upper bound for the best-rational-approximation search used on floats.
MAX_DENOMINATOR = 1_000_000

# Beyond the float range either way; literals past it are read as floats.
MAX_DECIMAL_EXPONENT = 400

DECIMAL_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
FRACTION_RE = re.compile(r"([+-]?\d+)/([+-]?\d+)")

ZERO = Fraction(0)
ONE = Fraction(1)


def from_float(number: float) -> Fraction:
    if not math.isfinite(number):
        raise OverflowError(f"cannot represent {number!r} as a rational")
    if number == 0.0:
        return ZERO
    return Fraction(number).limit_denominator(MAX_DENOMINATOR)


def from_count(count: Union[int, bool]) -> Fraction:
    return Fraction(int(count))


def is_decimal_literal(text: str) -> bool:
    return DECIMAL_RE.fullmatch(text) is not None


def is_fraction_literal(text: str) -> bool:
    return FRACTION_RE.fullmatch(text) is not None


def parse_decimal(text: str) -> Fraction:
    # Fraction(str) is exact; bounding the denominator keeps literals and
    # computed floats on the same grid.
    _, _, exponent = text.lower().partition("e")
    if exponent and abs(int(exponent)) > MAX_DECIMAL_EXPONENT:
        # Exact parsing would build a 10**exponent integer.
        return from_float(float(text))
    return Fraction(text).limit_denominator(MAX_DENOMINATOR)


def parse_fraction(text: str) -> Fraction:
    match = FRACTION_RE.fullmatch(text)
    if match is None:
        raise ValueError(f"not a fraction literal: {text!r}")
    # Fraction() raises ZeroDivisionError for a zero denominator.
    return Fraction(int(match.group(1)), int(match.group(2)))


def parse_rational(text: str) -> Fraction:
    """Parse a decimal or ``n/d`` string; raises ``ValueError`` when neither."""
    text = text.strip()
    if is_decimal_literal(text):
        return parse_decimal(text)
    return parse_fraction(text)


def to_float(number: Fraction) -> float:
    return number.numerator / number.denominator


def truncate(number: Fraction) -> int:
    return math.trunc(number)


def round_half_away(number: Fraction) -> Fraction:
    magnitude = math.floor(abs(number) + Fraction(1, 2))
    return Fraction(-magnitude if number < 0 else magnitude)


def truncated_mod(a: Fraction, b: Fraction) -> Fraction:
    # Remainder takes the sign of the dividend.
    if b == 0:
        raise ZeroDivisionError("modulo by zero")
    return a - b * math.trunc(a / b)


def format_rational(number: Fraction) -> str:
    if number.denominator == 1:
        return str(number.numerator)
    return f"{number.numerator}/{number.denominator}"
