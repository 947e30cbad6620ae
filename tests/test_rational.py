import math
from fractions import Fraction

import pytest

import rational


@pytest.mark.parametrize(
    "text, expected",
    [
        ("3", Fraction(3)),
        ("-4", Fraction(-4)),
        ("+2", Fraction(2)),
        ("0.25", Fraction(1, 4)),
        (".5", Fraction(1, 2)),
        ("1.", Fraction(1)),
        ("1e3", Fraction(1000)),
        ("2/4", Fraction(1, 2)),
        ("-3/9", Fraction(-1, 3)),
        ("3/-9", Fraction(-1, 3)),
        (" 7 ", Fraction(7)),
    ],
)
def test_parse_rational(text, expected):
    assert rational.parse_rational(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "1/2/3", "1.2.3", "/"])
def test_parse_rational_rejects_garbage(text):
    with pytest.raises(ValueError):
        rational.parse_rational(text)


def test_zero_denominator_raises():
    with pytest.raises(ZeroDivisionError):
        rational.parse_fraction("1/0")


def test_literal_classifiers():
    assert rational.is_decimal_literal("12.5")
    assert not rational.is_decimal_literal("1/2")
    assert not rational.is_decimal_literal("-")
    assert rational.is_fraction_literal("1/2")
    assert not rational.is_fraction_literal("a/b")
    assert not rational.is_fraction_literal("1/")


def test_lowest_terms_after_operations():
    values = [Fraction(6, 8), Fraction(-10, 4), Fraction(3, 7)]
    for a in values:
        for b in values:
            for result in (a + b, a - b, a * b, a / b):
                assert math.gcd(abs(result.numerator), result.denominator) == 1
                assert result.denominator > 0
            assert (a / b) * b == a


def test_from_float_approximates():
    assert rational.from_float(0.5) == Fraction(1, 2)
    assert rational.from_float(0.1) == Fraction(1, 10)
    assert rational.from_float(-0.0) == 0
    assert rational.from_float(math.pi).denominator <= rational.MAX_DENOMINATOR


@pytest.mark.parametrize("bad", [math.inf, -math.inf, math.nan])
def test_from_float_rejects_non_finite(bad):
    with pytest.raises(OverflowError):
        rational.from_float(bad)


def test_from_count():
    assert rational.from_count(True) == 1
    assert rational.from_count(False) == 0
    assert rational.from_count(5) == 5


@pytest.mark.parametrize(
    "value, expected",
    [(Fraction(5, 2), 3), (Fraction(-5, 2), -3), (Fraction(7, 3), 2), (Fraction(-7, 3), -2), (Fraction(4), 4)],
)
def test_round_half_away(value, expected):
    assert rational.round_half_away(value) == expected


def test_truncated_mod_follows_dividend_sign():
    assert rational.truncated_mod(Fraction(7), Fraction(-2)) == 1
    assert rational.truncated_mod(Fraction(-7), Fraction(2)) == -1
    assert rational.truncated_mod(Fraction(7, 2), Fraction(1)) == Fraction(1, 2)
    with pytest.raises(ZeroDivisionError):
        rational.truncated_mod(Fraction(1), Fraction(0))


def test_format_round_trips_through_parser():
    for value in (Fraction(3), Fraction(-2, 3), Fraction(22, 7), Fraction(0)):
        text = rational.format_rational(value)
        assert rational.parse_rational(text) == value
    assert rational.format_rational(Fraction(-2, 3)) == "-2/3"
    assert rational.format_rational(Fraction(4, 2)) == "2"


def test_huge_exponents_do_not_expand():
    with pytest.raises(OverflowError):
        rational.parse_decimal("1e999999999")
    assert rational.parse_decimal("2.5e-999999999") == 0
    assert rational.parse_decimal("1e20") == 10**20
