"""Tests for micro-unit amount handling."""

from decimal import Decimal

import pytest

from walletguard.money import (
    amount_to_micros,
    format_amount,
    limit_to_micros,
    micros_to_decimal,
    micros_to_number,
    micros_to_plain,
)


def test_amounts_round_up_and_limits_round_down():
    assert amount_to_micros("0.0000001") == 1
    assert limit_to_micros("0.0000019") == 1


def test_float_input_is_exact_via_str():
    assert amount_to_micros(0.1) + amount_to_micros(0.2) == amount_to_micros("0.3")


@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", float("inf")])
def test_invalid_amounts_raise_value_error(value):
    with pytest.raises(ValueError):
        amount_to_micros(value)


def test_micros_to_number_prefers_int():
    assert micros_to_number(40_000_000) == 40
    assert isinstance(micros_to_number(40_000_000), int)
    assert micros_to_number(12_500_000) == 12.5


def test_micros_to_decimal():
    assert micros_to_decimal(1) == Decimal("0.000001")


@pytest.mark.parametrize(
    "micros,expected",
    [(40_000_000, "$40"), (500_000, "$0.5"), (0, "$0"), (1_250_000, "$1.25")],
)
def test_format_amount(micros, expected):
    assert format_amount(micros) == expected


@pytest.mark.parametrize(
    "micros,expected",
    [(10, "0.00001"), (1, "0.000001"), (40_000_000, "40"), (12_500_000, "12.5"), (0, "0")],
)
def test_micros_to_plain(micros, expected):
    assert micros_to_plain(micros) == expected
