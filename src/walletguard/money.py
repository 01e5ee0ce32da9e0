"""Amount conversion helpers using fixed micro-unit precision."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR


MICROS_PER_UNIT = 1_000_000
_UNIT_QUANT = Decimal("0.000001")


def _to_decimal(value: Decimal | float | int | str) -> Decimal:
    try:
        dec = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not dec.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return dec


def amount_to_micros(value: Decimal | float | int | str) -> int:
    """Convert a transfer amount to micro-units, rounding up (conservative)."""
    dec = _to_decimal(value).quantize(_UNIT_QUANT, rounding=ROUND_CEILING)
    return int(dec * MICROS_PER_UNIT)


def limit_to_micros(value: Decimal | float | int | str) -> int:
    """Convert a spending limit to micro-units, rounding down (conservative)."""
    dec = _to_decimal(value).quantize(_UNIT_QUANT, rounding=ROUND_FLOOR)
    return int(dec * MICROS_PER_UNIT)


def micros_to_decimal(value: int) -> Decimal:
    """Convert integer micro-units to a Decimal amount."""
    return (Decimal(value) / Decimal(MICROS_PER_UNIT)).quantize(_UNIT_QUANT)


def micros_to_number(value: int) -> int | float:
    """JSON-friendly amount: an int when whole, otherwise a float."""
    if value % MICROS_PER_UNIT == 0:
        return value // MICROS_PER_UNIT
    return float(micros_to_decimal(value))


def format_amount(value: int) -> str:
    """Format integer micro-units as a dollar string."""
    dec = micros_to_decimal(value).normalize()
    if dec == dec.to_integral_value():
        return f"${dec:.0f}"
    return f"${dec:f}"


def micros_to_plain(value: int) -> str:
    """Plain decimal string for command-line tools, never scientific notation."""
    return f"{micros_to_decimal(value).normalize():f}"
