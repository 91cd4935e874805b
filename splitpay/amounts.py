"""Exact base-unit arithmetic for splitter payments.

Every on-chain amount is a Python ``int`` counted in the asset's smallest unit
(wei for 18-decimal assets). Human decimal strings only exist at the edges:
they are parsed into base units on the way in and rendered from base units for
display. Display strings are never parsed back into amounts.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Iterable

# uint256 has 78 decimal digits; leave headroom for the fractional part.
_PRECISION = 100


class InvalidAmount(ValueError):
    """Raised when an amount is negative, non-numeric or over-precise."""

    def __init__(self, value: object, reason: str) -> None:
        super().__init__(f"Invalid amount {value!r}: {reason}")
        self.value = value
        self.reason = reason


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmount(value, "booleans are not amounts")
    if isinstance(value, float):
        raise InvalidAmount(value, "floats are not accepted; pass a string or Decimal")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace("_", "").replace(",", "")
        if not cleaned:
            raise InvalidAmount(value, "empty string")
        try:
            parsed = Decimal(cleaned)
        except InvalidOperation as exc:
            raise InvalidAmount(value, "not a number") from exc
    else:
        raise InvalidAmount(value, f"unsupported type {type(value).__name__}")
    if not parsed.is_finite():
        raise InvalidAmount(value, "not a finite number")
    if parsed < 0:
        raise InvalidAmount(value, "negative")
    return parsed


def to_base_units(value: str | int | Decimal, decimals: int) -> int:
    """Convert a human decimal quantity into integer base units.

    ``"1.5"`` with ``decimals=18`` becomes ``1500000000000000000``. Inputs that
    need more fractional digits than ``decimals`` provides are rejected rather
    than silently rounded.
    """

    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    parsed = _to_decimal(value)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = parsed.scaleb(decimals)
        integral = scaled.to_integral_value(rounding=ROUND_DOWN)
        if scaled != integral:
            raise InvalidAmount(value, f"more precision than {decimals} decimals")
        return int(integral)


def parse_base_units(value: str | int | Decimal) -> int:
    """Parse an amount that is already expressed in base units."""

    parsed = _to_decimal(value)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        if parsed != parsed.to_integral_value(rounding=ROUND_DOWN):
            raise InvalidAmount(value, "base-unit amounts must be whole numbers")
        return int(parsed)


def parse_amount(value: str | int | Decimal, decimals: int, *, unit: str = "base") -> int:
    if unit == "base":
        return parse_base_units(value)
    if unit == "decimal":
        return to_base_units(value, decimals)
    raise ValueError(f"Unknown amount unit: {unit}")


def sum_base_units(values: Iterable[int]) -> int:
    """Exact sum of base-unit amounts."""

    total = 0
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidAmount(value, "base-unit amounts must be integers")
        if value < 0:
            raise InvalidAmount(value, "negative")
        total += value
    return total


def format_base_units(amount: int, decimals: int, *, places: int | None = None) -> str:
    """Render base units as a grouped decimal string for display only."""

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        value = Decimal(amount).scaleb(-decimals)
        if places is not None:
            value = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
            return f"{value:,.{places}f}"
        rendered = f"{value:,f}"
    if "." in rendered:
        rendered = rendered.rstrip("0").rstrip(".")
    return rendered
