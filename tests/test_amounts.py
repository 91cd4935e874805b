from __future__ import annotations

from decimal import Decimal

import pytest

from splitpay.amounts import (
    InvalidAmount,
    format_base_units,
    parse_amount,
    parse_base_units,
    sum_base_units,
    to_base_units,
)


def test_decimal_amounts_scale_exactly() -> None:
    assert to_base_units("1.5", 18) == 1_500_000_000_000_000_000
    assert to_base_units("0.1", 6) == 100_000
    assert to_base_units(Decimal("123456789.123456789123456789"), 18) == (
        123456789123456789123456789
    )
    assert to_base_units(3, 6) == 3_000_000


def test_over_precise_decimal_amount_is_rejected() -> None:
    with pytest.raises(InvalidAmount) as excinfo:
        to_base_units("0.0000001", 6)

    assert "precision" in excinfo.value.reason


@pytest.mark.parametrize("value", [1.5, True, "", "abc", "-1", "NaN", None])
def test_bad_amount_inputs_are_rejected(value) -> None:
    with pytest.raises(InvalidAmount):
        to_base_units(value, 18)


def test_base_unit_parsing_accepts_grouping_but_not_fractions() -> None:
    assert parse_base_units("1,000") == 1000
    assert parse_base_units("1_000_000") == 1_000_000
    assert parse_base_units("2e3") == 2000

    with pytest.raises(InvalidAmount):
        parse_base_units("1.5")


def test_parse_amount_dispatches_on_unit() -> None:
    assert parse_amount("25", 6) == 25
    assert parse_amount("25", 6, unit="decimal") == 25_000_000
    with pytest.raises(ValueError):
        parse_amount("25", 6, unit="gwei")


def test_sums_are_exact_for_large_values() -> None:
    assert sum_base_units([10**30, 1, 10**30]) == 2 * 10**30 + 1

    with pytest.raises(InvalidAmount):
        sum_base_units([1, -1])


def test_format_base_units_for_display() -> None:
    assert format_base_units(1_500_000_000_000_000_000, 18) == "1.5"
    assert format_base_units(10**21, 18) == "1,000"
    assert format_base_units(1_234_567, 6, places=2) == "1.23"
    assert format_base_units(0, 18) == "0"
