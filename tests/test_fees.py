from __future__ import annotations

import pytest

from splitpay.fees import (
    ENV_MAX_FEE_GWEI,
    ENV_PRIORITY_FEE_GWEI,
    GWEI,
    FeeCapExceeded,
    FeeParams,
    format_gas_cost,
    select_fee_params,
)


class StubRPC:
    def __init__(self, gas_price: int) -> None:
        self._gas_price = gas_price

    def gas_price(self):
        return self._gas_price


@pytest.fixture(autouse=True)
def clear_fee_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ENV_PRIORITY_FEE_GWEI, raising=False)
    monkeypatch.delenv(ENV_MAX_FEE_GWEI, raising=False)


def test_max_fee_is_multiple_of_gas_price() -> None:
    fees = select_fee_params(StubRPC(25 * GWEI))

    assert fees.max_fee_per_gas == 50 * GWEI
    assert fees.max_priority_fee_per_gas == 2 * GWEI
    assert fees.base_gas_price == 25 * GWEI
    assert fees.as_tx_fields() == {
        "maxFeePerGas": 50 * GWEI,
        "maxPriorityFeePerGas": 2 * GWEI,
    }


def test_configured_multiplier_and_priority() -> None:
    fees = select_fee_params(StubRPC(10 * GWEI), multiplier=3, priority_fee_gwei=1.5)

    assert fees.max_fee_per_gas == 30 * GWEI
    assert fees.max_priority_fee_per_gas == 1_500_000_000


def test_max_fee_never_below_priority_fee() -> None:
    fees = select_fee_params(StubRPC(1), priority_fee_gwei=2)

    assert fees.max_fee_per_gas == fees.max_priority_fee_per_gas == 2 * GWEI


def test_priority_fee_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ENV_PRIORITY_FEE_GWEI, "4")

    fees = select_fee_params(StubRPC(25 * GWEI))

    assert fees.max_priority_fee_per_gas == 4 * GWEI
    assert fees.source.endswith("env_priority")


def test_max_fee_cap_raises() -> None:
    with pytest.raises(FeeCapExceeded):
        select_fee_params(StubRPC(100 * GWEI), max_fee_gwei_cap=150)


def test_multiplier_must_be_positive() -> None:
    with pytest.raises(ValueError):
        select_fee_params(StubRPC(GWEI), multiplier=0)


def test_gas_cost_formatting() -> None:
    fees = FeeParams(
        max_fee_per_gas=50 * GWEI,
        max_priority_fee_per_gas=2 * GWEI,
        base_gas_price=25 * GWEI,
        source="stub",
    )

    assert format_gas_cost(21_000, fees) == "21,000 gas (~0.000525 AVAX at 25.00 gwei)"
    assert format_gas_cost(21_000, fees, "ETH") == "21,000 gas (~0.000525 ETH at 25.00 gwei)"
