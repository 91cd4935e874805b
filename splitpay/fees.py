"""Fee selection helpers for EIP-1559 transactions."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

GWEI = 10**9
DEFAULT_FEE_MULTIPLIER = 2
DEFAULT_PRIORITY_FEE_GWEI = 2
ENV_PRIORITY_FEE_GWEI = "SPLITPAY_PRIORITY_FEE_GWEI"
ENV_MAX_FEE_GWEI = "SPLITPAY_MAX_FEE_GWEI"


class FeeCapExceeded(ValueError):
    """Raised when the selected max fee is above the operator's cap."""


def gwei_to_wei(value: int | float) -> int:
    return int(round(float(value) * GWEI))


@dataclass(frozen=True)
class FeeParams:
    """Container for a fee decision."""

    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    base_gas_price: int
    source: str

    def as_tx_fields(self) -> dict[str, int]:
        return {
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }


def _env_override(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number in %s=%s; ignoring", name, raw)
        return None


def select_fee_params(
    rpc_client: Any,
    *,
    multiplier: int = DEFAULT_FEE_MULTIPLIER,
    priority_fee_gwei: int | float | None = None,
    max_fee_gwei_cap: int | float | None = None,
) -> FeeParams:
    """Derive EIP-1559 fees from the node's current gas price.

    The max fee is ``multiplier`` times the node gas price, which leaves room
    for the base fee to rise while the transaction waits. The priority fee
    defaults to 2 gwei and can be overridden via ``SPLITPAY_PRIORITY_FEE_GWEI``.
    """

    if multiplier < 1:
        raise ValueError("Fee multiplier must be at least 1")

    base_gas_price = int(rpc_client.gas_price())
    source = "eth_gasPrice"

    if priority_fee_gwei is None:
        env_priority = _env_override(ENV_PRIORITY_FEE_GWEI)
        if env_priority is not None:
            priority_fee_gwei = env_priority
            source += "+env_priority"
        else:
            priority_fee_gwei = DEFAULT_PRIORITY_FEE_GWEI
    priority = gwei_to_wei(priority_fee_gwei)

    max_fee = base_gas_price * multiplier
    if max_fee < priority:
        logger.debug("Raising max fee %s to priority fee %s", max_fee, priority)
        max_fee = priority

    cap = max_fee_gwei_cap if max_fee_gwei_cap is not None else _env_override(ENV_MAX_FEE_GWEI)
    if cap is not None and max_fee > gwei_to_wei(cap):
        raise FeeCapExceeded(
            f"Selected max fee {max_fee / GWEI:.2f} gwei exceeds cap {float(cap):.2f} gwei"
        )

    return FeeParams(
        max_fee_per_gas=max_fee,
        max_priority_fee_per_gas=priority,
        base_gas_price=base_gas_price,
        source=source,
    )


def format_gas_cost(gas: int, fees: FeeParams, symbol: str = "AVAX") -> str:
    """Format the estimated gas cost for user-facing logs."""

    cost = gas * fees.base_gas_price
    return f"{gas:,} gas (~{cost / 10**18:.6f} {symbol} at {fees.base_gas_price / GWEI:.2f} gwei)"
