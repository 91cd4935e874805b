"""Pre-flight funding checks run once before any batch is dispatched."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from .amounts import format_base_units, sum_base_units
from .model import AssetContext, DispatchPlan, FundingSufficiency

logger = logging.getLogger(__name__)

# Warn when a run consumes at least this share (in percent) of what is available.
NEAR_THRESHOLD_PERCENT = 95


class FundingError(RuntimeError):
    """Base class for funding failures detected before dispatch."""

    def __init__(self, message: str, sufficiency: FundingSufficiency) -> None:
        super().__init__(message)
        self.sufficiency = sufficiency


class InsufficientBalance(FundingError):
    """Raised when the funding source cannot cover the run's total."""


class InsufficientAllowance(FundingError):
    """Raised when the splitter's token allowance is below the run's total."""


def required_total(plans: Sequence[DispatchPlan]) -> int:
    return sum_base_units(plan.batch.total for plan in plans)


def _near_threshold(required: int, available: int) -> bool:
    return available > 0 and required * 100 >= available * NEAR_THRESHOLD_PERCENT


def check_funding(
    chain: Any,
    asset: AssetContext,
    funding_address: str,
    spender: str,
    plans: Sequence[DispatchPlan],
) -> FundingSufficiency:
    """Compare the run's total against the funding source's balance and allowance.

    ``chain`` needs ``get_balance(account, asset)`` and, for tokens,
    ``get_allowance(owner, spender, token)``. The snapshot is taken once;
    batches dispatched later are not re-checked.
    """

    required = required_total(plans)
    balance = int(chain.get_balance(funding_address, asset))
    logger.info(
        "Balance of %s: %s %s (required %s)",
        funding_address,
        format_base_units(balance, asset.decimals),
        asset.symbol,
        format_base_units(required, asset.decimals),
    )

    allowance: int | None = None
    if not asset.is_native:
        allowance = int(chain.get_allowance(funding_address, spender, asset.token_address))
        logger.info(
            "Allowance of %s for splitter %s: %s %s",
            funding_address,
            spender,
            format_base_units(allowance, asset.decimals),
            asset.symbol,
        )

    warnings: list[str] = []
    if _near_threshold(required, balance) and required <= balance:
        warnings.append(
            f"Run uses {format_base_units(required, asset.decimals)} of "
            f"{format_base_units(balance, asset.decimals)} {asset.symbol} available"
        )
    if allowance is not None and _near_threshold(required, allowance) and required <= allowance:
        warnings.append(
            f"Run uses {format_base_units(required, asset.decimals)} of the "
            f"{format_base_units(allowance, asset.decimals)} {asset.symbol} allowance"
        )
    for warning in warnings:
        logger.warning("%s", warning)

    sufficiency = FundingSufficiency(
        funding_address=funding_address,
        required_total=required,
        available_balance=balance,
        available_allowance=allowance,
        warnings=tuple(warnings),
    )

    if required > balance:
        raise InsufficientBalance(
            f"Insufficient balance to fund payments: {funding_address} holds "
            f"{format_base_units(balance, asset.decimals)} {asset.symbol}, run requires "
            f"{format_base_units(required, asset.decimals)}",
            sufficiency,
        )
    if allowance is not None and required > allowance:
        raise InsufficientAllowance(
            f"Insufficient allowance to fund payments: splitter {spender} may spend "
            f"{format_base_units(allowance, asset.decimals)} {asset.symbol} from "
            f"{funding_address}, run requires {format_base_units(required, asset.decimals)}",
            sufficiency,
        )
    return sufficiency
