"""Structural and semantic checks for a run's payment instructions.

Validation is offline: nothing here touches the network. Errors list every
offending entry instead of stopping at the first one so that operators can
fix an input file in a single pass.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Sequence, Tuple

from eth_utils import is_address, to_checksum_address

from .amounts import InvalidAmount
from .model import NATIVE_DECIMALS, AssetContext, PaymentInstruction, is_native_asset

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_SYMBOL = "TOKEN"
DEFAULT_TOKEN_DECIMALS = 18


class InstructionError(ValueError):
    """Base class for input errors; ``offenders`` lists every bad entry."""

    def __init__(self, message: str, offenders: Sequence[object] = ()) -> None:
        super().__init__(message)
        self.offenders: Tuple[object, ...] = tuple(offenders)


class EmptyInstructionSet(InstructionError):
    """Raised when a run contains no payments."""


class NonUniformAsset(InstructionError):
    """Raised when instructions in one run target different assets."""


class InvalidAddress(InstructionError):
    """Raised when payee or asset addresses are malformed."""


class ZeroAmountPayment(InstructionError):
    """Raised when one or more payments carry a zero amount."""


@dataclass(frozen=True)
class DuplicatePayeeWarning:
    payee: str
    positions: Tuple[int, ...]

    @property
    def count(self) -> int:
        return len(self.positions)

    def __str__(self) -> str:
        positions = ", ".join(str(pos) for pos in self.positions)
        return f"Duplicate address {self.payee} (x{self.count}) at positions {positions}"


@dataclass(frozen=True)
class ValidationResult:
    instructions: Tuple[PaymentInstruction, ...]
    asset: AssetContext
    warnings: Tuple[DuplicatePayeeWarning, ...] = ()


def _same_asset(left: str, right: str) -> bool:
    return left.strip().lower() == right.strip().lower()


def derive_asset_context(
    asset: str,
    *,
    decimals: int | None = None,
    symbol: str | None = None,
    native_symbol: str = "AVAX",
) -> AssetContext:
    if is_native_asset(asset):
        return AssetContext(
            is_native=True,
            decimals=NATIVE_DECIMALS,
            symbol=native_symbol,
            token_address=None,
        )
    return AssetContext(
        is_native=False,
        decimals=DEFAULT_TOKEN_DECIMALS if decimals is None else int(decimals),
        symbol=symbol or DEFAULT_TOKEN_SYMBOL,
        token_address=to_checksum_address(asset.strip()),
    )


def find_duplicate_payees(
    instructions: Sequence[PaymentInstruction],
) -> Tuple[DuplicatePayeeWarning, ...]:
    """Group payees case-insensitively and report those that repeat."""

    seen: "OrderedDict[str, list[int]]" = OrderedDict()
    for position, instruction in enumerate(instructions, start=1):
        seen.setdefault(instruction.payee.lower(), []).append(position)
    warnings = []
    for key, positions in seen.items():
        if len(positions) > 1:
            payee = instructions[positions[0] - 1].payee
            warnings.append(DuplicatePayeeWarning(payee=payee, positions=tuple(positions)))
    return tuple(warnings)


def validate_instructions(
    instructions: Sequence[PaymentInstruction],
    *,
    decimals: int | None = None,
    symbol: str | None = None,
    native_symbol: str = "AVAX",
) -> ValidationResult:
    """Validate a run and derive its asset context.

    Checks run in a fixed order: emptiness, asset uniformity, address
    well-formedness, then amounts. Duplicate payees are reported as warnings
    on the result and logged; they never block a run.
    """

    items = list(instructions)
    if not items:
        raise EmptyInstructionSet("No payment instructions were provided")

    first_asset = items[0].asset
    mismatched = [
        (position, item.asset)
        for position, item in enumerate(items, start=1)
        if not _same_asset(item.asset, first_asset)
    ]
    if mismatched:
        raise NonUniformAsset(
            f"{len(mismatched)} instruction(s) use an asset other than {first_asset}",
            mismatched,
        )

    bad_addresses: list[tuple[int, str]] = []
    if not is_native_asset(first_asset) and not is_address(first_asset.strip()):
        bad_addresses.append((0, first_asset))
    for position, item in enumerate(items, start=1):
        if not isinstance(item.payee, str) or not is_address(item.payee.strip()):
            bad_addresses.append((position, item.payee))
    if bad_addresses:
        for position, address in bad_addresses:
            logger.warning("Invalid address %s at position %s", address, position or "asset")
        raise InvalidAddress(
            f"{len(bad_addresses)} invalid address(es) detected", bad_addresses
        )

    zero_amounts: list[int] = []
    for position, item in enumerate(items, start=1):
        if isinstance(item.amount, bool) or not isinstance(item.amount, int):
            raise InvalidAmount(item.amount, f"instruction {position} amount must be an integer")
        if item.amount < 0:
            raise InvalidAmount(item.amount, f"instruction {position} amount is negative")
        if item.amount == 0:
            zero_amounts.append(position)
    if zero_amounts:
        raise ZeroAmountPayment(
            f"{len(zero_amounts)} payment(s) have a zero amount", zero_amounts
        )

    warnings = find_duplicate_payees(items)
    for warning in warnings:
        logger.warning("%s", warning)

    asset = derive_asset_context(
        first_asset, decimals=decimals, symbol=symbol, native_symbol=native_symbol
    )
    normalized = tuple(
        PaymentInstruction(
            payee=to_checksum_address(item.payee.strip()),
            amount=item.amount,
            asset=first_asset,
            display_name=item.display_name,
        )
        for item in items
    )
    logger.info(
        "Validated %d payment instruction(s) in %s", len(normalized), asset.symbol
    )
    return ValidationResult(instructions=normalized, asset=asset, warnings=warnings)
