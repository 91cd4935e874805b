"""Domain models for splitter payment runs.

Instances are created fresh for every run and discarded afterwards. Amounts
are integer base units throughout; see :mod:`splitpay.amounts` for the
conversion helpers used at the edges.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple

from .amounts import sum_base_units

NATIVE_ASSET = "native"
NATIVE_DECIMALS = 18


@dataclass(frozen=True)
class PaymentInstruction:
    """A single payment of ``amount`` base units to ``payee``."""

    payee: str
    amount: int
    asset: str
    display_name: str | None = None


@dataclass(frozen=True)
class AssetContext:
    is_native: bool
    decimals: int
    symbol: str
    token_address: str | None = None

    @property
    def label(self) -> str:
        if self.is_native:
            return self.symbol
        return f"{self.symbol} ({self.token_address})"


@dataclass(frozen=True)
class PaymentBatch:
    """Contiguous slice ``[start, start + len(instructions))`` of a run."""

    index: int
    start: int
    instructions: Tuple[PaymentInstruction, ...]

    def __len__(self) -> int:
        return len(self.instructions)

    @property
    def total(self) -> int:
        return sum_base_units(item.amount for item in self.instructions)

    @property
    def is_uniform(self) -> bool:
        amounts = {item.amount for item in self.instructions}
        return len(amounts) == 1

    @property
    def payees(self) -> list[str]:
        return [item.payee for item in self.instructions]

    @property
    def amounts(self) -> list[int]:
        return [item.amount for item in self.instructions]

    @property
    def first_position(self) -> int:
        """1-based position of the first payment in the original list."""

        return self.start + 1

    @property
    def last_position(self) -> int:
        return self.start + len(self.instructions)

    def describe_range(self) -> str:
        return f"{self.first_position}-{self.last_position}"


class CallKind(Enum):
    DISTRIBUTE_UNIFORM = "distribute"
    PAY_GENERAL = "pay"
    DISTRIBUTE_UNIFORM_NATIVE = "distributeAVAX"
    PAY_GENERAL_NATIVE = "payAVAX"

    @property
    def is_native(self) -> bool:
        return self in (CallKind.DISTRIBUTE_UNIFORM_NATIVE, CallKind.PAY_GENERAL_NATIVE)

    @property
    def is_uniform(self) -> bool:
        return self in (CallKind.DISTRIBUTE_UNIFORM, CallKind.DISTRIBUTE_UNIFORM_NATIVE)


@dataclass(frozen=True)
class DispatchPlan:
    batch: PaymentBatch
    call_kind: CallKind
    call_data: bytes
    value: int = 0

    @property
    def call_data_hex(self) -> str:
        return "0x" + self.call_data.hex()

    def to_jsonable(self) -> Dict[str, Any]:
        return {
            "batch": self.batch.index,
            "range": self.batch.describe_range(),
            "count": len(self.batch),
            "call_kind": self.call_kind.value,
            "total": str(self.batch.total),
            "value": str(self.value),
            "call_data": self.call_data_hex,
        }


@dataclass(frozen=True)
class FundingSufficiency:
    """Pre-flight snapshot of what the funding source holds."""

    funding_address: str
    required_total: int
    available_balance: int
    available_allowance: int | None = None
    warnings: Tuple[str, ...] = ()

    def to_jsonable(self) -> Dict[str, Any]:
        return {
            "funding_address": self.funding_address,
            "required_total": str(self.required_total),
            "available_balance": str(self.available_balance),
            "available_allowance": None
            if self.available_allowance is None
            else str(self.available_allowance),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class TransactionReceipt:
    tx_hash: str
    block_number: int | None = None
    gas_used: int | None = None
    status: int | None = None


@dataclass(frozen=True)
class ProposalReceipt:
    backend: str
    multisig_address: str
    reference: str
    nonce: int | None = None
    details: Dict[str, Any] = field(default_factory=dict)


def is_native_asset(asset: str) -> bool:
    return asset.strip().lower() == NATIVE_ASSET
