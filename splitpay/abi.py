"""Call-data encoding for the splitter, ERC-20 and legacy multisig contracts.

Only the handful of functions the payment flow touches are encoded here. The
signatures must match the deployed contracts exactly: the 4-byte selector is
the keccak hash of the canonical signature string.
"""

from __future__ import annotations

from typing import Any, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import is_address, keccak, to_checksum_address

MAX_UINT256 = 2**256 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Splitter
DISTRIBUTE = "distribute(address,uint256,address[])"
PAY = "pay(address,address[],uint256[])"
DISTRIBUTE_NATIVE = "distributeAVAX(uint256,address[])"
PAY_NATIVE = "payAVAX(address[],uint256[])"

# ERC-20
BALANCE_OF = "balanceOf(address)"
ALLOWANCE = "allowance(address,address)"
DECIMALS = "decimals()"
SYMBOL = "symbol()"
APPROVE = "approve(address,uint256)"

# Legacy (MultiSigWallet-style) multisig
SUBMIT_TRANSACTION = "submitTransaction(address,uint256,bytes)"


def function_selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def _argument_types(signature: str) -> list[str]:
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return [item for item in inner.split(",") if item]


def encode_call(signature: str, args: Sequence[Any]) -> bytes:
    """Return selector + ABI-encoded arguments for ``signature``."""

    types = _argument_types(signature)
    if len(types) != len(args):
        raise ValueError(
            f"{signature} expects {len(types)} arguments, got {len(args)}"
        )
    return function_selector(signature) + encode(types, list(args))


def checksum(address: str) -> str:
    if not is_address(address):
        raise ValueError(f"Malformed address: {address}")
    return to_checksum_address(address)


def encode_distribute(token: str, amount: int, payees: Sequence[str]) -> bytes:
    return encode_call(DISTRIBUTE, [checksum(token), amount, [checksum(p) for p in payees]])


def encode_pay(token: str, payees: Sequence[str], amounts: Sequence[int]) -> bytes:
    if len(payees) != len(amounts):
        raise ValueError("pay requires one amount per payee")
    return encode_call(PAY, [checksum(token), [checksum(p) for p in payees], list(amounts)])


def encode_distribute_native(amount: int, payees: Sequence[str]) -> bytes:
    return encode_call(DISTRIBUTE_NATIVE, [amount, [checksum(p) for p in payees]])


def encode_pay_native(payees: Sequence[str], amounts: Sequence[int]) -> bytes:
    if len(payees) != len(amounts):
        raise ValueError("payAVAX requires one amount per payee")
    return encode_call(PAY_NATIVE, [[checksum(p) for p in payees], list(amounts)])


def encode_balance_of(owner: str) -> bytes:
    return encode_call(BALANCE_OF, [checksum(owner)])


def encode_allowance(owner: str, spender: str) -> bytes:
    return encode_call(ALLOWANCE, [checksum(owner), checksum(spender)])


def encode_approve(spender: str, amount: int) -> bytes:
    return encode_call(APPROVE, [checksum(spender), amount])


def encode_submit_transaction(destination: str, value: int, data: bytes) -> bytes:
    return encode_call(SUBMIT_TRANSACTION, [checksum(destination), value, data])


def decode_uint(raw: bytes) -> int:
    (value,) = decode(["uint256"], raw)
    return int(value)


def decode_string(raw: bytes) -> str:
    """Decode an ABI string, tolerating legacy tokens that return bytes32."""

    try:
        (value,) = decode(["string"], raw)
        return str(value)
    except DecodingError:
        if len(raw) == 32:
            return raw.rstrip(b"\x00").decode("utf-8", errors="replace")
        raise
