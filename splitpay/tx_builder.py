"""Chain access for the payment engine: reads, gas, signing and broadcast."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict

from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address, to_hex

from . import abi
from .fees import FeeParams
from .model import AssetContext, TransactionReceipt
from .rpc_client import RPCError, RPCTransportError, from_quantity, to_quantity

logger = logging.getLogger(__name__)

RECEIPT_POLL_SECONDS = 2.0


class SubmissionFailed(RuntimeError):
    """Raised when a signed transaction is rejected or reverts on-chain."""

    def __init__(self, message: str, *, tx_hash: str | None = None, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
        self.cause = cause


class ChainClient:
    """Build, sign and send transactions from one local account.

    The RPC client only needs the ``EVMRPCClient`` helpers; tests pass stubs
    with the same method names. ``account`` may be ``None`` for read-only use
    such as planning and funding checks.
    """

    def __init__(
        self,
        rpc: Any,
        account: LocalAccount | None = None,
        *,
        chain_id: int | None = None,
        receipt_timeout_seconds: float = 300.0,
        poll_interval_seconds: float = RECEIPT_POLL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rpc = rpc
        self.account = account
        self._chain_id = chain_id
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(self.rpc.chain_id())
        return self._chain_id

    @property
    def address(self) -> str:
        if self.account is None:
            raise RuntimeError("No signing account configured for this run")
        return self.account.address

    # Reads ----------------------------------------------------------------

    def call_contract(self, to: str, data: bytes) -> bytes:
        result = self.rpc.eth_call({"to": to_checksum_address(to), "data": to_hex(data)})
        if not isinstance(result, str):
            raise RPCTransportError(f"eth_call returned {result!r}")
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    def get_balance(self, account: str, asset: AssetContext) -> int:
        if asset.is_native:
            return int(self.rpc.get_balance(to_checksum_address(account)))
        raw = self.call_contract(asset.token_address, abi.encode_balance_of(account))
        return abi.decode_uint(raw)

    def get_allowance(self, owner: str, spender: str, token: str) -> int:
        raw = self.call_contract(token, abi.encode_allowance(owner, spender))
        return abi.decode_uint(raw)

    def token_metadata(self, token: str) -> tuple[int, str]:
        """Return ``(decimals, symbol)`` for an ERC-20 token."""

        decimals = abi.decode_uint(self.call_contract(token, abi.function_selector(abi.DECIMALS)))
        symbol = abi.decode_string(self.call_contract(token, abi.function_selector(abi.SYMBOL)))
        return decimals, symbol

    # Gas ------------------------------------------------------------------

    def get_gas_price(self) -> int:
        return int(self.rpc.gas_price())

    def estimate_gas(self, to: str, data: bytes, value: int = 0, sender: str | None = None) -> int:
        call: Dict[str, Any] = {
            "from": to_checksum_address(sender or self.address),
            "to": to_checksum_address(to),
            "data": to_hex(data),
        }
        if value:
            call["value"] = to_quantity(value)
        return int(self.rpc.estimate_gas(call))

    # Writes ---------------------------------------------------------------

    def build_transaction(
        self, to: str, data: bytes, value: int, gas: int, fees: FeeParams, nonce: int
    ) -> Dict[str, Any]:
        return {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": nonce,
            "to": to_checksum_address(to),
            "value": value,
            "data": to_hex(data),
            "gas": gas,
            **fees.as_tx_fields(),
        }

    def send_transaction(
        self,
        to: str,
        data: bytes,
        *,
        value: int = 0,
        gas: int,
        fees: FeeParams,
    ) -> TransactionReceipt:
        """Sign locally, broadcast, and wait for the receipt."""

        account = self.account
        if account is None:
            raise RuntimeError("No signing account configured for this run")
        try:
            nonce = int(self.rpc.get_transaction_count(account.address))
            tx = self.build_transaction(to, data, value, gas, fees, nonce)
            signed = account.sign_transaction(tx)
            logger.info(
                "Broadcasting transaction to %s (nonce %d, gas %d, value %d)", to, nonce, gas, value
            )
            tx_hash = self.rpc.send_raw_transaction(to_hex(signed.raw_transaction))
        except (RPCError, RPCTransportError) as exc:
            logger.error("Broadcast to %s failed: %s", to, exc)
            raise SubmissionFailed(f"Broadcast rejected: {exc}", cause=exc) from exc
        logger.info("Broadcasted transaction %s", tx_hash)
        return self.wait_for_receipt(tx_hash)

    def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        deadline = time.monotonic() + self.receipt_timeout_seconds
        while True:
            try:
                receipt = self.rpc.get_transaction_receipt(tx_hash)
            except (RPCError, RPCTransportError) as exc:
                raise SubmissionFailed(
                    f"Could not fetch receipt for {tx_hash}: {exc}", tx_hash=tx_hash, cause=exc
                ) from exc
            if receipt:
                break
            if time.monotonic() >= deadline:
                raise SubmissionFailed(
                    f"Transaction {tx_hash} was not mined within "
                    f"{self.receipt_timeout_seconds:.0f}s; it may still confirm later",
                    tx_hash=tx_hash,
                )
            self._sleep(self.poll_interval_seconds)

        status = from_quantity(receipt.get("status", "0x1"))
        result = TransactionReceipt(
            tx_hash=tx_hash,
            block_number=from_quantity(receipt["blockNumber"]) if receipt.get("blockNumber") else None,
            gas_used=from_quantity(receipt["gasUsed"]) if receipt.get("gasUsed") else None,
            status=status,
        )
        if status != 1:
            raise SubmissionFailed(f"Transaction {tx_hash} reverted", tx_hash=tx_hash)
        logger.info("Transaction %s confirmed in block %s", tx_hash, result.block_number)
        return result
