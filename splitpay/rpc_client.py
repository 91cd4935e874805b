"""Typed JSON-RPC client for EVM nodes (Avalanche C-Chain and friends).

Each helper maps directly onto an ``eth_*`` method and returns the parsed JSON
result, converting hex quantities to ``int`` where the caller always wants a
number. No signing happens here; :mod:`splitpay.tx_builder` signs locally and
hands raw transactions to :meth:`EVMRPCClient.send_raw_transaction`.
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30


class RPCError(RuntimeError):
    """Raised when the node responds with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class RPCTransportError(RuntimeError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | None) -> str | None:
    """Return a human-friendly hint for common EVM JSON-RPC failures.

    Only well-known failure modes produce a hint. Callers should still log the
    structured error; the hint is extra guidance for CLI users.
    """

    if error_obj is None:
        return None

    message = ""
    if isinstance(error_obj, RPCError):
        message = error_obj.message
    elif isinstance(error_obj, dict):
        message = str(error_obj.get("message", ""))
    lowered = message.lower()

    if "nonce too low" in lowered or "already known" in lowered:
        return (
            "The node already has a transaction with this nonce. Another transaction from the "
            "wallet was sent in the meantime; check the explorer before re-running so that no "
            "batch is paid twice."
        )
    if "underpriced" in lowered or "fee cap" in lowered:
        return (
            "The fee is below what the node accepts. Raise dispatch.fee_multiplier or "
            "dispatch.priority_fee_gwei in the config file and retry the failed batch."
        )
    if "insufficient funds" in lowered:
        return (
            "The signing wallet cannot cover gas (plus value for native payments). Fund the "
            "wallet with the chain's native currency and retry the failed batch."
        )
    if "execution reverted" in lowered:
        return (
            "The contract call reverted during estimation. Check the splitter allowance and "
            "balance of the funding account, and that every payee address is correct."
        )
    if "intrinsic gas too low" in lowered or "gas limit" in lowered:
        return "The gas limit is too low for this batch; try a smaller --chunk-size."
    return None


def to_quantity(value: int) -> str:
    return hex(int(value))


def from_quantity(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise RPCTransportError(f"Expected a hex quantity from the node, got {value!r}")


class EVMRPCClient:
    """Thin JSON-RPC client for EVM compatible nodes.

    Helpers are one-to-one with node methods. Errors are split in two: the
    node refusing a request (``RPCError``) versus the node being unreachable
    or answering with garbage (``RPCTransportError``).
    """

    def __init__(
        self,
        endpoint: str,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                self.endpoint,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                timeout=self.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                "RPC connection failed. Ensure the node is reachable and SPLITPAY_RPC_URL "
                "(or rpc.endpoint in ~/.splitpay.yaml) points to the right URL."
            ) from exc
        try:
            self._raise_for_status(response)
        except requests.HTTPError as exc:
            logger.error(
                "RPC HTTP error: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise RPCTransportError(
                "RPC server returned an HTTP error; check the endpoint URL and any API key it embeds.",
                status_code=response.status_code,
            ) from exc
        try:
            result = response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError("RPC server returned malformed JSON") from exc
        if not isinstance(result, dict):
            raise RPCTransportError("RPC server returned an unexpected payload")
        if result.get("error"):
            error = result["error"]
            raise RPCError(
                error.get("code", -1), error.get("message", "unknown"), error.get("data")
            )
        return result.get("result")

    def _raise_for_status(self, response: Response) -> None:
        if not response.ok:
            logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
            logger.error("RPC error body: %s", response.text)
            if response.status_code in (401, 403):
                raise RPCTransportError(
                    f"Unauthorized ({response.status_code}). Check the API key in SPLITPAY_RPC_URL.",
                    status_code=response.status_code,
                )
        response.raise_for_status()

    # Convenience wrappers -------------------------------------------------

    def chain_id(self) -> int:
        return from_quantity(self.call("eth_chainId"))

    def get_balance(self, address: str, block: str = "latest") -> int:
        return from_quantity(self.call("eth_getBalance", [address, block]))

    def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return from_quantity(self.call("eth_getTransactionCount", [address, block]))

    def gas_price(self) -> int:
        return from_quantity(self.call("eth_gasPrice"))

    def eth_call(self, call: Dict[str, Any], block: str = "latest") -> str:
        return self.call("eth_call", [call, block])

    def estimate_gas(self, call: Dict[str, Any]) -> int:
        return from_quantity(self.call("eth_estimateGas", [call]))

    def send_raw_transaction(self, raw_tx: str) -> str:
        return self.call("eth_sendRawTransaction", [raw_tx])

    def get_transaction_receipt(self, tx_hash: str) -> Dict[str, Any] | None:
        return self.call("eth_getTransactionReceipt", [tx_hash])
