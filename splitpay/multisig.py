"""Multisig proposal backends.

Both backends expose the same capability::

    propose(multisig_address, destination, value, data) -> ProposalReceipt

``legacy-multisig`` targets MultiSigWallet-style contracts and submits the
proposal on-chain through ``submitTransaction``. ``safe-style-multisig``
targets Safe accounts: the transaction is hashed (EIP-712), signed by the
run's key, and posted to the Safe Transaction Service, where the other owners
confirm it.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Protocol

import requests
from eth_abi import encode
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_checksum_address, to_hex

from . import abi
from .fees import FeeCapExceeded, FeeParams, format_gas_cost
from .model import ProposalReceipt
from .rpc_client import RPCError, RPCTransportError
from .tx_builder import ChainClient, SubmissionFailed

logger = logging.getLogger(__name__)

LEGACY_MULTISIG = "legacy-multisig"
SAFE_MULTISIG = "safe-style-multisig"
SUPPORTED_MULTISIG_TYPES = (LEGACY_MULTISIG, SAFE_MULTISIG)

SAFE_OPERATION_CALL = 0
SAFE_DOMAIN_TYPEHASH = keccak(text="EIP712Domain(uint256 chainId,address verifyingContract)")
SAFE_TX_TYPEHASH = keccak(
    text=(
        "SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
        "uint256 baseGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
    )
)
SAFE_SERVICE_TIMEOUT_SECONDS = 30
PROPOSAL_ORIGIN = "splitpay"

FeeSelector = Callable[[], FeeParams]


class UnsupportedMultisigType(ValueError):
    """Raised when configuration names a multisig backend that does not exist."""

    def __init__(self, multisig_type: str) -> None:
        supported = ", ".join(SUPPORTED_MULTISIG_TYPES)
        super().__init__(f"Unsupported multisig type {multisig_type!r}; expected one of: {supported}")
        self.multisig_type = multisig_type


class ProposalFailed(RuntimeError):
    """Raised when a multisig backend cannot record a proposal."""


class SafeServiceError(ProposalFailed):
    """Raised when the Safe Transaction Service rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _reply_int(reply: Any, key: str, what: str, default: int | None = None) -> int:
    """Read an integer field from a Safe service reply."""

    if not isinstance(reply, dict):
        raise SafeServiceError(f"Safe service returned a malformed {what}: {reply!r}")
    raw = reply.get(key, default)
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise SafeServiceError(f"Safe service returned a malformed {what}: {key}={raw!r}") from exc


class MultisigBackend(Protocol):
    name: str

    def propose(
        self, multisig_address: str, destination: str, value: int, data: bytes
    ) -> ProposalReceipt:
        ...


class LegacyMultisig:
    """Submit proposals on-chain via ``submitTransaction(destination, value, data)``."""

    name = LEGACY_MULTISIG

    def __init__(
        self, chain: ChainClient, fee_selector: FeeSelector, *, native_symbol: str = "AVAX"
    ) -> None:
        self.chain = chain
        self.fee_selector = fee_selector
        self.native_symbol = native_symbol

    def propose(
        self, multisig_address: str, destination: str, value: int, data: bytes
    ) -> ProposalReceipt:
        submission = abi.encode_submit_transaction(destination, value, data)
        try:
            gas = self.chain.estimate_gas(multisig_address, submission)
            fees = self.fee_selector()
            logger.info(
                "Gas for multisig submission: %s",
                format_gas_cost(gas, fees, self.native_symbol),
            )
            receipt = self.chain.send_transaction(
                multisig_address, submission, value=0, gas=gas, fees=fees
            )
        except (RPCError, RPCTransportError, SubmissionFailed, FeeCapExceeded) as exc:
            raise ProposalFailed(f"submitTransaction on {multisig_address} failed: {exc}") from exc
        return ProposalReceipt(
            backend=self.name,
            multisig_address=to_checksum_address(multisig_address),
            reference=receipt.tx_hash,
            details={"block_number": receipt.block_number, "gas_used": receipt.gas_used},
        )


def safe_tx_hash(
    *,
    chain_id: int,
    safe_address: str,
    to: str,
    value: int,
    data: bytes,
    operation: int,
    safe_tx_gas: int,
    base_gas: int,
    gas_price: int,
    gas_token: str,
    refund_receiver: str,
    nonce: int,
) -> bytes:
    """EIP-712 hash of a Safe transaction (Safe >= 1.3 domain layout)."""

    domain_separator = keccak(
        encode(
            ["bytes32", "uint256", "address"],
            [SAFE_DOMAIN_TYPEHASH, chain_id, to_checksum_address(safe_address)],
        )
    )
    struct_hash = keccak(
        encode(
            [
                "bytes32",
                "address",
                "uint256",
                "bytes32",
                "uint8",
                "uint256",
                "uint256",
                "uint256",
                "address",
                "address",
                "uint256",
            ],
            [
                SAFE_TX_TYPEHASH,
                to_checksum_address(to),
                value,
                keccak(data),
                operation,
                safe_tx_gas,
                base_gas,
                gas_price,
                to_checksum_address(gas_token),
                to_checksum_address(refund_receiver),
                nonce,
            ],
        )
    )
    return keccak(b"\x19\x01" + domain_separator + struct_hash)


def _safe_typed_data(chain_id: int, safe_address: str, message: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": [
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "SafeTx": [
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "data", "type": "bytes"},
                {"name": "operation", "type": "uint8"},
                {"name": "safeTxGas", "type": "uint256"},
                {"name": "baseGas", "type": "uint256"},
                {"name": "gasPrice", "type": "uint256"},
                {"name": "gasToken", "type": "address"},
                {"name": "refundReceiver", "type": "address"},
                {"name": "nonce", "type": "uint256"},
            ],
        },
        "primaryType": "SafeTx",
        "domain": {"chainId": chain_id, "verifyingContract": to_checksum_address(safe_address)},
        "message": message,
    }


class SafeMultisig:
    """Propose Safe transactions through the Safe Transaction Service."""

    name = SAFE_MULTISIG

    def __init__(
        self,
        chain: ChainClient,
        service_url: str,
        *,
        session: requests.Session | None = None,
        timeout: float = SAFE_SERVICE_TIMEOUT_SECONDS,
    ) -> None:
        self.chain = chain
        self.service_url = service_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _url(self, safe_address: str, suffix: str = "") -> str:
        return f"{self.service_url}/api/v1/safes/{to_checksum_address(safe_address)}/{suffix}"

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        logger.debug("Safe service %s %s", method, url)
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error(
                "Safe service unreachable: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise SafeServiceError(f"Safe service unreachable at {self.service_url}: {exc}") from exc
        if not response.ok:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            logger.error("Safe service HTTP %s from %s: %s", response.status_code, url, body)
            raise SafeServiceError(
                f"Safe service returned HTTP {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )
        if response.status_code == 201 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise SafeServiceError("Safe service returned malformed JSON") from exc

    def next_nonce(self, safe_address: str) -> int:
        """Next free nonce: the on-chain nonce, or one past the last queued proposal."""

        info = self._request("GET", self._url(safe_address))
        nonce = _reply_int(info, "nonce", "Safe info")
        queued = self._request(
            "GET",
            self._url(safe_address, "multisig-transactions/"),
            params={"executed": "false", "nonce__gte": nonce, "ordering": "-nonce", "limit": 1},
        )
        if queued is not None and not isinstance(queued, dict):
            raise SafeServiceError(f"Safe service returned an unexpected queue listing: {queued!r}")
        results = (queued or {}).get("results") or []
        if results:
            nonce = max(nonce, _reply_int(results[0], "nonce", "queued transaction") + 1)
        return nonce

    def estimate_safe_tx_gas(self, safe_address: str, to: str, value: int, data: bytes) -> int:
        estimate = self._request(
            "POST",
            self._url(safe_address, "multisig-transactions/estimations/"),
            json={
                "to": to_checksum_address(to),
                "value": str(value),
                "data": to_hex(data),
                "operation": SAFE_OPERATION_CALL,
            },
        )
        if estimate is None:
            return 0
        return _reply_int(estimate, "safeTxGas", "safeTxGas estimate", default=0)

    def propose(
        self, multisig_address: str, destination: str, value: int, data: bytes
    ) -> ProposalReceipt:
        account = self.chain.account
        if account is None:
            raise ProposalFailed("A signing key is required to propose Safe transactions")

        safe_tx_gas = self.estimate_safe_tx_gas(multisig_address, destination, value, data)
        nonce = self.next_nonce(multisig_address)
        message = {
            "to": to_checksum_address(destination),
            "value": value,
            "data": data,
            "operation": SAFE_OPERATION_CALL,
            "safeTxGas": safe_tx_gas,
            "baseGas": 0,
            "gasPrice": 0,
            "gasToken": abi.ZERO_ADDRESS,
            "refundReceiver": abi.ZERO_ADDRESS,
            "nonce": nonce,
        }
        chain_id = self.chain.chain_id
        tx_hash = safe_tx_hash(
            chain_id=chain_id,
            safe_address=multisig_address,
            to=destination,
            value=value,
            data=data,
            operation=SAFE_OPERATION_CALL,
            safe_tx_gas=safe_tx_gas,
            base_gas=0,
            gas_price=0,
            gas_token=abi.ZERO_ADDRESS,
            refund_receiver=abi.ZERO_ADDRESS,
            nonce=nonce,
        )
        signed = account.sign_message(
            encode_typed_data(full_message=_safe_typed_data(chain_id, multisig_address, message))
        )

        body = {
            **message,
            "value": str(value),
            "data": to_hex(data),
            "safeTxGas": str(safe_tx_gas),
            "baseGas": "0",
            "gasPrice": "0",
            "contractTransactionHash": to_hex(tx_hash),
            "sender": account.address,
            "signature": to_hex(signed.signature),
            "origin": PROPOSAL_ORIGIN,
        }
        logger.info(
            "Proposing Safe transaction %s to %s (nonce %d)", to_hex(tx_hash), multisig_address, nonce
        )
        self._request("POST", self._url(multisig_address, "multisig-transactions/"), json=body)
        return ProposalReceipt(
            backend=self.name,
            multisig_address=to_checksum_address(multisig_address),
            reference=to_hex(tx_hash),
            nonce=nonce,
            details={"safe_tx_gas": safe_tx_gas},
        )


def build_multisig_backend(
    multisig_type: str,
    *,
    chain: ChainClient,
    fee_selector: FeeSelector,
    service_url: str,
    session: requests.Session | None = None,
    native_symbol: str = "AVAX",
) -> MultisigBackend:
    """Resolve a configured backend identifier without touching the network."""

    normalized = (multisig_type or "").strip().lower()
    if normalized == LEGACY_MULTISIG:
        return LegacyMultisig(chain, fee_selector, native_symbol=native_symbol)
    if normalized == SAFE_MULTISIG:
        return SafeMultisig(chain, service_url, session=session)
    raise UnsupportedMultisigType(multisig_type)
