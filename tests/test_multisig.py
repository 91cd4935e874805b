from __future__ import annotations

import json

import pytest
import requests
from eth_abi import decode
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_checksum_address, to_hex

from splitpay import abi
from splitpay.fees import FeeCapExceeded, FeeParams
from splitpay.model import TransactionReceipt
from splitpay.multisig import (
    LegacyMultisig,
    ProposalFailed,
    SafeMultisig,
    SafeServiceError,
    UnsupportedMultisigType,
    _safe_typed_data,
    build_multisig_backend,
    safe_tx_hash,
)
from splitpay.tx_builder import ChainClient, SubmissionFailed

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
SAFE = to_checksum_address("0x" + "33" * 20)
SPLITTER = to_checksum_address("0x" + "22" * 20)
SERVICE = "https://safe.example"
FEES = FeeParams(
    max_fee_per_gas=50 * 10**9,
    max_priority_fee_per_gas=2 * 10**9,
    base_gas_price=25 * 10**9,
    source="stub",
)


class StubChain:
    def __init__(self, send_error: Exception | None = None) -> None:
        self.send_error = send_error
        self.sent: list[tuple[str, bytes, int]] = []

    def estimate_gas(self, to, data, value=0, sender=None):
        return 150_000

    def send_transaction(self, to, data, *, value=0, gas, fees):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((to, data, value))
        return TransactionReceipt(tx_hash="0x" + "aa" * 32, block_number=7, gas_used=120_000, status=1)


class FakeResponse:
    def __init__(self, status_code: int, body=None) -> None:
        self.status_code = status_code
        self._body = body
        self.content = b"" if body is None else json.dumps(body).encode()
        self.text = self.content.decode()

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeSession:
    def __init__(self, *, onchain_nonce=5, queued_nonce=6, post_status: int = 201) -> None:
        self.onchain_nonce = onchain_nonce
        self.queued_nonce = queued_nonce
        self.post_status = post_status
        self.requests: list[tuple[str, str, dict]] = []

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs))
        if method == "GET" and url.endswith(f"/api/v1/safes/{SAFE}/"):
            return FakeResponse(200, {"address": SAFE, "nonce": self.onchain_nonce})
        if method == "GET" and url.endswith("/multisig-transactions/"):
            results = [] if self.queued_nonce is None else [{"nonce": self.queued_nonce}]
            return FakeResponse(200, {"count": len(results), "results": results})
        if method == "POST" and url.endswith("/multisig-transactions/estimations/"):
            return FakeResponse(200, {"safeTxGas": "45000"})
        if method == "POST" and url.endswith("/multisig-transactions/"):
            if self.post_status >= 400:
                return FakeResponse(self.post_status, {"nonFieldErrors": ["bad signature"]})
            return FakeResponse(self.post_status)
        raise AssertionError(f"unexpected request {method} {url}")


class StubRPC:
    def chain_id(self):
        return 43114


def safe_backend(session: FakeSession) -> SafeMultisig:
    chain = ChainClient(StubRPC(), Account.from_key(PRIVATE_KEY))
    return SafeMultisig(chain, SERVICE + "/", session=session)


def test_unknown_multisig_type_is_rejected_offline() -> None:
    with pytest.raises(UnsupportedMultisigType) as excinfo:
        build_multisig_backend(
            "unknown-type", chain=StubChain(), fee_selector=lambda: FEES, service_url=SERVICE
        )

    assert excinfo.value.multisig_type == "unknown-type"
    assert "legacy-multisig" in str(excinfo.value)


def test_backend_identifiers_resolve() -> None:
    chain = StubChain()

    legacy = build_multisig_backend(
        "Legacy-Multisig", chain=chain, fee_selector=lambda: FEES, service_url=SERVICE
    )
    safe = build_multisig_backend(
        "safe-style-multisig", chain=chain, fee_selector=lambda: FEES, service_url=SERVICE
    )

    assert isinstance(legacy, LegacyMultisig)
    assert isinstance(safe, SafeMultisig)
    assert safe.service_url == SERVICE


def test_legacy_backend_submits_transaction_to_multisig() -> None:
    chain = StubChain()
    backend = LegacyMultisig(chain, lambda: FEES)
    inner = bytes.fromhex("deadbeef")

    receipt = backend.propose(SAFE, SPLITTER, 250, inner)

    ((to, data, value),) = chain.sent
    assert to == SAFE
    assert value == 0
    assert data[:4] == abi.function_selector(abi.SUBMIT_TRANSACTION)
    destination, forwarded_value, forwarded_data = decode(["address", "uint256", "bytes"], data[4:])
    assert destination.lower() == SPLITTER.lower()
    assert forwarded_value == 250
    assert forwarded_data == inner
    assert receipt.backend == "legacy-multisig"
    assert receipt.reference == "0x" + "aa" * 32
    assert receipt.details["block_number"] == 7


def test_legacy_backend_wraps_submission_errors() -> None:
    backend = LegacyMultisig(StubChain(send_error=SubmissionFailed("reverted")), lambda: FEES)

    with pytest.raises(ProposalFailed):
        backend.propose(SAFE, SPLITTER, 0, b"\x00")


def test_safe_tx_hash_matches_eip712_encoding() -> None:
    message = {
        "to": SPLITTER,
        "value": 10,
        "data": bytes.fromhex("c0ffee"),
        "operation": 0,
        "safeTxGas": 45000,
        "baseGas": 0,
        "gasPrice": 0,
        "gasToken": abi.ZERO_ADDRESS,
        "refundReceiver": abi.ZERO_ADDRESS,
        "nonce": 7,
    }
    signable = encode_typed_data(full_message=_safe_typed_data(43114, SAFE, message))

    expected = keccak(b"\x19" + signable.version + signable.header + signable.body)

    assert safe_tx_hash(
        chain_id=43114,
        safe_address=SAFE,
        to=SPLITTER,
        value=10,
        data=bytes.fromhex("c0ffee"),
        operation=0,
        safe_tx_gas=45000,
        base_gas=0,
        gas_price=0,
        gas_token=abi.ZERO_ADDRESS,
        refund_receiver=abi.ZERO_ADDRESS,
        nonce=7,
    ) == expected


def test_safe_backend_proposes_signed_transaction() -> None:
    session = FakeSession(onchain_nonce=5, queued_nonce=6)
    backend = safe_backend(session)
    data = bytes.fromhex("c0ffee")

    receipt = backend.propose(SAFE, SPLITTER, 10, data)

    assert receipt.nonce == 7
    assert receipt.backend == "safe-style-multisig"
    assert receipt.details == {"safe_tx_gas": 45000}

    method, url, kwargs = session.requests[-1]
    assert (method, url) == ("POST", f"{SERVICE}/api/v1/safes/{SAFE}/multisig-transactions/")
    body = kwargs["json"]
    assert body["nonce"] == 7
    assert body["value"] == "10"
    assert body["data"] == "0xc0ffee"
    assert body["safeTxGas"] == "45000"
    assert body["contractTransactionHash"] == receipt.reference
    assert body["sender"] == Account.from_key(PRIVATE_KEY).address

    message = {
        "to": SPLITTER,
        "value": 10,
        "data": data,
        "operation": 0,
        "safeTxGas": 45000,
        "baseGas": 0,
        "gasPrice": 0,
        "gasToken": abi.ZERO_ADDRESS,
        "refundReceiver": abi.ZERO_ADDRESS,
        "nonce": 7,
    }
    signable = encode_typed_data(full_message=_safe_typed_data(43114, SAFE, message))
    assert Account.recover_message(signable, signature=body["signature"]) == body["sender"]
    assert to_hex(keccak(b"\x19" + signable.version + signable.header + signable.body)) == receipt.reference


def test_safe_nonce_uses_onchain_value_when_queue_is_empty() -> None:
    backend = safe_backend(FakeSession(onchain_nonce=3, queued_nonce=None))

    assert backend.next_nonce(SAFE) == 3


def test_safe_service_rejection_raises() -> None:
    backend = safe_backend(FakeSession(post_status=422))

    with pytest.raises(SafeServiceError) as excinfo:
        backend.propose(SAFE, SPLITTER, 0, b"\x01")

    assert excinfo.value.status_code == 422
    assert isinstance(excinfo.value, ProposalFailed)


def test_unreachable_safe_service_raises() -> None:
    class BrokenSession:
        def request(self, *_args, **_kwargs):
            raise requests.ConnectionError("connection refused")

    backend = safe_backend(BrokenSession())  # type: ignore[arg-type]

    with pytest.raises(SafeServiceError):
        backend.next_nonce(SAFE)


def test_legacy_backend_wraps_fee_cap() -> None:
    def capped():
        raise FeeCapExceeded("Selected max fee 600.00 gwei exceeds cap 500.00 gwei")

    chain = StubChain()

    with pytest.raises(ProposalFailed) as excinfo:
        LegacyMultisig(chain, capped).propose(SAFE, SPLITTER, 0, b"\x00")

    assert isinstance(excinfo.value.__cause__, FeeCapExceeded)
    assert chain.sent == []


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(onchain_nonce=None),
        FakeSession(onchain_nonce="five"),
        FakeSession(onchain_nonce=5, queued_nonce="seven"),
    ],
)
def test_malformed_nonce_replies_raise_service_error(session: FakeSession) -> None:
    with pytest.raises(SafeServiceError, match="malformed"):
        safe_backend(session).next_nonce(SAFE)
