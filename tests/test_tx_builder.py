from __future__ import annotations

import pytest
from eth_abi import encode
from eth_account import Account

from splitpay import abi
from splitpay.fees import FeeParams
from splitpay.model import AssetContext
from splitpay.rpc_client import RPCError
from splitpay.tx_builder import ChainClient, SubmissionFailed

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TOKEN = "0x" + "ab" * 20
SPLITTER = "0x" + "22" * 20
HOLDER = "0x" + "11" * 20
FEES = FeeParams(
    max_fee_per_gas=50 * 10**9,
    max_priority_fee_per_gas=2 * 10**9,
    base_gas_price=25 * 10**9,
    source="stub",
)


class StubRPC:
    def __init__(self, receipts=None, send_error: Exception | None = None) -> None:
        self.receipts = list(receipts or [])
        self.send_error = send_error
        self.calls: list[dict] = []
        self.estimates: list[dict] = []
        self.raw_transactions: list[str] = []

    def chain_id(self):
        return 43114

    def get_balance(self, address, block="latest"):
        return 5 * 10**18

    def eth_call(self, call, block="latest"):
        self.calls.append(call)
        selector = bytes.fromhex(call["data"][2:10])
        if selector == abi.function_selector(abi.DECIMALS):
            return "0x" + encode(["uint8"], [6]).hex()
        if selector == abi.function_selector(abi.SYMBOL):
            # Legacy tokens return bytes32 instead of a string.
            return "0x" + b"MKR".ljust(32, b"\x00").hex()
        return "0x" + encode(["uint256"], [1234]).hex()

    def estimate_gas(self, call):
        self.estimates.append(call)
        return 80_000

    def gas_price(self):
        return 25 * 10**9

    def get_transaction_count(self, address, block="pending"):
        return 9

    def send_raw_transaction(self, raw_tx):
        if self.send_error is not None:
            raise self.send_error
        self.raw_transactions.append(raw_tx)
        return "0x" + "cd" * 32

    def get_transaction_receipt(self, tx_hash):
        return self.receipts.pop(0) if self.receipts else None


def make_client(rpc: StubRPC, **kwargs) -> ChainClient:
    sleeps: list[float] = []
    client = ChainClient(rpc, Account.from_key(PRIVATE_KEY), sleep=sleeps.append, **kwargs)
    client.sleeps = sleeps  # type: ignore[attr-defined]
    return client


def test_balances_for_native_and_token_assets() -> None:
    rpc = StubRPC()
    client = make_client(rpc)
    native = AssetContext(is_native=True, decimals=18, symbol="AVAX")
    token = AssetContext(is_native=False, decimals=6, symbol="USDC", token_address=TOKEN)

    assert client.get_balance(HOLDER, native) == 5 * 10**18
    assert client.get_balance(HOLDER, token) == 1234
    assert client.get_allowance(HOLDER, SPLITTER, TOKEN) == 1234
    assert rpc.calls[-1]["data"].startswith("0x" + abi.function_selector(abi.ALLOWANCE).hex())


def test_token_metadata_handles_bytes32_symbols() -> None:
    assert make_client(StubRPC()).token_metadata(TOKEN) == (6, "MKR")


def test_value_is_only_sent_when_nonzero() -> None:
    rpc = StubRPC()
    client = make_client(rpc)

    client.estimate_gas(SPLITTER, b"\x01")
    client.estimate_gas(SPLITTER, b"\x01", value=10)

    assert "value" not in rpc.estimates[0]
    assert rpc.estimates[1]["value"] == "0xa"
    assert rpc.estimates[0]["from"] == client.address


def test_send_transaction_signs_eip1559_and_waits_for_receipt() -> None:
    receipt = {"status": "0x1", "blockNumber": "0x10", "gasUsed": "0x5208"}
    rpc = StubRPC(receipts=[None, receipt])
    client = make_client(rpc, poll_interval_seconds=0.5)

    result = client.send_transaction(SPLITTER, b"\xaa\xbb", value=7, gas=90_000, fees=FEES)

    assert result.tx_hash == "0x" + "cd" * 32
    assert (result.block_number, result.gas_used, result.status) == (16, 21000, 1)
    assert client.sleeps == [0.5]  # type: ignore[attr-defined]
    (raw,) = rpc.raw_transactions
    assert raw.startswith("0x02")
    assert Account.recover_transaction(raw) == client.address


def test_build_transaction_fields() -> None:
    client = make_client(StubRPC())

    tx = client.build_transaction(SPLITTER, b"\x01", 3, 21_000, FEES, nonce=4)

    assert tx["type"] == 2
    assert tx["chainId"] == 43114
    assert tx["nonce"] == 4
    assert tx["maxFeePerGas"] == FEES.max_fee_per_gas
    assert tx["data"] == "0x01"


def test_reverted_receipt_raises() -> None:
    rpc = StubRPC(receipts=[{"status": "0x0", "blockNumber": "0x1", "gasUsed": "0x1"}])

    with pytest.raises(SubmissionFailed) as excinfo:
        make_client(rpc).send_transaction(SPLITTER, b"", gas=1, fees=FEES)

    assert excinfo.value.tx_hash == "0x" + "cd" * 32


def test_rejected_broadcast_keeps_node_error() -> None:
    error = RPCError(-32000, "nonce too low")

    with pytest.raises(SubmissionFailed) as excinfo:
        make_client(StubRPC(send_error=error)).send_transaction(SPLITTER, b"", gas=1, fees=FEES)

    assert excinfo.value.cause is error
    assert excinfo.value.tx_hash is None


def test_unmined_transaction_times_out() -> None:
    client = make_client(StubRPC(), receipt_timeout_seconds=0)

    with pytest.raises(SubmissionFailed, match="not mined"):
        client.send_transaction(SPLITTER, b"", gas=1, fees=FEES)
