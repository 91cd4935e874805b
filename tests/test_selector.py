from __future__ import annotations

import pytest
from eth_abi import decode

from splitpay import abi
from splitpay.model import AssetContext, CallKind, PaymentBatch, PaymentInstruction
from splitpay.selector import (
    build_dispatch_plan,
    build_dispatch_plans,
    encode_batch_call,
    select_call_kind,
)

TOKEN = "0x" + "ab" * 20
TOKEN_CONTEXT = AssetContext(is_native=False, decimals=6, symbol="USDC", token_address=TOKEN)
NATIVE_CONTEXT = AssetContext(is_native=True, decimals=18, symbol="AVAX")


def addr(index: int) -> str:
    return "0x" + f"{index:040x}"


def make_batch(amounts: list[int], asset: str = TOKEN, index: int = 0, start: int = 0) -> PaymentBatch:
    instructions = tuple(
        PaymentInstruction(payee=addr(start + offset + 1), amount=amount, asset=asset)
        for offset, amount in enumerate(amounts)
    )
    return PaymentBatch(index=index, start=start, instructions=instructions)


def lowered(values) -> list[str]:
    return [value.lower() for value in values]


def test_mixed_amounts_use_pay() -> None:
    batch = make_batch([100, 150])

    plan = build_dispatch_plan(batch, TOKEN_CONTEXT)

    assert plan.call_kind is CallKind.PAY_GENERAL
    assert batch.total == 250
    assert plan.value == 0
    assert plan.call_data[:4] == abi.function_selector(abi.PAY)
    token, payees, amounts = decode(["address", "address[]", "uint256[]"], plan.call_data[4:])
    assert token.lower() == TOKEN
    assert lowered(payees) == [addr(1), addr(2)]
    assert list(amounts) == [100, 150]


def test_uniform_token_batch_uses_distribute() -> None:
    batch = make_batch([100] * 3)

    plan = build_dispatch_plan(batch, TOKEN_CONTEXT)

    assert plan.call_kind is CallKind.DISTRIBUTE_UNIFORM
    assert plan.call_data[:4] == abi.function_selector(abi.DISTRIBUTE)
    token, amount, payees = decode(["address", "uint256", "address[]"], plan.call_data[4:])
    assert token.lower() == TOKEN
    assert amount == 100
    assert lowered(payees) == [addr(1), addr(2), addr(3)]


def test_native_batches_carry_value() -> None:
    uniform = build_dispatch_plan(make_batch([5, 5], asset="native"), NATIVE_CONTEXT)
    general = build_dispatch_plan(make_batch([5, 7], asset="native"), NATIVE_CONTEXT)

    assert uniform.call_kind is CallKind.DISTRIBUTE_UNIFORM_NATIVE
    assert uniform.value == 10
    assert uniform.call_data[:4] == abi.function_selector(abi.DISTRIBUTE_NATIVE)

    assert general.call_kind is CallKind.PAY_GENERAL_NATIVE
    assert general.value == 12
    payees, amounts = decode(["address[]", "uint256[]"], general.call_data[4:])
    assert lowered(payees) == [addr(1), addr(2)]
    assert list(amounts) == [5, 7]


def test_selection_is_deterministic() -> None:
    batches = [make_batch([1, 2, 3]), make_batch([4, 4], index=1, start=3)]

    first = build_dispatch_plans(batches, TOKEN_CONTEXT)
    second = build_dispatch_plans(batches, TOKEN_CONTEXT)

    assert first == second
    assert [plan.call_kind for plan in first] == [CallKind.PAY_GENERAL, CallKind.DISTRIBUTE_UNIFORM]


def test_single_payment_batch_is_uniform() -> None:
    assert select_call_kind(make_batch([42]), TOKEN_CONTEXT) is CallKind.DISTRIBUTE_UNIFORM


def test_call_kind_must_match_batch_and_asset() -> None:
    with pytest.raises(ValueError):
        encode_batch_call(make_batch([1, 2]), TOKEN_CONTEXT, CallKind.DISTRIBUTE_UNIFORM)
    with pytest.raises(ValueError):
        encode_batch_call(make_batch([1, 1]), TOKEN_CONTEXT, CallKind.DISTRIBUTE_UNIFORM_NATIVE)


def test_selectors_match_known_signatures() -> None:
    # ERC-20 selectors are fixed across every token contract.
    assert abi.function_selector(abi.APPROVE).hex() == "095ea7b3"
    assert abi.function_selector(abi.BALANCE_OF).hex() == "70a08231"
    assert abi.function_selector(abi.ALLOWANCE).hex() == "dd62ed3e"
    assert abi.function_selector(abi.SUBMIT_TRANSACTION).hex() == "c6427474"
