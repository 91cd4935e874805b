"""Pick the cheapest splitter entry point for each batch and encode it.

A batch whose payments all carry the same amount can use ``distribute`` (or
``distributeAVAX``), which ships one amount instead of an array of them. The
choice only affects gas; payees and totals are identical either way.
"""

from __future__ import annotations

from typing import Sequence, Tuple

from . import abi
from .model import AssetContext, CallKind, DispatchPlan, PaymentBatch


def select_call_kind(batch: PaymentBatch, asset: AssetContext) -> CallKind:
    if batch.is_uniform:
        return CallKind.DISTRIBUTE_UNIFORM_NATIVE if asset.is_native else CallKind.DISTRIBUTE_UNIFORM
    return CallKind.PAY_GENERAL_NATIVE if asset.is_native else CallKind.PAY_GENERAL


def encode_batch_call(batch: PaymentBatch, asset: AssetContext, call_kind: CallKind) -> bytes:
    if call_kind.is_native != asset.is_native:
        raise ValueError(f"{call_kind.value} cannot pay {asset.symbol}")
    if call_kind.is_uniform and not batch.is_uniform:
        raise ValueError(f"{call_kind.value} requires identical amounts")

    if call_kind is CallKind.DISTRIBUTE_UNIFORM:
        return abi.encode_distribute(asset.token_address, batch.amounts[0], batch.payees)
    if call_kind is CallKind.PAY_GENERAL:
        return abi.encode_pay(asset.token_address, batch.payees, batch.amounts)
    if call_kind is CallKind.DISTRIBUTE_UNIFORM_NATIVE:
        return abi.encode_distribute_native(batch.amounts[0], batch.payees)
    return abi.encode_pay_native(batch.payees, batch.amounts)


def build_dispatch_plan(batch: PaymentBatch, asset: AssetContext) -> DispatchPlan:
    call_kind = select_call_kind(batch, asset)
    return DispatchPlan(
        batch=batch,
        call_kind=call_kind,
        call_data=encode_batch_call(batch, asset, call_kind),
        value=batch.total if asset.is_native else 0,
    )


def build_dispatch_plans(
    batches: Sequence[PaymentBatch], asset: AssetContext
) -> Tuple[DispatchPlan, ...]:
    return tuple(build_dispatch_plan(batch, asset) for batch in batches)
