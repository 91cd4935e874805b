"""Plain-text summaries of planned and dispatched batches."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Sequence

from .amounts import format_base_units
from .dispatch import BatchOutcome, DispatchReport
from .model import (
    AssetContext,
    DispatchPlan,
    FundingSufficiency,
    ProposalReceipt,
    TransactionReceipt,
)


def format_batch_table(plan: DispatchPlan, asset: AssetContext) -> str:
    """Render one batch as ``# | payee | address | amount | value | token`` rows."""

    batch = plan.batch
    lines = [
        f"Batch {batch.index + 1}: {len(batch)} payment(s) ({batch.describe_range()}) "
        f"via {plan.call_kind.value}",
        "# | payee | address | amount | value | token",
    ]
    for offset, item in enumerate(batch.instructions):
        lines.append(
            f"{batch.start + offset + 1} | {item.display_name or '-'} | {item.payee} | "
            f"{item.amount} | {format_base_units(item.amount, asset.decimals, places=2)} | "
            f"{asset.symbol}"
        )
    lines.append(
        f"Total: {format_base_units(batch.total, asset.decimals, places=4)} {asset.symbol}"
    )
    return "\n".join(lines)


def format_call_data(plan: DispatchPlan) -> str:
    batch = plan.batch
    return (
        f"Call data for {len(batch)} payment(s) ({batch.describe_range()}):\n"
        f"{plan.call_data_hex}"
    )


def format_funding(sufficiency: FundingSufficiency, asset: AssetContext) -> str:
    lines = [
        f"Funding source: {sufficiency.funding_address}",
        f"Required: {format_base_units(sufficiency.required_total, asset.decimals, places=4)} {asset.symbol}",
        f"Balance: {format_base_units(sufficiency.available_balance, asset.decimals, places=4)} {asset.symbol}",
    ]
    if sufficiency.available_allowance is not None:
        lines.append(
            f"Allowance: {format_base_units(sufficiency.available_allowance, asset.decimals, places=4)} "
            f"{asset.symbol}"
        )
    for warning in sufficiency.warnings:
        lines.append(f"Warning: {warning}")
    return "\n".join(lines)


def format_run_summary(
    plans: Sequence[DispatchPlan], asset: AssetContext, warnings: Iterable[Any] = ()
) -> str:
    total = sum(plan.batch.total for plan in plans)
    count = sum(len(plan.batch) for plan in plans)
    lines = [
        f"{count} payment(s) in {len(plans)} batch(es) of "
        f"[{', '.join(str(len(plan.batch)) for plan in plans)}]",
        f"Asset: {asset.label}",
        f"Total: {format_base_units(total, asset.decimals, places=4)} {asset.symbol} ({total} base units)",
    ]
    for warning in warnings:
        lines.append(f"Warning: {warning}")
    return "\n".join(lines)


def plans_to_jsonable(plans: Sequence[DispatchPlan], asset: AssetContext) -> Dict[str, Any]:
    batches: List[Dict[str, Any]] = []
    for plan in plans:
        entry = plan.to_jsonable()
        entry["payees"] = [
            {"address": item.payee, "amount": str(item.amount), "name": item.display_name}
            for item in plan.batch.instructions
        ]
        batches.append(entry)
    return {
        "asset": {
            "native": asset.is_native,
            "symbol": asset.symbol,
            "decimals": asset.decimals,
            "token": asset.token_address,
        },
        "total": str(sum(plan.batch.total for plan in plans)),
        "batches": batches,
    }


def receipt_to_jsonable(receipt: TransactionReceipt | ProposalReceipt) -> Dict[str, Any]:
    if isinstance(receipt, TransactionReceipt):
        return {
            "kind": "transaction",
            "tx_hash": receipt.tx_hash,
            "block_number": receipt.block_number,
            "gas_used": receipt.gas_used,
            "status": receipt.status,
        }
    return {
        "kind": "proposal",
        "backend": receipt.backend,
        "multisig": receipt.multisig_address,
        "reference": receipt.reference,
        "nonce": receipt.nonce,
        "details": dict(receipt.details),
    }


def format_outcome(outcome: BatchOutcome) -> str:
    batch = outcome.plan.batch
    receipt = outcome.receipt
    if isinstance(receipt, TransactionReceipt):
        detail = f"tx {receipt.tx_hash} | block {receipt.block_number} | gas used {receipt.gas_used}"
    else:
        nonce = "-" if receipt.nonce is None else receipt.nonce
        detail = f"{receipt.backend} proposal {receipt.reference} | multisig {receipt.multisig_address} | nonce {nonce}"
    return f"Batch {batch.index + 1} ({batch.describe_range()}) | {outcome.plan.call_kind.value} | {detail}"


def report_to_jsonable(report: DispatchReport) -> Dict[str, Any]:
    return {
        "route": report.route,
        "dispatched": report.dispatched,
        "funding": None if report.sufficiency is None else report.sufficiency.to_jsonable(),
        "batches": [
            {
                "batch": outcome.plan.batch.index,
                "range": outcome.plan.batch.describe_range(),
                "call_kind": outcome.plan.call_kind.value,
                "gas_estimate": outcome.gas_estimate,
                "receipt": receipt_to_jsonable(outcome.receipt),
            }
            for outcome in report.outcomes
        ],
    }