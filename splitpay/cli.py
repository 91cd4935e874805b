"""Command line interface for splitpay.

``plan`` shows how a payment file will be batched and encoded, ``check`` adds
the funding checks, ``pay`` dispatches the batches, and ``approve`` grants the
splitter an ERC-20 allowance.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Sequence

from eth_utils import is_address

from . import abi
from .amounts import InvalidAmount, parse_amount
from .config import ConfigurationError, load_config
from .dispatch import BatchDispatchError, DispatchAborted, ReviewPause
from .engine import PaymentEngine, RunPlan
from .fees import FeeCapExceeded
from .guards import FundingError
from .inputs import InputFormatError, build_instructions, load_payment_rows
from .model import NATIVE_ASSET, NATIVE_DECIMALS, is_native_asset
from .multisig import ProposalFailed, UnsupportedMultisigType
from .planner import PlanningError
from .report import (
    format_batch_table,
    format_call_data,
    format_funding,
    format_outcome,
    format_run_summary,
    plans_to_jsonable,
    receipt_to_jsonable,
    report_to_jsonable,
)
from .rpc_client import RPCError, RPCTransportError, format_rpc_hint
from .tx_builder import SubmissionFailed
from .validator import InstructionError

logger = logging.getLogger(__name__)


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to a splitpay YAML config (default: ~/.splitpay.yaml)")
    parser.add_argument("--rpc-url", help="Override RPC endpoint URL")
    parser.add_argument("--splitter", help="Override splitter contract address")
    parser.add_argument("--token", help="Override ERC-20 token address")
    parser.add_argument("--multisig", help="Route through this multisig instead of the wallet")
    parser.add_argument(
        "--multisig-type",
        help="Multisig backend: legacy-multisig or safe-style-multisig",
    )
    parser.add_argument(
        "--review-delay",
        type=float,
        help="Seconds to wait before each submission (default: 15, 0 disables)",
    )
    parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Emit machine-readable JSON",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("file", help="Payment file (.csv, .yaml or .json)")
    parser.add_argument(
        "--chunk-size",
        type=int,
        help="Maximum payees per splitter call (default: 200)",
    )
    parser.add_argument(
        "--decimal-amounts",
        action="store_true",
        help="Treat amounts as decimal token units instead of base units",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bulk payments through a splitter contract")
    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser(
        "plan", help="show batches and encoded call data without sending anything"
    )
    _add_run_options(plan_parser)
    _add_common_options(plan_parser)

    check_parser = subparsers.add_parser(
        "check", help="plan the run and verify the funding balance and allowance"
    )
    _add_run_options(check_parser)
    _add_common_options(check_parser)

    pay_parser = subparsers.add_parser(
        "pay", help="validate, check funding, then dispatch every batch"
    )
    _add_run_options(pay_parser)
    _add_common_options(pay_parser)

    approve_parser = subparsers.add_parser(
        "approve", help="allow the splitter to spend the configured token"
    )
    approve_parser.add_argument(
        "--amount",
        help="Allowance in base units (default: unlimited)",
    )
    approve_parser.add_argument(
        "--decimal-amounts",
        action="store_true",
        help="Treat --amount as decimal token units",
    )
    _add_common_options(approve_parser)

    return parser


def _load_engine(args: argparse.Namespace) -> PaymentEngine:
    overrides = {
        "rpc_url": args.rpc_url,
        "splitter": args.splitter,
        "token": args.token,
        "multisig": args.multisig,
        "multisig_type": args.multisig_type,
        "chunk_size": getattr(args, "chunk_size", None),
        "review_delay_seconds": args.review_delay,
    }
    config = load_config(config_path=args.config, overrides=overrides)
    announce = None if args.as_json else _stdout_progress
    review_pause = ReviewPause(config.review_delay_seconds, announce=announce)
    return PaymentEngine.from_config(config, review_pause=review_pause)


def _prepare_run(engine: PaymentEngine, args: argparse.Namespace) -> RunPlan:
    default_asset = engine.config.token or NATIVE_ASSET
    rows = load_payment_rows(args.file, default_asset=default_asset)

    unit = "decimal" if args.decimal_amounts else "base"
    decimals = NATIVE_DECIMALS
    if unit == "decimal" and rows:
        asset = rows[0].asset
        # Malformed assets are left for the validator to report.
        if not is_native_asset(asset) and is_address(asset):
            decimals = engine.decimals_for(asset)
    instructions = build_instructions(rows, unit=unit, decimals=decimals)
    return engine.prepare(instructions)


def _print_plan(run: RunPlan) -> None:
    print(format_run_summary(run.plans, run.asset, run.warnings))
    for plan in run.plans:
        print()
        print(format_batch_table(plan, run.asset))
        print(format_call_data(plan))


def cmd_plan(args: argparse.Namespace) -> None:
    engine = _load_engine(args)
    run = _prepare_run(engine, args)
    if args.as_json:
        print(json.dumps(plans_to_jsonable(run.plans, run.asset), indent=2))
        return
    _print_plan(run)


def cmd_check(args: argparse.Namespace) -> None:
    engine = _load_engine(args)
    run = _prepare_run(engine, args)
    sufficiency = engine.check(run)
    if args.as_json:
        payload = plans_to_jsonable(run.plans, run.asset)
        payload["funding"] = sufficiency.to_jsonable()
        print(json.dumps(payload, indent=2))
        return
    print(format_run_summary(run.plans, run.asset, run.warnings))
    print(format_funding(sufficiency, run.asset))
    print("Funding check passed")


def cmd_pay(args: argparse.Namespace) -> None:
    engine = _load_engine(args)
    run = _prepare_run(engine, args)
    if not args.as_json:
        print(format_run_summary(run.plans, run.asset, run.warnings))
        print(f"Route: {engine.target.name}")

    try:
        report = engine.execute(run)
    except BatchDispatchError as exc:
        if exc.completed:
            print(f"{len(exc.completed)} batch(es) were dispatched before the failure:")
            for outcome in exc.completed:
                print(f"  {format_outcome(outcome)}")
        raise

    if args.as_json:
        print(json.dumps(report_to_jsonable(report), indent=2))
        return
    for outcome in report.outcomes:
        print(format_outcome(outcome))
    print(f"Dispatched {report.dispatched} batch(es) via {report.route}")


def cmd_approve(args: argparse.Namespace) -> None:
    engine = _load_engine(args)
    token = engine.config.token
    if not token:
        raise CLIError("approve needs a token (--token, SPLITPAY_TOKEN or splitter.token)")

    amount = abi.MAX_UINT256
    if args.amount is not None:
        unit = "decimal" if args.decimal_amounts else "base"
        decimals = engine.decimals_for(token) if unit == "decimal" else 0
        amount = parse_amount(args.amount, decimals, unit=unit)

    receipt = engine.approve(amount)
    if args.as_json:
        print(json.dumps(receipt_to_jsonable(receipt), indent=2))
        return
    label = "unlimited" if amount == abi.MAX_UINT256 else str(amount)
    print(f"Approval of {label} for splitter {engine.config.splitter} submitted: {_reference(receipt)}")


def _reference(receipt: Any) -> str:
    return getattr(receipt, "tx_hash", None) or receipt.reference


def _stdout_progress(message: str) -> None:
    print(message)


def _error_hint(exc: BaseException) -> str | None:
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, RPCError):
            return format_rpc_hint(current)
        current = getattr(current, "cause", None) or current.__cause__
    return None


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        if args.command == "plan":
            cmd_plan(args)
        elif args.command == "check":
            cmd_check(args)
        elif args.command == "pay":
            cmd_pay(args)
        elif args.command == "approve":
            cmd_approve(args)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (
        CLIError,
        ConfigurationError,
        InputFormatError,
        InstructionError,
        InvalidAmount,
        PlanningError,
        FundingError,
        UnsupportedMultisigType,
        BatchDispatchError,
        DispatchAborted,
        ProposalFailed,
        SubmissionFailed,
        FeeCapExceeded,
        RPCError,
        RPCTransportError,
    ) as exc:
        message = f"error: {exc}\n"
        hint = _error_hint(exc)
        if hint:
            message += f"hint: {hint}\n"
        parser.exit(1, message)


if __name__ == "__main__":
    main(sys.argv[1:])
