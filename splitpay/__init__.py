"""Bulk payments through a splitter contract, sent directly or via a multisig."""

from .amounts import InvalidAmount, format_base_units, to_base_units
from .config import ConfigurationError, SplitPayConfig, load_config
from .dispatch import (
    BatchDispatchError,
    DirectWallet,
    DispatchAborted,
    DispatchReport,
    MultisigRoute,
    ReviewPause,
)
from .engine import PaymentEngine, RunPlan
from .guards import FundingError, InsufficientAllowance, InsufficientBalance
from .model import (
    AssetContext,
    CallKind,
    DispatchPlan,
    FundingSufficiency,
    PaymentBatch,
    PaymentInstruction,
)
from .multisig import ProposalFailed, SafeServiceError, UnsupportedMultisigType
from .planner import plan_batches
from .rpc_client import RPCError, RPCTransportError
from .selector import build_dispatch_plan, select_call_kind
from .tx_builder import SubmissionFailed
from .validator import (
    EmptyInstructionSet,
    InstructionError,
    InvalidAddress,
    NonUniformAsset,
    ZeroAmountPayment,
    validate_instructions,
)

__all__ = [
    "AssetContext",
    "BatchDispatchError",
    "CallKind",
    "ConfigurationError",
    "DirectWallet",
    "DispatchAborted",
    "DispatchPlan",
    "DispatchReport",
    "EmptyInstructionSet",
    "FundingError",
    "FundingSufficiency",
    "InstructionError",
    "InsufficientAllowance",
    "InsufficientBalance",
    "InvalidAddress",
    "InvalidAmount",
    "MultisigRoute",
    "NonUniformAsset",
    "PaymentBatch",
    "PaymentEngine",
    "PaymentInstruction",
    "ProposalFailed",
    "RPCError",
    "RPCTransportError",
    "ReviewPause",
    "RunPlan",
    "SafeServiceError",
    "SplitPayConfig",
    "SubmissionFailed",
    "UnsupportedMultisigType",
    "ZeroAmountPayment",
    "build_dispatch_plan",
    "format_base_units",
    "load_config",
    "plan_batches",
    "select_call_kind",
    "to_base_units",
    "validate_instructions",
]
