"""Wire validation, planning, guard checks and dispatch into one payment run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Dict, Sequence, Tuple

import requests
from eth_account import Account
from eth_utils import to_checksum_address

from . import abi
from .config import SplitPayConfig
from .dispatch import (
    DispatchReport,
    DispatchRouter,
    ReviewPause,
    RoutingTarget,
    build_routing_target,
)
from .fees import select_fee_params
from .guards import check_funding
from .model import (
    NATIVE_DECIMALS,
    AssetContext,
    DispatchPlan,
    FundingSufficiency,
    PaymentBatch,
    PaymentInstruction,
    ProposalReceipt,
    TransactionReceipt,
    is_native_asset,
)
from .multisig import MultisigBackend, build_multisig_backend
from .planner import plan_batches, total_required
from .rpc_client import EVMRPCClient
from .selector import build_dispatch_plans
from .tx_builder import ChainClient
from .validator import DuplicatePayeeWarning, derive_asset_context, validate_instructions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunPlan:
    """A validated, batched and encoded run; nothing has moved yet."""

    asset: AssetContext
    instructions: Tuple[PaymentInstruction, ...]
    batches: Tuple[PaymentBatch, ...]
    plans: Tuple[DispatchPlan, ...]
    warnings: Tuple[DuplicatePayeeWarning, ...] = ()

    @property
    def total(self) -> int:
        return total_required(self.batches)


class PaymentEngine:
    """Run payments for one explicit configuration.

    The routing target is resolved on construction, so a misconfigured
    multisig backend fails before any batch is prepared or sent.
    """

    def __init__(
        self,
        config: SplitPayConfig,
        chain: ChainClient,
        *,
        target: RoutingTarget | None = None,
        review_pause: ReviewPause | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.chain = chain
        self._session = session
        self._token_info: Dict[str, Tuple[int, str]] = {}
        self.fee_selector = partial(
            select_fee_params,
            chain.rpc,
            multiplier=config.fee_multiplier,
            priority_fee_gwei=config.priority_fee_gwei,
        )
        self.target = target or build_routing_target(
            config.multisig, config.multisig_type, self._build_backend
        )
        self.review_pause = review_pause or ReviewPause(config.review_delay_seconds)
        self.router = DispatchRouter(
            chain,
            self.target,
            config.splitter,
            fee_selector=self.fee_selector,
            review_pause=self.review_pause,
            native_symbol=config.native_symbol,
        )
        logger.debug("Payment engine ready: %r via %s", config, self.target.name)

    @classmethod
    def from_config(
        cls,
        config: SplitPayConfig,
        *,
        rpc: EVMRPCClient | None = None,
        review_pause: ReviewPause | None = None,
        session: requests.Session | None = None,
    ) -> "PaymentEngine":
        chain = ChainClient(
            rpc or EVMRPCClient(config.rpc_url),
            Account.from_key(config.private_key),
            chain_id=config.chain_id,
            receipt_timeout_seconds=config.receipt_timeout_seconds,
        )
        return cls(config, chain, review_pause=review_pause, session=session)

    def _build_backend(self, multisig_type: str) -> MultisigBackend:
        return build_multisig_backend(
            multisig_type,
            chain=self.chain,
            fee_selector=self.fee_selector,
            service_url=self.config.safe_service_url,
            session=self._session,
            native_symbol=self.config.native_symbol,
        )

    def token_info(self, token: str) -> Tuple[int, str]:
        """``(decimals, symbol)`` for ``token``, read from chain once per engine."""

        key = to_checksum_address(token)
        if key not in self._token_info:
            self._token_info[key] = self.chain.token_metadata(key)
            logger.info("Token %s: symbol %s, %d decimals", key, *reversed(self._token_info[key]))
        return self._token_info[key]

    def decimals_for(self, asset: str) -> int:
        if is_native_asset(asset):
            return NATIVE_DECIMALS
        return self.token_info(asset)[0]

    def prepare(
        self,
        instructions: Sequence[PaymentInstruction],
        *,
        token_metadata: Tuple[int, str] | None = None,
    ) -> RunPlan:
        result = validate_instructions(instructions, native_symbol=self.config.native_symbol)
        asset = result.asset
        if not asset.is_native:
            decimals, symbol = token_metadata or self.token_info(asset.token_address)
            asset = derive_asset_context(asset.token_address, decimals=decimals, symbol=symbol)

        batches = plan_batches(result.instructions, self.config.chunk_size)
        plans = build_dispatch_plans(batches, asset)
        return RunPlan(
            asset=asset,
            instructions=result.instructions,
            batches=batches,
            plans=plans,
            warnings=result.warnings,
        )

    def check(self, run: RunPlan) -> FundingSufficiency:
        return check_funding(
            self.chain, run.asset, self.config.funding_address, self.config.splitter, run.plans
        )

    def execute(self, run: RunPlan) -> DispatchReport:
        """Check funding once, then dispatch every batch in order."""

        sufficiency = self.check(run)
        report = self.router.dispatch(run.plans)
        report.sufficiency = sufficiency
        logger.info("Dispatched %d of %d batch(es) via %s", report.dispatched, len(run.plans), report.route)
        return report

    def approve(self, amount: int = abi.MAX_UINT256) -> TransactionReceipt | ProposalReceipt:
        """Let the splitter pull ``amount`` of the configured token from the funding source."""

        if not self.config.token:
            raise ValueError("Approval needs a token; configure splitter.token or SPLITPAY_TOKEN")
        if amount < 0 or amount > abi.MAX_UINT256:
            raise ValueError(f"Approval amount out of range: {amount}")
        data = abi.encode_approve(self.config.splitter, amount)
        receipt, _ = self.router.submit(
            self.config.token, data, 0, f"approval of {self.config.splitter}"
        )
        return receipt
