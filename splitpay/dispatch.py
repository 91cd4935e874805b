"""Route planned splitter calls to direct signing or a multisig backend.

Batches go out strictly one after another. A failure stops the run at the
failing batch and is reported together with everything that already went
out; sent transactions and recorded proposals cannot be undone, so nothing is
rolled back or retried here.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple, Union

from eth_utils import to_checksum_address

from .fees import FeeParams, format_gas_cost
from .model import (
    CallKind,
    DispatchPlan,
    FundingSufficiency,
    ProposalReceipt,
    TransactionReceipt,
)
from .multisig import MultisigBackend
from .tx_builder import ChainClient

logger = logging.getLogger(__name__)


class DispatchAborted(RuntimeError):
    """Raised when the operator cancels the review pause."""


class BatchDispatchError(RuntimeError):
    """A batch failed; earlier batches in ``completed`` were already sent."""

    def __init__(
        self,
        plan: DispatchPlan,
        cause: Exception,
        completed: Sequence["BatchOutcome"],
    ) -> None:
        batch = plan.batch
        super().__init__(
            f"Batch {batch.index + 1} (payments {batch.describe_range()}, {plan.call_kind.value}) "
            f"failed after {len(completed)} batch(es) were dispatched: {cause}"
        )
        self.batch_index = batch.index
        self.batch_range = (batch.first_position, batch.last_position)
        self.call_kind: CallKind = plan.call_kind
        self.cause = cause
        self.completed: Tuple[BatchOutcome, ...] = tuple(completed)


@dataclass(frozen=True)
class DirectWallet:
    """Send splitter calls straight from the run's signing wallet."""

    name: str = "direct-wallet"


@dataclass(frozen=True)
class MultisigRoute:
    """Propose splitter calls to ``multisig_address`` through ``backend``."""

    multisig_address: str
    backend: MultisigBackend

    @property
    def name(self) -> str:
        return self.backend.name


RoutingTarget = Union[DirectWallet, MultisigRoute]


class ReviewPause:
    """Fixed delay before funds move, giving the operator a window to abort.

    ``seconds=0`` skips the wait. Setting ``cancel_event`` (from another
    thread or a signal handler) ends the wait early and aborts the run.
    """

    def __init__(
        self,
        seconds: float,
        cancel_event: threading.Event | None = None,
        announce: Callable[[str], None] | None = None,
    ) -> None:
        if seconds < 0:
            raise ValueError("Review pause cannot be negative")
        self.seconds = seconds
        self.cancel_event = cancel_event or threading.Event()
        self._announce = announce or logger.info

    def cancel(self) -> None:
        self.cancel_event.set()

    def wait(self, description: str) -> None:
        if self.cancel_event.is_set():
            raise DispatchAborted(f"Dispatch cancelled before {description}")
        if self.seconds <= 0:
            return
        self._announce(f"Will submit {description} in {self.seconds:g} seconds ...")
        if self.cancel_event.wait(self.seconds):
            raise DispatchAborted(f"Dispatch cancelled before {description}")


@dataclass(frozen=True)
class BatchOutcome:
    plan: DispatchPlan
    receipt: Union[TransactionReceipt, ProposalReceipt]
    gas_estimate: int | None = None

    @property
    def reference(self) -> str:
        if isinstance(self.receipt, TransactionReceipt):
            return self.receipt.tx_hash
        return self.receipt.reference


@dataclass
class DispatchReport:
    route: str
    outcomes: List[BatchOutcome] = field(default_factory=list)
    sufficiency: FundingSufficiency | None = None

    @property
    def dispatched(self) -> int:
        return len(self.outcomes)


class DispatchRouter:
    """Send each plan in batch order through the run's routing target."""

    def __init__(
        self,
        chain: ChainClient,
        target: RoutingTarget,
        destination: str,
        *,
        fee_selector: Callable[[], FeeParams],
        review_pause: ReviewPause | None = None,
        native_symbol: str = "AVAX",
    ) -> None:
        self.chain = chain
        self.target = target
        self.destination = to_checksum_address(destination)
        self.fee_selector = fee_selector
        self.review_pause = review_pause or ReviewPause(0)
        self.native_symbol = native_symbol

    def dispatch(self, plans: Sequence[DispatchPlan]) -> DispatchReport:
        report = DispatchReport(route=self.target.name)
        for plan in plans:
            logger.info(
                "Dispatching batch %d (payments %s, %d payee(s)) via %s using %s",
                plan.batch.index + 1,
                plan.batch.describe_range(),
                len(plan.batch),
                self.target.name,
                plan.call_kind.value,
            )
            try:
                outcome = self._dispatch_one(plan)
            except Exception as exc:
                # Any failure while a batch is in flight is reported against that batch.
                logger.error(
                    "Batch %d failed after %d batch(es) dispatched: %s",
                    plan.batch.index + 1,
                    report.dispatched,
                    exc,
                )
                raise BatchDispatchError(plan, exc, report.outcomes) from exc
            report.outcomes.append(outcome)
        return report

    def _dispatch_one(self, plan: DispatchPlan) -> BatchOutcome:
        description = f"batch {plan.batch.index + 1} ({plan.batch.describe_range()})"
        receipt, gas = self.submit(self.destination, plan.call_data, plan.value, description)
        return BatchOutcome(plan=plan, receipt=receipt, gas_estimate=gas)

    def submit(
        self, destination: str, data: bytes, value: int, description: str
    ) -> Tuple[Union[TransactionReceipt, ProposalReceipt], int | None]:
        """Send one call through the target; returns the receipt and gas estimate."""

        if isinstance(self.target, MultisigRoute):
            self.review_pause.wait(f"multisig proposal for {description}")
            proposal = self.target.backend.propose(
                self.target.multisig_address, destination, value, data
            )
            logger.info("Recorded %s proposal %s", self.target.name, proposal.reference)
            return proposal, None

        gas = self.chain.estimate_gas(destination, data, value)
        self.review_pause.wait(f"transaction for {description}")
        # Fees are selected after the pause, right before signing.
        fees = self.fee_selector()
        logger.info(
            "Gas for %s: %s", description, format_gas_cost(gas, fees, self.native_symbol)
        )
        receipt = self.chain.send_transaction(destination, data, value=value, gas=gas, fees=fees)
        return receipt, gas


def build_routing_target(
    multisig_address: str | None,
    multisig_type: str | None,
    backend_factory: Callable[[str], MultisigBackend],
) -> RoutingTarget:
    """Pick the run's routing target; unknown backend types fail here, offline."""

    if not multisig_address:
        return DirectWallet()
    backend = backend_factory(multisig_type or "")
    return MultisigRoute(multisig_address=to_checksum_address(multisig_address), backend=backend)
