"""Partition validated payments into splitter-sized batches."""

from __future__ import annotations

import logging
from typing import Sequence, Tuple

from .amounts import sum_base_units
from .model import PaymentBatch, PaymentInstruction

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 200


class PlanningError(RuntimeError):
    """Raised when a payment run cannot be planned."""


def plan_batches(
    instructions: Sequence[PaymentInstruction], chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Tuple[PaymentBatch, ...]:
    """Split ``instructions`` into ordered batches of at most ``chunk_size``.

    Batch ``i`` holds instructions ``[i * chunk_size, (i + 1) * chunk_size)``;
    only the last batch may be shorter.
    """

    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise PlanningError(f"Chunk size must be a positive integer, got {chunk_size!r}")
    items = tuple(instructions)
    if not items:
        raise PlanningError("Cannot plan an empty payment run")

    batches = tuple(
        PaymentBatch(index=index, start=start, instructions=items[start : start + chunk_size])
        for index, start in enumerate(range(0, len(items), chunk_size))
    )
    logger.info(
        "Split %d payment(s) into %d batch(es) of [%s]",
        len(items),
        len(batches),
        ", ".join(str(len(batch)) for batch in batches),
    )
    return batches


def total_required(batches: Sequence[PaymentBatch]) -> int:
    return sum_base_units(batch.total for batch in batches)
