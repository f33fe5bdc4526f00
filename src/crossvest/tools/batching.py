"""
Chunked beneficiary registration.

Large cohorts are submitted to ``register_batch`` in fixed-size chunks.
Each chunk is all-or-nothing; a failing chunk stops the run and earlier
chunks stay committed, so a run can be resumed with ``start_from``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, Mapping, Sequence, Tuple, TypeVar

from ..contracts.vesting_ledger import VestingLedger
from ..core.identity import DualIdentity, to_dual_identity

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 250

Registration = Tuple[DualIdentity, int]


@dataclass(frozen=True)
class BatchResult:
    index: int  # offset of the chunk's first entry
    size: int
    total_amount: int


def cohort_to_registration(cohort: Mapping[str, Mapping[str, int]], decimals: int = 18) -> list[Registration]:
    """Turn ``{ss58: {"unq": n, ...}}`` into ordered ``(identity, base units)`` pairs."""
    one_unit = 10**decimals
    return [(to_dual_identity(address), int(entry["unq"]) * one_unit) for address, entry in cohort.items()]


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for offset in range(0, len(items), size):
        yield items[offset : offset + size]


def register_in_batches(
    ledger: VestingLedger,
    admin: DualIdentity,
    pairs: Sequence[Registration],
    batch_size: int = DEFAULT_BATCH_SIZE,
    start_from: int = 0,
    on_batch: Callable[[BatchResult], None] | None = None,
) -> list[BatchResult]:
    """
    Register ``pairs[start_from:]`` in chunks of ``batch_size``.

    ``on_batch`` is called after each committed chunk, so callers keep
    track of progress even when a later chunk fails.

    Returns:
        One BatchResult per committed chunk

    Raises:
        ValueError: If ``batch_size`` is not positive or ``start_from`` is negative
        LedgerError: From the first rejected chunk
    """
    if start_from < 0:
        raise ValueError(f"start_from must be non-negative, got {start_from}")

    results: list[BatchResult] = []
    remaining = pairs[start_from:]
    for position, chunk in enumerate(chunked(remaining, batch_size)):
        index = start_from + position * batch_size
        identities = [identity for identity, _ in chunk]
        amounts = [amount for _, amount in chunk]
        try:
            ledger.register_batch(admin, identities, amounts)
        except Exception:
            logger.error(
                "Batch registration stopped at chunk %d..%d",
                index,
                index + len(chunk),
                extra={"event": "batching.failed", "index": index, "committed_batches": len(results)},
            )
            raise

        result = BatchResult(index=index, size=len(chunk), total_amount=sum(amounts))
        results.append(result)
        if on_batch is not None:
            on_batch(result)
        logger.info(
            "Registered accounts %d to %d",
            index,
            index + len(chunk),
            extra={"event": "batching.committed", "index": index, "size": len(chunk)},
        )
    return results
