"""
Allocation Registry.

One-time-write table mapping a beneficiary's ledger key to its allocation.
Batches are validated in full before anything is written, so a rejected
batch leaves the table unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Sequence

from ..core.identity import DualIdentity, IdentityBook, ledger_key
from ..core.ledger_exceptions import (
    AlreadyAllocated,
    ArrayLengthMismatch,
    InvalidAddressFormat,
    InvalidAmountError,
    Unauthorized,
)

logger = logging.getLogger(__name__)

UINT256_MAX = 2**256 - 1


def validate_amount(amount: int, field: str = "amount") -> None:
    """Require a positive integer that fits in 256 bits."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(
            f"{field} must be an integer, got {type(amount).__name__}",
            details={"field": field},
        )
    if amount <= 0:
        raise InvalidAmountError(f"{field} must be positive", details={"field": field, "amount": amount})
    if amount > UINT256_MAX:
        raise InvalidAmountError(f"{field} exceeds uint256", details={"field": field})


@dataclass
class BeneficiaryRecord:
    """Allocation of one beneficiary; ``released`` only ever grows."""

    allocated: int
    released: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"allocated": self.allocated, "released": self.released}


class AllocationRegistry:
    def __init__(self, admin: DualIdentity, identity_book: IdentityBook | None = None) -> None:
        self.admin = admin
        self.identity_book = identity_book if identity_book is not None else IdentityBook()
        self.identity_book.remember(admin)
        self._records: Dict[str, BeneficiaryRecord] = {}
        self._total_allocated = 0

    # ==================== Queries ====================

    def get(self, identity: DualIdentity) -> BeneficiaryRecord | None:
        return self._records.get(ledger_key(identity))

    def get_by_key(self, key: str) -> BeneficiaryRecord | None:
        return self._records.get(key.lower())

    def allocated_amount(self, identity: DualIdentity) -> int:
        record = self.get(identity)
        return record.allocated if record else 0

    def released_amount(self, identity: DualIdentity) -> int:
        record = self.get(identity)
        return record.released if record else 0

    def total_allocated(self) -> int:
        return self._total_allocated

    def total_released(self) -> int:
        return sum(record.released for record in self._records.values())

    def is_admin(self, caller: DualIdentity) -> bool:
        return ledger_key(caller) == ledger_key(self.admin)

    def __contains__(self, identity: DualIdentity) -> bool:
        return ledger_key(identity) in self._records

    def __len__(self) -> int:
        return len(self._records)

    def items(self) -> Iterator[tuple[str, BeneficiaryRecord]]:
        return iter(self._records.items())

    # ==================== Mutations ====================

    def register_batch(
        self,
        caller: DualIdentity,
        identities: Sequence[DualIdentity],
        amounts: Sequence[int],
    ) -> list[str]:
        """
        Create one beneficiary record per ``(identity, amount)`` pair.

        Args:
            caller: Identity submitting the batch (must be the admin)
            identities: Beneficiaries, in registration order
            amounts: Allocations, aligned with ``identities``

        Returns:
            Ledger keys of the created records, in order

        Raises:
            Unauthorized: If the caller is not the admin
            ArrayLengthMismatch: If the sequences differ in length
            AlreadyAllocated: If any identity already has a record,
                including one created earlier in the same batch
            InvalidAmountError: If any amount is not a positive 256-bit integer
        """
        if not self.is_admin(caller):
            raise Unauthorized(
                "Caller is not the ledger admin",
                details={"caller": ledger_key(caller)},
            )
        if len(identities) != len(amounts):
            raise ArrayLengthMismatch(
                "Arrays length mismatch",
                details={"identities": len(identities), "amounts": len(amounts)},
            )

        keys: list[str] = []
        seen: set[str] = set()
        for index, (identity, amount) in enumerate(zip(identities, amounts)):
            if not isinstance(identity, DualIdentity):
                raise InvalidAddressFormat(
                    f"Batch entry {index} is not a DualIdentity",
                    details={"index": index},
                )
            validate_amount(amount, field=f"amounts[{index}]")
            key = ledger_key(identity)
            if key in self._records or key in seen:
                raise AlreadyAllocated(
                    "Beneficiary already has allocation",
                    details={"index": index, "beneficiary": key},
                )
            seen.add(key)
            keys.append(key)

        for identity, key, amount in zip(identities, keys, amounts):
            self.identity_book.remember(identity)
            self._records[key] = BeneficiaryRecord(allocated=amount)
        batch_total = sum(amounts)
        self._total_allocated += batch_total

        logger.info(
            "Beneficiaries registered",
            extra={
                "event": "vesting.register_batch",
                "count": len(keys),
                "batch_total": batch_total,
                "total_allocated": self._total_allocated,
            },
        )
        return keys

    def record_release(self, key: str, amount: int) -> BeneficiaryRecord:
        record = self._records[key]
        if record.released + amount > record.allocated:
            raise InvalidAmountError(
                "Release would exceed allocation",
                details={"beneficiary": key, "amount": amount},
            )
        record.released += amount
        return record

    # ==================== Serialization ====================

    def to_dict(self) -> Dict[str, Any]:
        return {key: record.to_dict() for key, record in self._records.items()}

    def load_records(self, data: Dict[str, Any]) -> None:
        self._records = {
            key.lower(): BeneficiaryRecord(
                allocated=int(entry["allocated"]),
                released=int(entry.get("released", 0)),
            )
            for key, entry in data.items()
        }
        self._total_allocated = sum(record.allocated for record in self._records.values())

    def snapshot(self) -> tuple[Dict[str, BeneficiaryRecord], int]:
        records = {
            key: BeneficiaryRecord(allocated=record.allocated, released=record.released)
            for key, record in self._records.items()
        }
        return records, self._total_allocated

    def restore(self, snapshot: tuple[Dict[str, BeneficiaryRecord], int]) -> None:
        self._records, self._total_allocated = snapshot
