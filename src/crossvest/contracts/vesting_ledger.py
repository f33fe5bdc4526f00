"""
Vesting & Donation Ledger.

Distributes a fixed allocation to registered beneficiaries on a linear
unlock schedule. The pool is funded by third-party donations, and donors
may reclaim any part of their contribution that is still held by the ledger.

Accounting invariants (checked by ``verify_invariants``):
- ``released <= allocated`` for every beneficiary
- ``refunded <= contributed`` for every donor
- ``balance == total_donated - total_released``
  where ``total_donated = sum(contributed) - sum(refunded)``

Every mutating operation runs inside one transaction: the state is
snapshotted under a re-entrant lock and restored if anything raises, so a
rejected call leaves the ledger exactly as it was.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Sequence

from ..core.config import RefundPolicy
from ..core.identity import DualIdentity, IdentityBook, ledger_key, same_identity
from ..core.ledger_exceptions import (
    CorruptedStateError,
    LedgerError,
    NothingToRelease,
    RefundExceedsAvailable,
    TransferError,
    Unauthorized,
    ValidationError,
    get_error_context,
)
from .allocation_registry import AllocationRegistry, validate_amount
from .vesting_schedule import VestingSchedule

logger = logging.getLogger(__name__)

# (recipient ledger key, amount, "release" | "refund")
TransferHook = Callable[[str, int, str], None]


@dataclass
class LedgerEvent:
    """Represents a ledger event."""

    event_type: str  # BeneficiaryAdded, Donated, Released, Refunded
    account: str
    amount: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "account": self.account,
            "amount": self.amount,
            "timestamp": self.timestamp,
        }


@dataclass
class DonorRecord:
    contributed: int = 0
    refunded: int = 0

    @property
    def outstanding(self) -> int:
        return self.contributed - self.refunded

    def to_dict(self) -> Dict[str, int]:
        return {"contributed": self.contributed, "refunded": self.refunded}


class VestingLedger:
    """
    Ledger state machine for one asset and one vesting schedule.

    Args:
        admin: Identity allowed to register beneficiaries
        start: Vesting start (unix seconds)
        duration: Vesting duration in seconds (> 0)
        refund_policy: STRICT rejects refunds above the held balance,
            CAP reduces them to the held balance
        time_provider: Clock used when ``now`` is not passed explicitly
        transfer_hook: Called for every outgoing payout inside the
            operation's transaction; raising rolls the operation back
    """

    def __init__(
        self,
        admin: DualIdentity,
        start: int,
        duration: int,
        refund_policy: RefundPolicy = RefundPolicy.STRICT,
        time_provider: Callable[[], int] | None = None,
        transfer_hook: TransferHook | None = None,
    ) -> None:
        self.schedule = VestingSchedule(start=start, duration=duration)
        self.identity_book = IdentityBook()
        self.registry = AllocationRegistry(admin, self.identity_book)
        self.refund_policy = RefundPolicy(refund_policy)
        self.donors: Dict[str, DonorRecord] = {}
        self.balance = 0
        self.events: list[LedgerEvent] = []
        self.transfer_hook = transfer_hook
        self._time_provider = time_provider or (lambda: int(time.time()))
        self._lock = threading.RLock()
        logger.info(
            "Vesting ledger created",
            extra={
                "event": "vesting.created",
                "start": start,
                "duration": duration,
                "admin": ledger_key(admin),
                "refund_policy": self.refund_policy.value,
            },
        )

    # ==================== Schedule ====================

    @property
    def admin(self) -> DualIdentity:
        return self.registry.admin

    @property
    def start(self) -> int:
        return self.schedule.start

    @property
    def duration(self) -> int:
        return self.schedule.duration

    @property
    def end(self) -> int:
        return self.schedule.end

    def _current_time(self, now: int | None = None) -> int:
        timestamp = self._time_provider() if now is None else now
        try:
            return int(timestamp)
        except (TypeError, ValueError) as exc:
            raise ValueError("time_provider must return an integer timestamp") from exc

    # ==================== View Functions ====================

    def allocated_amount(self, identity: DualIdentity) -> int:
        return self.registry.allocated_amount(identity)

    def released_amount(self, identity: DualIdentity) -> int:
        return self.registry.released_amount(identity)

    def vested_amount(self, identity: DualIdentity, now: int | None = None) -> int:
        """Portion of the allocation unlocked at ``now``, ignoring funding."""
        return self.schedule.vested(self.allocated_amount(identity), self._current_time(now))

    def unreleased_vested(self, identity: DualIdentity, now: int | None = None) -> int:
        """``vested - released``, not capped by available funds."""
        return self.vested_amount(identity, now) - self.released_amount(identity)

    def releasable(self, identity: DualIdentity, now: int | None = None) -> int:
        """
        Amount ``release`` would pay out at ``now``.

        ``min(vested - released, available_funds)``; zero for unknown identities.
        """
        with self._lock:
            return self._releasable(ledger_key(identity), self._current_time(now))

    def available_funds(self) -> int:
        return self.balance

    def total_allocated(self) -> int:
        return self.registry.total_allocated()

    def total_released(self) -> int:
        return self.registry.total_released()

    def total_contributed(self) -> int:
        return sum(record.contributed for record in self.donors.values())

    def total_refunded(self) -> int:
        return sum(record.refunded for record in self.donors.values())

    def total_donated(self) -> int:
        """Donations still counted towards the pool: contributed minus refunded."""
        return self.total_contributed() - self.total_refunded()

    def contribution(self, donor: DualIdentity) -> int:
        record = self.donors.get(ledger_key(donor))
        return record.contributed if record else 0

    def refunded(self, donor: DualIdentity) -> int:
        record = self.donors.get(ledger_key(donor))
        return record.refunded if record else 0

    def refundable(self, donor: DualIdentity) -> int:
        """Largest refund ``donor`` could currently receive."""
        record = self.donors.get(ledger_key(donor))
        if record is None:
            return 0
        return min(record.outstanding, self.balance)

    def beneficiary_count(self) -> int:
        return len(self.registry)

    def donor_count(self) -> int:
        return len(self.donors)

    def resolve(self, key: str) -> DualIdentity:
        return self.identity_book.resolve(key)

    # ==================== State-Changing Functions ====================

    def register_batch(
        self,
        caller: DualIdentity,
        identities: Sequence[DualIdentity],
        amounts: Sequence[int],
        now: int | None = None,
    ) -> list[str]:
        """
        Register beneficiaries (admin only). All-or-nothing.

        Raises:
            Unauthorized, ArrayLengthMismatch, AlreadyAllocated, InvalidAmountError
        """
        with self._transaction("register_batch"):
            timestamp = self._current_time(now)
            keys = self.registry.register_batch(caller, identities, amounts)
            for key, amount in zip(keys, amounts):
                self._emit("BeneficiaryAdded", key, amount, timestamp)
            return keys

    def donate(self, donor: DualIdentity, amount: int, now: int | None = None) -> int:
        """
        Fund the pool. Any identity may donate any positive amount.

        Returns:
            The donor's cumulative contribution
        """
        validate_amount(amount)
        with self._transaction("donate"):
            timestamp = self._current_time(now)
            key = self.identity_book.remember(donor)
            record = self.donors.setdefault(key, DonorRecord())
            record.contributed += amount
            self.balance += amount
            self._emit("Donated", key, amount, timestamp)

            logger.info(
                "Donation received",
                extra={
                    "event": "vesting.donate",
                    "donor": key,
                    "amount": amount,
                    "balance": self.balance,
                },
            )
            return record.contributed

    def release(
        self,
        beneficiary: DualIdentity,
        caller: DualIdentity | None = None,
        now: int | None = None,
    ) -> int:
        """
        Pay out the beneficiary's releasable amount.

        Args:
            beneficiary: Identity whose vested allocation is released
            caller: Identity submitting the call; defaults to ``beneficiary``.
                Must share the beneficiary's ledger key (the native key or
                its EVM mirror).

        Returns:
            Amount released

        Raises:
            Unauthorized: If the caller is not the beneficiary
            NothingToRelease: If the releasable amount is zero
            TransferError: If the payout hook rejects the transfer
        """
        caller = caller or beneficiary
        key = ledger_key(beneficiary)
        if not same_identity(caller, beneficiary):
            self._reject(
                Unauthorized(
                    "Caller is not the beneficiary",
                    details={"caller": ledger_key(caller), "beneficiary": key},
                ),
                "release",
            )

        with self._transaction("release"):
            timestamp = self._current_time(now)
            amount = self._releasable(key, timestamp)
            if amount <= 0:
                raise NothingToRelease("Nothing to release", details={"beneficiary": key})

            self.identity_book.remember(beneficiary)
            self.registry.record_release(key, amount)
            self.balance -= amount
            self._emit("Released", key, amount, timestamp)
            self._transfer(key, amount, "release")

            logger.info(
                "Vested tokens released",
                extra={
                    "event": "vesting.release",
                    "beneficiary": key,
                    "amount": amount,
                    "balance": self.balance,
                },
            )
            return amount

    def refund_donation(
        self,
        donor: DualIdentity,
        amount: int,
        caller: DualIdentity | None = None,
        now: int | None = None,
    ) -> int:
        """
        Return part of a donor's unrefunded contribution.

        Returns:
            Amount refunded (smaller than ``amount`` only under RefundPolicy.CAP)

        Raises:
            Unauthorized: If the caller is not the donor
            RefundExceedsAvailable: If ``amount`` exceeds the donor's
                unrefunded contribution, or the held balance under STRICT
            TransferError: If the payout hook rejects the transfer
        """
        caller = caller or donor
        key = ledger_key(donor)
        if not same_identity(caller, donor):
            self._reject(
                Unauthorized(
                    "Caller is not the donor",
                    details={"caller": ledger_key(caller), "donor": key},
                ),
                "refund_donation",
            )
        validate_amount(amount)

        with self._transaction("refund_donation"):
            timestamp = self._current_time(now)
            record = self.donors.get(key)
            outstanding = record.outstanding if record else 0
            if amount > outstanding:
                raise RefundExceedsAvailable(
                    "Refund exceeds unrefunded donation",
                    details={"donor": key, "requested": amount, "bound": "entitlement", "limit": outstanding},
                )

            if amount > self.balance:
                if self.refund_policy is RefundPolicy.STRICT or self.balance == 0:
                    raise RefundExceedsAvailable(
                        "Refund exceeds funds held by the ledger",
                        details={"donor": key, "requested": amount, "bound": "pool", "limit": self.balance},
                    )
                amount = self.balance

            record.refunded += amount
            self.balance -= amount
            self._emit("Refunded", key, amount, timestamp)
            self._transfer(key, amount, "refund")

            logger.info(
                "Donation refunded",
                extra={
                    "event": "vesting.refund",
                    "donor": key,
                    "amount": amount,
                    "balance": self.balance,
                },
            )
            return amount

    # ==================== Invariants ====================

    def verify_invariants(self) -> None:
        """
        Raise CorruptedStateError if the accounting invariants do not hold.
        """
        for key, record in self.registry.items():
            if not 0 <= record.released <= record.allocated:
                raise CorruptedStateError(
                    "Beneficiary released more than allocated",
                    details={"beneficiary": key, **record.to_dict()},
                )
        for key, donor in self.donors.items():
            if not 0 <= donor.refunded <= donor.contributed:
                raise CorruptedStateError(
                    "Donor refunded more than contributed",
                    details={"donor": key, **donor.to_dict()},
                )

        total_donated = self.total_donated()
        total_released = self.total_released()
        if self.balance < 0 or self.balance != total_donated - total_released:
            raise CorruptedStateError(
                "Held balance does not match donations minus releases",
                details={
                    "balance": self.balance,
                    "total_donated": total_donated,
                    "total_released": total_released,
                },
            )

    # ==================== Helpers ====================

    def _releasable(self, key: str, now: int) -> int:
        record = self.registry.get_by_key(key)
        if record is None:
            return 0
        unreleased = self.schedule.vested(record.allocated, now) - record.released
        return max(0, min(unreleased, self.balance))

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        with self._lock:
            snapshot = (
                self.registry.snapshot(),
                self.identity_book.snapshot(),
                {key: DonorRecord(r.contributed, r.refunded) for key, r in self.donors.items()},
                self.balance,
                len(self.events),
            )
            try:
                yield
            except Exception as exc:
                registry_state, book_state, donors, balance, event_count = snapshot
                self.registry.restore(registry_state)
                self.identity_book.restore(book_state)
                self.donors = donors
                self.balance = balance
                del self.events[event_count:]
                self._log_rejection(exc, operation)
                raise

    def _reject(self, exc: LedgerError, operation: str) -> None:
        self._log_rejection(exc, operation)
        raise exc

    def _log_rejection(self, exc: Exception, operation: str) -> None:
        logger.warning(
            "Ledger operation rejected: %s",
            exc,
            extra={"event": f"vesting.{operation}.rejected", **get_error_context(exc)},
        )

    def _transfer(self, key: str, amount: int, kind: str) -> None:
        if self.transfer_hook is None:
            return
        try:
            self.transfer_hook(key, amount, kind)
        except LedgerError:
            raise
        except Exception as exc:
            raise TransferError(
                f"Payout transfer failed: {exc}",
                details={"recipient": key, "amount": amount, "kind": kind},
            ) from exc

    def _emit(self, event_type: str, account: str, amount: int, timestamp: int) -> None:
        self.events.append(
            LedgerEvent(event_type=event_type, account=account, amount=amount, timestamp=timestamp)
        )

    # ==================== Serialization ====================

    def to_dict(self) -> Dict[str, Any]:
        """Serialize ledger state to dictionary."""
        with self._lock:
            return {
                "schedule": self.schedule.to_dict(),
                "admin": self.admin.to_dict(),
                "refund_policy": self.refund_policy.value,
                "beneficiaries": self.registry.to_dict(),
                "donors": {key: record.to_dict() for key, record in self.donors.items()},
                "identities": self.identity_book.to_dict(),
                "balance": self.balance,
                "events": [event.to_dict() for event in self.events],
            }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        time_provider: Callable[[], int] | None = None,
        transfer_hook: TransferHook | None = None,
    ) -> "VestingLedger":
        """
        Deserialize ledger state from dictionary.

        Raises:
            CorruptedStateError: If fields are missing or malformed, or
                invariants fail
        """
        try:
            ledger = cls(
                admin=DualIdentity.from_dict(data["admin"]),
                start=int(data["schedule"]["start"]),
                duration=int(data["schedule"]["duration"]),
                refund_policy=RefundPolicy(data.get("refund_policy", RefundPolicy.STRICT.value)),
                time_provider=time_provider,
                transfer_hook=transfer_hook,
            )
            ledger.registry.load_records(data.get("beneficiaries", {}))
            ledger.identity_book.restore(IdentityBook.from_dict(data.get("identities", {})).snapshot())
            ledger.identity_book.remember(ledger.admin)
            ledger.donors = {
                key.lower(): DonorRecord(int(entry["contributed"]), int(entry.get("refunded", 0)))
                for key, entry in data.get("donors", {}).items()
            }
            ledger.balance = int(data.get("balance", 0))
            ledger.events = [LedgerEvent(**event) for event in data.get("events", [])]
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise CorruptedStateError(f"Invalid ledger state: {exc}") from exc

        ledger.verify_invariants()
        return ledger
