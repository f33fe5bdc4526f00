"""
Tests for the Vesting & Donation Ledger.

Covers:
- Linear unlock and funding-capped releases
- Authorization through native keys and their EVM mirrors
- Donation refunds under both refund policies
- Transactional rollback, payout hooks and serialization
"""

import logging
import threading

import pytest

from crossvest.contracts.vesting_ledger import VestingLedger
from crossvest.core.config import RefundPolicy
from crossvest.core.identity import ledger_key, translate_native_to_evm
from crossvest.core.ledger_exceptions import (
    AlreadyAllocated,
    ArrayLengthMismatch,
    CorruptedStateError,
    InvalidAmountError,
    InvalidScheduleError,
    NothingToRelease,
    RefundExceedsAvailable,
    TransferError,
    Unauthorized,
)

START = 1_000
DURATION = 1_000


class TestScheduleQueries:
    def test_start_duration_end(self, ledger):
        assert ledger.start == START
        assert ledger.duration == DURATION
        assert ledger.end == START + DURATION

    def test_zero_duration_rejected(self, admin):
        with pytest.raises(InvalidScheduleError):
            VestingLedger(admin=admin, start=START, duration=0)

    def test_default_clock_is_wall_time(self, admin, alice):
        ledger = VestingLedger(admin=admin, start=0, duration=1)
        ledger.register_batch(admin, [alice], [10])
        assert ledger.vested_amount(alice) == 10


class TestLinearUnlock:
    def test_releasable_at_sixty_percent(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 25)

        clock.now = START + 600
        assert ledger.releasable(alice) == 6
        assert ledger.release(alice) == 6
        assert ledger.released_amount(alice) == 6
        assert ledger.available_funds() == 19

    def test_explicit_now_overrides_clock(self, ledger, admin, alice, donor):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 25)
        assert ledger.releasable(alice, now=START + 300) == 3
        assert ledger.release(alice, now=START + 300) == 3

    def test_incremental_releases_sum_to_allocation(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)

        total = 0
        for offset in (250, 500, 999, 1_000, 5_000):
            clock.now = START + offset
            if ledger.releasable(alice) > 0:
                total += ledger.release(alice)
        assert total == 10
        assert ledger.released_amount(alice) == 10

    def test_release_before_start(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)
        clock.now = START - 1
        with pytest.raises(NothingToRelease, match="Nothing to release"):
            ledger.release(alice)

    def test_release_after_full_release(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)
        clock.now = START + DURATION
        assert ledger.release(alice) == 10
        clock.now += 10_000
        with pytest.raises(NothingToRelease):
            ledger.release(alice)

    def test_release_is_idempotent_without_time_advance(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)
        clock.now = START + 500
        assert ledger.release(alice) == 5
        with pytest.raises(NothingToRelease):
            ledger.release(alice)

    def test_unregistered_beneficiary(self, ledger, outsider, donor, clock):
        ledger.donate(donor, 10)
        clock.now = START + DURATION
        assert ledger.releasable(outsider) == 0
        with pytest.raises(NothingToRelease):
            ledger.release(outsider)


class TestUnderfunding:
    def test_underfunded_release_is_capped(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [100])
        ledger.donate(donor, 5)
        clock.now = START + DURATION

        assert ledger.unreleased_vested(alice) == 100
        assert ledger.releasable(alice) == 5
        assert ledger.release(alice) == 5
        assert ledger.available_funds() == 0

    def test_release_with_no_donations(self, ledger, admin, alice, clock):
        ledger.register_batch(admin, [alice], [100])
        clock.now = START + DURATION
        with pytest.raises(NothingToRelease):
            ledger.release(alice)

    def test_later_donation_unlocks_remainder(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [100])
        ledger.donate(donor, 5)
        clock.now = START + DURATION
        ledger.release(alice)
        ledger.donate(donor, 200)
        assert ledger.release(alice) == 95
        assert ledger.available_funds() == 105

    def test_beneficiaries_share_the_pool(self, ledger, admin, alice, bob, donor, clock):
        ledger.register_batch(admin, [alice, bob], [10, 10])
        ledger.donate(donor, 12)
        clock.now = START + DURATION

        assert ledger.release(alice) == 10
        assert ledger.release(bob) == 2
        assert ledger.total_released() <= ledger.total_donated()


class TestAuthorization:
    def test_evm_mirror_can_release(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)
        clock.now = START + DURATION

        mirror = translate_native_to_evm(alice)
        assert ledger.release(mirror) == 10
        assert ledger.released_amount(alice) == 10

    def test_mirror_as_caller(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)
        clock.now = START + DURATION
        assert ledger.release(alice, caller=translate_native_to_evm(alice)) == 10

    def test_wrong_signer_rejected(self, ledger, admin, alice, bob, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)
        clock.now = START + DURATION

        with pytest.raises(Unauthorized):
            ledger.release(alice, caller=bob)
        assert ledger.released_amount(alice) == 0
        assert ledger.available_funds() == 10

    def test_only_admin_registers(self, ledger, alice, bob):
        with pytest.raises(Unauthorized):
            ledger.register_batch(alice, [bob], [10])
        assert ledger.beneficiary_count() == 0

    def test_only_donor_refunds(self, ledger, donor, outsider):
        ledger.donate(donor, 10)
        with pytest.raises(Unauthorized):
            ledger.refund_donation(donor, 5, caller=outsider)
        assert ledger.refunded(donor) == 0


class TestRegistration:
    def test_batch_length_mismatch_creates_nothing(self, ledger, admin, alice, bob):
        with pytest.raises(ArrayLengthMismatch):
            ledger.register_batch(admin, [alice, bob], [10])
        assert ledger.allocated_amount(alice) == 0
        assert ledger.allocated_amount(bob) == 0
        assert ledger.events == []

    def test_double_allocation_rejected(self, ledger, admin, alice):
        ledger.register_batch(admin, [alice], [10])
        with pytest.raises(AlreadyAllocated):
            ledger.register_batch(admin, [translate_native_to_evm(alice)], [99])
        assert ledger.allocated_amount(alice) == 10

    def test_events_emitted(self, ledger, admin, alice, bob):
        ledger.register_batch(admin, [alice, bob], [10, 20])
        assert [(e.event_type, e.amount) for e in ledger.events] == [
            ("BeneficiaryAdded", 10),
            ("BeneficiaryAdded", 20),
        ]
        assert ledger.total_allocated() == 30


class TestDonations:
    def test_donate_accumulates(self, ledger, donor):
        assert ledger.donate(donor, 10) == 10
        assert ledger.donate(donor, 5) == 15
        assert ledger.contribution(donor) == 15
        assert ledger.total_donated() == 15
        assert ledger.available_funds() == 15
        assert ledger.donor_count() == 1

    def test_over_funding_permitted(self, ledger, admin, alice, donor):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 1_000)
        assert ledger.total_donated() > ledger.total_allocated()

    @pytest.mark.parametrize("amount", [0, -5, True, 2**256])
    def test_invalid_amount(self, ledger, donor, amount):
        with pytest.raises(InvalidAmountError):
            ledger.donate(donor, amount)
        assert ledger.donor_count() == 0

    def test_native_and_mirror_share_contribution(self, ledger, alice):
        ledger.donate(alice, 4)
        ledger.donate(translate_native_to_evm(alice), 6)
        assert ledger.contribution(alice) == 10
        assert ledger.donor_count() == 1


class TestRefunds:
    def test_refund_cap_scenario(self, ledger, donor):
        ledger.donate(donor, 10)
        assert ledger.refund_donation(donor, 3) == 3

        with pytest.raises(RefundExceedsAvailable) as exc_info:
            ledger.refund_donation(donor, 8)
        assert exc_info.value.details["bound"] == "entitlement"
        assert exc_info.value.details["limit"] == 7
        assert ledger.refunded(donor) == 3

        assert ledger.refund_donation(donor, 7) == 7
        assert ledger.available_funds() == 0
        assert ledger.total_donated() == 0

    def test_refund_without_donation(self, ledger, outsider):
        with pytest.raises(RefundExceedsAvailable):
            ledger.refund_donation(outsider, 1)

    def test_strict_policy_rejects_drained_pool(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)
        clock.now = START + 800
        ledger.release(alice)

        assert ledger.refundable(donor) == 2
        with pytest.raises(RefundExceedsAvailable) as exc_info:
            ledger.refund_donation(donor, 5)
        assert exc_info.value.details["bound"] == "pool"
        assert ledger.available_funds() == 2

    def test_cap_policy_reduces_refund(self, capped_ledger, admin, alice, donor, clock):
        capped_ledger.register_batch(admin, [alice], [10])
        capped_ledger.donate(donor, 10)
        clock.now = START + 800
        capped_ledger.release(alice)

        assert capped_ledger.refund_donation(donor, 5) == 2
        assert capped_ledger.refunded(donor) == 2
        assert capped_ledger.available_funds() == 0
        capped_ledger.verify_invariants()

    def test_cap_policy_empty_pool_rejected(self, capped_ledger, admin, alice, donor, clock):
        capped_ledger.register_batch(admin, [alice], [10])
        capped_ledger.donate(donor, 10)
        clock.now = START + DURATION
        capped_ledger.release(alice)
        with pytest.raises(RefundExceedsAvailable):
            capped_ledger.refund_donation(donor, 1)

    def test_refund_racing_release(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)
        ledger.refund_donation(donor, 10)
        clock.now = START + DURATION
        with pytest.raises(NothingToRelease):
            ledger.release(alice)

    def test_invalid_refund_amount(self, ledger, donor):
        ledger.donate(donor, 10)
        with pytest.raises(InvalidAmountError):
            ledger.refund_donation(donor, 0)

    def test_policy_accepts_string(self, admin):
        ledger = VestingLedger(admin=admin, start=START, duration=DURATION, refund_policy="cap")
        assert ledger.refund_policy is RefundPolicy.CAP


class TestTransferHook:
    def test_hook_receives_payouts(self, admin, alice, donor, clock):
        payouts = []
        ledger = VestingLedger(
            admin=admin,
            start=START,
            duration=DURATION,
            time_provider=clock,
            transfer_hook=lambda key, amount, kind: payouts.append((key, amount, kind)),
        )
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 15)
        clock.now = START + DURATION
        ledger.release(alice)
        ledger.refund_donation(donor, 5)

        assert payouts == [(ledger_key(alice), 10, "release"), (ledger_key(donor), 5, "refund")]

    def test_failing_hook_rolls_back(self, admin, alice, donor, clock):
        def reject(key, amount, kind):
            raise ConnectionError("node unreachable")

        ledger = VestingLedger(admin=admin, start=START, duration=DURATION, time_provider=clock)
        ledger.register_batch(admin, [alice], [10])
        ledger.donate(donor, 10)
        ledger.transfer_hook = reject
        clock.now = START + DURATION
        events_before = list(ledger.events)

        with pytest.raises(TransferError) as exc_info:
            ledger.release(alice)
        assert exc_info.value.recoverable
        assert ledger.released_amount(alice) == 0
        assert ledger.available_funds() == 10
        assert ledger.events == events_before

        with pytest.raises(TransferError):
            ledger.refund_donation(donor, 4)
        assert ledger.refunded(donor) == 0


class TestQueriesAndInvariants:
    def test_views_for_unknown_identities(self, ledger, outsider):
        assert ledger.allocated_amount(outsider) == 0
        assert ledger.released_amount(outsider) == 0
        assert ledger.contribution(outsider) == 0
        assert ledger.refundable(outsider) == 0

    def test_vested_ignores_funding(self, ledger, admin, alice, clock):
        ledger.register_batch(admin, [alice], [10])
        clock.now = START + 500
        assert ledger.vested_amount(alice) == 5
        assert ledger.releasable(alice) == 0

    def test_resolve_ledger_key(self, ledger, admin, alice):
        ledger.register_batch(admin, [alice], [10])
        assert ledger.resolve(ledger_key(alice)) == alice

    def test_registry_shares_ledger_identity_book(self, ledger, admin, alice):
        assert ledger.registry.identity_book is ledger.identity_book
        ledger.register_batch(admin, [alice], [10])
        assert ledger_key(alice) in ledger.identity_book
        assert ledger.to_dict()["identities"][ledger_key(alice)] == hex(alice.native)

    def test_verify_invariants_detects_tampering(self, ledger, donor):
        ledger.donate(donor, 10)
        ledger.verify_invariants()
        ledger.balance = 11
        with pytest.raises(CorruptedStateError):
            ledger.verify_invariants()

    def test_rejections_are_logged(self, ledger, alice, caplog):
        with caplog.at_level(logging.WARNING, logger="crossvest.contracts.vesting_ledger"):
            with pytest.raises(NothingToRelease):
                ledger.release(alice)
        assert any(getattr(r, "event", None) == "vesting.release.rejected" for r in caplog.records)


class TestSerialization:
    def test_round_trip(self, ledger, admin, alice, bob, donor, clock):
        ledger.register_batch(admin, [alice, bob], [10, 20])
        ledger.donate(donor, 25)
        clock.now = START + 600
        ledger.release(alice)
        ledger.refund_donation(donor, 2)

        restored = VestingLedger.from_dict(ledger.to_dict(), time_provider=clock)
        assert restored.to_dict() == ledger.to_dict()
        assert restored.releasable(bob) == ledger.releasable(bob)
        assert restored.resolve(ledger_key(alice)) == alice

    def test_missing_fields_rejected(self):
        with pytest.raises(CorruptedStateError):
            VestingLedger.from_dict({"schedule": {"start": 0}})

    def test_inconsistent_balance_rejected(self, ledger, donor):
        ledger.donate(donor, 10)
        data = ledger.to_dict()
        data["balance"] = 99
        with pytest.raises(CorruptedStateError):
            VestingLedger.from_dict(data)

    def test_registered_identities_survive_round_trip(self, ledger, admin, alice):
        ledger.register_batch(admin, [alice], [10])
        restored = VestingLedger.from_dict(ledger.to_dict())
        assert restored.resolve(ledger_key(alice)) == alice
        assert restored.registry.identity_book is restored.identity_book

    def test_malformed_admin_rejected(self, ledger):
        data = ledger.to_dict()
        data["admin"] = {"eth": "0x1234", "sub": "0x0"}
        with pytest.raises(CorruptedStateError):
            VestingLedger.from_dict(data)

    def test_stored_zero_duration_rejected(self, ledger):
        data = ledger.to_dict()
        data["schedule"]["duration"] = 0
        with pytest.raises(CorruptedStateError):
            VestingLedger.from_dict(data)


class TestConcurrency:
    THREADS = 16

    def _race(self, count, operation):
        barrier = threading.Barrier(count)
        results = []
        errors = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                outcome = operation()
            except NothingToRelease as exc:
                outcome = exc
            except Exception as exc:
                with lock:
                    errors.append(exc)
                return
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert errors == []
        return results

    def test_concurrent_releases_pay_out_once(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [10**6])
        ledger.donate(donor, 10**6)
        clock.now = START + DURATION

        results = self._race(self.THREADS, lambda: ledger.release(alice))

        payouts = [r for r in results if isinstance(r, int)]
        rejected = [r for r in results if isinstance(r, NothingToRelease)]
        assert payouts == [10**6]
        assert len(rejected) == self.THREADS - 1
        assert ledger.released_amount(alice) == 10**6
        assert ledger.available_funds() == 0
        ledger.verify_invariants()

    def test_concurrent_native_and_mirror_releases(self, ledger, admin, alice, donor, clock):
        ledger.register_batch(admin, [alice], [1_000])
        ledger.donate(donor, 1_000)
        clock.now = START + DURATION
        mirror = translate_native_to_evm(alice)
        identities = iter([alice, mirror] * (self.THREADS // 2))
        pick = threading.Lock()

        def release_one():
            with pick:
                identity = next(identities)
            return ledger.release(identity)

        results = self._race(self.THREADS, release_one)

        assert sum(r for r in results if isinstance(r, int)) == 1_000
        assert ledger.total_released() == 1_000
        ledger.verify_invariants()
