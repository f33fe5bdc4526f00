"""
Tests for the ledger exception hierarchy and its helpers.
"""

import pytest

from crossvest.core.ledger_exceptions import (
    AlreadyAllocated,
    ArrayLengthMismatch,
    ConfigurationError,
    CorruptedStateError,
    FundingError,
    InvalidAddressFormat,
    InvalidAmountError,
    InvalidScheduleError,
    LedgerError,
    NothingToRelease,
    PolicyError,
    RefundExceedsAvailable,
    StorageError,
    TransferError,
    Unauthorized,
    ValidationError,
    get_error_context,
    is_recoverable_error,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc_type, parent",
        [
            (InvalidAddressFormat, ValidationError),
            (ArrayLengthMismatch, ValidationError),
            (InvalidAmountError, ValidationError),
            (InvalidScheduleError, ValidationError),
            (AlreadyAllocated, PolicyError),
            (Unauthorized, PolicyError),
            (RefundExceedsAvailable, PolicyError),
            (NothingToRelease, FundingError),
            (CorruptedStateError, StorageError),
            (TransferError, LedgerError),
            (ConfigurationError, LedgerError),
        ],
    )
    def test_parents(self, exc_type, parent):
        assert issubclass(exc_type, parent)
        assert issubclass(exc_type, LedgerError)

    def test_message_and_details(self):
        exc = AlreadyAllocated("Beneficiary already has allocation", details={"index": 3})
        assert str(exc) == "Beneficiary already has allocation"
        assert exc.message == "Beneficiary already has allocation"
        assert exc.details == {"index": 3}

    def test_details_default_to_empty(self):
        assert Unauthorized("nope").details == {}


class TestRecoverability:
    def test_funding_errors_are_recoverable(self):
        assert is_recoverable_error(NothingToRelease("Nothing to release"))

    def test_policy_errors_are_not_recoverable(self):
        assert not is_recoverable_error(Unauthorized("nope"))
        assert not is_recoverable_error(ArrayLengthMismatch("Arrays length mismatch"))

    def test_override_per_instance(self):
        assert not is_recoverable_error(TransferError("rejected", recoverable=False))
        assert TransferError("again").recoverable

    def test_builtin_errors(self):
        assert is_recoverable_error(ConnectionError("down"))
        assert is_recoverable_error(TimeoutError())
        assert not is_recoverable_error(KeyError("x"))


class TestErrorContext:
    def test_ledger_error_context(self):
        context = get_error_context(RefundExceedsAvailable("too much", details={"bound": "pool"}))
        assert context == {
            "error_type": "RefundExceedsAvailable",
            "error_message": "too much",
            "recoverable": False,
            "details": {"bound": "pool"},
        }

    def test_plain_exception_context(self):
        context = get_error_context(ValueError("bad"))
        assert context == {"error_type": "ValueError", "error_message": "bad"}
