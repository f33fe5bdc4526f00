"""
Ledger-specific exception hierarchy for crossvest.

Every rejection raised by the vesting ledger, the allocation registry and
the identity translator is one of these typed exceptions, so callers can
decide whether to retry (e.g. wait and call ``release`` again later) without
parsing error text.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class LedgerError(Exception):
    """Base exception for all ledger-related errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can succeed if retried later
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Validation Errors ====================


class ValidationError(LedgerError):
    """Raised when call arguments are malformed.

    Reported synchronously; the ledger state is left untouched.
    """
    pass


class InvalidAddressFormat(ValidationError):
    """Raised when an address or public key has the wrong shape.

    Examples: wrong byte length, bad SS58 checksum, both or neither
    representation of a dual identity set.
    """
    pass


class ArrayLengthMismatch(ValidationError):
    """Raised when batch identities and amounts differ in length."""
    pass


class InvalidAmountError(ValidationError):
    """Raised when an amount is not a positive 256-bit integer."""
    pass


class InvalidScheduleError(ValidationError):
    """Raised when a vesting schedule has a non-positive duration."""
    pass


# ==================== Policy Errors ====================


class PolicyError(LedgerError):
    """Raised when a well-formed call violates ledger policy."""
    pass


class AlreadyAllocated(PolicyError):
    """Raised when a beneficiary already has an allocation record."""
    pass


class Unauthorized(PolicyError):
    """Raised when the caller is not allowed to perform the operation."""
    pass


class RefundExceedsAvailable(PolicyError):
    """Raised when a refund exceeds the donor's entitlement or the pool."""
    pass


# ==================== Funding Errors ====================


class FundingError(LedgerError):
    """Raised when an operation is gated by time or available funds."""
    recoverable = True


class NothingToRelease(FundingError):
    """Raised when a release computes to zero.

    Covers a schedule that has not started, an allocation already fully
    released, and an underfunded pool; the cause is not distinguished.
    """
    pass


# ==================== Transfer & Storage Errors ====================


class TransferError(LedgerError):
    """Raised when the payout hook rejects an outgoing transfer."""
    recoverable = True


class StorageError(LedgerError):
    """Raised when persisted ledger state cannot be read or written."""
    pass


class CorruptedStateError(StorageError):
    """Raised when persisted ledger state is not valid."""
    pass


class ConfigurationError(LedgerError):
    """Raised when configuration is missing or invalid."""
    pass


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a recoverable error.

    Args:
        exc: The exception to check

    Returns:
        True if the operation may succeed when retried later
    """
    if isinstance(exc, LedgerError):
        return exc.recoverable

    recoverable_types = (
        ConnectionError,
        TimeoutError,
    )
    return isinstance(exc, recoverable_types)


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, LedgerError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    return context
