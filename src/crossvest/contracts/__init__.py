"""
crossvest ledger contracts.

This module provides the ledger state machines:
- VestingSchedule: Linear unlock schedule
- AllocationRegistry: One-time-write beneficiary allocations
- VestingLedger: Donations, releases and donation refunds
"""

from .allocation_registry import AllocationRegistry, BeneficiaryRecord, validate_amount
from .vesting_ledger import DonorRecord, LedgerEvent, TransferHook, VestingLedger
from .vesting_schedule import VestingSchedule

__all__ = [
    "AllocationRegistry",
    "BeneficiaryRecord",
    "DonorRecord",
    "LedgerEvent",
    "TransferHook",
    "VestingLedger",
    "VestingSchedule",
    "validate_amount",
]
