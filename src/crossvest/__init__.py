"""
crossvest - Vesting Ledger & Release Engine

Distributes a fixed allocation to beneficiaries on a linear unlock
schedule funded by donations, addressing every participant consistently
from either an EVM address or a native public key.

Main Components:
- Identity: DualIdentity and cross-chain address translation
- Contracts: Allocation registry and vesting & donation ledger
- Database: SQLite ledger store
- Tools: Snapshot classification and batched registration
- CLI: Operator command line
"""

__version__ = "0.1.0"
__author__ = "crossvest Development Team"

__all__ = []
