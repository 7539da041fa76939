"""Lending ledger module.

Provides functionality for:
- Borrowing items under the per-patron limit
- Idempotent returns followed by queue promotion
- Renewals when nobody is waiting
"""

from .manager import LendingLedger
from .schemas import BorrowRequest, RenewRequest, ReturnRequest

__all__ = ["LendingLedger", "BorrowRequest", "ReturnRequest", "RenewRequest"]
