"""Lending policy decisions.

Pure functions consulted inside ledger and queue transactions:
- Borrow limit checks
- Renewal eligibility
- Reservation queue ordering
- Overdue fine arithmetic
"""

from .engine import LendingPolicy

__all__ = ["LendingPolicy"]
