"""Overdue and fine processing.

Recomputes fines for unreturned, past-due borrows in an idempotent sweep.
"""

from .processor import OverdueProcessor

__all__ = ["OverdueProcessor"]
