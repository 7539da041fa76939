"""Circulation engine for a lending library.

Tracks checkouts, enforces per-patron borrowing limits, runs a fair
reservation queue, computes overdue fines and keeps cached item metadata
consistent across records.
"""

__version__ = "0.1.0"
