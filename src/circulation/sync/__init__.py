"""Consistency synchronizer for cached item metadata.

Propagates catalog title/author edits into the snapshot fields stored on
borrows and reservations.
"""

from .synchronizer import ConsistencySynchronizer, SyncReport

__all__ = ["ConsistencySynchronizer", "SyncReport"]
