"""Reservation queue module.

Provides functionality for:
- Placing and cancelling reservations
- FIFO promotion when an item comes back
- Expiring reservations whose window elapsed
"""

from .manager import ReservationQueue
from .schemas import CancelRequest, ReserveRequest

__all__ = ["ReservationQueue", "ReserveRequest", "CancelRequest"]
