"""Database module for the SQLite-backed circulation store."""

from .models import Base, Borrow, Item, Patron, Reservation
from .schemas import (
    BorrowRecord,
    BorrowStatus,
    ItemRecord,
    ReservationRecord,
    ReservationStatus,
)
from .sqlite import Database

__all__ = [
    "Base",
    "Borrow",
    "Item",
    "Patron",
    "Reservation",
    "BorrowRecord",
    "BorrowStatus",
    "ItemRecord",
    "ReservationRecord",
    "ReservationStatus",
    "Database",
]
