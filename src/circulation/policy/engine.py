"""Limit and policy engine.

Every method here is side-effect free so limits can be exercised without
a database.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Protocol, Union

from ..errors import PolicyError
from ..utils import ensure_utc


class RenewableBorrow(Protocol):
    """Shape of a borrow as seen by renewal checks."""

    status: str
    renewal_count: int


class QueuedReservation(Protocol):
    """Shape of a reservation as seen by queue ordering."""

    id: str
    reserved_at: str


@dataclass(frozen=True)
class LendingPolicy:
    """Configurable lending limits."""

    max_active_borrows: int = 5
    default_loan_days: int = 14
    max_loan_days: int = 90
    max_renewals: int = 2
    daily_fine_cents: int = 25
    pickup_window_hours: int = 48
    queue_window_days: int = 30

    # -------------------------------------------------------------------------
    # Borrowing
    # -------------------------------------------------------------------------

    def can_borrow(self, patron_id: str, current_active_count: int) -> bool:
        """Check whether a patron may take out one more item.

        Args:
            patron_id: Opaque patron identifier
            current_active_count: Patron's active borrows before this one

        Returns:
            True if below the configured maximum
        """
        return current_active_count < self.max_active_borrows

    def due_date(self, borrowed_at: datetime, duration_days: int) -> datetime:
        """Due date for a borrow starting at ``borrowed_at``."""
        return ensure_utc(borrowed_at) + timedelta(days=duration_days)

    # -------------------------------------------------------------------------
    # Renewals
    # -------------------------------------------------------------------------

    def renewal_denial(
        self, borrow: RenewableBorrow, has_waiting_reservation: bool
    ) -> Optional[str]:
        """Reason a renewal must be refused, or None when it is allowed."""
        if borrow.status != "active":
            return PolicyError.NOT_ACTIVE
        if has_waiting_reservation:
            return PolicyError.RESERVATION_PENDING
        if borrow.renewal_count >= self.max_renewals:
            return PolicyError.RENEWAL_LIMIT_REACHED
        return None

    def can_renew(self, borrow: RenewableBorrow, has_waiting_reservation: bool) -> bool:
        return self.renewal_denial(borrow, has_waiting_reservation) is None

    # -------------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------------

    @staticmethod
    def queue_key(reservation: QueuedReservation) -> tuple[str, str]:
        """Sort key for FIFO queue order, ties broken by reservation id.

        active_queue applies the same order in SQL; change both together.
        """
        return (reservation.reserved_at, reservation.id)

    def queue_deadline(self, reserved_at: datetime) -> datetime:
        """When an unpromoted reservation lapses."""
        return ensure_utc(reserved_at) + timedelta(days=self.queue_window_days)

    def pickup_deadline(self, promoted_at: datetime) -> datetime:
        """When a promoted reservation lapses if not picked up."""
        return ensure_utc(promoted_at) + timedelta(hours=self.pickup_window_hours)

    # -------------------------------------------------------------------------
    # Fines
    # -------------------------------------------------------------------------

    @staticmethod
    def days_overdue(
        as_of: Union[datetime, date], due_date: Union[datetime, date]
    ) -> int:
        """Whole 24-hour days elapsed since the due date, rounded down.

        Returns 0 when the borrow is not yet overdue.
        """
        as_of_dt = ensure_utc(as_of)
        due_dt = ensure_utc(due_date)
        if as_of_dt <= due_dt:
            return 0
        return (as_of_dt - due_dt).days

    def fine_for(self, as_of: Union[datetime, date], due_date: Union[datetime, date]) -> int:
        """Fine in cents owed as of ``as_of``."""
        return self.days_overdue(as_of, due_date) * self.daily_fine_cents
