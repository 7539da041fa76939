"""Read projections over the circulation store.

Views are derived on demand from committed rows and never write. Watchers
receive the current view as soon as they subscribe and again whenever the
ledger or queue publishes a change for their patron or item.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional, Union

from sqlalchemy import func, select

from ..db.models import Borrow, Reservation
from ..db.schemas import BorrowRecord, BorrowStatus, ReservationRecord, ReservationStatus
from ..db.sqlite import Database
from ..utils import Clock, ensure_utc, to_iso, utcnow

logger = logging.getLogger(__name__)

BorrowsCallback = Callable[[list[BorrowRecord]], None]
PositionCallback = Callable[[Optional[int]], None]


@dataclass
class Subscription:
    """Handle returned by the watch methods."""

    key: str
    _cancel: Callable[["Subscription"], None] = field(repr=False)
    active: bool = True

    def cancel(self) -> None:
        """Stop receiving updates. Safe to call twice."""
        if self.active:
            self.active = False
            self._cancel(self)


class ReadProjections:
    """Derived, read-only views with push-based refresh."""

    def __init__(self, db: Database, clock: Optional[Clock] = None):
        """Initialize projections.

        Args:
            db: Database instance
            clock: Callable returning the current UTC time
        """
        self.db = db
        self.clock = clock or utcnow
        self._lock = threading.Lock()
        self._borrow_watchers: dict[str, list[tuple[Subscription, BorrowsCallback]]] = {}
        self._position_watchers: dict[
            str, list[tuple[Subscription, str, PositionCallback]]
        ] = {}

    # -------------------------------------------------------------------------
    # Borrow views
    # -------------------------------------------------------------------------

    def active_borrows_for_patron(
        self,
        patron_id: str,
        as_of: Optional[Union[datetime, date]] = None,
    ) -> list[BorrowRecord]:
        """Active borrows for a patron, overdue first, then soonest due.

        Args:
            patron_id: Patron ID
            as_of: Reference time for the overdue check (default: now)

        Returns:
            List of borrow records
        """
        now = ensure_utc(as_of) if as_of is not None else self.clock()
        with self.db.get_session() as session:
            stmt = select(Borrow).where(
                Borrow.patron_id == patron_id,
                Borrow.status == BorrowStatus.ACTIVE.value,
            )
            records = [BorrowRecord.from_row(b) for b in session.execute(stmt).scalars()]

        return sorted(
            records,
            key=lambda r: (not r.is_overdue(now), r.due_date, r.id),
        )

    def borrow_history_for_patron(self, patron_id: str, limit: int = 100) -> list[BorrowRecord]:
        """All borrows for a patron, newest first."""
        with self.db.get_session() as session:
            stmt = (
                select(Borrow)
                .where(Borrow.patron_id == patron_id)
                .order_by(Borrow.borrowed_at.desc(), Borrow.id)
                .limit(limit)
            )
            return [BorrowRecord.from_row(b) for b in session.execute(stmt).scalars()]

    def count_active_borrows(self, patron_id: str) -> int:
        with self.db.get_session() as session:
            stmt = select(func.count()).where(
                Borrow.patron_id == patron_id,
                Borrow.status == BorrowStatus.ACTIVE.value,
            )
            return session.execute(stmt).scalar() or 0

    # -------------------------------------------------------------------------
    # Reservation views
    # -------------------------------------------------------------------------

    def reservation_queue(self, item_id: str) -> list[ReservationRecord]:
        """Live Active reservations for an item in queue order.

        Reservations whose window has already elapsed are left out; the
        expiry sweep will close them.
        """
        now_iso = to_iso(self.clock())
        with self.db.get_session() as session:
            stmt = (
                select(Reservation)
                .where(
                    Reservation.item_id == item_id,
                    Reservation.status == ReservationStatus.ACTIVE.value,
                    Reservation.expires_at >= now_iso,
                )
                .order_by(Reservation.reserved_at, Reservation.id)
            )
            return [ReservationRecord.from_row(r) for r in session.execute(stmt).scalars()]

    def reservation_queue_position(self, item_id: str, patron_id: str) -> Optional[int]:
        """1-based rank of the patron's reservation, or None if not queued."""
        for position, reservation in enumerate(self.reservation_queue(item_id), start=1):
            if reservation.patron_id == patron_id:
                return position
        return None

    def queue_length(self, item_id: str) -> int:
        return len(self.reservation_queue(item_id))

    def is_reserved_by(self, patron_id: str, item_id: str) -> bool:
        """Check whether the patron holds a live reservation on the item."""
        return self.reservation_queue_position(item_id, patron_id) is not None

    def reservations_for_patron(
        self, patron_id: str, active_only: bool = False
    ) -> list[ReservationRecord]:
        """Reservations placed by a patron, newest first."""
        with self.db.get_session() as session:
            stmt = select(Reservation).where(Reservation.patron_id == patron_id)
            if active_only:
                stmt = stmt.where(Reservation.status == ReservationStatus.ACTIVE.value)
            stmt = stmt.order_by(Reservation.reserved_at.desc(), Reservation.id)
            return [ReservationRecord.from_row(r) for r in session.execute(stmt).scalars()]

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def watch_active_borrows(self, patron_id: str, callback: BorrowsCallback) -> Subscription:
        """Push the patron's active borrows now and after every change."""
        subscription = Subscription(key=patron_id, _cancel=self._drop_borrow_watcher)
        with self._lock:
            self._borrow_watchers.setdefault(patron_id, []).append((subscription, callback))
        self._deliver(callback, self.active_borrows_for_patron(patron_id))
        return subscription

    def watch_queue_position(
        self, item_id: str, patron_id: str, callback: PositionCallback
    ) -> Subscription:
        """Push the patron's queue position now and after every change."""
        subscription = Subscription(key=item_id, _cancel=self._drop_position_watcher)
        with self._lock:
            self._position_watchers.setdefault(item_id, []).append(
                (subscription, patron_id, callback)
            )
        self._deliver(callback, self.reservation_queue_position(item_id, patron_id))
        return subscription

    def publish_patron(self, patron_id: str) -> None:
        """Refresh borrow watchers for a patron after a committed change."""
        with self._lock:
            watchers = list(self._borrow_watchers.get(patron_id, []))
        if not watchers:
            return
        view = self.active_borrows_for_patron(patron_id)
        for _, callback in watchers:
            self._deliver(callback, view)

    def publish_item(self, item_id: str) -> None:
        """Refresh queue-position watchers for an item after a committed change."""
        with self._lock:
            watchers = list(self._position_watchers.get(item_id, []))
        if not watchers:
            return
        queue = self.reservation_queue(item_id)
        for _, patron_id, callback in watchers:
            position = next(
                (i for i, r in enumerate(queue, start=1) if r.patron_id == patron_id),
                None,
            )
            self._deliver(callback, position)

    def _drop_borrow_watcher(self, subscription: Subscription) -> None:
        with self._lock:
            watchers = self._borrow_watchers.get(subscription.key, [])
            watchers[:] = [w for w in watchers if w[0] is not subscription]
            if not watchers:
                self._borrow_watchers.pop(subscription.key, None)

    def _drop_position_watcher(self, subscription: Subscription) -> None:
        with self._lock:
            watchers = self._position_watchers.get(subscription.key, [])
            watchers[:] = [w for w in watchers if w[0] is not subscription]
            if not watchers:
                self._position_watchers.pop(subscription.key, None)

    @staticmethod
    def _deliver(callback: Callable, value) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Projection subscriber raised; update dropped for it")
