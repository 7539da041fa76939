"""Lending ledger for borrow, return and renew operations.

Each operation is one optimistic transaction over the documents it has to
keep consistent: the item's availability flag, the borrow record and the
patron's active borrow counter.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.models import Borrow, Item, Patron, Reservation
from ..db.schemas import BorrowRecord, BorrowStatus, ReservationStatus
from ..db.sqlite import Database
from ..errors import (
    BorrowLimitExceeded,
    ItemUnavailable,
    NotFoundError,
    PolicyError,
    ValidationError,
    parse_request,
)
from ..policy import LendingPolicy
from ..projections import ReadProjections
from ..reservations.manager import (
    ReservationQueue,
    close_reservation,
    has_waiting_reservation,
    pickup_holder,
)
from ..utils import Clock, from_iso, to_iso, utcnow
from .schemas import BorrowRequest, RenewRequest, ReturnRequest

logger = logging.getLogger(__name__)


class LendingLedger:
    """Manages the borrow ledger."""

    def __init__(
        self,
        db: Database,
        queue: ReservationQueue,
        policy: Optional[LendingPolicy] = None,
        clock: Optional[Clock] = None,
        projections: Optional[ReadProjections] = None,
    ):
        """Initialize lending ledger.

        Args:
            db: Database instance
            queue: Reservation queue promoted after returns
            policy: Lending policy (limits, renewals)
            clock: Callable returning the current UTC time
            projections: Read projections to refresh after changes
        """
        self.db = db
        self.queue = queue
        self.policy = policy or LendingPolicy()
        self.clock = clock or utcnow
        self.projections = projections

    # -------------------------------------------------------------------------
    # Borrow
    # -------------------------------------------------------------------------

    def borrow_book(
        self,
        patron_id: str,
        item_id: str,
        duration_days: Optional[int] = None,
    ) -> BorrowRecord:
        """Check an item out to a patron.

        Args:
            patron_id: Patron ID
            item_id: Item ID
            duration_days: Loan length (default: policy loan days)

        Returns:
            The new active borrow

        Raises:
            ValidationError: Malformed ids or duration
            NotFoundError: Item does not exist
            ItemUnavailable: Item is out or held for another patron's pickup
            BorrowLimitExceeded: Patron is at the active borrow limit
            TransientConflict: Retries exhausted under contention
        """
        if duration_days is None:
            duration_days = self.policy.default_loan_days
        data = parse_request(
            BorrowRequest, patron_id=patron_id, item_id=item_id, duration_days=duration_days
        )
        if data.duration_days > self.policy.max_loan_days:
            raise ValidationError(
                f"Invalid duration_days: at most {self.policy.max_loan_days} days allowed"
            )

        def _borrow(session: Session) -> BorrowRecord:
            now = self.clock()
            now_iso = to_iso(now)

            item = session.get(Item, data.item_id)
            if item is None:
                raise NotFoundError(f"Item {data.item_id} not found")

            if not item.available:
                raise ItemUnavailable(f"'{item.title}' is already checked out")

            holder = pickup_holder(session, item.id, now_iso)
            if holder is not None and holder.patron_id != data.patron_id:
                raise ItemUnavailable(f"'{item.title}' is being held for another patron")

            patron = session.get(Patron, data.patron_id)
            if patron is None:
                patron = Patron(id=data.patron_id, active_borrow_count=0)
                session.add(patron)

            if not self.policy.can_borrow(patron.id, patron.active_borrow_count):
                raise BorrowLimitExceeded(
                    f"You have reached the maximum borrow limit "
                    f"({self.policy.max_active_borrows} items)"
                )

            borrow = Borrow(
                patron_id=data.patron_id,
                item_id=item.id,
                item_title=item.title,
                item_author=item.author,
                borrowed_at=now_iso,
                due_date=to_iso(self.policy.due_date(now, data.duration_days)),
                status=BorrowStatus.ACTIVE.value,
                fine_amount_cents=0,
                renewal_count=0,
            )
            session.add(borrow)

            item.available = False
            item.held_by = data.patron_id
            patron.active_borrow_count += 1

            # A patron borrowing an item they queued for consumes the reservation
            own = session.execute(
                select(Reservation).where(
                    Reservation.patron_id == data.patron_id,
                    Reservation.item_id == item.id,
                    Reservation.status == ReservationStatus.ACTIVE.value,
                )
            ).scalar_one_or_none()
            if own is not None:
                close_reservation(own, ReservationStatus.FULFILLED, now_iso)

            session.flush()
            return BorrowRecord.from_row(borrow)

        record = self.db.run_in_transaction(_borrow, label="borrow_book")
        logger.info(
            "Patron %s borrowed item %s until %s",
            record.patron_id,
            record.item_id,
            record.due_date.isoformat(),
        )
        self._publish(record.patron_id, record.item_id)
        return record

    # -------------------------------------------------------------------------
    # Return
    # -------------------------------------------------------------------------

    def return_book(self, borrow_id: str) -> BorrowRecord:
        """Check an item back in and offer it to the next patron in line.

        Returning an already-returned borrow succeeds without changes, so
        duplicate client retries are harmless.

        Args:
            borrow_id: Borrow ID

        Returns:
            The returned borrow

        Raises:
            NotFoundError: Borrow does not exist
            TransientConflict: Retries exhausted under contention
        """
        data = parse_request(ReturnRequest, borrow_id=borrow_id)

        def _return(session: Session) -> tuple[BorrowRecord, bool]:
            borrow = session.get(Borrow, data.borrow_id)
            if borrow is None:
                raise NotFoundError(f"Borrow {data.borrow_id} not found")

            if borrow.status != BorrowStatus.ACTIVE.value:
                return BorrowRecord.from_row(borrow), False

            now_iso = to_iso(self.clock())
            borrow.status = BorrowStatus.RETURNED.value
            borrow.returned_at = now_iso

            item = session.get(Item, borrow.item_id)
            if item is not None and item.held_by == borrow.patron_id:
                item.available = True
                item.held_by = None
            elif item is not None:
                logger.warning(
                    "Item %s was not held by %s at return", borrow.item_id, borrow.patron_id
                )

            patron = session.get(Patron, borrow.patron_id)
            if patron is not None:
                patron.active_borrow_count = max(0, patron.active_borrow_count - 1)

            session.flush()
            return BorrowRecord.from_row(borrow), True

        record, changed = self.db.run_in_transaction(_return, label="return_book")
        if changed:
            logger.info("Borrow %s returned; item %s is back", record.id, record.item_id)
            self._publish(record.patron_id, record.item_id)
        else:
            logger.debug("Borrow %s was already returned", record.id)

        # Promotion is idempotent, so a retried return also repairs a missed one
        self.queue.promote_next(record.item_id)
        return record

    # -------------------------------------------------------------------------
    # Renew
    # -------------------------------------------------------------------------

    def renew_borrow(self, borrow_id: str, extra_days: Optional[int] = None) -> BorrowRecord:
        """Extend an active borrow's due date.

        Args:
            borrow_id: Borrow ID
            extra_days: Days to add (default: policy loan days)

        Returns:
            The renewed borrow

        Raises:
            NotFoundError: Borrow does not exist
            PolicyError: Not active, someone is waiting, or renewal cap reached
        """
        if extra_days is None:
            extra_days = self.policy.default_loan_days
        data = parse_request(RenewRequest, borrow_id=borrow_id, extra_days=extra_days)
        if data.extra_days > self.policy.max_loan_days:
            raise ValidationError(
                f"Invalid extra_days: at most {self.policy.max_loan_days} days allowed"
            )

        def _renew(session: Session) -> BorrowRecord:
            borrow = session.get(Borrow, data.borrow_id)
            if borrow is None:
                raise NotFoundError(f"Borrow {data.borrow_id} not found")

            now_iso = to_iso(self.clock())
            waiting = has_waiting_reservation(session, borrow.item_id, now_iso)
            reason = self.policy.renewal_denial(borrow, waiting)
            if reason == PolicyError.NOT_ACTIVE:
                raise PolicyError("Cannot renew a returned item", reason=reason)
            if reason == PolicyError.RESERVATION_PENDING:
                raise PolicyError("Another patron is waiting for this item", reason=reason)
            if reason == PolicyError.RENEWAL_LIMIT_REACHED:
                raise PolicyError(
                    f"Renewal limit of {self.policy.max_renewals} reached", reason=reason
                )

            borrow.due_date = to_iso(from_iso(borrow.due_date) + timedelta(days=data.extra_days))
            borrow.renewal_count += 1
            session.flush()
            return BorrowRecord.from_row(borrow)

        record = self.db.run_in_transaction(_renew, label="renew_borrow")
        logger.info(
            "Borrow %s renewed (%d) until %s",
            record.id,
            record.renewal_count,
            record.due_date.isoformat(),
        )
        self._publish(record.patron_id, record.item_id)
        return record

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_borrow(self, borrow_id: str) -> BorrowRecord:
        """Get a borrow by ID.

        Raises:
            NotFoundError: If the borrow does not exist
        """
        with self.db.get_session() as session:
            borrow = session.get(Borrow, borrow_id)
            if borrow is None:
                raise NotFoundError(f"Borrow {borrow_id} not found")
            return BorrowRecord.from_row(borrow)

    def active_borrow_count(self, patron_id: str) -> int:
        """Patron's active borrow counter (0 for unknown patrons)."""
        with self.db.get_session() as session:
            patron = session.get(Patron, patron_id)
            return patron.active_borrow_count if patron is not None else 0

    def _publish(self, patron_id: str, item_id: str) -> None:
        if self.projections is not None:
            self.projections.publish_patron(patron_id)
            self.projections.publish_item(item_id)
