"""Reservation queue manager.

Reservations for one item form a FIFO queue ordered by (reserved_at, id).
When the item comes back the head of the queue is promoted: its window is
narrowed to the pickup window and the patron is notified. Only the
promoted patron may borrow the item until that window elapses.
"""

import logging
from datetime import date, datetime
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session
from tqdm import tqdm

from ..db.models import Item, Reservation
from ..db.schemas import ReservationRecord, ReservationStatus
from ..db.sqlite import Database
from ..errors import (
    NotFoundError,
    PolicyError,
    ReserveDenied,
    TransientConflict,
    parse_request,
)
from ..notifications import (
    LoggingDispatcher,
    NotificationDispatcher,
    PickupNotice,
    dispatch_pickup,
)
from ..policy import LendingPolicy
from ..projections import ReadProjections
from ..sweep import SweepResult
from ..utils import Clock, ensure_utc, to_iso, utcnow
from .schemas import CancelRequest, ReserveRequest

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Queries shared with the ledger (run inside a caller's transaction)
# -----------------------------------------------------------------------------


def active_queue(session: Session, item_id: str) -> list[Reservation]:
    """Active reservations for an item in FIFO order."""
    stmt = (
        select(Reservation)
        .where(
            Reservation.item_id == item_id,
            Reservation.status == ReservationStatus.ACTIVE.value,
        )
        # Keep in step with LendingPolicy.queue_key
        .order_by(Reservation.reserved_at, Reservation.id)
    )
    return list(session.execute(stmt).scalars().all())


def pickup_holder(session: Session, item_id: str, now_iso: str) -> Optional[Reservation]:
    """The promoted reservation currently holding an item for pickup, if any."""
    for reservation in active_queue(session, item_id):
        if reservation.ready_at is not None and reservation.expires_at >= now_iso:
            return reservation
    return None


def has_waiting_reservation(session: Session, item_id: str, now_iso: str) -> bool:
    """Check whether anyone is still waiting on an item."""
    return any(r.expires_at >= now_iso for r in active_queue(session, item_id))


def close_reservation(reservation: Reservation, status: ReservationStatus, when_iso: str) -> None:
    """Move a reservation into a terminal state."""
    reservation.status = status.value
    reservation.closed_at = when_iso


class ReservationQueue:
    """Manages the per-item reservation queue."""

    def __init__(
        self,
        db: Database,
        policy: Optional[LendingPolicy] = None,
        clock: Optional[Clock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        projections: Optional[ReadProjections] = None,
    ):
        """Initialize reservation queue.

        Args:
            db: Database instance
            policy: Lending policy (queue and pickup windows)
            clock: Callable returning the current UTC time
            dispatcher: Receives pickup notices on promotion
            projections: Read projections to refresh after changes
        """
        self.db = db
        self.policy = policy or LendingPolicy()
        self.clock = clock or utcnow
        self.dispatcher = dispatcher or LoggingDispatcher()
        self.projections = projections

    # -------------------------------------------------------------------------
    # Patron operations
    # -------------------------------------------------------------------------

    def reserve_book(self, patron_id: str, item_id: str) -> ReservationRecord:
        """Join the queue for an unavailable item.

        Args:
            patron_id: Patron ID
            item_id: Item ID

        Returns:
            The new active reservation

        Raises:
            NotFoundError: Item does not exist
            ReserveDenied: Item is on the shelf, already reserved by this
                patron, or currently borrowed by this patron
        """
        data = parse_request(ReserveRequest, patron_id=patron_id, item_id=item_id)

        def _reserve(session: Session) -> ReservationRecord:
            now = self.clock()
            now_iso = to_iso(now)

            item = session.get(Item, data.item_id)
            if item is None:
                raise NotFoundError(f"Item {data.item_id} not found")

            if item.held_by == data.patron_id:
                raise ReserveDenied(
                    "You are currently borrowing this item",
                    reason=ReserveDenied.ALREADY_HOLDING,
                )

            queue = active_queue(session, data.item_id)
            if any(r.patron_id == data.patron_id for r in queue):
                raise ReserveDenied(
                    "You have already reserved this item",
                    reason=ReserveDenied.ALREADY_RESERVED,
                )

            if item.available and pickup_holder(session, data.item_id, now_iso) is None:
                raise ReserveDenied(
                    "Item is available; borrow it instead",
                    reason=ReserveDenied.ITEM_AVAILABLE,
                )

            reservation = Reservation(
                patron_id=data.patron_id,
                item_id=item.id,
                item_title=item.title,
                item_author=item.author,
                reserved_at=now_iso,
                expires_at=to_iso(self.policy.queue_deadline(now)),
                status=ReservationStatus.ACTIVE.value,
            )
            session.add(reservation)
            session.flush()
            return ReservationRecord.from_row(reservation)

        record = self.db.run_in_transaction(_reserve, label="reserve_book")
        logger.info(
            "Patron %s reserved item %s (reservation %s)", record.patron_id, record.item_id, record.id
        )
        self._publish(record.item_id)
        return record

    def cancel_reservation(self, reservation_id: str) -> ReservationRecord:
        """Withdraw a reservation.

        Cancelling twice is a no-op. Cancelling a promoted reservation hands
        the item to the next patron in line.

        Raises:
            NotFoundError: Reservation does not exist
            PolicyError: Reservation was already fulfilled or expired
        """
        data = parse_request(CancelRequest, reservation_id=reservation_id)

        def _cancel(session: Session) -> tuple[ReservationRecord, bool]:
            reservation = session.get(Reservation, data.reservation_id)
            if reservation is None:
                raise NotFoundError(f"Reservation {data.reservation_id} not found")

            if reservation.status == ReservationStatus.CANCELLED.value:
                return ReservationRecord.from_row(reservation), False
            if reservation.status != ReservationStatus.ACTIVE.value:
                raise PolicyError(
                    f"Reservation is already {reservation.status}",
                    reason=PolicyError.NOT_ACTIVE,
                )

            was_promoted = reservation.ready_at is not None
            close_reservation(reservation, ReservationStatus.CANCELLED, to_iso(self.clock()))
            session.flush()
            return ReservationRecord.from_row(reservation), was_promoted

        record, was_promoted = self.db.run_in_transaction(_cancel, label="cancel_reservation")
        logger.info("Reservation %s cancelled", record.id)

        if was_promoted:
            self.promote_next(record.item_id)
        else:
            self._publish(record.item_id)
        return record

    def get_reservation(self, reservation_id: str) -> ReservationRecord:
        """Get a reservation by ID.

        Raises:
            NotFoundError: If the reservation does not exist
        """
        with self.db.get_session() as session:
            reservation = session.get(Reservation, reservation_id)
            if reservation is None:
                raise NotFoundError(f"Reservation {reservation_id} not found")
            return ReservationRecord.from_row(reservation)

    # -------------------------------------------------------------------------
    # Promotion and expiry
    # -------------------------------------------------------------------------

    def promote_next(
        self, item_id: str, now: Optional[Union[datetime, date]] = None
    ) -> Optional[ReservationRecord]:
        """Offer an available item to the oldest live reservation.

        Reservations whose window already elapsed are expired on the way.
        If the head is already promoted nothing changes. If the item is out
        again (a walk-in borrowed it first), any promoted reservation goes
        back to waiting in its original place.

        Args:
            item_id: Item ID
            now: Reference time (default: clock)

        Returns:
            The promoted reservation, or None if nobody is waiting
        """
        reference = ensure_utc(now) if now is not None else None

        def _promote(session: Session) -> tuple[Optional[ReservationRecord], bool]:
            current = reference or self.clock()
            now_iso = to_iso(current)

            item = session.get(Item, item_id)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")

            queue = active_queue(session, item_id)

            if not item.available:
                for reservation in queue:
                    if reservation.ready_at is not None and reservation.patron_id != item.held_by:
                        reservation.ready_at = None
                        reservation.expires_at = to_iso(self.policy.queue_deadline(current))
                        logger.info("Reservation %s displaced back into the queue", reservation.id)
                return None, False

            for reservation in queue:
                if reservation.expires_at < now_iso:
                    close_reservation(reservation, ReservationStatus.EXPIRED, now_iso)
                    logger.info("Reservation %s expired during promotion", reservation.id)
                    continue

                if reservation.ready_at is not None:
                    return ReservationRecord.from_row(reservation), False

                reservation.ready_at = now_iso
                reservation.expires_at = to_iso(self.policy.pickup_deadline(current))
                # Touch the item so a concurrent borrow conflicts with this promotion
                item.updated_at = now_iso
                session.flush()
                return ReservationRecord.from_row(reservation), True

            return None, False

        record, promoted = self.db.run_in_transaction(_promote, label="promote_next")

        if record is not None and promoted:
            logger.info(
                "Reservation %s promoted; item %s held for %s",
                record.id,
                record.item_id,
                record.patron_id,
            )
            dispatch_pickup(
                self.dispatcher,
                PickupNotice(
                    reservation_id=record.id,
                    patron_id=record.patron_id,
                    item_id=record.item_id,
                    item_title=record.item_title,
                    pickup_deadline=record.expires_at,
                ),
            )
        self._publish(item_id)
        return record

    def expire_reservations(
        self,
        as_of: Optional[Union[datetime, date]] = None,
        show_progress: bool = False,
    ) -> SweepResult:
        """Expire every active reservation whose window elapsed before ``as_of``.

        Each reservation is closed in its own transaction; one that changed
        underneath the sweep is skipped. Items that lost a reservation are
        then offered to the next patron in line.

        Args:
            as_of: Cutoff time (default: clock)
            show_progress: Show progress bar

        Returns:
            SweepResult with counts
        """
        cutoff = ensure_utc(as_of) if as_of is not None else self.clock()
        cutoff_iso = to_iso(cutoff)
        result = SweepResult()

        with self.db.get_session() as session:
            stmt = (
                select(Reservation.id)
                .where(
                    Reservation.status == ReservationStatus.ACTIVE.value,
                    Reservation.expires_at < cutoff_iso,
                )
                .order_by(Reservation.expires_at, Reservation.id)
            )
            candidates = list(session.execute(stmt).scalars().all())

        affected_items: set[str] = set()
        for reservation_id in tqdm(candidates, desc="Expiring", disable=not show_progress):
            try:
                item_id = self.db.run_in_transaction(
                    lambda s, rid=reservation_id: self._expire_one(s, rid, cutoff_iso),
                    label=f"expire {reservation_id}",
                    max_attempts=1,
                )
            except TransientConflict:
                result.skipped += 1
                continue
            except Exception as e:
                logger.exception("Failed to expire reservation %s", reservation_id)
                result.failed += 1
                result.errors.append((reservation_id, str(e)))
                continue

            if item_id is None:
                result.skipped += 1
            else:
                result.processed += 1
                affected_items.add(item_id)

        for item_id in sorted(affected_items):
            try:
                self.promote_next(item_id, now=cutoff)
            except Exception as e:
                logger.exception("Promotion after expiry failed for item %s", item_id)
                result.errors.append((item_id, str(e)))

        logger.info(
            "Reservation expiry sweep: %d expired, %d skipped, %d failed",
            result.processed,
            result.skipped,
            result.failed,
        )
        return result

    def _expire_one(self, session: Session, reservation_id: str, cutoff_iso: str) -> Optional[str]:
        reservation = session.get(Reservation, reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        if (
            reservation.status != ReservationStatus.ACTIVE.value
            or reservation.expires_at >= cutoff_iso
        ):
            return None
        close_reservation(reservation, ReservationStatus.EXPIRED, cutoff_iso)
        session.flush()
        return reservation.item_id

    def _publish(self, item_id: str) -> None:
        if self.projections is not None:
            self.projections.publish_item(item_id)
