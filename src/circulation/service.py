"""Circulation engine facade.

Wires the database, policy, managers and projections together with
explicit constructor injection and exposes the operations callers use.
"""

from datetime import date, datetime
from typing import Optional, Union

from .catalog import CatalogManager
from .config import Config
from .db.schemas import BorrowRecord, ItemRecord, ReservationRecord
from .db.sqlite import Database
from .fines import OverdueProcessor
from .ledger import LendingLedger
from .notifications import LoggingDispatcher, NotificationDispatcher
from .policy import LendingPolicy
from .projections import ReadProjections
from .reservations import ReservationQueue
from .sweep import SweepResult
from .sync import ConsistencySynchronizer, SyncReport
from .utils import Clock, utcnow


class CirculationEngine:
    """Facade over the lending ledger, reservation queue and sweeps."""

    def __init__(
        self,
        db: Database,
        policy: Optional[LendingPolicy] = None,
        clock: Optional[Clock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        sync_batch_size: int = 200,
    ) -> None:
        self.db = db
        self.policy = policy or LendingPolicy()
        self.clock = clock or utcnow
        self.dispatcher = dispatcher or LoggingDispatcher()

        self.projections = ReadProjections(db, clock=self.clock)
        self.synchronizer = ConsistencySynchronizer(
            db, batch_size=sync_batch_size, projections=self.projections
        )
        self.catalog = CatalogManager(db, synchronizer=self.synchronizer)
        self.queue = ReservationQueue(
            db,
            policy=self.policy,
            clock=self.clock,
            dispatcher=self.dispatcher,
            projections=self.projections,
        )
        self.ledger = LendingLedger(
            db,
            queue=self.queue,
            policy=self.policy,
            clock=self.clock,
            projections=self.projections,
        )
        self.fines = OverdueProcessor(
            db, policy=self.policy, clock=self.clock, projections=self.projections
        )

    @classmethod
    def from_config(
        cls,
        config: Config,
        clock: Optional[Clock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ) -> "CirculationEngine":
        """Build an engine, creating tables if needed."""
        db = Database(
            config.db_path,
            max_attempts=config.tx_max_attempts,
            retry_delay=config.tx_retry_delay,
        )
        db.create_tables()
        return cls(
            db,
            policy=config.policy(),
            clock=clock,
            dispatcher=dispatcher,
            sync_batch_size=config.sync_batch_size,
        )

    # ---- catalog
    def add_item(self, title: str, author: str, item_id: Optional[str] = None) -> ItemRecord:
        return self.catalog.add_item(title, author, item_id=item_id)

    def update_item(
        self, item_id: str, title: Optional[str] = None, author: Optional[str] = None
    ) -> ItemRecord:
        return self.catalog.update_item(item_id, title=title, author=author)

    def get_item(self, item_id: str) -> ItemRecord:
        return self.catalog.get_item(item_id)

    # ---- ledger
    def borrow_book(
        self, patron_id: str, item_id: str, duration_days: Optional[int] = None
    ) -> BorrowRecord:
        return self.ledger.borrow_book(patron_id, item_id, duration_days)

    def return_book(self, borrow_id: str) -> BorrowRecord:
        return self.ledger.return_book(borrow_id)

    def renew_borrow(self, borrow_id: str, extra_days: Optional[int] = None) -> BorrowRecord:
        return self.ledger.renew_borrow(borrow_id, extra_days)

    # ---- reservations
    def reserve_book(self, patron_id: str, item_id: str) -> ReservationRecord:
        return self.queue.reserve_book(patron_id, item_id)

    def cancel_reservation(self, reservation_id: str) -> ReservationRecord:
        return self.queue.cancel_reservation(reservation_id)

    # ---- sweeps
    def process_overdue(
        self, as_of: Optional[Union[datetime, date]] = None, show_progress: bool = False
    ) -> SweepResult:
        return self.fines.process_overdue(as_of, show_progress=show_progress)

    def expire_reservations(
        self, as_of: Optional[Union[datetime, date]] = None, show_progress: bool = False
    ) -> SweepResult:
        return self.queue.expire_reservations(as_of, show_progress=show_progress)

    def reconcile_snapshots(self, show_progress: bool = False) -> SyncReport:
        return self.synchronizer.reconcile(show_progress=show_progress)

    # ---- projections
    def active_borrows_for_patron(self, patron_id: str) -> list[BorrowRecord]:
        return self.projections.active_borrows_for_patron(patron_id)

    def reservation_queue_position(self, item_id: str, patron_id: str) -> Optional[int]:
        return self.projections.reservation_queue_position(item_id, patron_id)
