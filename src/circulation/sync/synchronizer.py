"""Snapshot propagation from items to borrows and reservations.

Eventually consistent: each batch is its own transaction and a batch that
loses a race is skipped, to be picked up by the next propagate or
reconcile run. Only convergence is guaranteed, not immediacy.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session
from tqdm import tqdm

from ..db.models import Borrow, Item, Reservation
from ..db.sqlite import Database
from ..errors import NotFoundError, TransientConflict
from ..projections import ReadProjections

logger = logging.getLogger(__name__)

SNAPSHOT_MODELS = (Borrow, Reservation)


@dataclass
class SyncReport:
    """Result of a snapshot propagation run."""

    items: int = 0
    borrows_updated: int = 0
    reservations_updated: int = 0
    batches_skipped: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)

    @property
    def total_updated(self) -> int:
        return self.borrows_updated + self.reservations_updated

    @property
    def converged(self) -> bool:
        return self.batches_skipped == 0 and not self.errors

    def merge(self, other: "SyncReport") -> None:
        self.items += other.items
        self.borrows_updated += other.borrows_updated
        self.reservations_updated += other.reservations_updated
        self.batches_skipped += other.batches_skipped
        self.errors.extend(other.errors)


class ConsistencySynchronizer:
    """Keeps denormalized item metadata in step with the catalog."""

    def __init__(
        self,
        db: Database,
        batch_size: int = 200,
        projections: Optional[ReadProjections] = None,
    ):
        """Initialize synchronizer.

        Args:
            db: Database instance
            batch_size: Maximum records rewritten per transaction
            projections: Read projections to refresh after snapshots change
        """
        self.db = db
        self.batch_size = batch_size
        self.projections = projections

    def propagate_item(self, item_id: str) -> SyncReport:
        """Rewrite stale title/author snapshots for one item.

        Args:
            item_id: Item ID

        Returns:
            SyncReport with counts

        Raises:
            NotFoundError: If the item does not exist
        """
        with self.db.get_session() as session:
            if session.get(Item, item_id) is None:
                raise NotFoundError(f"Item {item_id} not found")

        report = SyncReport(items=1)
        touched_patrons: set[str] = set()
        for model in SNAPSHOT_MODELS:
            updated = self._propagate_model(model, item_id, report, touched_patrons)
            if model is Borrow:
                report.borrows_updated += updated
            else:
                report.reservations_updated += updated

        if report.total_updated:
            logger.info(
                "Item %s snapshots refreshed: %d borrows, %d reservations",
                item_id,
                report.borrows_updated,
                report.reservations_updated,
            )
            self._publish(item_id, touched_patrons)
        return report

    def reconcile(self, show_progress: bool = False) -> SyncReport:
        """Converge every stale snapshot across the whole catalog.

        Args:
            show_progress: Show progress bar

        Returns:
            Combined SyncReport
        """
        with self.db.get_session() as session:
            item_ids = list(session.execute(select(Item.id).order_by(Item.id)).scalars().all())

        report = SyncReport()
        for item_id in tqdm(item_ids, desc="Reconciling", disable=not show_progress):
            try:
                report.merge(self.propagate_item(item_id))
            except NotFoundError:
                # Removed from the catalog mid-run
                continue
            except Exception as e:
                logger.exception("Snapshot reconcile failed for item %s", item_id)
                report.errors.append((item_id, str(e)))
        return report

    def _propagate_model(
        self,
        model: type,
        item_id: str,
        report: SyncReport,
        touched_patrons: set[str],
    ) -> int:
        """Rewrite stale rows of one model in bounded batches."""
        updated = 0
        while True:
            try:
                patrons = self.db.run_in_transaction(
                    lambda s: self._rewrite_batch(s, model, item_id),
                    label=f"sync {model.__tablename__} {item_id}",
                )
            except TransientConflict as e:
                logger.warning("Snapshot batch for item %s skipped: %s", item_id, e)
                report.batches_skipped += 1
                return updated
            updated += len(patrons)
            touched_patrons.update(patrons)
            if len(patrons) < self.batch_size:
                return updated

    def _rewrite_batch(self, session: Session, model: type, item_id: str) -> list[str]:
        """Rewrite one batch of stale rows.

        The written values come from the item row inside the UPDATE itself,
        so a batch never writes a title that a newer edit has replaced.

        Returns:
            Patron ids of the rewritten rows, one entry per row
        """
        item = session.get(Item, item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        title, author = item.title, item.author

        stale = (
            select(model.id, model.patron_id)
            .where(
                model.item_id == item_id,
                or_(model.item_title != title, model.item_author != author),
            )
            .order_by(model.id)
            .limit(self.batch_size)
        )
        rows = session.execute(stale).all()
        if not rows:
            return []
        ids = [row.id for row in rows]

        session.execute(
            update(model)
            .where(model.id.in_(ids))
            .values(
                item_title=select(Item.title).where(Item.id == item_id).scalar_subquery(),
                item_author=select(Item.author).where(Item.id == item_id).scalar_subquery(),
            ),
            execution_options={"synchronize_session": False},
        )
        return [row.patron_id for row in rows]

    def _publish(self, item_id: str, patron_ids: set[str]) -> None:
        if self.projections is None:
            return
        for patron_id in sorted(patron_ids):
            self.projections.publish_patron(patron_id)
        self.projections.publish_item(item_id)
