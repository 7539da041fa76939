"""Overdue sweep that recomputes fines.

The fine on a borrow is always recomputed from scratch as
days_overdue * daily rate and never accumulated, so running the sweep
twice for the same day leaves every fine unchanged. A stored fine never
goes down: a sweep with an earlier cutoff cannot undo a later one.
"""

import logging
from datetime import date, datetime
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session
from tqdm import tqdm

from ..db.models import Borrow
from ..db.schemas import BorrowStatus
from ..db.sqlite import Database
from ..errors import NotFoundError, TransientConflict
from ..policy import LendingPolicy
from ..projections import ReadProjections
from ..sweep import SweepResult
from ..utils import Clock, ensure_utc, from_iso, to_iso, utcnow

logger = logging.getLogger(__name__)


class OverdueProcessor:
    """Computes overdue fines for active borrows."""

    def __init__(
        self,
        db: Database,
        policy: Optional[LendingPolicy] = None,
        clock: Optional[Clock] = None,
        projections: Optional[ReadProjections] = None,
    ):
        """Initialize overdue processor.

        Args:
            db: Database instance
            policy: Lending policy (daily fine rate)
            clock: Callable returning the current UTC time
            projections: Read projections to refresh after fines change
        """
        self.db = db
        self.policy = policy or LendingPolicy()
        self.clock = clock or utcnow
        self.projections = projections

    def find_overdue(self, as_of: Union[datetime, date]) -> list[str]:
        """IDs of active borrows due before ``as_of``, oldest due first."""
        cutoff_iso = to_iso(as_of)
        with self.db.get_session() as session:
            stmt = (
                select(Borrow.id)
                .where(
                    Borrow.status == BorrowStatus.ACTIVE.value,
                    Borrow.due_date < cutoff_iso,
                )
                .order_by(Borrow.due_date, Borrow.id)
            )
            return list(session.execute(stmt).scalars().all())

    def process_overdue(
        self,
        as_of: Optional[Union[datetime, date]] = None,
        show_progress: bool = False,
    ) -> SweepResult:
        """Recompute fines for every overdue borrow.

        Each borrow is handled in its own transaction that re-checks the
        borrow is still active. A borrow returned or modified mid-sweep is
        skipped; any other failure is logged and counted, and the sweep
        moves on.

        Args:
            as_of: Reference date (default: clock)
            show_progress: Show progress bar

        Returns:
            SweepResult with processed/skipped/failed counts
        """
        cutoff = ensure_utc(as_of) if as_of is not None else self.clock()
        result = SweepResult()

        candidates = self.find_overdue(cutoff)
        fined_patrons: set[str] = set()
        for borrow_id in tqdm(candidates, desc="Fines", disable=not show_progress):
            try:
                outcome = self.db.run_in_transaction(
                    lambda s, bid=borrow_id: self._apply_fine(s, bid, cutoff),
                    label=f"fine {borrow_id}",
                    max_attempts=1,
                )
            except TransientConflict:
                logger.debug("Borrow %s changed during the sweep; skipped", borrow_id)
                result.skipped += 1
                continue
            except Exception as e:
                logger.exception("Failed to compute fine for borrow %s", borrow_id)
                result.failed += 1
                result.errors.append((borrow_id, str(e)))
                continue

            if outcome is None:
                result.skipped += 1
                continue

            result.processed += 1
            patron_id, changed = outcome
            if changed:
                fined_patrons.add(patron_id)

        if self.projections is not None:
            for patron_id in sorted(fined_patrons):
                self.projections.publish_patron(patron_id)

        logger.info(
            "Overdue sweep as of %s: %d processed, %d skipped, %d failed",
            cutoff.date().isoformat(),
            result.processed,
            result.skipped,
            result.failed,
        )
        return result

    def _apply_fine(
        self, session: Session, borrow_id: str, cutoff: datetime
    ) -> Optional[tuple[str, bool]]:
        """Write the recomputed fine for one borrow.

        Returns:
            (patron_id, whether the stored fine changed), or None if the
            borrow is no longer active or not yet overdue
        """
        borrow = session.get(Borrow, borrow_id)
        if borrow is None:
            raise NotFoundError(f"Borrow {borrow_id} not found")
        if borrow.status != BorrowStatus.ACTIVE.value or borrow.returned_at is not None:
            return None

        due = from_iso(borrow.due_date)
        if due is None:
            raise ValueError(f"Borrow {borrow_id} has no due date")
        if due >= cutoff:
            return None

        fine = self.policy.fine_for(cutoff, due)
        if fine <= borrow.fine_amount_cents:
            return borrow.patron_id, False
        borrow.fine_amount_cents = fine
        session.flush()
        return borrow.patron_id, True
