"""Catalog manager for item registry operations."""

import logging
from typing import TYPE_CHECKING, Optional

from sqlalchemy import select

from ..db.models import Item
from ..db.schemas import ItemRecord
from ..db.sqlite import Database
from ..errors import ConflictError, NotFoundError, parse_request
from .schemas import ItemCreate, ItemUpdate

if TYPE_CHECKING:
    from ..sync.synchronizer import ConsistencySynchronizer

logger = logging.getLogger(__name__)


class CatalogManager:
    """Manages catalog items."""

    def __init__(
        self,
        db: Database,
        synchronizer: Optional["ConsistencySynchronizer"] = None,
    ):
        """Initialize catalog manager.

        Args:
            db: Database instance
            synchronizer: Propagates title/author edits to cached snapshots
        """
        self.db = db
        self.synchronizer = synchronizer

    def add_item(self, title: str, author: str, item_id: Optional[str] = None) -> ItemRecord:
        """Add an available item to the catalog.

        Args:
            title: Display title
            author: Display author
            item_id: Explicit id (generated when omitted)

        Returns:
            Created item
        """
        data = parse_request(ItemCreate, title=title, author=author, id=item_id)

        def _add(session) -> ItemRecord:
            if data.id and session.get(Item, data.id) is not None:
                raise ConflictError(f"Item {data.id} already exists")

            item = Item(title=data.title, author=data.author, available=True)
            if data.id:
                item.id = data.id
            session.add(item)
            session.flush()
            return ItemRecord.from_row(item)

        record = self.db.run_in_transaction(_add, label="add_item")
        logger.info("Added item %s (%r)", record.id, record.title)
        return record

    def get_item(self, item_id: str) -> ItemRecord:
        """Get an item by ID.

        Raises:
            NotFoundError: If the item does not exist
        """
        with self.db.get_session() as session:
            item = session.get(Item, item_id)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")
            return ItemRecord.from_row(item)

    def list_items(self, available_only: bool = False) -> list[ItemRecord]:
        """List catalog items ordered by title."""
        with self.db.get_session() as session:
            stmt = select(Item).order_by(Item.title, Item.id)
            if available_only:
                stmt = stmt.where(Item.available.is_(True))
            return [ItemRecord.from_row(i) for i in session.execute(stmt).scalars()]

    def update_item(
        self,
        item_id: str,
        title: Optional[str] = None,
        author: Optional[str] = None,
    ) -> ItemRecord:
        """Edit an item's display fields and fan the change out.

        Snapshot propagation happens after the item commit, so readers may
        briefly see the old title on existing borrows and reservations.

        Args:
            item_id: Item ID
            title: New title
            author: New author

        Returns:
            Updated item
        """
        data = parse_request(ItemUpdate, title=title, author=author)

        def _update(session) -> tuple[ItemRecord, bool]:
            item = session.get(Item, item_id)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")

            changed = False
            for field, value in data.model_dump(exclude_none=True).items():
                if getattr(item, field) != value:
                    setattr(item, field, value)
                    changed = True
            session.flush()
            return ItemRecord.from_row(item), changed

        record, changed = self.db.run_in_transaction(_update, label="update_item")

        if changed:
            logger.info("Item %s metadata changed", item_id)
            if self.synchronizer is not None:
                self.synchronizer.propagate_item(item_id)
        return record
