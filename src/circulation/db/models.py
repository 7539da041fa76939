"""SQLAlchemy ORM models for the circulation store.

Tables:
- items: Catalog items and their availability flag
- patrons: Per-patron active borrow counter
- borrows: Append-only borrow ledger
- reservations: Reservation queue entries

Every table carries a version counter used by SQLAlchemy's optimistic
concurrency check: an UPDATE that finds the row changed since it was read
raises StaleDataError instead of overwriting.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, Index, Integer, String, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .schemas import BorrowStatus, ReservationStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string for primary keys."""
    return str(uuid4())


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class Item(Base):
    """Item model - canonical catalog record with availability."""

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    author: Mapped[str] = mapped_column(String(500), nullable=False)

    available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    held_by: Mapped[Optional[str]] = mapped_column(String(128), index=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[str] = mapped_column(String(32), default=_now_iso)
    updated_at: Mapped[str] = mapped_column(String(32), default=_now_iso, onupdate=_now_iso)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Item(id={self.id}, title='{self.title}', available={self.available})>"


class Patron(Base):
    """Patron model - active borrow counter keyed by opaque patron id."""

    __tablename__ = "patrons"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    active_borrow_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[str] = mapped_column(String(32), default=_now_iso)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Patron(id={self.id}, active={self.active_borrow_count})>"


class Borrow(Base):
    """Borrow model - one patron holding one item."""

    __tablename__ = "borrows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    patron_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # Snapshot of item metadata at borrow time, kept fresh by the synchronizer
    item_title: Mapped[str] = mapped_column(String(500), nullable=False)
    item_author: Mapped[str] = mapped_column(String(500), nullable=False)

    # Dates (ISO timestamps, UTC)
    borrowed_at: Mapped[str] = mapped_column(String(32), nullable=False)
    due_date: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    returned_at: Mapped[Optional[str]] = mapped_column(String(32))

    status: Mapped[str] = mapped_column(
        String(20), default=BorrowStatus.ACTIVE.value, nullable=False, index=True
    )
    fine_amount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    renewal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[str] = mapped_column(String(32), default=_now_iso)
    updated_at: Mapped[str] = mapped_column(String(32), default=_now_iso, onupdate=_now_iso)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        # At most one active borrow per item
        Index(
            "uq_borrows_active_item",
            "item_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Borrow(id={self.id}, item_id={self.item_id}, status={self.status})>"


class Reservation(Base):
    """Reservation model - FIFO queue entry for an item."""

    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    patron_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    item_title: Mapped[str] = mapped_column(String(500), nullable=False)
    item_author: Mapped[str] = mapped_column(String(500), nullable=False)

    reserved_at: Mapped[str] = mapped_column(String(32), nullable=False)
    expires_at: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    ready_at: Mapped[Optional[str]] = mapped_column(String(32))  # Set on promotion
    closed_at: Mapped[Optional[str]] = mapped_column(String(32))

    status: Mapped[str] = mapped_column(
        String(20), default=ReservationStatus.ACTIVE.value, nullable=False, index=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[str] = mapped_column(String(32), default=_now_iso)
    updated_at: Mapped[str] = mapped_column(String(32), default=_now_iso, onupdate=_now_iso)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        # At most one active reservation per (patron, item)
        Index(
            "uq_reservations_active_patron_item",
            "patron_id",
            "item_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_reservations_queue", "item_id", "status", "reserved_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Reservation(id={self.id}, item_id={self.item_id}, "
            f"patron_id={self.patron_id}, status={self.status})>"
        )
