"""Pydantic records for the circulation store.

Rows read from the database are converted into these records before they
leave a transaction. A row that does not validate is rejected as a
ValidationError instead of leaking half-populated values to callers.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..utils import ensure_utc


class BorrowStatus(str, Enum):
    """Status of a borrow."""

    ACTIVE = "active"
    RETURNED = "returned"


class ReservationStatus(str, Enum):
    """Status of a reservation."""

    ACTIVE = "active"
    FULFILLED = "fulfilled"  # Patron borrowed the item
    CANCELLED = "cancelled"  # Patron withdrew
    EXPIRED = "expired"  # Window elapsed unconsumed


class StoredRecord(BaseModel):
    """Base for records loaded from ORM rows."""

    model_config = {"from_attributes": True, "frozen": True}

    @field_validator("*", mode="after")
    @classmethod
    def normalize_timestamps(cls, v: Any) -> Any:
        """Make every parsed timestamp an aware UTC datetime."""
        if isinstance(v, datetime):
            return ensure_utc(v)
        return v

    @classmethod
    def from_row(cls, row: Any):
        """Validate an ORM row into a record.

        Raises:
            ValidationError: If the stored document is malformed
        """
        try:
            return cls.model_validate(row)
        except PydanticValidationError as e:
            row_id = getattr(row, "id", "?")
            raise ValidationError(
                f"Malformed {cls.__name__} document {row_id}: "
                f"{e.error_count()} invalid field(s)"
            ) from e


class ItemRecord(StoredRecord):
    """Catalog item with its availability flag."""

    id: str
    title: str
    author: str
    available: bool
    held_by: Optional[str] = None

    @model_validator(mode="after")
    def check_holder(self) -> "ItemRecord":
        if self.available == (self.held_by is not None):
            raise ValueError("available must be false exactly when held_by is set")
        return self


class BorrowRecord(StoredRecord):
    """One patron holding one item."""

    id: str
    patron_id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    item_title: str
    item_author: str
    borrowed_at: datetime
    due_date: datetime
    returned_at: Optional[datetime] = None
    status: BorrowStatus
    fine_amount_cents: int = Field(0, ge=0)
    renewal_count: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_return_state(self) -> "BorrowRecord":
        returned = self.status == BorrowStatus.RETURNED
        if returned != (self.returned_at is not None):
            raise ValueError("returned_at must be set exactly when status is returned")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == BorrowStatus.ACTIVE

    def is_overdue(self, as_of: Union[datetime, date]) -> bool:
        """Computed overdue predicate; never stored."""
        return self.returned_at is None and ensure_utc(as_of) > self.due_date

    def days_until_due(self, as_of: Union[datetime, date]) -> int:
        """Days until due (negative if overdue)."""
        return (self.due_date.date() - ensure_utc(as_of).date()).days


class ReservationRecord(StoredRecord):
    """A queued claim on an unavailable item."""

    id: str
    patron_id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    item_title: str
    item_author: str
    reserved_at: datetime
    expires_at: datetime
    ready_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    status: ReservationStatus

    @model_validator(mode="after")
    def check_closed_state(self) -> "ReservationRecord":
        active = self.status == ReservationStatus.ACTIVE
        if active == (self.closed_at is not None):
            raise ValueError("closed_at must be set exactly when status is terminal")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    @property
    def is_ready(self) -> bool:
        """Promoted and awaiting pickup."""
        return self.is_active and self.ready_at is not None

    def is_expired(self, as_of: Union[datetime, date]) -> bool:
        return ensure_utc(as_of) > self.expires_at
