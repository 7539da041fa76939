"""Pydantic schemas for ledger requests."""

from pydantic import BaseModel, Field


class BorrowRequest(BaseModel):
    """Schema for checking out an item."""

    patron_id: str = Field(..., min_length=1, max_length=128)
    item_id: str = Field(..., min_length=1, max_length=36)
    duration_days: int = Field(14, ge=1)


class ReturnRequest(BaseModel):
    """Schema for returning an item."""

    borrow_id: str = Field(..., min_length=1, max_length=36)


class RenewRequest(BaseModel):
    """Schema for extending a borrow."""

    borrow_id: str = Field(..., min_length=1, max_length=36)
    extra_days: int = Field(14, ge=1)
