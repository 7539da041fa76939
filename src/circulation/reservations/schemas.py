"""Pydantic schemas for reservation requests."""

from pydantic import BaseModel, Field


class ReserveRequest(BaseModel):
    """Schema for placing a reservation."""

    patron_id: str = Field(..., min_length=1, max_length=128)
    item_id: str = Field(..., min_length=1, max_length=36)


class CancelRequest(BaseModel):
    """Schema for cancelling a reservation."""

    reservation_id: str = Field(..., min_length=1, max_length=36)
