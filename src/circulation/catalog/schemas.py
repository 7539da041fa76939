"""Pydantic schemas for catalog items."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class TrimmedText(BaseModel):
    """Strips surrounding whitespace from title and author."""

    @field_validator("title", "author", mode="before", check_fields=False)
    @classmethod
    def strip_text(cls, v):
        """Trim surrounding whitespace."""
        if isinstance(v, str):
            return v.strip()
        return v


class ItemBase(TrimmedText):
    """Base item fields."""

    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=500)


class ItemCreate(ItemBase):
    """Schema for adding an item to the catalog."""

    id: Optional[str] = Field(None, min_length=1, max_length=36)


class ItemUpdate(TrimmedText):
    """Schema for editing cached display fields."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    author: Optional[str] = Field(None, min_length=1, max_length=500)
