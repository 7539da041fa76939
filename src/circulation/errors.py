"""Error taxonomy for circulation operations.

Business-rule rejections (ConflictError, PolicyError) are expected outcomes
that callers render as actionable messages. TransientConflict means the
optimistic retry budget ran out and the whole operation may be retried.
"""

from typing import Any, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError


class CirculationError(Exception):
    """Base class for all circulation errors."""

    code = "circulation_error"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def __str__(self) -> str:
        if self.reason:
            return f"{self.message} ({self.reason})"
        return self.message


class ValidationError(CirculationError):
    """Malformed input or a malformed stored record."""

    code = "validation_error"


class NotFoundError(CirculationError):
    """Referenced item, borrow or reservation does not exist."""

    code = "not_found"


class ConflictError(CirculationError):
    """A business rule rejected the request."""

    code = "conflict"


class ItemUnavailable(ConflictError):
    """The item is checked out or held for another patron's pickup."""

    code = "item_unavailable"


class BorrowLimitExceeded(ConflictError):
    """The patron already holds the maximum number of active borrows."""

    code = "borrow_limit_exceeded"


class ReserveDenied(ConflictError):
    """A reservation could not be placed."""

    code = "reserve_denied"

    ITEM_AVAILABLE = "ItemAvailable"
    ALREADY_RESERVED = "AlreadyReserved"
    ALREADY_HOLDING = "AlreadyHolding"


class TransientConflict(CirculationError):
    """Optimistic retries were exhausted. Safe to retry."""

    code = "transient_conflict"

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class PolicyError(CirculationError):
    """A lending policy blocked the operation."""

    code = "policy_error"

    RESERVATION_PENDING = "ReservationPending"
    RENEWAL_LIMIT_REACHED = "RenewalLimitReached"
    NOT_ACTIVE = "NotActive"


def parse_request(schema: type[BaseModel], **fields: Any) -> Any:
    """Validate caller input before any transaction starts.

    Raises:
        ValidationError: Naming the first offending field
    """
    try:
        return schema(**fields)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "input"
        raise ValidationError(f"Invalid {location}: {first['msg']}") from e
