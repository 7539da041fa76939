"""Pickup notifications.

Delivery is someone else's problem: the engine hands a PickupNotice to a
dispatcher and moves on. A dispatcher that raises never undoes a promotion.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PickupNotice:
    """An item is waiting for a patron."""

    reservation_id: str
    patron_id: str
    item_id: str
    item_title: str
    pickup_deadline: datetime


class NotificationDispatcher(Protocol):
    """Anything that can accept a pickup notice."""

    def item_ready(self, notice: PickupNotice) -> None: ...


class LoggingDispatcher:
    """Dispatcher that only records notices in the log."""

    def item_ready(self, notice: PickupNotice) -> None:
        logger.info(
            "Item %r ready for pickup by %s until %s",
            notice.item_title,
            notice.patron_id,
            notice.pickup_deadline.isoformat(),
        )


def dispatch_pickup(dispatcher: NotificationDispatcher, notice: PickupNotice) -> bool:
    """Fire a pickup notice without letting delivery failures escape.

    Returns:
        True if the dispatcher accepted the notice
    """
    try:
        dispatcher.item_ready(notice)
    except Exception:
        logger.warning(
            "Pickup notice for reservation %s was not delivered",
            notice.reservation_id,
            exc_info=True,
        )
        return False
    return True
