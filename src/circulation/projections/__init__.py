"""Read-side projections.

Provides:
- Active borrows for a patron (overdue first)
- Queue position for a patron on an item
- Push subscriptions refreshed after every committed change
"""

from .views import ReadProjections, Subscription

__all__ = ["ReadProjections", "Subscription"]
