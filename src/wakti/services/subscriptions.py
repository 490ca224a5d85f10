"""Subscription validity rules."""

from datetime import datetime, timedelta
from typing import Protocol

from wakti.domain.access import SubscriptionRecord, SubscriptionStatus

GRACE_PERIOD = timedelta(days=1)
FREE_ACCESS_WINDOW = timedelta(hours=24)


class SubscriptionClient(Protocol):
    """Lookup of a user's billing state."""

    async def fetch_subscription(self, user_id: str) -> SubscriptionRecord | None:
        """Return the user's subscription record, or None if unknown."""


def evaluate_subscription(
    record: SubscriptionRecord | None, now: datetime
) -> SubscriptionStatus:
    """Decide whether a subscription grants access at ``now``.

    Active subscriptions stay valid for one day past ``next_billing_date``
    and need payment as soon as that date has passed. Active subscriptions
    without a billing date are administrative grants and never expire.
    """
    if record is None:
        return SubscriptionStatus(is_valid=False, needs_payment=True)
    active = record.is_subscribed and record.subscription_status == "active"
    if not active:
        return SubscriptionStatus(is_valid=False, needs_payment=True)
    due = record.next_billing_date
    if due is None:
        return SubscriptionStatus(is_valid=True, needs_payment=False)
    return SubscriptionStatus(
        is_valid=now <= due + GRACE_PERIOD,
        needs_payment=now > due,
    )


def is_free_access_expired(
    started_at: datetime | None,
    now: datetime,
    window: timedelta = FREE_ACCESS_WINDOW,
) -> bool:
    """Return True once the free-access window has fully elapsed.

    A window that never started is not expired.
    """
    if started_at is None:
        return False
    return now - started_at >= window
