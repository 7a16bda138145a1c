"""Stripe → internal subscription status vocabulary"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from billing_sync.core.exceptions import WebhookDataError


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    PAUSED = "paused"


STRIPE_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAUSED,
    "trialing": SubscriptionStatus.ACTIVE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def map_subscription_status(stripe_status: str) -> SubscriptionStatus:
    """Map a Stripe subscription status to ours.

    Unknown statuses map to past_due so they show up as needing attention.
    """
    return STRIPE_STATUS_MAP.get(stripe_status, SubscriptionStatus.PAST_DUE)


def unix_to_datetime(timestamp: Any) -> datetime:
    """Convert a Stripe unix timestamp (seconds) to an aware UTC datetime."""
    try:
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise WebhookDataError(f"Invalid timestamp: {timestamp!r}") from e
