"""Per-event-type Stripe handlers

Each handler applies one event to the subscriptions and shops tables inside the
caller's transaction: handlers flush but never commit, so their writes land together
with the ledger update or not at all. Running a handler twice for the same event
leaves the same end state.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from billing_sync.core.exceptions import WebhookDataError
from billing_sync.core.logging import log_webhook
from billing_sync.models.shop import Shop
from billing_sync.models.subscription import Subscription
from billing_sync.schemas.stripe_events import InvoiceEventData, SubscriptionEventData
from billing_sync.services.plan_service import get_plan_by_price_id
from billing_sync.services.status_mapping import SubscriptionStatus, map_subscription_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventHandler:
    event_type: str
    parse: Callable[[Dict[str, Any]], Any]
    apply: Callable[[Session, Any, str], None]

    def run(self, db: Session, data_object: Dict[str, Any], event_id: str) -> None:
        self.apply(db, self.parse(data_object), event_id)


EVENT_HANDLERS: Dict[str, EventHandler] = {}


def register(event_type: str, parse: Callable[[Dict[str, Any]], Any]):
    """Register ``func`` as the handler for ``event_type``."""
    def decorator(func):
        EVENT_HANDLERS[event_type] = EventHandler(event_type, parse, func)
        return func
    return decorator


def get_handler(event_type: str) -> Optional[EventHandler]:
    return EVENT_HANDLERS.get(event_type)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_subscription(db: Session, stripe_subscription_id: str) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.stripe_subscription_id == stripe_subscription_id)
        .first()
    )


def _require_subscription(db: Session, stripe_subscription_id: str) -> Subscription:
    sub = _get_subscription(db, stripe_subscription_id)
    if sub is None:
        raise WebhookDataError(f"Subscription not found for stripe_subscription_id: {stripe_subscription_id}")
    return sub


def _has_other_active(db: Session, sub: Subscription) -> bool:
    return (
        db.query(Subscription.id)
        .filter(
            Subscription.user_id == sub.user_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.id != sub.id,
        )
        .first()
        is not None
    )


# ============================================================================
# SUBSCRIPTION EVENTS
# ============================================================================

@register("customer.subscription.created", SubscriptionEventData.from_stripe)
def handle_subscription_created(db: Session, data: SubscriptionEventData, event_id: str):
    """Insert the subscription and make it the user's only active one."""
    event_type = "customer.subscription.created"

    if not data.user_id:
        raise WebhookDataError("Missing user_id in subscription metadata")
    if not data.price_id:
        raise WebhookDataError("No price found in subscription")

    plan = get_plan_by_price_id(db, data.price_id)
    if plan is None:
        raise WebhookDataError(f"Plan not found for stripe_price_id: {data.price_id}")

    if _get_subscription(db, data.subscription_id) is not None:
        log_webhook(event_id, event_type, "Subscription already exists, skipping",
                    subscription_id=data.subscription_id)
        return

    if not data.status:
        raise WebhookDataError("Missing status on subscription")
    if not data.has_period:
        raise WebhookDataError("Missing billing period data on subscription item")

    now = _utcnow()

    # A new subscription supersedes whatever the user had active (upgrade without explicit cancel)
    superseded = (
        db.query(Subscription)
        .filter(
            Subscription.user_id == data.user_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
        )
        .all()
    )
    for old in superseded:
        old.status = SubscriptionStatus.CANCELED.value
        old.canceled_at = now
    if superseded:
        log_webhook(event_id, event_type, "Canceled superseded active subscriptions",
                    count=len(superseded))

    sub = Subscription(
        user_id=data.user_id,
        plan_id=plan.id,
        stripe_subscription_id=data.subscription_id,
        status=map_subscription_status(data.status).value,
        current_period_start=data.current_period_start,
        current_period_end=data.current_period_end,
        cancel_at_period_end=data.cancel_at_period_end,
    )
    db.add(sub)
    db.flush()

    shops_updated = (
        db.query(Shop)
        .filter(Shop.owner_id == data.user_id)
        .update({Shop.subscription_id: sub.id, Shop.updated_at: now}, synchronize_session="fetch")
    )

    log_webhook(event_id, event_type, "Subscription created",
                subscription_id=data.subscription_id, user_id=data.user_id,
                plan_id=plan.id, shops_updated=shops_updated)


@register("customer.subscription.updated", SubscriptionEventData.from_stripe)
def handle_subscription_updated(db: Session, data: SubscriptionEventData, event_id: str):
    """Sync status, period and plan. Fields absent from the event are left untouched."""
    event_type = "customer.subscription.updated"
    sub = _require_subscription(db, data.subscription_id)

    if not data.status:
        raise WebhookDataError("Missing status on subscription")
    new_status = map_subscription_status(data.status)

    if sub.status == SubscriptionStatus.CANCELED.value and new_status != SubscriptionStatus.CANCELED:
        # Canceled is terminal; a late update (or one for a superseded subscription) must not revive it
        log_webhook(event_id, event_type, "Ignoring status change on canceled subscription",
                    subscription_id=data.subscription_id, stripe_status=data.status)
    elif new_status == SubscriptionStatus.ACTIVE and sub.status != new_status.value and _has_other_active(db, sub):
        # One active subscription per user; the event still counts as processed, only the status write is skipped
        log_webhook(event_id, event_type, "User already has another active subscription, status left unchanged",
                    level=logging.WARNING, subscription_id=data.subscription_id)
    else:
        sub.status = new_status.value
        if new_status == SubscriptionStatus.CANCELED and sub.canceled_at is None:
            sub.canceled_at = data.canceled_at or _utcnow()

    sub.cancel_at_period_end = data.cancel_at_period_end
    if data.current_period_start is not None:
        sub.current_period_start = data.current_period_start
    if data.current_period_end is not None:
        sub.current_period_end = data.current_period_end

    if data.price_id:
        plan = get_plan_by_price_id(db, data.price_id)
        if plan is None:
            raise WebhookDataError(f"Plan not found for stripe_price_id: {data.price_id}")
        if plan.id != sub.plan_id:
            log_webhook(event_id, event_type, "Plan changed",
                        subscription_id=data.subscription_id, old_plan_id=sub.plan_id, new_plan_id=plan.id)
            sub.plan_id = plan.id

    db.flush()
    log_webhook(event_id, event_type, "Subscription updated",
                subscription_id=data.subscription_id, status=sub.status,
                cancel_at_period_end=sub.cancel_at_period_end)


@register("customer.subscription.deleted", SubscriptionEventData.from_stripe)
def handle_subscription_deleted(db: Session, data: SubscriptionEventData, event_id: str):
    sub = _require_subscription(db, data.subscription_id)

    sub.status = SubscriptionStatus.CANCELED.value
    if sub.canceled_at is None:
        sub.canceled_at = data.canceled_at or _utcnow()
    db.flush()

    log_webhook(event_id, "customer.subscription.deleted", "Subscription canceled",
                subscription_id=data.subscription_id)


# ============================================================================
# INVOICE EVENTS
# ============================================================================

@register("invoice.payment_failed", InvoiceEventData.from_stripe)
def handle_invoice_payment_failed(db: Session, data: InvoiceEventData, event_id: str):
    event_type = "invoice.payment_failed"
    if not data.subscription_id:
        log_webhook(event_id, event_type, "No subscription associated with invoice", invoice_id=data.invoice_id)
        return

    sub = _get_subscription(db, data.subscription_id)
    if sub is None:
        log_webhook(event_id, event_type, "Invoice references an unknown subscription",
                    level=logging.WARNING, subscription_id=data.subscription_id, invoice_id=data.invoice_id)
        return

    if sub.status == SubscriptionStatus.CANCELED.value:
        log_webhook(event_id, event_type, "Subscription already canceled, leaving as is",
                    subscription_id=data.subscription_id, invoice_id=data.invoice_id)
        return

    sub.status = SubscriptionStatus.PAST_DUE.value
    db.flush()
    log_webhook(event_id, event_type, "Subscription marked as past_due",
                subscription_id=data.subscription_id, invoice_id=data.invoice_id)


@register("invoice.payment_succeeded", InvoiceEventData.from_stripe)
def handle_invoice_payment_succeeded(db: Session, data: InvoiceEventData, event_id: str):
    """Recover past_due subscriptions. Payment on any other status is informational only."""
    event_type = "invoice.payment_succeeded"
    if not data.subscription_id:
        log_webhook(event_id, event_type, "No subscription associated with invoice", invoice_id=data.invoice_id)
        return

    sub = _get_subscription(db, data.subscription_id)
    if sub is None:
        log_webhook(event_id, event_type, "Invoice references an unknown subscription",
                    level=logging.WARNING, subscription_id=data.subscription_id, invoice_id=data.invoice_id)
        return

    if sub.status != SubscriptionStatus.PAST_DUE.value:
        log_webhook(event_id, event_type, "Payment recorded, status unchanged",
                    subscription_id=data.subscription_id, status=sub.status, invoice_id=data.invoice_id)
        return

    # A superseded subscription recovering from past_due must not become a second active one
    if _has_other_active(db, sub):
        log_webhook(event_id, event_type, "User already has another active subscription, status left unchanged",
                    level=logging.WARNING, subscription_id=data.subscription_id)
        return

    sub.status = SubscriptionStatus.ACTIVE.value
    db.flush()
    log_webhook(event_id, event_type, "Subscription reactivated from past_due",
                subscription_id=data.subscription_id, invoice_id=data.invoice_id)
