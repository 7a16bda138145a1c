"""Stripe webhook reconciliation: signature gate, dedup ledger, dispatch"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_sync.core.exceptions import MalformedEventError, WebhookDataError, WebhookVerificationError
from billing_sync.core.logging import log_webhook
from billing_sync.core.metrics import stripe_webhook_rejections_counter, stripe_webhooks_counter
from billing_sync.models.stripe_webhook import StripeWebhook
from billing_sync.schemas.stripe_events import StripeEventEnvelope
from billing_sync.schemas.webhooks import WebhookAck, WebhookStatus
from billing_sync.services.stripe_service import SignatureVerifier
from billing_sync.services.webhook_handlers import get_handler

logger = logging.getLogger(__name__)


# ============================================================================
# LEDGER
# ============================================================================

def get_ledger_entry(db: Session, stripe_event_id: str) -> Optional[StripeWebhook]:
    return db.query(StripeWebhook).filter(StripeWebhook.stripe_event_id == stripe_event_id).first()


def record_stripe_event(db: Session, event: StripeEventEnvelope) -> StripeWebhook:
    """Return the ledger row for ``event``, inserting and committing it on first sight.

    The row is committed before any handler runs, so a crash mid-handler leaves an
    unprocessed row that a redelivery or replay will pick up.
    """
    entry = get_ledger_entry(db, event.id)
    if entry is not None:
        return entry

    entry = StripeWebhook(
        stripe_event_id=event.id,
        event_type=event.type,
        payload=event.raw,
        processed=False,
    )
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same event inserted first
        db.rollback()
        entry = get_ledger_entry(db, event.id)
        if entry is None:
            raise
        log_webhook(event.id, event.type, "Ledger row inserted by a concurrent delivery")
        return entry

    db.refresh(entry)
    return entry


def list_failed_events(db: Session, limit: int = 100) -> List[StripeWebhook]:
    """Unprocessed ledger rows, oldest first"""
    return (
        db.query(StripeWebhook)
        .filter(StripeWebhook.processed.is_(False))
        .order_by(StripeWebhook.created_at, StripeWebhook.id)
        .limit(limit)
        .all()
    )


# ============================================================================
# PROCESSING
# ============================================================================

def process_event(db: Session, event: StripeEventEnvelope) -> WebhookAck:
    """Ledger ``event`` and apply it at most once."""
    log_webhook(event.id, event.type, "Received webhook event")

    entry = record_stripe_event(db, event)
    if entry.processed:
        log_webhook(event.id, event.type, "Event already processed")
        stripe_webhooks_counter.labels(event_type=event.type, status=WebhookStatus.ALREADY_PROCESSED.value).inc()
        return WebhookAck(status=WebhookStatus.ALREADY_PROCESSED)

    entry_id = entry.id
    handler = get_handler(event.type)
    try:
        if handler is None:
            log_webhook(event.id, event.type, "Unhandled event type, acknowledging receipt")
        else:
            handler.run(db, event.data_object, event.id)

        entry.processed = True
        entry.processed_at = datetime.now(timezone.utc)
        entry.error_message = None
        db.commit()
    except Exception as e:
        db.rollback()
        error_message = str(e) or e.__class__.__name__
        log_webhook(event.id, event.type, f"Handler failed: {error_message}", level=logging.ERROR)
        if not isinstance(e, WebhookDataError):
            logger.error(f"[Stripe Webhook] Unexpected handler error ({event.id})", exc_info=True)

        # A concurrent delivery of the same event may have committed processed=True
        # while this one ran; only an unprocessed row takes the error
        recorded = (
            db.query(StripeWebhook)
            .filter(StripeWebhook.id == entry_id, StripeWebhook.processed.is_(False))
            .update({StripeWebhook.error_message: error_message}, synchronize_session=False)
        )
        db.commit()

        if not recorded:
            log_webhook(event.id, event.type, "Event processed by a concurrent delivery, error discarded")
            stripe_webhooks_counter.labels(event_type=event.type, status=WebhookStatus.ALREADY_PROCESSED.value).inc()
            return WebhookAck(status=WebhookStatus.ALREADY_PROCESSED)

        stripe_webhooks_counter.labels(event_type=event.type, status=WebhookStatus.ERROR.value).inc()
        return WebhookAck(status=WebhookStatus.ERROR, message="Event logged but processing failed")

    log_webhook(event.id, event.type, "Event processed successfully")
    stripe_webhooks_counter.labels(event_type=event.type, status=WebhookStatus.PROCESSED.value).inc()
    return WebhookAck(status=WebhookStatus.PROCESSED)


def process_stripe_webhook(
    payload: bytes,
    sig_header: Optional[str],
    db: Session,
    verify: SignatureVerifier,
) -> WebhookAck:
    """Process one Stripe webhook delivery.

    Only authenticity and malformed-body failures raise; they happen before anything
    is written. Once the event is verified every outcome is acknowledged, since a
    non-2xx response makes Stripe redeliver and failures are already kept in the ledger.

    Args:
        payload: Raw request body as bytes (must not be parsed by middleware)
        sig_header: Stripe-Signature header, or None if absent
        db: Database session
        verify: Signature verifier returning the parsed event

    Raises:
        WebhookVerificationError: Missing or invalid signature, or no secret configured
        MalformedEventError: Body is not a JSON event envelope
    """
    try:
        event = verify(payload, sig_header)
    except WebhookVerificationError as e:
        logger.error(f"[Stripe Webhook] Signature verification failed: {e}")
        stripe_webhook_rejections_counter.labels(reason="signature").inc()
        raise
    except MalformedEventError as e:
        logger.error(f"[Stripe Webhook] Malformed event: {e}")
        stripe_webhook_rejections_counter.labels(reason="malformed").inc()
        raise

    try:
        return process_event(db, event)
    except Exception as e:
        db.rollback()
        logger.error(f"[Stripe Webhook] Unexpected error ({event.id}): {e}", exc_info=True)
        stripe_webhooks_counter.labels(event_type=event.type, status=WebhookStatus.ERROR.value).inc()
        return WebhookAck(status=WebhookStatus.ERROR, message="Unexpected error occurred")


def replay_event(db: Session, stripe_event_id: str) -> WebhookAck:
    """Re-run the handler for a ledgered event from its stored payload.

    The stored payload passed the signature gate when it was first received, so it is
    not verified again.

    Raises:
        LookupError: No ledger row for ``stripe_event_id``
    """
    entry = get_ledger_entry(db, stripe_event_id)
    if entry is None:
        raise LookupError(f"No webhook event recorded with id {stripe_event_id}")

    event = StripeEventEnvelope.from_dict(entry.payload)
    logger.info(f"Replaying webhook event {stripe_event_id} ({entry.event_type})")
    return process_event(db, event)
