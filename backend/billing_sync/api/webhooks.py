"""Webhook API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from billing_sync.core.exceptions import MalformedEventError, WebhookVerificationError
from billing_sync.db.session import get_db
from billing_sync.services.stripe_service import SignatureVerifier, get_signature_verifier
from billing_sync.services.webhook_service import process_stripe_webhook

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    verify: SignatureVerifier = Depends(get_signature_verifier)
):
    """Handle Stripe webhook events

    Note: This route must be excluded from any global JSON parsing middleware
    to ensure the request body remains as raw bytes for signature verification.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        ack = await run_in_threadpool(process_stripe_webhook, payload, sig_header, db, verify)
    except WebhookVerificationError as e:
        raise HTTPException(400, str(e))
    except MalformedEventError as e:
        raise HTTPException(400, str(e))

    return ack.model_dump(mode="json", exclude_none=True)
