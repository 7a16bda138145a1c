"""Stripe webhook signature verification"""
import logging
from typing import Callable, Optional

import stripe

from billing_sync.core.config import settings
from billing_sync.core.exceptions import MalformedEventError, WebhookVerificationError
from billing_sync.schemas.stripe_events import StripeEventEnvelope

logger = logging.getLogger(__name__)

# (raw body, Stripe-Signature header) -> verified event
SignatureVerifier = Callable[[bytes, Optional[str]], StripeEventEnvelope]


class StripeSignatureVerifier:
    """Verifies the Stripe-Signature header over the exact request bytes.

    The body is parsed only after the signature checks out, so nothing derived
    from an unverified payload ever reaches the database.
    """

    def __init__(self, webhook_secret: str, tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def __call__(self, payload: bytes, sig_header: Optional[str]) -> StripeEventEnvelope:
        if not sig_header:
            raise WebhookVerificationError("Missing stripe-signature header")

        if not self.webhook_secret:
            logger.error("Webhook secret not configured")
            raise WebhookVerificationError("Webhook secret not configured")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedEventError("Event body is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(body, sig_header, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError("Invalid signature") from e

        return StripeEventEnvelope.from_payload(body)


def get_signature_verifier() -> SignatureVerifier:
    """Dependency for FastAPI endpoints"""
    return StripeSignatureVerifier(settings.STRIPE_WEBHOOK_SECRET, settings.STRIPE_WEBHOOK_TOLERANCE)
