"""
Stripe webhook verification.

Implements the WebhookVerifier protocol with the Stripe SDK: the signature
header is checked against the raw body, then the body is decoded into a typed
event variant (models/events.py).
"""
from typing import Optional

import pydantic
import stripe

from subsync.features.billing.provider import WebhookRejectedError
from subsync.models.events import IncomingEvent, decode_event


class StripeWebhookVerifier:
    """Stripe implementation of WebhookVerifier."""

    def __init__(self, tolerance: Optional[int] = None):
        """
        Args:
            tolerance: Maximum signature age in seconds (defaults to the SDK's 300s;
                0 disables the timestamp check)
        """
        self.tolerance = tolerance if tolerance is not None else stripe.Webhook.DEFAULT_TOLERANCE

    def verify(self, body: bytes, signature: str, secret: str) -> IncomingEvent:
        """Verify Stripe webhook signature and decode the event."""
        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookRejectedError(f"Invalid payload encoding: {e}", code="invalid_payload")

        try:
            stripe.WebhookSignature.verify_header(payload, signature, secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookRejectedError(f"Invalid signature: {e}", code="invalid_signature")

        try:
            return decode_event(payload)
        except pydantic.ValidationError as e:
            raise WebhookRejectedError(
                f"Invalid payload: {e.error_count()} validation error(s)",
                code="invalid_payload",
            )
