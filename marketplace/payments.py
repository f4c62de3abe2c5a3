from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import stripe
import structlog

from .config import STRIPE_CURRENCY, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from .errors import ExternalServiceError, SignatureVerificationError

logger = structlog.get_logger(__name__)

PAYMENT_COMPLETED = "checkout.session.completed"
PAYMENT_FAILED = "payment_intent.payment_failed"
WEBHOOK_TOLERANCE_SECONDS = 300

# Stripe accepts a checkout session expiry between 30 minutes and 24 hours out;
# the lower bound keeps a minute of headroom for the order commit before the call
SESSION_TTL_MIN_MINUTES = 31
SESSION_TTL_MAX_MINUTES = 24 * 60


def session_ttl_minutes(minutes: int) -> int:
    return min(SESSION_TTL_MAX_MINUTES, max(SESSION_TTL_MIN_MINUTES, minutes))


def to_minor_units(amount) -> int:
    # Convert decimal currency to integer minor units (e.g., cents)
    dec = Decimal(str(amount))
    minor = (dec * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


@dataclass
class SessionLine:
    name: str
    description: str
    unit_amount: int
    quantity: int
    images: List[str] = field(default_factory=list)


@dataclass
class PaymentSession:
    session_id: str
    url: str
    payment_reference: Optional[str] = None


class StripeGateway:
    """Hosted checkout sessions and webhook verification on top of Stripe."""

    def __init__(
        self,
        api_key: str = STRIPE_SECRET_KEY,
        webhook_secret: str = STRIPE_WEBHOOK_SECRET,
        currency: str = STRIPE_CURRENCY,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def create_session(
        self,
        lines: List[SessionLine],
        *,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        expires_at: Optional[int] = None,
    ) -> PaymentSession:
        """Open a hosted checkout page.

        ``metadata`` is stored on the session and copied onto its PaymentIntent,
        so payment_intent.* events can be traced back to the order.
        ``expires_at`` is a unix timestamp.
        """
        if not self.api_key:
            raise ExternalServiceError("Payment gateway is not configured")

        line_items = [
            {
                "price_data": {
                    "currency": self.currency,
                    "product_data": {
                        "name": line.name,
                        "description": line.description or line.name,
                        "images": line.images[:1],
                    },
                    "unit_amount": line.unit_amount,
                },
                "quantity": line.quantity,
            }
            for line in lines
        ]
        extra = {}
        if expires_at is not None:
            extra["expires_at"] = expires_at
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                payment_method_types=["card"],
                mode="payment",
                line_items=line_items,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                **extra,
            )
        except stripe.StripeError as e:
            logger.error("checkout_session_failed", error=str(e), error_type=type(e).__name__)
            raise ExternalServiceError("Failed to create checkout session") from e

        payment_intent = getattr(session, "payment_intent", None)
        return PaymentSession(
            session_id=session.id,
            url=session.url,
            payment_reference=payment_intent if isinstance(payment_intent, str) else None,
        )

    def parse_webhook(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Verify the signature over the raw body and return the decoded event."""
        if not sig_header:
            raise SignatureVerificationError("Missing Stripe-Signature header")
        if not self.webhook_secret:
            raise ExternalServiceError("Webhook secret is not configured")

        try:
            text = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(text, sig_header, self.webhook_secret, WEBHOOK_TOLERANCE_SECONDS)
            event = json.loads(text)
        except (stripe.SignatureVerificationError, UnicodeDecodeError, ValueError) as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise SignatureVerificationError("Webhook signature verification failed") from e

        if not isinstance(event, dict):
            raise SignatureVerificationError("Webhook payload is not an event")
        return event


def get_payment_gateway() -> StripeGateway:
    return StripeGateway()
