"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe SDK.
Handles webhook signature verification and event parsing.
The API key is passed per request; nothing is written to stripe.api_key.
"""
import json
from typing import Dict, Any, Optional
import stripe

from studyhub.core.config import require
from studyhub.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    PaymentEvent,
    SUBJECT_METADATA_KEY,
)


DEFAULT_TOLERANCE_SECONDS = 300


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None, tolerance: int = DEFAULT_TOLERANCE_SECONDS):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (checkout)
            webhook_secret: Stripe webhook signing secret
            tolerance: Max age in seconds of a webhook signature timestamp
        """
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Create Stripe checkout session in subscription mode."""
        api_key = require(self.secret_key, "STRIPE_SECRET_KEY")
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "metadata": metadata or {},
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(api_key=api_key, **params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}") from e
        if not session.url:
            raise BillingProviderError("Stripe checkout session has no redirect URL")
        return session.url

    def parse_webhook(self, body: bytes, signature_header: Optional[str]) -> PaymentEvent:
        """Verify Stripe signature over the raw bytes, then parse the JSON event."""
        secret = require(self.webhook_secret, "STRIPE_WEBHOOK_SECRET")
        if not signature_header:
            raise BillingWebhookError("Missing stripe-signature header")

        # verify_header signs "%d.%s" % (timestamp, payload); it needs text, not bytes
        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BillingWebhookError(f"Invalid payload encoding: {e}") from e

        try:
            stripe.WebhookSignature.verify_header(payload, signature_header, secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}") from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}") from e
        if not isinstance(event, dict) or "type" not in event:
            raise BillingWebhookError("Invalid payload: not a Stripe event")

        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> PaymentEvent:
        """Reduce a Stripe event to a PaymentEvent."""
        data = (event.get("data") or {}).get("object") or {}
        metadata = data.get("metadata") or {}
        customer = data.get("customer")
        if isinstance(customer, dict):
            customer = customer.get("id")

        return PaymentEvent(
            event_id=event.get("id"),
            event_type=event["type"],
            subject_id=metadata.get(SUBJECT_METADATA_KEY) or None,
            payment_account_id=customer,
            metadata=metadata,
        )
