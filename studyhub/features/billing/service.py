"""
Billing service orchestrator.

Coordinates:
- Checkout session creation bound to a subject
- Webhook reconciliation (the only writer of is_premium = True)

All Stripe-specific code is in stripe_provider.py.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from studyhub.core.config import require
from studyhub.core.errors import (
    MissingSubjectLinkError,
    SessionCreationFailedError,
    SignatureInvalidError,
    StoreUnavailableError,
)
from studyhub.core.logging import log_event
from studyhub.core.metrics import webhook_events_total
from studyhub.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookError,
    CHECKOUT_COMPLETED,
    SUBJECT_METADATA_KEY,
)
from studyhub.features.entitlements.store import EntitlementStore

logger = logging.getLogger(__name__)


class PaymentSessionFactory:
    """Creates hosted checkout sessions carrying the subject as metadata."""

    def __init__(self, provider: BillingProvider, price_id: Optional[str], frontend_url: str):
        self.provider = provider
        self.price_id = price_id
        self.frontend_url = frontend_url.rstrip("/")

    @property
    def success_url(self) -> str:
        return f"{self.frontend_url}/index.html?payment=success"

    @property
    def cancel_url(self) -> str:
        return f"{self.frontend_url}/index.html?payment=cancel"

    def create_checkout_session(self, subject_id: str, subject_email: Optional[str] = None) -> str:
        """
        Start a subscription checkout for subject_id.

        The subject_id metadata is the only link the webhook has back to the
        subject, so it is a hard precondition.

        Returns:
            Checkout redirect URL

        Raises:
            SessionCreationFailedError: missing subject or provider failure
        """
        if not subject_id:
            raise SessionCreationFailedError("Cannot create checkout session without a subject id")
        price_id = require(self.price_id, "STRIPE_PRICE_ID")

        try:
            url = self.provider.create_checkout_session(
                price_id=price_id,
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                customer_email=subject_email,
                metadata={SUBJECT_METADATA_KEY: subject_id},
            )
        except BillingProviderError as e:
            log_event(
                "error",
                "billing.checkout_failed",
                subject_id=subject_id,
                event_type="billing.checkout_failed",
                error_code="session_creation_failed",
                extra={"detail": str(e)},
            )
            raise SessionCreationFailedError(str(e)) from e

        log_event("info", "billing.checkout_created", subject_id=subject_id, event_type="billing.checkout_created")
        return url


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: Optional[str]
    event_type: str
    action: str  # "reconciled" | "ignored"
    subject_id: Optional[str] = None


class WebhookReconciler:
    """
    Verify -> filter -> reconcile, per event.

    The premium write is an unconditional set, so at-least-once redelivery of
    the same completion event converges on the same record.
    """

    def __init__(self, provider: BillingProvider, store: EntitlementStore):
        self.provider = provider
        self.store = store

    def handle_event(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        """
        Process one webhook delivery.

        Raises:
            SignatureInvalidError: body/signature not authentic (no store access)
            MissingSubjectLinkError: completed session without subject metadata
            StoreUnavailableError: entitlement write failed (retryable)
        """
        try:
            event = self.provider.parse_webhook(raw_body, signature_header)
        except BillingWebhookError as e:
            webhook_events_total.inc(labels={"outcome": "signature_invalid"})
            logger.warning("webhook.signature_invalid", extra={"reason": str(e)})
            raise SignatureInvalidError(str(e)) from e

        if event.event_type != CHECKOUT_COMPLETED:
            webhook_events_total.inc(labels={"outcome": "ignored"})
            log_event(
                "info",
                "webhook.ignored",
                event_type=event.event_type,
                extra={"event_id": event.event_id},
            )
            return WebhookOutcome(event_id=event.event_id, event_type=event.event_type, action="ignored")

        if not event.subject_id:
            webhook_events_total.inc(labels={"outcome": "missing_subject_link"})
            log_event(
                "error",
                "webhook.missing_subject_link",
                event_type=event.event_type,
                error_code="missing_subject_link",
                extra={"event_id": event.event_id},
            )
            raise MissingSubjectLinkError(f"No {SUBJECT_METADATA_KEY} in session metadata for event {event.event_id}")

        try:
            self.store.mark_premium(event.subject_id, event.payment_account_id)
        except StoreUnavailableError as e:
            webhook_events_total.inc(labels={"outcome": "store_unavailable"})
            log_event(
                "error",
                "webhook.store_failed",
                subject_id=event.subject_id,
                event_type=event.event_type,
                error_code=e.code,
                extra={"event_id": event.event_id, "detail": e.message},
            )
            raise

        webhook_events_total.inc(labels={"outcome": "reconciled"})
        log_event(
            "info",
            "webhook.reconciled",
            subject_id=event.subject_id,
            event_type=event.event_type,
            extra={"event_id": event.event_id},
        )
        return WebhookOutcome(
            event_id=event.event_id,
            event_type=event.event_type,
            action="reconciled",
            subject_id=event.subject_id,
        )
