"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.).
This allows swapping providers without changing business logic.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field


CHECKOUT_COMPLETED = "checkout.session.completed"
SUBJECT_METADATA_KEY = "subject_id"


@dataclass(frozen=True)
class PaymentEvent:
    """A signature-verified payment notification, reduced to the fields we act on."""
    event_id: Optional[str]
    event_type: str
    subject_id: Optional[str]
    payment_account_id: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Hosted checkout session creation
    - Webhook signature verification and parsing
    """

    def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Create a hosted checkout session for a subscription.

        Args:
            price_id: Provider price ID (e.g., Stripe price ID)
            success_url: URL to redirect on success
            cancel_url: URL to redirect on cancellation
            customer_email: Contact email to pre-fill
            metadata: Metadata echoed back in the completion webhook

        Returns:
            Checkout session URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def parse_webhook(self, body: bytes, signature_header: Optional[str]) -> PaymentEvent:
        """
        Verify webhook signature over the raw body, then parse the event.

        Args:
            body: Raw webhook body exactly as received
            signature_header: Value of the provider's signature header

        Returns:
            Parsed payment event

        Raises:
            BillingWebhookError: If signature invalid or payload unparseable
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook verification errors."""
    pass
