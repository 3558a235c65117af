"""
Billing API routes.

Minimal surface:
- POST /api/create-checkout-session: Create hosted checkout for the caller
- POST /api/stripe-webhook: Handle Stripe webhooks (raw body, signed)
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from studyhub.core.auth import get_authorized_identity, get_services
from studyhub.features.entitlements.gate import AuthorizedIdentity


router = APIRouter(prefix="/api", tags=["billing"])


class CheckoutResponse(BaseModel):
    """Response with checkout URL."""
    url: str


class WebhookAck(BaseModel):
    received: bool


@router.post("/create-checkout-session", response_model=CheckoutResponse)
async def create_checkout_session(
    request: Request,
    identity: AuthorizedIdentity = Depends(get_authorized_identity),
):
    """
    Create Stripe checkout session bound to the caller.

    Returns:
        {"url": "https://checkout.stripe.com/..."}

    Errors:
        401: Unauthenticated
        500: Stripe API error
    """
    url = get_services(request).payments.create_checkout_session(identity.subject_id, identity.email)
    return {"url": url}


@router.post("/stripe-webhook", response_model=WebhookAck)
async def stripe_webhook(request: Request):
    """
    Handle Stripe webhook events.

    The body is read as raw bytes and handed to signature verification
    untouched; this route must never declare a parsed body model.

    Returns:
        {"received": true}

    Errors:
        400: Invalid signature, or completed session without subject link
        500: Entitlement store failure (Stripe retries)
    """
    body = await request.body()
    get_services(request).reconciler.handle_event(body, request.headers.get("stripe-signature"))
    return {"received": True}
