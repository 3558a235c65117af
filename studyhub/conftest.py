# studyhub/conftest.py
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from studyhub.core.config import Settings
from studyhub.core.services import build_services
from studyhub.features.ai.gemini import GeminiClient
from studyhub.features.billing.stripe_provider import StripeProvider
from studyhub.features.entitlements.store import InMemoryEntitlementStore
from studyhub.features.identity.verifier import JwtIdentityVerifier
from studyhub.main import create_app

JWT_SECRET = "test-identity-secret-with-enough-bytes"
WEBHOOK_SECRET = "whsec_test_secret"
STRIPE_KEY = "sk_test_123"
PRICE_ID = "price_test_premium"
FRONTEND_URL = "http://localhost:5500"


class FakeGemini:
    """
    httpx.MockTransport handler standing in for generateContent.

    Set .reply (status, json body) or .raise_error before the call; every
    request is kept in .requests.
    """

    def __init__(self):
        self.requests = []
        self.reply = (200, {"candidates": [{"content": {"parts": [{"text": "A concise summary."}]}}]})
        self.raise_error = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        status, body = self.reply
        if isinstance(body, (bytes, str)):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe computes it."""
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def checkout_completed_event(subject_id="u1", customer="cus_123", event_id="evt_1", metadata=None) -> dict:
    if metadata is None:
        metadata = {"subject_id": subject_id} if subject_id else {}
    return {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_1",
                "object": "checkout.session",
                "customer": customer,
                "metadata": metadata,
            }
        },
    }


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        ENV="test",
        FRONTEND_URL=FRONTEND_URL,
        GEMINI_API_KEY="test-gemini-key",
        STRIPE_SECRET_KEY=STRIPE_KEY,
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        STRIPE_PRICE_ID=PRICE_ID,
        AUTH_JWT_SECRET=JWT_SECRET,
        AUTH_ISSUER=None,
        AUTH_AUDIENCE=None,
        AUTH_JWKS_URL=None,
        DATABASE_URL=None,
    )


@pytest.fixture
def store():
    return InMemoryEntitlementStore()


@pytest.fixture
def make_token():
    """Mint HS256 identity tokens: make_token("u1", email=..., expires_in=...)."""

    def _make(sub="u1", email="u1@example.com", expires_in=3600, secret=JWT_SECRET, **claims):
        now = datetime.now(timezone.utc)
        payload = {"iat": now, "exp": now + timedelta(seconds=expires_in), **claims}
        if sub is not None:
            payload["sub"] = sub
        if email is not None:
            payload["email"] = email
        return jwt.encode(payload, secret, algorithm="HS256")

    return _make


@pytest.fixture
def auth_header(make_token):
    def _header(sub="u1", **kwargs):
        return {"Authorization": f"Bearer {make_token(sub, **kwargs)}"}

    return _header


@pytest.fixture
def fake_gemini():
    return FakeGemini()


@pytest.fixture
def gemini_client(settings, fake_gemini):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_gemini))
    return GeminiClient.from_settings(settings, http_client=http_client)


@pytest.fixture
def stripe_provider():
    return StripeProvider(STRIPE_KEY, WEBHOOK_SECRET)


@pytest.fixture
def services(settings, store, gemini_client, stripe_provider):
    return build_services(
        settings,
        store=store,
        verifier=JwtIdentityVerifier(secret=JWT_SECRET),
        inference=gemini_client,
        billing_provider=stripe_provider,
    )


@pytest.fixture
def app(settings, services):
    return create_app(settings, services)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def post_webhook(client):
    """Deliver an event to /api/stripe-webhook with a valid signature."""

    def _post(event, secret=WEBHOOK_SECRET, signature=None):
        body = event if isinstance(event, bytes) else json.dumps(event).encode("utf-8")
        header = signature if signature is not None else sign_payload(body, secret)
        return client.post(
            "/api/stripe-webhook",
            content=body,
            headers={"stripe-signature": header, "content-type": "application/json"},
        )

    return _post


@pytest.fixture
def sign_webhook():
    return sign_payload


@pytest.fixture
def completed_event():
    return checkout_completed_event
