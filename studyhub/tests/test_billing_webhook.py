"""
Stripe webhook reconciliation.

Signatures are computed with the real Stripe scheme so
stripe.WebhookSignature.verify_header runs unmodified on the received body.
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from studyhub.core.errors import ConfigurationError, SignatureInvalidError, StoreUnavailableError
from studyhub.core.metrics import webhook_events_total
from studyhub.features.billing.provider import BillingWebhookError
from studyhub.features.billing.service import WebhookReconciler
from studyhub.features.billing.stripe_provider import StripeProvider
from studyhub.features.entitlements.store import InMemoryEntitlementStore

from conftest import WEBHOOK_SECRET, sign_payload


class SpyStore(InMemoryEntitlementStore):
    def __init__(self):
        super().__init__()
        self.writes = []

    def mark_premium(self, subject_id, payment_account_id):
        self.writes.append((subject_id, payment_account_id))
        return super().mark_premium(subject_id, payment_account_id)


class BrokenStore(InMemoryEntitlementStore):
    def mark_premium(self, subject_id, payment_account_id):
        raise StoreUnavailableError("write failed")


def test_completed_checkout_marks_premium(post_webhook, store, completed_event):
    store.create_if_absent("u1", "u1@example.com")
    resp = post_webhook(completed_event("u1", customer="cus_123"))
    assert resp.status_code == 200
    assert resp.json() == {"received": True}

    record = store.get("u1")
    assert record.is_premium is True
    assert record.payment_account_id == "cus_123"
    assert record.email == "u1@example.com"


def test_redelivery_is_idempotent(post_webhook, store, completed_event):
    store.create_if_absent("u1")
    event = completed_event("u1", customer="cus_123", event_id="evt_dup")
    first = post_webhook(event)
    after_first = store.get("u1")
    second = post_webhook(event)
    after_second = store.get("u1")

    assert first.status_code == second.status_code == 200
    assert after_first.is_premium and after_second.is_premium
    assert after_first.payment_account_id == after_second.payment_account_id == "cus_123"


def test_tampered_body_rejected_without_store_access(client, store, completed_event):
    store.create_if_absent("u1")
    body = json.dumps(completed_event("u1")).encode("utf-8")
    header = sign_payload(body)
    tampered = body.replace(b"cus_123", b"cus_evil")

    resp = client.post("/api/stripe-webhook", content=tampered, headers={"stripe-signature": header})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "signature_invalid"
    assert store.get("u1").is_premium is False


def test_wrong_secret_rejected(post_webhook, store, completed_event):
    store.create_if_absent("u1")
    resp = post_webhook(completed_event("u1"), secret="whsec_someone_else")
    assert resp.status_code == 400
    assert store.get("u1").is_premium is False


def test_missing_signature_header_rejected(client, completed_event):
    resp = client.post("/api/stripe-webhook", content=json.dumps(completed_event("u1")).encode("utf-8"))
    assert resp.status_code == 400


def test_stale_timestamp_rejected(post_webhook, completed_event):
    body = json.dumps(completed_event("u1")).encode("utf-8")
    stale = sign_payload(body, timestamp=int(time.time()) - 3600)
    resp = post_webhook(body, signature=stale)
    assert resp.status_code == 400


def test_reformatted_json_fails_verification(client, completed_event):
    # Verification is over the exact bytes; re-serializing changes them
    event = completed_event("u1")
    signed_body = json.dumps(event).encode("utf-8")
    header = sign_payload(signed_body)
    reserialized = json.dumps(event, indent=2).encode("utf-8")
    resp = client.post("/api/stripe-webhook", content=reserialized, headers={"stripe-signature": header})
    assert resp.status_code == 400


def test_missing_subject_metadata_is_400(post_webhook, store, completed_event):
    store.create_if_absent("u1")
    resp = post_webhook(completed_event(subject_id=None))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "missing_subject_link"
    assert store.get("u1").is_premium is False


@pytest.mark.parametrize("event_type", ["customer.subscription.deleted", "invoice.paid", "checkout.session.expired"])
def test_other_event_types_acknowledged_and_ignored(post_webhook, store, completed_event, event_type):
    store.create_if_absent("u1")
    event = completed_event("u1")
    event["type"] = event_type
    before = webhook_events_total.value({"outcome": "ignored"})

    resp = post_webhook(event)
    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert store.get("u1").is_premium is False
    assert webhook_events_total.value({"outcome": "ignored"}) == before + 1


def test_record_not_created_yet_is_500_for_retry(post_webhook, store, completed_event):
    resp = post_webhook(completed_event("late-signup"))
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "record_not_found"
    assert store.get("late-signup") is None


def test_store_write_failure_is_500(settings, services, completed_event):
    from studyhub.main import create_app

    services.reconciler = WebhookReconciler(StripeProvider("sk_test", WEBHOOK_SECRET), BrokenStore())
    client = TestClient(create_app(settings, services))
    body = json.dumps(completed_event("u1")).encode("utf-8")
    resp = client.post("/api/stripe-webhook", content=body, headers={"stripe-signature": sign_payload(body)})
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "store_unavailable"


class TestReconcilerDirect:
    def test_outcome_reconciled(self, completed_event):
        store = SpyStore()
        store.create_if_absent("u1")
        reconciler = WebhookReconciler(StripeProvider("sk_test", WEBHOOK_SECRET), store)
        body = json.dumps(completed_event("u1", customer="cus_9", event_id="evt_9")).encode("utf-8")

        outcome = reconciler.handle_event(body, sign_payload(body))
        assert outcome.action == "reconciled"
        assert outcome.subject_id == "u1"
        assert outcome.event_id == "evt_9"
        assert store.writes == [("u1", "cus_9")]

    def test_invalid_signature_never_touches_store(self, completed_event):
        store = SpyStore()
        reconciler = WebhookReconciler(StripeProvider("sk_test", WEBHOOK_SECRET), store)
        body = json.dumps(completed_event("u1")).encode("utf-8")
        with pytest.raises(SignatureInvalidError):
            reconciler.handle_event(body, "t=1,v1=deadbeef")
        assert store.writes == []

    def test_unconfigured_secret_is_configuration_error(self, completed_event):
        reconciler = WebhookReconciler(StripeProvider("sk_test", None), SpyStore())
        body = json.dumps(completed_event("u1")).encode("utf-8")
        with pytest.raises(ConfigurationError):
            reconciler.handle_event(body, sign_payload(body))

    def test_customer_object_expanded(self, completed_event):
        store = SpyStore()
        store.create_if_absent("u1")
        reconciler = WebhookReconciler(StripeProvider("sk_test", WEBHOOK_SECRET), store)
        event = completed_event("u1")
        event["data"]["object"]["customer"] = {"id": "cus_obj", "object": "customer"}
        body = json.dumps(event).encode("utf-8")
        reconciler.handle_event(body, sign_payload(body))
        assert store.writes == [("u1", "cus_obj")]


class TestStripeProviderParse:
    def test_signed_bytes_body_verifies(self, sign_webhook, completed_event):
        provider = StripeProvider("sk_test", WEBHOOK_SECRET)
        event = completed_event("u1", customer="cus_bytes", metadata={"subject_id": "u1", "note": "café"})
        body = json.dumps(event, ensure_ascii=False).encode("utf-8")

        parsed = provider.parse_webhook(body, sign_webhook(body))
        assert parsed.event_type == "checkout.session.completed"
        assert parsed.subject_id == "u1"
        assert parsed.payment_account_id == "cus_bytes"
        assert parsed.metadata["note"] == "café"

    def test_non_utf8_body_rejected(self, sign_webhook):
        provider = StripeProvider("sk_test", WEBHOOK_SECRET)
        body = b'{"type": "checkout.session.completed", "id": "\xff"}'
        with pytest.raises(BillingWebhookError):
            provider.parse_webhook(body, sign_webhook(body))
