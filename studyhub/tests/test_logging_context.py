"""Tests for structured logging and request_id propagation."""

import json
import logging

from studyhub.core.logging import JsonFormatter, log_event, request_id_ctx_var


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="studyhub"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert any(r.getMessage() == "request.complete" for r in records)


def test_gate_rejection_logged_with_subject_free_context(client, caplog):
    with caplog.at_level(logging.INFO, logger="studyhub"):
        client.post("/api/generate", json={"userQuery": "q"}, headers={"Authorization": "Bearer junk"})
    assert any(r.getMessage() == "app.error" and getattr(r, "error_code", None) == "unauthenticated" for r in caplog.records)
    assert "junk" not in caplog.text


def test_payment_required_logged_with_subject(client, store, auth_header, caplog):
    store.create_if_absent("u1")
    with caplog.at_level(logging.INFO, logger="studyhub"):
        client.post(
            "/api/generate",
            json={"userQuery": "q", "systemInstruction": "s", "isOverLimit": True},
            headers=auth_header("u1"),
        )
    events = [r for r in caplog.records if r.getMessage() == "gate.payment_required"]
    assert events
    assert events[0].subject_id == "u1"
    assert events[0].event_type == "gate.payment_required"


def test_json_formatter_includes_context_and_extras():
    token = request_id_ctx_var.set("rid-json")
    try:
        record = logging.LogRecord("studyhub", logging.INFO, __file__, 1, "webhook.reconciled", None, None)
        record.request_id = request_id_ctx_var.get()
        record.subject_id = "u1"
        line = json.loads(JsonFormatter().format(record))
    finally:
        request_id_ctx_var.reset(token)

    assert line["message"] == "webhook.reconciled"
    assert line["request_id"] == "rid-json"
    assert line["subject_id"] == "u1"
    assert line["level"] == "INFO"


def test_log_event_truncates_large_values(caplog):
    with caplog.at_level(logging.INFO, logger="studyhub"):
        log_event("info", "ai.generate_failed", extra={"detail": "x" * 2000})
    record = [r for r in caplog.records if r.getMessage() == "ai.generate_failed"][-1]
    assert record.detail.endswith("...<truncated>")
    assert len(record.detail) < 600


def test_log_event_redacts_credentials(caplog):
    with caplog.at_level(logging.INFO, logger="studyhub"):
        log_event("info", "auth.debug", extra={"id_token": "eyJhbGciOi.secret", "stripe_signature": "t=1,v1=abc"})
    record = [r for r in caplog.records if r.getMessage() == "auth.debug"][-1]
    assert record.id_token == "[redacted]"
    assert record.stripe_signature == "[redacted]"
