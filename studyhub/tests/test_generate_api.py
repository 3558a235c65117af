"""
POST /api/generate

Verifies the ordering contract: authenticate, then check entitlement, and
only then call the AI provider.
"""

import httpx

from studyhub.features.ai.prompts import SUMMARIZER_PROMPT, summarize_query


def long_text(n=600):
    return " ".join(["note"] * n)


def test_no_token_is_401_and_no_ai_call(client, fake_gemini):
    resp = client.post("/api/generate", json={"userQuery": "hi", "systemInstruction": "x"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthenticated"
    assert fake_gemini.calls == 0


def test_garbage_token_is_401(client, fake_gemini):
    resp = client.post(
        "/api/generate",
        json={"userQuery": "hi", "systemInstruction": "x"},
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert resp.status_code == 401
    assert fake_gemini.calls == 0


def test_free_user_under_limit_gets_text(client, store, auth_header, fake_gemini):
    store.create_if_absent("u1", "u1@example.com")
    resp = client.post(
        "/api/generate",
        json={"userQuery": "What is osmosis?", "systemInstruction": SUMMARIZER_PROMPT, "isOverLimit": False},
        headers=auth_header("u1"),
    )
    assert resp.status_code == 200
    assert resp.json() == {"text": "A concise summary."}

    sent = fake_gemini.last_json()
    assert sent["contents"][0]["parts"][0]["text"] == "What is osmosis?"
    assert sent["systemInstruction"]["parts"][0]["text"] == SUMMARIZER_PROMPT
    assert fake_gemini.requests[-1].headers["x-goog-api-key"] == "test-gemini-key"
    assert fake_gemini.requests[-1].url.path.endswith(":generateContent")


def test_over_limit_free_user_is_402_before_ai_call(client, store, auth_header, fake_gemini):
    store.create_if_absent("u1")
    resp = client.post(
        "/api/generate",
        json={"userQuery": long_text(), "systemInstruction": "s", "isOverLimit": True},
        headers=auth_header("u1"),
    )
    assert resp.status_code == 402
    body = resp.json()
    assert body["error"]["code"] == "payment_required"
    assert "upgrade" in body["detail"].lower()
    assert fake_gemini.calls == 0


def test_over_limit_without_flag_still_402(client, store, auth_header, fake_gemini):
    store.create_if_absent("u1")
    resp = client.post(
        "/api/generate",
        json={"userQuery": long_text(), "systemInstruction": "s"},
        headers=auth_header("u1"),
    )
    assert resp.status_code == 402
    assert fake_gemini.calls == 0


def test_premium_user_over_limit_allowed(client, store, auth_header, fake_gemini):
    store.create_if_absent("u1")
    store.mark_premium("u1", "cus_1")
    resp = client.post(
        "/api/generate",
        json={"userQuery": long_text(), "systemInstruction": "s", "isOverLimit": True},
        headers=auth_header("u1"),
    )
    assert resp.status_code == 200
    assert fake_gemini.calls == 1


def test_blank_query_is_422(client, auth_header):
    resp = client.post("/api/generate", json={"userQuery": "   ", "systemInstruction": "s"}, headers=auth_header())
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "validation_error"


def test_blocked_content_is_generic_500(client, store, auth_header, fake_gemini):
    fake_gemini.reply = (200, {"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}})
    resp = client.post("/api/generate", json={"userQuery": "q", "systemInstruction": "s"}, headers=auth_header())
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "content_blocked"
    assert body["detail"] == "Failed to generate content."
    assert "SAFETY" not in body["detail"]


def test_provider_http_error_is_500(client, auth_header, fake_gemini):
    fake_gemini.reply = (429, {"error": {"message": "quota"}})
    resp = client.post("/api/generate", json={"userQuery": "q", "systemInstruction": "s"}, headers=auth_header())
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "upstream_unavailable"


def test_provider_transport_error_is_500(client, auth_header, fake_gemini):
    fake_gemini.raise_error = httpx.ConnectError("connection refused")
    resp = client.post("/api/generate", json={"userQuery": "q", "systemInstruction": "s"}, headers=auth_header())
    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to generate content."


def test_summarize_wrapper_not_counted_against_limit(client, store, auth_header, fake_gemini):
    store.create_if_absent("u1")
    at_limit = client.post(
        "/api/generate",
        json={"userQuery": summarize_query(long_text(500)), "systemInstruction": SUMMARIZER_PROMPT},
        headers=auth_header("u1"),
    )
    assert at_limit.status_code == 200

    over_limit = client.post(
        "/api/generate",
        json={"userQuery": summarize_query(long_text(501)), "systemInstruction": SUMMARIZER_PROMPT},
        headers=auth_header("u1"),
    )
    assert over_limit.status_code == 402
    assert fake_gemini.calls == 1
