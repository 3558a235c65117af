from studyhub.core.metrics import normalize_path
from studyhub.features.entitlements.store import InMemoryEntitlementStore


class UnreachableStore(InMemoryEntitlementStore):
    def ping(self):
        return False


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_readyz_ready_with_full_config(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"ready": True, "store": True, "missing_config": []}


def test_readyz_reports_missing_config(client, services):
    services.settings = services.settings.model_copy(update={"GEMINI_API_KEY": None})
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["missing_config"] == ["GEMINI_API_KEY"]


def test_readyz_reports_unreachable_store(client, services):
    services.store = UnreachableStore()
    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["store"] is False


def test_metrics_exposes_domain_counters(client):
    client.post("/api/generate", json={"userQuery": "q", "systemInstruction": "s"})
    resp = client.get("/metrics")
    assert resp.status_code == 200
    text = resp.text
    assert "# TYPE http_requests_total counter" in text
    assert 'gate_decisions_total{outcome="unauthenticated"}' in text
    assert "# TYPE entitlement_subscriptions_active gauge" in text


def test_normalize_path_collapses_ids():
    assert normalize_path("/api/users/12345") == "/api/users/:id"
    assert normalize_path("/api/generate") == "/api/generate"
