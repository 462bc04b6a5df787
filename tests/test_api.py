"""Route tests for the FastAPI application."""

import json

import pytest
from fastapi.testclient import TestClient

from src.infrastructure.llm import get_llm_provider
from src.infrastructure.pipeline import DelegatedPipelineClient
from src.infrastructure.vectorstore import KnowledgeBase
from src.main import create_app
from src.metrics.application import RunMetricsStore
from tests.conftest import ScriptedHandler, completion_body, json_response, make_mock_client

VERDICT = {
    "severity": "SEV2",
    "owner_team": "identity",
    "diagnosis": "Stale session cookie after SSO migration.",
    "next_steps": ["Ask the customer to clear cookies"],
    "customer_reply": "Please clear cookies for our domain and sign in again.",
    "citations": [{"id": "auth.md#0"}],
}


@pytest.fixture
def llm_handler():
    return ScriptedHandler(json_response(completion_body(json.dumps(VERDICT))))


@pytest.fixture
def client(settings, metrics_store, sleep, llm_handler):
    provider = get_llm_provider(settings, http_client=make_mock_client(llm_handler), sleep=sleep)
    app = create_app(settings, llm_provider=provider, metrics_store=metrics_store)
    with TestClient(app) as test_client:
        yield test_client


class TestTriageRoute:
    """POST /triage"""

    def test_direct_triage(self, client, metrics_store):
        response = client.post("/triage", json={"text": "User stuck in a login loop"})

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {
            "parsed", "rawText", "validationError", "sources", "usedRag", "engine",
            "primaryModel", "fallbackModel", "usedModel", "trace",
        }
        assert body["parsed"]["owner_team"] == "identity"
        assert body["validationError"] is None
        assert body["usedRag"] is True
        assert body["engine"] == "direct"
        assert body["usedModel"] == "model-primary"
        assert {s["id"] for s in body["sources"]} == {"runbook.md#0", "auth.md#0"}

        trace = body["trace"]
        assert set(trace) == {"traceId", "totalMs", "steps", "engine", "engineTrace"}
        assert [s["name"] for s in trace["steps"]] == ["retrieval", "llm"]
        assert trace["engineTrace"]["attempts"][0]["apiKeyIndex"] == 0
        assert len(metrics_store) == 1

    def test_text_required(self, client):
        assert client.post("/triage", json={}).status_code == 422
        assert client.post("/triage", json={"text": "   "}).status_code == 422

    def test_unknown_engine_rejected(self, client):
        response = client.post("/triage", json={"text": "ticket", "engine": "magic"})
        assert response.status_code == 422

    def test_delegated_not_configured(self, client, metrics_store):
        response = client.post("/triage", json={"text": "ticket", "engine": "delegated"})

        assert response.status_code == 503
        assert len(metrics_store) == 0

    def test_failure_returns_trace(self, settings, metrics_store, sleep):
        handler = ScriptedHandler(json_response({"error": "overloaded"}, 429))
        provider = get_llm_provider(settings, http_client=make_mock_client(handler), sleep=sleep)
        app = create_app(settings, llm_provider=provider, metrics_store=metrics_store)

        with TestClient(app) as test_client:
            response = test_client.post("/triage", json={"text": "ticket", "useRag": False})

        assert response.status_code == 502
        body = response.json()
        assert "429" in body["error"]
        attempts = body["trace"]["engineTrace"]["attempts"]
        assert [a["note"] for a in attempts if a["model"] == "(key_failover)"] == [
            "switch_api_key", "switch_api_key"
        ]
        assert len(metrics_store) == 1

    def test_delegated_triage(self, settings, metrics_store, sleep):
        handler = ScriptedHandler(json_response({"output": VERDICT}))
        pipeline = DelegatedPipelineClient(
            "https://pipeline.test", http_client=make_mock_client(handler), sleep=sleep
        )
        app = create_app(settings, pipeline_client=pipeline, metrics_store=metrics_store)

        with TestClient(app) as test_client:
            response = test_client.post(
                "/triage", json={"text": "ticket", "engine": "delegated", "useRag": False}
            )

        assert response.status_code == 200
        body = response.json()
        assert body["engine"] == "delegated"
        assert body["usedModel"] == "DSPy"
        assert body["sources"] == []

    def test_injected_empty_collaborators_kept(self, settings, sleep, llm_handler):
        """An empty store or knowledge base passed in is used, not replaced."""
        store = RunMetricsStore(capacity=5)
        kb = KnowledgeBase.from_settings(settings)
        provider = get_llm_provider(settings, http_client=make_mock_client(llm_handler), sleep=sleep)
        app = create_app(settings, llm_provider=provider, knowledge_base=kb, metrics_store=store)

        with TestClient(app) as test_client:
            assert test_client.app.state.metrics_store is store
            assert test_client.app.state.knowledge_base is kb
            response = test_client.post("/triage", json={"text": "ticket", "useRag": False})

        assert response.status_code == 200
        assert len(store) == 1


class TestMetricsRoute:
    """GET /metrics"""

    def test_empty(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        body = response.json()
        assert body["runs"] == []
        assert body["summary"]["total"] == 0
        assert body["summary"]["latency"]["p95"] == 0

    def test_after_runs(self, client):
        for _ in range(3):
            client.post("/triage", json={"text": "login loop", "useRag": False})

        body = client.get("/metrics", params={"limit": 2}).json()

        assert len(body["runs"]) == 2
        assert body["summary"]["total"] == 3
        assert body["summary"]["validationRate"] == 1
        assert body["summary"]["byModel"] == {"model-primary": 3}
        run = body["runs"][0]
        assert run["engine"] == "direct"
        assert run["useRag"] is False
        assert run["validationOk"] is True
        assert "traceId" in run and "totalMs" in run

    def test_latency_percentiles_are_integers(self, client):
        client.post("/triage", json={"text": "login loop", "useRag": False})

        latency = client.get("/metrics").json()["summary"]["latency"]

        assert latency["p50"] == client.get("/metrics").json()["runs"][0]["totalMs"]
        for key in ("p50", "p95", "noRagP50", "noRagP95", "directP50", "ragP95", "delegatedP50"):
            assert isinstance(latency[key], int), key

    def test_limit_clamped(self, client):
        client.post("/triage", json={"text": "login loop", "useRag": False})
        assert len(client.get("/metrics", params={"limit": 0}).json()["runs"]) == 1
        assert client.get("/metrics", params={"limit": 5000}).status_code == 200


class TestHealth:

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["checks"]["direct_engine"] == "available"
        assert body["checks"]["delegated_engine"] == "not_configured"
        assert body["checks"]["knowledge_base"] == "available (2 chunks)"

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "Triage Copilot"

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"
