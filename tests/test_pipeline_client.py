"""Unit tests for the delegated pipeline client."""

import json

import httpx
import pytest

from src.core import ConfigurationException
from src.infrastructure.pipeline import PIPELINE_MODEL, DelegatedPipelineClient
from tests.conftest import ScriptedHandler, json_response, make_mock_client

VERDICT = {
    "severity": "SEV2",
    "owner_team": "identity",
    "diagnosis": "Stale session cookie after SSO migration.",
    "next_steps": ["Ask the user to clear cookies"],
    "customer_reply": "Please clear cookies for our domain and retry.",
}


def _client(handler, sleep, **kwargs):
    return DelegatedPipelineClient(
        "https://pipeline.test/",
        http_client=make_mock_client(handler),
        sleep=sleep,
        **kwargs
    )


class TestConfiguration:

    @pytest.mark.parametrize("base_url", [None, "", "   "])
    def test_missing_base_url(self, base_url):
        with pytest.raises(ConfigurationException):
            DelegatedPipelineClient(base_url)

    def test_url_normalised(self, sleep):
        client = _client(ScriptedHandler(json_response({})), sleep)
        assert client.url == "https://pipeline.test/triage"


class TestRun:
    """Two attempts with a fixed delay."""

    async def test_success_first_attempt(self, sleep):
        handler = ScriptedHandler(json_response({
            "output": VERDICT,
            "model": "gpt-4o-mini",
            "trace": [{"step": "predict"}],
            "raw": "...",
            "score": 0.8,
            "notes": "compiled",
        }))
        outcome = await _client(handler, sleep).run(
            "login loop", sources=["cookie passage"], compile=True, use_rag=True
        )

        assert outcome.ok
        assert outcome.output == VERDICT
        assert outcome.used_model == "gpt-4o-mini"
        assert outcome.service_trace == [{"step": "predict"}]
        assert outcome.score == 0.8
        assert outcome.notes == "compiled"
        assert len(outcome.trace) == 1
        assert outcome.trace[0].status == 200
        assert sleep.delays == []

        body = json.loads(handler.requests[0].content)
        assert body == {
            "text": "login loop",
            "sources": ["cookie passage"],
            "compile": True,
            "useRag": True,
        }
        assert handler.requests[0].headers["Accept"] == "application/json"

    async def test_model_defaults(self, sleep):
        """Without a model in the body the pipeline name is used."""
        handler = ScriptedHandler(json_response({"output": VERDICT}))
        outcome = await _client(handler, sleep).run("text")

        assert outcome.used_model == PIPELINE_MODEL
        assert outcome.trace[0].model == PIPELINE_MODEL

    async def test_output_falls_back_to_body(self, sleep):
        handler = ScriptedHandler(json_response(VERDICT))
        outcome = await _client(handler, sleep).run("text")

        assert outcome.output == VERDICT

    async def test_retry_after_failure(self, sleep):
        """One failure, fixed delay, then success."""
        handler = ScriptedHandler(
            json_response({"error": "warming up"}, 503),
            json_response({"output": VERDICT}),
        )
        outcome = await _client(handler, sleep).run("text")

        assert outcome.ok
        assert [r.status for r in outcome.trace] == [503, 200]
        assert outcome.trace[0].note == "http_503; backoff 2500ms"
        assert [r.attempt for r in outcome.trace] == [0, 1]
        assert sleep.delays == [2.5]

    async def test_two_failures(self, sleep):
        """Both attempts fail: failure outcome with both records."""
        handler = ScriptedHandler(
            httpx.ConnectError("refused"),
            httpx.Response(200, text="not json"),
        )
        outcome = await _client(handler, sleep).run("text")

        assert not outcome.ok
        assert "non-JSON" in outcome.last_error
        assert [r.note for r in outcome.trace] == [
            "transport_error; backoff 2500ms",
            "invalid_response",
        ]
        assert len(handler.requests) == 2
        assert sleep.delays == [2.5]

    async def test_any_non_2xx_fails_attempt(self, sleep):
        """4xx from the pipeline is retried like any other failure."""
        handler = ScriptedHandler(json_response({"error": "bad"}, 400))
        outcome = await _client(handler, sleep).run("text")

        assert not outcome.ok
        assert [r.status for r in outcome.trace] == [400, 400]

    async def test_timeout(self, sleep):
        handler = ScriptedHandler(httpx.ReadTimeout("slow"))
        outcome = await _client(handler, sleep, timeout_seconds=45.0).run("text")

        assert not outcome.ok
        assert outcome.trace[0].note == "timeout 45000ms; backoff 2500ms"
        assert outcome.trace[1].note == "timeout 45000ms"
        assert all(r.status == 0 for r in outcome.trace)
