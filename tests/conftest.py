"""Shared fixtures and helpers for the test suite."""

from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from src.config import Settings
from src.metrics.application import RunMetricsStore


def make_mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient with a mock transport handler."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def json_response(data: Any, status_code: int = 200) -> httpx.Response:
    """Build a mock httpx.Response with JSON body."""
    return httpx.Response(status_code, json=data)


def completion_body(content: Optional[str], usage: Optional[dict] = None) -> Dict[str, Any]:
    """OpenAI-style chat completion body."""
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": usage or {"prompt_tokens": 10, "completion_tokens": 5},
    }


class RecordingSleep:
    """Drop-in for asyncio.sleep that returns at once and remembers delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class ScriptedHandler:
    """
    MockTransport handler answering from a script.

    Each script entry is an httpx.Response, an exception instance to raise,
    or a callable taking the request. The last entry repeats once the script
    runs out. Every request is kept for assertions.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.script) - 1)
        entry = self.script[index]
        if isinstance(entry, Exception):
            raise entry
        if callable(entry) and not isinstance(entry, httpx.Response):
            return entry(request)
        return entry


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def metrics_store() -> RunMetricsStore:
    """Fresh run buffer per test."""
    return RunMetricsStore(capacity=200)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment and pointed at a temp knowledge base."""
    kb_dir = tmp_path / "kb"
    kb_dir.mkdir()
    (kb_dir / "runbook.md").write_text(
        "Roll back the checkout release when 502 errors follow a deploy.\n\n"
        "SEV1 means checkout is down for many customers.",
        encoding="utf-8",
    )
    (kb_dir / "auth.md").write_text(
        "Login loops come from stale session cookies after SSO migration.",
        encoding="utf-8",
    )
    return Settings(
        _env_file=None,
        openrouter_api_keys="key-a,key-b",
        openrouter_model="model-primary",
        openrouter_fallback_model="model-fallback",
        allowed_models=["model-primary", "model-fallback", "model-other"],
        dspy_service_url=None,
        kb_dir=kb_dir,
        embedding_api_key=None,
    )
