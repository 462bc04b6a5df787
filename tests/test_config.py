"""Tests for settings, the provider factory and structured logging."""

import json
import logging

import pytest
from pydantic import ValidationError

from src.config import VALID_ROLES, Engine, MessageRole, Settings, parse_key_pool
from src.core import ConfigurationException, ValidationException
from src.infrastructure.llm import (
    ChatMessage,
    OpenRouterOrchestrator,
    build_candidate_models,
    get_llm_provider,
    pick_model,
)
from src.infrastructure.pipeline import DelegatedPipelineClient
from src.shared.infrastructure.logging import CustomJsonFormatter


class TestSettings:

    def test_key_pool_parsing(self):
        assert parse_key_pool(" key-a , ,key-b,") == ["key-a", "key-b"]
        assert parse_key_pool("") == []
        assert parse_key_pool(None) == []

    def test_single_key_alias(self, monkeypatch):
        """OPENROUTER_API_KEY works when the pool variable is unset."""
        monkeypatch.delenv("OPENROUTER_API_KEYS", raising=False)
        monkeypatch.setenv("OPENROUTER_API_KEY", "only-key")
        assert Settings(_env_file=None).api_key_pool == ["only-key"]

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, environment="moon")


class TestModelSelection:

    def test_pick_model(self):
        allowed = ["a", "b"]
        assert pick_model("b", "a", allowed) == "b"
        assert pick_model("z", "a", allowed) == "a"
        assert pick_model(None, "a", allowed) == "a"

    def test_candidate_models(self):
        assert build_candidate_models("a", "b") == ["a", "b"]
        assert build_candidate_models("a", None) == ["a"]
        assert build_candidate_models("a", "") == ["a"]


class TestProviderFactory:

    def test_builds_orchestrator(self, settings):
        provider = get_llm_provider(settings)
        assert isinstance(provider, OpenRouterOrchestrator)
        assert provider.config.credential_pool == ("key-a", "key-b")
        assert provider.config.candidate_models == ("model-primary", "model-fallback")

    def test_empty_pool(self, settings):
        with pytest.raises(ConfigurationException):
            get_llm_provider(settings.model_copy(update={"openrouter_api_keys": " , "}))

    def test_unknown_provider(self, settings):
        with pytest.raises(ConfigurationException):
            get_llm_provider(settings.model_copy(update={"llm_provider": "other"}))

    def test_pipeline_from_settings(self, settings):
        with pytest.raises(ConfigurationException):
            DelegatedPipelineClient.from_settings(settings)
        client = DelegatedPipelineClient.from_settings(
            settings.model_copy(update={"dspy_service_url": "http://dspy.local:8001"})
        )
        assert client.url == "http://dspy.local:8001/triage"


class TestJsonLogging:

    def _format(self, **extra):
        formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="staging")
        record = logging.LogRecord("triage", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return json.loads(formatter.format(record))

    def test_context_fields(self):
        payload = self._format(correlation_id="abc")
        assert payload["message"] == "hello"
        assert payload["environment"] == "staging"
        assert payload["correlation_id"] == "abc"
        assert "timestamp" in payload

    def test_credentials_redacted(self):
        payload = self._format(api_key="sk-live", auth_token="t0k", prompt_tokens=12)
        assert payload["api_key"] == "***REDACTED***"
        assert payload["auth_token"] == "***REDACTED***"
        assert payload["prompt_tokens"] == 12


class TestConstants:

    def test_engine_values(self):
        assert (Engine.DIRECT, Engine.DELEGATED) == ("direct", "delegated")

    def test_message_roles_validated(self):
        assert ChatMessage(MessageRole.USER, "hi").to_payload() == {"role": "user", "content": "hi"}
        assert set(VALID_ROLES) == {"system", "user", "assistant"}
        with pytest.raises(ValidationException):
            ChatMessage("robot", "hi")
