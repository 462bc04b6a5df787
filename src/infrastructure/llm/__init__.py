"""
LLM Client Infrastructure
==========================

Resilient completion orchestration for the direct triage engine.

The application layer depends on ``ILLMProvider``; the concrete provider is
chosen from settings by ``get_llm_provider`` (only OpenRouter today).
"""

from typing import Iterable, List, Optional

from src.config import Settings, settings as default_settings
from src.core import ConfigurationException
from src.infrastructure.llm.models import (
    AttemptRecord,
    ChatMessage,
    CompletionFailure,
    CompletionOutcome,
    CompletionSuccess,
    Conversation,
    OrchestratorConfig,
    SWITCH_API_KEY,
    SWITCH_MODEL,
    physical_attempts,
    trace_to_dicts,
)
from src.infrastructure.llm.orchestrator import (
    ILLMProvider,
    OpenRouterOrchestrator,
    RETRYABLE_STATUSES,
)


def pick_model(
    requested: Optional[str],
    default: str,
    allowed: Iterable[str]
) -> str:
    """Honor a caller's model choice only when it is on the allow-list."""
    if isinstance(requested, str) and requested in set(allowed):
        return requested
    return default


def build_candidate_models(primary: str, fallback: Optional[str] = None) -> List[str]:
    """Primary first, then the fallback when one is set."""
    return [primary] + ([fallback] if fallback else [])


def get_llm_provider(
    settings: Optional[Settings] = None,
    **kwargs
) -> ILLMProvider:
    """
    Build the completion provider described by settings.

    Raises:
        ConfigurationException: Unknown provider, empty credential pool or
            missing primary model. Raised before any network call.
    """
    settings = settings or default_settings
    provider = (settings.llm_provider or "openrouter").lower()

    if provider != "openrouter":
        raise ConfigurationException(f"Unknown LLM_PROVIDER: {provider}")

    pool = settings.api_key_pool
    if not pool:
        raise ConfigurationException("Missing OPENROUTER_API_KEYS or OPENROUTER_API_KEY")
    if not settings.openrouter_model:
        raise ConfigurationException("Missing OPENROUTER_MODEL")

    config = OrchestratorConfig(
        candidate_models=tuple(build_candidate_models(
            settings.openrouter_model, settings.openrouter_fallback_model
        )),
        credential_pool=tuple(pool),
        per_model_max_retries=settings.llm_max_retries_per_model,
        per_attempt_timeout_seconds=settings.llm_request_timeout_seconds,
        backoff_base_ms=settings.llm_backoff_base_ms,
        temperature=settings.llm_temperature,
    )
    return OpenRouterOrchestrator(
        config,
        base_url=settings.openrouter_base_url,
        site_url=settings.openrouter_site_url,
        app_name=settings.openrouter_app_name,
        **kwargs
    )


__all__ = [
    "AttemptRecord",
    "ChatMessage",
    "CompletionFailure",
    "CompletionOutcome",
    "CompletionSuccess",
    "Conversation",
    "ILLMProvider",
    "OpenRouterOrchestrator",
    "OrchestratorConfig",
    "RETRYABLE_STATUSES",
    "SWITCH_API_KEY",
    "SWITCH_MODEL",
    "build_candidate_models",
    "get_llm_provider",
    "physical_attempts",
    "pick_model",
    "trace_to_dicts",
]
