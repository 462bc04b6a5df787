"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="triage-copilot", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Direct engine (OpenRouter) ==========
    llm_provider: str = Field(default="openrouter", description="Completion provider name")
    openrouter_api_keys: str = Field(
        default="",
        validation_alias=AliasChoices("openrouter_api_keys", "openrouter_api_key"),
        description="Comma-separated credential pool, tried in order"
    )
    openrouter_model: str = Field(
        default="meta-llama/llama-3.2-3b-instruct:free",
        description="Primary model identifier"
    )
    openrouter_fallback_model: Optional[str] = Field(
        default="mistralai/mistral-7b-instruct:free",
        description="Fallback model identifier"
    )
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenAI-compatible API base URL"
    )
    openrouter_site_url: Optional[str] = Field(
        default=None,
        description="Sent as HTTP-Referer for provider attribution"
    )
    openrouter_app_name: Optional[str] = Field(
        default=None,
        description="Sent as X-Title for provider attribution"
    )
    llm_temperature: float = Field(
        default=0.2,
        description="Sampling temperature for triage completions",
        ge=0.0,
        le=2.0
    )
    llm_max_retries_per_model: int = Field(
        default=2,
        description="Additional attempts per model after the first one",
        ge=0,
        le=10
    )
    llm_request_timeout_seconds: float = Field(
        default=25.0,
        description="Deadline for a single completion call",
        gt=0
    )
    llm_backoff_base_ms: int = Field(
        default=800,
        description="Base delay for exponential backoff between attempts",
        ge=0
    )
    allowed_models: List[str] = Field(
        default=[
            "meta-llama/llama-3.2-3b-instruct:free",
            "mistralai/mistral-7b-instruct:free",
            "google/gemma-7b-it:free",
        ],
        description="Models a caller may request explicitly"
    )

    # ========== Delegated engine (DSPy pipeline service) ==========
    dspy_service_url: Optional[str] = Field(
        default=None,
        description="Base URL of the delegated triage pipeline"
    )
    dspy_timeout_seconds: float = Field(
        default=45.0,
        description="Per-attempt timeout; generous to absorb cold starts",
        gt=0
    )
    dspy_retry_delay_seconds: float = Field(
        default=2.5,
        description="Fixed delay before the second attempt",
        ge=0
    )

    # ========== Knowledge base ==========
    kb_dir: Path = Field(
        default=Path("kb"),
        description="Directory holding markdown knowledge-base files"
    )
    rag_top_k: int = Field(
        default=4,
        description="Number of passages to retrieve",
        ge=1,
        le=20
    )
    kb_chunk_max_chars: int = Field(
        default=900,
        description="Upper bound on chunk length when splitting documents",
        ge=100
    )
    embedding_api_key: Optional[str] = Field(
        default=None,
        description="API key for the embeddings endpoint; hashing embedder when unset"
    )
    embedding_base_url: Optional[str] = Field(
        default=None,
        description="Base URL of an OpenAI-compatible embeddings endpoint"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model identifier"
    )
    embedding_dimension: int = Field(
        default=384,
        description="Vector size of the hashing embedder",
        ge=16
    )

    # ========== Run metrics ==========
    metrics_capacity: int = Field(
        default=200,
        description="Number of most recent runs kept in memory",
        ge=1
    )
    metrics_default_limit: int = Field(
        default=50,
        description="Runs returned by the metrics endpoint when no limit is given",
        ge=1
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @property
    def api_key_pool(self) -> List[str]:
        """Credential pool in failover order, blanks removed."""
        return parse_key_pool(self.openrouter_api_keys)


def parse_key_pool(raw: Optional[str]) -> List[str]:
    """Split a comma-separated credential list, dropping empty entries."""
    if not raw:
        return []
    return [key.strip() for key in raw.split(",") if key.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Engine(str):
    """Completion backends a triage run can use."""
    DIRECT = "direct"          # local orchestrated model calls
    DELEGATED = "delegated"    # remote DSPy pipeline service


class MessageRole(str):
    """Chat message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


# ========== Lists for validation ==========

VALID_ROLES = [MessageRole.SYSTEM, MessageRole.USER, MessageRole.ASSISTANT]
