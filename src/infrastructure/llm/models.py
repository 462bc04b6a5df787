"""
Completion Types
================

Value objects exchanged with the completion orchestrator: the conversation it
is given, the configuration it searches over, the per-attempt trace it emits
and the outcome it returns.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Tuple, Union

from src.config import VALID_ROLES, MessageRole
from src.core import ConfigurationException, ValidationException

SWITCH_MODEL = "switch_model"
SWITCH_API_KEY = "switch_api_key"
MARKER_NOTES = (SWITCH_MODEL, SWITCH_API_KEY)


@dataclass(frozen=True)
class ChatMessage:
    """A single role-tagged message."""
    role: str
    content: str

    def __post_init__(self):
        if self.role not in VALID_ROLES:
            raise ValidationException(f"Unknown message role: {self.role}")

    def to_payload(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Conversation:
    """Ordered, immutable sequence of chat messages."""
    messages: Tuple[ChatMessage, ...]

    def __post_init__(self):
        if not self.messages:
            raise ValidationException("Conversation must contain at least one message")

    @classmethod
    def from_turns(cls, system: Optional[str], user: str) -> "Conversation":
        """Build the usual system + user pair."""
        messages = []
        if system:
            messages.append(ChatMessage(MessageRole.SYSTEM, system))
        messages.append(ChatMessage(MessageRole.USER, user))
        return cls(tuple(messages))

    def to_payload(self) -> list:
        return [message.to_payload() for message in self.messages]

    def __len__(self) -> int:
        return len(self.messages)


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Search space and limits for one orchestrator.

    Attributes:
        candidate_models: Default model preference list, primary first.
        credential_pool: Credentials in failover order.
        per_model_max_retries: Extra attempts per model after the first.
        per_attempt_timeout_seconds: Deadline of a single network call.
        backoff_base_ms: Delay before the first retry; doubles each attempt.
        temperature: Sampling temperature sent with every request.
    """
    candidate_models: Tuple[str, ...]
    credential_pool: Tuple[str, ...]
    per_model_max_retries: int = 2
    per_attempt_timeout_seconds: float = 25.0
    backoff_base_ms: int = 800
    temperature: float = 0.2

    def __post_init__(self):
        pool = tuple(key.strip() for key in self.credential_pool if key and key.strip())
        if not pool:
            raise ConfigurationException("Credential pool is empty")
        object.__setattr__(self, "credential_pool", pool)

        models = tuple(self.candidate_models)
        if not models or not all(models):
            raise ConfigurationException("At least one non-empty candidate model is required")
        object.__setattr__(self, "candidate_models", models)

        if self.per_model_max_retries < 0:
            raise ConfigurationException("per_model_max_retries must be >= 0")
        if self.per_attempt_timeout_seconds <= 0:
            raise ConfigurationException("per_attempt_timeout_seconds must be > 0")

    def backoff_ms(self, attempt: int) -> int:
        """Exponential delay after a failed attempt (0-based)."""
        return self.backoff_base_ms * (2 ** attempt)


@dataclass(frozen=True)
class AttemptRecord:
    """
    One entry of the audit trail.

    Either a physical network call or a marker for a skip event
    (``switch_model`` / ``switch_api_key``). Status is 0 for non-HTTP
    failures and for markers.
    """
    credential_index: int
    model: str
    attempt: int
    status: int
    latency_ms: int
    note: Optional[str] = None

    @property
    def is_marker(self) -> bool:
        return self.note in MARKER_NOTES

    def to_dict(self) -> dict:
        data = {
            "apiKeyIndex": self.credential_index,
            "model": self.model,
            "attempt": self.attempt,
            "status": self.status,
            "latencyMs": self.latency_ms,
        }
        if self.note:
            data["note"] = self.note
        return data


Trace = Tuple[AttemptRecord, ...]


@dataclass(frozen=True)
class CompletionSuccess:
    """A non-empty completion and the trace that produced it."""
    text: str
    used_model: str
    trace: Trace
    usage: Optional[dict] = None
    raw: Any = field(default=None, repr=False)

    ok = True


@dataclass(frozen=True)
class CompletionFailure:
    """Every candidate was exhausted; the trace is still delivered."""
    last_error: str
    trace: Trace

    ok = False


CompletionOutcome = Union[CompletionSuccess, CompletionFailure]


def physical_attempts(trace: Sequence[AttemptRecord]) -> int:
    """Count real network calls in a trace, ignoring markers."""
    return sum(1 for record in trace if not record.is_marker)


def trace_to_dicts(trace: Sequence[Any]) -> list:
    return [record.to_dict() for record in trace]
