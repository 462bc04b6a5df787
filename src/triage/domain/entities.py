"""
Triage Domain Entities
======================

Domain entities for the ticket triage module.

Contains pure Python business objects for one triage run and the prompt
that asks a model for a structured verdict.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class TriageStep:
    """Timed phase of a run (retrieval, llm, pipeline)."""
    name: str
    ms: int
    detail: Optional[dict] = None


@dataclass
class TriageResult:
    """
    Outcome of a triage run that reached a completion.

    ``parsed`` may be set even when ``validation_error`` is, holding the JSON
    the model returned before schema checks failed.
    """
    trace_id: str
    engine: str
    use_rag: bool
    primary_model: str
    fallback_model: Optional[str]
    used_model: Optional[str]
    raw_text: str
    parsed: Optional[Any]
    validation_error: Optional[str]
    sources: List[Any]
    total_ms: int
    steps: List[TriageStep] = field(default_factory=list)
    engine_trace: Optional[dict] = None

    @property
    def validation_ok(self) -> bool:
        return self.validation_error is None and self.parsed is not None


class TriagePromptBuilder:
    """
    Builds the conversation asking for a triage verdict.

    All prompt text lives here.
    """

    SYSTEM_PROMPT = """You are a Support Triage Copilot.
You MUST ground diagnosis and next_steps in the provided SOURCES.
Return JSON only (no markdown) with keys:
severity ("SEV1"|"SEV2"|"SEV3"),
owner_team,
diagnosis,
next_steps (array of strings),
customer_reply,
citations (array of { id, quote? }).

Rules:
- citations must reference SOURCE ids you were given (e.g., "runbook.md#0")
- include 1-3 citations if possible
- if SOURCES are insufficient, say what is missing and ask ONE question in diagnosis, and keep next_steps minimal."""

    NO_SOURCES = "NO SOURCES PROVIDED"

    @classmethod
    def build_sources_block(cls, chunks: Sequence[Any]) -> str:
        """Render retrieved chunks, or a marker when there are none."""
        if not chunks:
            return cls.NO_SOURCES
        return "\n\n---\n\n".join(
            f"SOURCE {chunk.id} (score={chunk.score})\n{chunk.text}" for chunk in chunks
        )

    @classmethod
    def build_prompt(cls, text: str, chunks: Sequence[Any]) -> str:
        return f"""SOURCES:
{cls.build_sources_block(chunks)}

Ticket text:
{text}
"""

    @classmethod
    def build_messages(cls, text: str, chunks: Sequence[Any]) -> Tuple[str, str]:
        """Return the (system, user) prompt pair for one ticket."""
        return cls.SYSTEM_PROMPT, cls.build_prompt(text, chunks)
