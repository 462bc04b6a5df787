"""
Triage Application DTOs
========================

Data Transfer Objects for the Triage API layer, plus the schema a model's
verdict must satisfy.

Pydantic models for request/response validation.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional

from src.triage.domain import TriageResult


# ========== Type Aliases for Literals ==========
SeverityStr = Literal["SEV1", "SEV2", "SEV3"]
EngineStr = Literal["direct", "delegated"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Verdict schema ==========

class CitationRef(BaseModel):
    """Reference to a SOURCE id the verdict relies on."""
    id: str
    quote: Optional[str] = None


class TriageOutput(BaseModel):
    """Structured verdict expected from either engine."""
    severity: SeverityStr
    owner_team: str
    diagnosis: str
    next_steps: List[str] = Field(..., min_length=1)
    customer_reply: str
    citations: Optional[List[CitationRef]] = None


# ========== Request DTOs ==========

class TriageRequest(_CamelModel):
    """Request model for a triage run."""
    text: str = Field(..., description="Ticket text")
    use_rag: bool = Field(default=True, description="Ground the verdict in knowledge-base passages")
    engine: EngineStr = Field(default="direct", description="Completion backend")
    model_primary: Optional[str] = Field(default=None, description="Requested primary model")
    model_fallback: Optional[str] = Field(default=None, description="Requested fallback model")
    compile: bool = Field(default=False, description="Delegated engine only: compile the program first")

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        """Ticket text must carry content."""
        if not v or not v.strip():
            raise ValueError("text is required")
        if len(v) > 20000:
            raise ValueError("text too long (max 20000 characters)")
        return v


# ========== Response DTOs ==========

class SourceInfo(BaseModel):
    """Retrieved passage returned to the caller."""
    id: str
    score: float
    text: str


class StepInfo(BaseModel):
    name: str
    ms: int


class TraceInfo(_CamelModel):
    trace_id: str
    total_ms: int
    steps: List[StepInfo]
    engine: EngineStr
    engine_trace: Optional[Dict[str, Any]] = None


class TriageResponse(_CamelModel):
    """Caller-facing result, identical in shape for both engines."""
    parsed: Optional[Any] = None
    raw_text: str
    validation_error: Optional[str] = None
    sources: List[SourceInfo]
    used_rag: bool
    engine: EngineStr
    primary_model: str
    fallback_model: Optional[str] = None
    used_model: Optional[str] = None
    trace: TraceInfo

    @classmethod
    def from_domain(cls, result: TriageResult) -> "TriageResponse":
        return cls(
            parsed=result.parsed,
            raw_text=result.raw_text,
            validation_error=result.validation_error,
            sources=[SourceInfo(id=s.id, score=s.score, text=s.text) for s in result.sources],
            used_rag=result.use_rag,
            engine=result.engine,
            primary_model=result.primary_model,
            fallback_model=result.fallback_model,
            used_model=result.used_model,
            trace=TraceInfo(
                trace_id=result.trace_id,
                total_ms=result.total_ms,
                steps=[StepInfo(name=step.name, ms=step.ms) for step in result.steps],
                engine=result.engine,
                engine_trace=result.engine_trace
            )
        )


class TriageErrorResponse(BaseModel):
    """Body returned when no engine produced a completion."""
    error: str
    trace: Optional[Dict[str, Any]] = None
