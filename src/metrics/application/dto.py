"""
Metrics Application DTOs
========================

Pydantic response models for the metrics API.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.metrics.domain import RunRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunInfo(_CamelModel):
    """One run as shown on the dashboard."""
    ts: int
    trace_id: str
    engine: str
    use_rag: bool
    primary_model: str
    fallback_model: Optional[str] = None
    used_model: Optional[str] = None
    total_ms: int
    rag_ms: Optional[int] = None
    llm_ms: Optional[int] = None
    pipeline_ms: Optional[int] = None
    attempts: Optional[int] = None
    retries: int = 0
    validation_ok: bool

    @classmethod
    def from_domain(cls, run: RunRecord) -> "RunInfo":
        return cls(**run.to_dict())


class LatencySummary(_CamelModel):
    p50: int = 0
    p95: int = 0
    rag_p50: int = 0
    rag_p95: int = 0
    no_rag_p50: int = 0
    no_rag_p95: int = 0
    delegated_p50: int = 0
    delegated_p95: int = 0
    direct_p50: int = 0
    direct_p95: int = 0


class MetricsSummary(_CamelModel):
    total: int
    validation_rate: float = Field(..., ge=0.0, le=1.0)
    retries: int
    latency: LatencySummary
    by_model: Dict[str, int]


class MetricsResponse(BaseModel):
    """Response model for the metrics endpoint."""
    summary: MetricsSummary
    runs: List[RunInfo]
