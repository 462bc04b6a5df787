"""
Metrics Domain Entities
=======================

Pure Python record of a completed triage run.
"""

import time
from dataclasses import dataclass, field, asdict
from typing import Optional

from src.config import Engine


def retries_for(engine: str, attempts: Optional[int]) -> int:
    """Retries are attempts beyond the first, counted for the direct engine only."""
    if engine != Engine.DIRECT or not attempts:
        return 0
    return max(attempts - 1, 0)


@dataclass(frozen=True)
class RunRecord:
    """
    Flat summary of one triage invocation.

    Durations are milliseconds. ``rag_ms``, ``llm_ms`` and ``pipeline_ms``
    are only set when the corresponding phase ran.
    """
    trace_id: str
    engine: str
    use_rag: bool
    primary_model: str
    fallback_model: Optional[str]
    total_ms: int
    validation_ok: bool
    used_model: Optional[str] = None
    rag_ms: Optional[int] = None
    llm_ms: Optional[int] = None
    pipeline_ms: Optional[int] = None
    attempts: Optional[int] = None
    retries: int = 0
    ts: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict:
        return asdict(self)
