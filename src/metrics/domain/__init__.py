"""
Metrics Domain Layer
====================

Contains:
- Entities: RunRecord, one immutable summary per triage invocation
"""

from src.metrics.domain.entities import RunRecord, retries_for

__all__ = [
    "RunRecord",
    "retries_for",
]
