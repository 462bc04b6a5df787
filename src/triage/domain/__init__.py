"""
Triage Domain Layer
===================

Domain layer for ticket triage module.

Contains:
- Entities: TriageStep, TriageResult
- Value Objects: TriagePromptBuilder

This layer is framework-agnostic and contains pure business logic.
"""

from src.triage.domain.entities import (
    TriageStep,
    TriageResult,
    TriagePromptBuilder,
)

__all__ = [
    "TriageStep",
    "TriageResult",
    "TriagePromptBuilder",
]
