"""
Triage Application Layer
=========================

Application layer for ticket triage module.

Contains:
- Services: Business logic orchestration
- DTOs: Data transfer objects for API serialization
- Ports: Collaborator protocols the service consumes
"""

from src.triage.application.dto import (
    CitationRef,
    SourceInfo,
    StepInfo,
    TraceInfo,
    TriageErrorResponse,
    TriageOutput,
    TriageRequest,
    TriageResponse,
)
from src.triage.application.ports import PipelineClient, Retriever
from src.triage.application.services import (
    TriageService,
    parse_triage_output,
    strip_code_fences,
)

__all__ = [
    # DTOs
    "CitationRef",
    "SourceInfo",
    "StepInfo",
    "TraceInfo",
    "TriageErrorResponse",
    "TriageOutput",
    "TriageRequest",
    "TriageResponse",
    # Ports
    "PipelineClient",
    "Retriever",
    # Services
    "TriageService",
    "parse_triage_output",
    "strip_code_fences",
]
