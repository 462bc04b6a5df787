"""
Metrics Application Layer
=========================

Contains:
- Services: the bounded run buffer and its summary
- DTOs: API response models
"""

from src.metrics.application.dto import (
    LatencySummary,
    MetricsResponse,
    MetricsSummary,
    RunInfo,
)
from src.metrics.application.services import (
    RunMetricsStore,
    percentile,
)

__all__ = [
    # DTOs
    "LatencySummary",
    "MetricsResponse",
    "MetricsSummary",
    "RunInfo",
    # Services
    "RunMetricsStore",
    "percentile",
]
