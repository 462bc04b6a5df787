"""
Metrics Interfaces Layer
========================

Contains:
- Controllers: FastAPI route handlers
"""

from src.metrics.interfaces.controllers import metrics_router

__all__ = ["metrics_router"]
