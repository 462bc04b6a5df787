"""
Metrics Controllers (API Routes)
================================

Read path for the live operations dashboard.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from src.metrics.application import (
    MetricsResponse,
    MetricsSummary,
    RunInfo,
    RunMetricsStore,
)

MAX_LIMIT = 200

router = APIRouter(tags=["Run Metrics"])


def get_metrics_store(request: Request) -> RunMetricsStore:
    """Process-wide run buffer created at startup."""
    return request.app.state.metrics_store


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    response_model_by_alias=True,
    summary="Summary and recent runs",
    description="""
    Summarise every run currently buffered and list the most recent ones.

    `limit` is clamped to `[1, 200]`.
    """
)
async def get_metrics(
    request: Request,
    limit: Optional[int] = Query(default=None, description="Number of runs to return"),
    store: RunMetricsStore = Depends(get_metrics_store)
):
    if limit is None:
        limit = request.app.state.settings.metrics_default_limit
    limit = max(1, min(MAX_LIMIT, limit))

    return MetricsResponse(
        summary=MetricsSummary(**store.summarize()),
        runs=[RunInfo.from_domain(run) for run in store.list(limit)]
    )


# Export router for inclusion in main app
metrics_router = router
