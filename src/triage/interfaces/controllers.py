"""
Triage Controllers (API Routes)
================================

FastAPI routes for ticket triage endpoints.

Controllers delegate to application services.
"""

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from src.core import ConfigurationException, TriageFailedException, VectorStoreException
from src.triage.application import (
    TriageErrorResponse,
    TriageRequest,
    TriageResponse,
    TriageService,
)
from src.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Ticket Triage"])


# ========== Example payloads for Swagger ==========

TRIAGE_REQUEST_EXAMPLE = {
    "text": "Customers on EU cluster get 502 from checkout since the 14:00 deploy.",
    "useRag": True,
    "engine": "direct",
    "modelPrimary": "meta-llama/llama-3.2-3b-instruct:free",
    "modelFallback": "mistralai/mistral-7b-instruct:free"
}

TRIAGE_RESPONSE_EXAMPLE = {
    "parsed": {
        "severity": "SEV1",
        "owner_team": "payments-platform",
        "diagnosis": "Checkout gateway returns 502 after the 14:00 deploy; matches the bad-release runbook.",
        "next_steps": ["Roll back the 14:00 checkout release", "Watch 5xx rate on the EU gateway"],
        "customer_reply": "We are aware of checkout errors and are rolling back a recent change.",
        "citations": [{"id": "runbook.md#0", "quote": "Roll back first, investigate second."}]
    },
    "rawText": "{\"severity\": \"SEV1\", ...}",
    "validationError": None,
    "sources": [{"id": "runbook.md#0", "score": 0.4821, "text": "..."}],
    "usedRag": True,
    "engine": "direct",
    "primaryModel": "meta-llama/llama-3.2-3b-instruct:free",
    "fallbackModel": "mistralai/mistral-7b-instruct:free",
    "usedModel": "meta-llama/llama-3.2-3b-instruct:free",
    "trace": {
        "traceId": "2f0b6a8e-4c1d-4f7e-9d6a-0d7c1b2a3e4f",
        "totalMs": 2140,
        "steps": [{"name": "retrieval", "ms": 12}, {"name": "llm", "ms": 2120}],
        "engine": "direct",
        "engineTrace": {
            "attempts": [
                {"apiKeyIndex": 0, "model": "meta-llama/llama-3.2-3b-instruct:free",
                 "attempt": 0, "status": 429, "latencyMs": 310, "note": "backoff 800ms"},
                {"apiKeyIndex": 0, "model": "meta-llama/llama-3.2-3b-instruct:free",
                 "attempt": 1, "status": 200, "latencyMs": 990}
            ],
            "usage": {"prompt_tokens": 812, "completion_tokens": 164}
        }
    }
}


# ========== Dependencies ==========

def get_triage_service(request: Request) -> TriageService:
    """Get triage service from app state."""
    service = getattr(request.app.state, "triage_service", None)
    if service is None:
        raise HTTPException(
            status_code=503,
            detail="Triage service not initialized"
        )
    return service


# ========== Route Handlers ==========

@router.post(
    "/triage",
    response_model=TriageResponse,
    response_model_by_alias=True,
    summary="Triage a support ticket",
    description="""
    Produce a structured triage verdict for a ticket.

    **Engines:**
    - `direct`: model calls with retry, model failover and credential failover
    - `delegated`: remote DSPy pipeline service

    **Response:**
    - `parsed`: validated verdict, or the decoded JSON when validation failed
    - `rawText`: what the engine returned, always present
    - `trace`: timings plus every attempt made, for both engines

    When no completion could be produced the response is a 502 carrying
    `error` and the accumulated `trace`.
    """,
    responses={
        200: {
            "description": "Verdict produced (check `validationError`)",
            "content": {
                "application/json": {
                    "example": TRIAGE_RESPONSE_EXAMPLE
                }
            }
        },
        502: {
            "description": "Every attempt failed",
            "model": TriageErrorResponse
        },
        503: {
            "description": "Selected engine or knowledge base not available"
        }
    }
)
async def triage_ticket(
    request: Request,
    payload: TriageRequest = Body(..., examples=[TRIAGE_REQUEST_EXAMPLE]),
    service: TriageService = Depends(get_triage_service)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.info(
        "Triage requested",
        extra={
            "correlation_id": correlation_id,
            "engine": payload.engine,
            "use_rag": payload.use_rag
        }
    )

    try:
        result = await service.triage(
            text=payload.text,
            use_rag=payload.use_rag,
            engine=payload.engine,
            model_primary=payload.model_primary,
            model_fallback=payload.model_fallback,
            compile=payload.compile
        )
    except TriageFailedException as e:
        return JSONResponse(
            status_code=502,
            content=TriageErrorResponse(error=e.message, trace=e.trace).model_dump()
        )
    except (ConfigurationException, VectorStoreException) as e:
        get_context_logger(__name__, correlation_id).warning(f"Triage unavailable: {e.message}")
        raise HTTPException(status_code=503, detail=e.message)

    return TriageResponse.from_domain(result)


# Export router for inclusion in main app
triage_router = router
