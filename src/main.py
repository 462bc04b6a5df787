"""
Triage Copilot - Main Application
=================================

Support-ticket triage service with resilient model orchestration.

Modules:
- Triage: Structured verdicts from a direct or delegated engine
- Metrics: Live view over the most recent runs

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Completion orchestrator, pipeline client, knowledge base
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from src.config import Settings, get_settings
from src.core import ConfigurationException, VectorStoreException

# Infrastructure
from src.infrastructure.llm import ILLMProvider, get_llm_provider
from src.infrastructure.pipeline import DelegatedPipelineClient
from src.infrastructure.vectorstore import KnowledgeBase

# Application
from src.metrics.application import RunMetricsStore
from src.triage.application import TriageService

# Module Routers
from src.metrics.interfaces import metrics_router
from src.triage.interfaces import triage_router

# Middleware and Logging
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler
)
from src.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    llm_provider: Optional[ILLMProvider] = None,
    pipeline_client: Optional[DelegatedPipelineClient] = None,
    knowledge_base: Optional[KnowledgeBase] = None,
    metrics_store: Optional[RunMetricsStore] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Collaborators passed in are used as-is; the rest are built from settings
    at startup. Passed-in clients are not closed on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        Application lifespan manager.

        STARTUP:
        1. Setup structured logging
        2. Create the run metrics buffer
        3. Initialize the completion orchestrator (direct engine)
        4. Initialize the pipeline client (delegated engine)
        5. Initialize the knowledge base

        A configuration failure disables the affected engine instead of
        aborting startup.

        SHUTDOWN:
        1. Close HTTP clients we own
        """
        # === STARTUP ===
        setup_logging(settings.log_level, settings.environment)
        logger.info("Starting Triage Copilot", extra={
            "version": settings.app_version,
            "environment": settings.environment
        })

        owned = []
        provider = llm_provider
        if provider is None:
            logger.info("Initializing completion orchestrator")
            try:
                provider = get_llm_provider(settings)
                owned.append(provider)
            except ConfigurationException as e:
                logger.warning(f"Direct engine not available: {e.message}")

        pipeline = pipeline_client
        if pipeline is None and settings.dspy_service_url:
            logger.info("Initializing delegated pipeline client")
            try:
                pipeline = DelegatedPipelineClient.from_settings(settings)
                owned.append(pipeline)
            except ConfigurationException as e:
                logger.warning(f"Delegated engine not available: {e.message}")
        elif pipeline is None:
            logger.info("Delegated engine not configured - set DSPY_SERVICE_URL to enable it")

        kb = knowledge_base if knowledge_base is not None else KnowledgeBase.from_settings(settings)
        store = metrics_store if metrics_store is not None else RunMetricsStore(settings.metrics_capacity)

        # Store services in app state for dependency injection
        app.state.settings = settings
        app.state.metrics_store = store
        app.state.llm_provider = provider
        app.state.pipeline_client = pipeline
        app.state.knowledge_base = kb
        app.state.triage_service = TriageService(
            llm_provider=provider,
            pipeline_client=pipeline,
            retriever=kb,
            metrics_store=store,
            settings=settings
        )

        logger.info("Triage Copilot started successfully")

        yield  # Application runs here

        # === SHUTDOWN ===
        logger.info("Shutting down Triage Copilot")
        for client in owned:
            await client.aclose()
        logger.info("Triage Copilot shutdown complete")

    app = FastAPI(
        title="Triage Copilot API",
        description="""
        ## Support Ticket Triage Copilot

        Structured triage verdicts (severity, owner team, diagnosis, next steps,
        customer reply) grounded in a knowledge base.

        ---

        ### Triage Module

        **Endpoints:**
        - `POST /triage` - Triage one ticket

        **Features:**
        - Direct engine: retry with exponential backoff, model failover, credential failover
        - Delegated engine: remote DSPy pipeline with a fixed retry
        - Full attempt trace returned on success **and** failure

        ---

        ### Metrics Module

        **Endpoints:**
        - `GET /metrics` - Summary and most recent runs

        **Features:**
        - Validation rate, retries, p50/p95 latency split by RAG and engine
        - Bounded in-memory buffer, lost on restart
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(triage_router)
    app.include_router(metrics_router)

    # === Health Check Endpoint ===

    @app.get("/health", tags=["Health"], responses={
        200: {
            "description": "Service is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "environment": "development",
                        "checks": {
                            "direct_engine": "available",
                            "delegated_engine": "not_configured",
                            "knowledge_base": "available (12 chunks)",
                            "runs_buffered": 3
                        }
                    }
                }
            }
        }
    })
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Returns engine availability, knowledge-base status and the number of
        buffered runs.
        """
        state = request.app.state
        checks = {
            "direct_engine": "available" if state.llm_provider else "not_configured",
            "delegated_engine": "available" if state.pipeline_client else "not_configured",
            "knowledge_base": "initializing",
            "runs_buffered": len(state.metrics_store)
        }

        try:
            count = await state.knowledge_base.get_document_count()
            checks["knowledge_base"] = f"available ({count} chunks)"
        except VectorStoreException as e:
            checks["knowledge_base"] = f"error: {e.message}"

        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "Triage Copilot",
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
            "modules": {
                "triage": {
                    "endpoints": ["POST /triage - Triage a ticket"]
                },
                "metrics": {
                    "endpoints": ["GET /metrics - Run summary and recent runs"]
                }
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
