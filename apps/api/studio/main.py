import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

from .core.config import settings
from .db.session import check_db_health, init_db
from .jobs.cleanup import get_job_status, register_image_store, start_background_jobs, stop_background_jobs
from .llm_backend import BackendError, GeminiBackend
from .llm_retry import RetryingBackend
from .memory.context_memory import ContextMemoryStore
from .memory.documents import DocumentStore, UnknownCollectionError
from .middleware.correlation import CorrelationIDMiddleware
from .middleware.error_handler import (
    backend_exception_handler,
    database_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    unknown_collection_handler,
    validation_exception_handler,
)
from .middleware.metrics import MetricsMiddleware, get_metrics
from .routers import agent, agents, documents, images, memory, templates
from .storage import RedisImageStore, build_image_store
from .workflows.orchestration import RunRegistry

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Sentient Studio API",
    description="Multi-agent brand asset generation: moodboard analysis, on-brand generation and compliance audit",
    version="0.4.0",
    default_response_class=ORJSONResponse,
)

# Shared services. Tests replace these attributes directly.
app.state.backend = RetryingBackend(GeminiBackend())
app.state.memory_store = ContextMemoryStore()
app.state.image_store = build_image_store()
app.state.document_store = DocumentStore()
app.state.run_registry = RunRegistry()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Run-ID", "X-Correlation-ID"],
)

# Correlation ID first, so it's available in all logs
app.add_middleware(CorrelationIDMiddleware)
app.middleware("http")(MetricsMiddleware())

app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(UnknownCollectionError, unknown_collection_handler)
app.add_exception_handler(BackendError, backend_exception_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(agent.router)
app.include_router(images.router)
app.include_router(agents.router)
app.include_router(templates.router)
app.include_router(memory.router)
for router in documents.routers:
    app.include_router(router)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    logger.info("Starting Sentient Studio API...")

    settings.validate_production_config()
    if not settings.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set: every backend call will fail until it is configured")

    await init_db()

    register_image_store(app.state.image_store)
    start_background_jobs()


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down Sentient Studio API...")
    stop_background_jobs()
    await app.state.image_store.close()


@app.get("/health")
async def health():
    """Health check endpoint."""
    db_ok, db_latency_ms, db_error = await check_db_health(app.state.document_store.session_factory)
    return {
        "status": "ok" if db_ok else "degraded",
        "env": settings.STUDIO_ENV,
        "strategy": settings.ORCHESTRATION_STRATEGY,
        "database": {"ok": db_ok, "latency_ms": round(db_latency_ms, 2), "error": db_error},
        "features": {
            "backend_configured": bool(settings.GEMINI_API_KEY),
            "redis_image_store": isinstance(app.state.image_store, RedisImageStore),
            "background_jobs": get_job_status()["running"],
        },
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics()


@app.get("/admin/jobs")
async def get_jobs():
    """Get status of background jobs."""
    return {"jobs": get_job_status()}
