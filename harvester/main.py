"""
FastAPI application entry point for the pipeline operator API.

Configures middleware, lifespan events, and mounts all routers.
Run locally: uvicorn harvester.main:app --reload
Production:  gunicorn harvester.main:app -w 1 -k uvicorn.workers.UvicornWorker
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from harvester.api.v1.routes import health, pipeline, runs
from harvester.core.config import get_settings
from harvester.core.logging import get_logger, setup_logging
from harvester.core.security import limiter
from harvester.models.database import engine, init_db
from harvester.services.run_registry import RunRegistry

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown events."""
    setup_logging()
    logger.info(
        "app_starting",
        environment=settings.app_env,
        database=settings.database_url[:30] + "...",
    )
    await init_db()
    app.state.runs = RunRegistry()

    yield

    app.state.runs.clear()
    await engine.dispose()
    logger.info("app_shutting_down")


app = FastAPI(
    title="AI Milestone Harvester",
    description="Feed ingestion, cross-source deduplication and LLM analysis pipeline",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.app_env != "production" else None,
    redoc_url="/redoc" if settings.app_env != "production" else None,
)

# ── Middleware ──────────────────────────────────────────────
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Rate limiting ──────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── Routes ─────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(runs.router, prefix="/api/v1")
app.include_router(pipeline.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "service": "AI Milestone Harvester",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/healthz/",
    }
