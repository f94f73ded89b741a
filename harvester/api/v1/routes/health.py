"""Health check endpoint — used by the platform healthcheck and monitoring."""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from harvester.api.v1.deps import AppSettings, SessionFactory
from harvester.core.logging import get_logger
from harvester.schemas.schemas import HealthResponse

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/healthz/", response_model=HealthResponse)
async def health_check(settings: AppSettings, sessions: SessionFactory) -> HealthResponse:
    try:
        async with sessions() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("health_db_unreachable", error=str(e))
        return HealthResponse(status="degraded", environment=settings.app_env, database="unreachable")
    return HealthResponse(status="healthy", environment=settings.app_env, database="connected")
