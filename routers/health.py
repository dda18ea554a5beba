"""
Health check endpoint.
"""
import time
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from core.config import settings

router = APIRouter(tags=["Health"])
logger = structlog.get_logger("health")


async def check_database(request: Request) -> dict:
    """Run a trivial query and time it."""
    start_time = time.time()
    try:
        async with request.app.state.session_factory() as db:
            await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database health check failed", error=str(e))
        return {"status": "unhealthy", "details": "Database connection failed"}

    return {
        "status": "healthy",
        "response_time_ms": round((time.time() - start_time) * 1000, 2),
    }


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe; reports 503 when the database is unreachable."""
    database = await check_database(request)
    healthy = database["status"] == "healthy"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {"database": database},
        },
    )
