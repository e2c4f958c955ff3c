"""Health check endpoints.

Provides:
- Basic liveness probe (/health/)
- Dependency check (/health/health)
- Detailed system status (/health/status)
"""

import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
import logging

from app.config import get_settings
from app.dependencies import get_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("/", response_model=dict[str, Any])
async def root() -> dict[str, Any]:
    """
    Get API root information and version.
    Used as a simple liveness probe.
    """
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
    }


@router.get("/health", response_model=dict[str, Any])
async def health_check(session_factory=Depends(get_session_factory)) -> dict[str, Any]:
    """
    Health check with dependency verification.
    Returns 503 if the database is unreachable.
    """
    checks: dict[str, str] = {}

    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        checks["database"] = "unavailable"

    if checks["database"] == "unavailable":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    return {"status": "healthy", **checks}


@router.get("/status", response_model=dict[str, Any])
async def system_status(request: Request) -> dict[str, Any]:
    """
    Detailed system status including uptime, versions, and component health.
    """
    settings = get_settings()
    uptime_seconds = time.monotonic() - _start_time
    hours, remainder = divmod(int(uptime_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)

    orchestrator = request.app.state.orchestrator
    model_client = orchestrator.config.model_client
    usage = model_client.usage.get_stats() if hasattr(model_client, "usage") else None
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "started_at": _start_datetime,
        "uptime": f"{hours}h {minutes}m {seconds}s",
        "uptime_seconds": round(uptime_seconds, 1),
        "python": {
            "version": sys.version,
            "platform": platform.platform(),
        },
        "components": {
            "api": "running",
            "database": "configured",
            "model": "configured" if getattr(model_client, "is_configured", True) else "not configured",
            "tools": len(orchestrator.config.tool_registry.tool_names),
            "background_tasks": orchestrator.background_tasks,
        },
        "model_usage": usage,
    }
