"""
Health check endpoints.
"""

from typing import Any, Dict

from fastapi import APIRouter

from config.constants import TABLES
from config.database import get_supabase_client_optional
from config.settings import get_settings

router = APIRouter(tags=["Health"])

SERVICE_NAME = "matching-api"


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/health/detailed")
async def detailed_health_check() -> Dict[str, Any]:
    """
    Health with dependency status.

    Supabase is probed with a one-row read of the profiles table.
    """
    settings = get_settings()

    supabase_status = "unknown"
    supabase_error = None
    try:
        client = get_supabase_client_optional()
        if client:
            client.table(TABLES.PROFILES).select("user_id").limit(1).execute()
            supabase_status = "connected"
        else:
            supabase_status = "not_configured"
    except Exception as e:
        supabase_status = "error"
        supabase_error = str(e)

    return {
        "status": "healthy" if supabase_status == "connected" else "degraded",
        "service": SERVICE_NAME,
        "environment": settings.environment,
        "checks": {
            "config": "ok",
            "supabase": {"status": supabase_status, "error": supabase_error},
            "redis_cache": "enabled" if settings.redis_enabled else "disabled",
        },
    }


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Readiness probe: ready once a database client can be built."""
    if get_supabase_client_optional() is None:
        return {"status": "not_ready", "reason": "database_not_configured"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}
