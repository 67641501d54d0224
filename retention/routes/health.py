"""
Health check endpoints with database pool and provider configuration checks.
"""

import time

from fastapi import APIRouter, Depends

from retention.config import settings
from retention.db.pool import db_health_check
from retention.features.interventions.api.router import get_provider_registry
from retention.features.interventions.domain import Channel
from retention.features.interventions.providers import ProviderRegistry

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "retention-engine"}


@router.get("/readyz")
async def readyz(providers: ProviderRegistry = Depends(get_provider_registry)):
    """
    Readiness check: database pool plus which channels can actually send.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 2) Channels; a missing provider degrades sends but not readiness
    available = set(providers.channels)
    checks["channels"] = {str(channel): channel in available for channel in Channel}
    checks["configuration"] = {
        "environment": settings.environment,
        "stub_providers": settings.PROVIDER_STUB_WHEN_UNCONFIGURED,
        "cron_enabled": bool(settings.CRON_SECRET),
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
