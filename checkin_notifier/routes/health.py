"""
Health check endpoints with database pool monitoring.
"""

import time

from fastapi import APIRouter

from checkin_notifier.config import settings
from checkin_notifier.db.pool import db_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "checkin-notifier"}


@router.get("/readyz")
async def readyz():
    """Readiness check covering the database pool and delivery configuration."""
    checks = {}
    overall_ok = True

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

    config_issues = []
    if settings.EMAIL_PROVIDER == "sendgrid" and not settings.SENDGRID_API_KEY:
        config_issues.append("SENDGRID_API_KEY not set")
    if not settings.ADMIN_TOKEN:
        config_issues.append("ADMIN_TOKEN not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
        "email_provider": settings.EMAIL_PROVIDER,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
