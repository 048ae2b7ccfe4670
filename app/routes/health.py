"""
Health check and monitoring endpoints.

The detailed check also reports the billing pipeline backlog: events that were
acknowledged to FastSpring but not yet applied to a tenant.
"""
import time
import logging
from datetime import timedelta
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from app.db import get_db, check_database_health
from app.core.settings import settings
from app.models.subscription_event import SubscriptionEvent
from app.services.billing.fastspring_client import get_fastspring_client
from app.utils.datetime import utc_now, ensure_aware_utc

logger = logging.getLogger("app.health")
router = APIRouter()

# Pending events older than this mean neither the background task nor the sweep picked them up
STALE_BACKLOG_AFTER = timedelta(hours=1)


def _billing_backlog(db: Session) -> Dict[str, Any]:
    pending = db.query(
        func.count(SubscriptionEvent.id), func.min(SubscriptionEvent.created_at)
    ).filter(
        SubscriptionEvent.processed.is_(False),
        SubscriptionEvent.dead_lettered_at.is_(None),
    ).one()
    dead_lettered = db.query(func.count(SubscriptionEvent.id)).filter(
        SubscriptionEvent.processed.is_(False),
        SubscriptionEvent.dead_lettered_at.isnot(None),
    ).scalar() or 0

    pending_count, oldest = pending
    oldest = ensure_aware_utc(oldest)
    stale = oldest is not None and utc_now() - oldest > STALE_BACKLOG_AFTER

    return {
        "status": "degraded" if (stale or dead_lettered) else "healthy",
        "pending": pending_count or 0,
        "oldest_pending": oldest.isoformat() if oldest else None,
        "dead_lettered": dead_lettered,
    }


def _fastspring_status() -> Dict[str, Any]:
    api_configured = get_fastspring_client().configured
    return {
        "webhook": "configured" if settings.fastspring_private_key else "not_configured",
        "rest_api": "configured" if api_configured else "not_configured",
    }


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.environment,
        "version": "1.0.0"
    }


@router.get("/health/detailed")
def detailed_health_check(db: Session = Depends(get_db)):
    """Database, FastSpring configuration and billing backlog."""
    start_time = time.time()
    services: Dict[str, Any] = {}

    try:
        db.execute(text("SELECT 1"))
        services["database"] = {"status": "healthy"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        services["database"] = {"status": "unhealthy", "error": str(e)}

    if services["database"]["status"] == "healthy":
        try:
            services["billing_events"] = _billing_backlog(db)
        except Exception as e:
            logger.error(f"Billing backlog check failed: {e}")
            services["billing_events"] = {"status": "unhealthy", "error": str(e)}

    services["fastspring"] = _fastspring_status()
    if services["fastspring"]["webhook"] != "configured":
        # Every webhook would be answered with 500 until the key is set
        services["fastspring"]["status"] = "degraded"

    degraded = any(
        isinstance(check, dict) and check.get("status") in ("degraded", "unhealthy")
        for check in services.values()
    )
    return {
        "status": "degraded" if degraded else "healthy",
        "timestamp": time.time(),
        "environment": settings.environment,
        "services": services,
        "response_time_ms": round((time.time() - start_time) * 1000, 2),
    }


@router.get("/ready")
async def readiness_check():
    """Ready once the database answers and webhooks can be authenticated."""
    try:
        db_health = await check_database_health()
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return {"status": "not_ready", "reason": str(e)}

    if db_health["status"] != "healthy":
        return {"status": "not_ready", "reason": "database_unavailable"}
    if not settings.fastspring_private_key:
        return {"status": "not_ready", "reason": "fastspring_private_key_missing"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"status": "alive", "timestamp": time.time()}
