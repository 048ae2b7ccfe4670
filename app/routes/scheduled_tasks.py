"""Scheduled tasks endpoint for cron jobs (Cloud Scheduler).

These endpoints are meant to be called by Cloud Scheduler or similar
cron services to trigger periodic billing maintenance.
"""

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from sqlalchemy.orm import sessionmaker
from typing import Optional
import logging

from app.core.settings import settings
from app.db import get_session_factory
from app.schemas.billing import SweepResultOut
from app.services.billing.pipeline import reconcile_unprocessed

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/scheduled", tags=["Scheduled"])


def verify_cron_secret(x_cron_secret: Optional[str] = Header(None)):
    """Verify the cron secret header for scheduled job authentication."""
    if x_cron_secret != settings.cron_secret:
        raise HTTPException(status_code=403, detail="Invalid cron secret")
    return True


@router.post("/reconcile-billing-events", response_model=SweepResultOut)
def trigger_billing_reconciliation(
    limit: int = Query(100, ge=1, le=1000),
    session_factory: sessionmaker = Depends(get_session_factory),
    _verified: bool = Depends(verify_cron_secret),
):
    """Re-run FastSpring events that were logged but never processed.

    Example Cloud Scheduler config:
    - Schedule: */15 * * * * (every 15 minutes)
    - Target: POST https://api.example.com/scheduled/reconcile-billing-events
    - Headers: X-Cron-Secret: <your-secret>
    """
    result = reconcile_unprocessed(session_factory, limit=limit)
    return result.to_dict()
