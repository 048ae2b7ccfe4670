"""
Metrics API routes.
Billing pipeline health for the admin dashboard.
"""

import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.user import User
from app.services.auth import require_admin
from app.services.metrics import get_billing_metrics

logger = logging.getLogger("app.routes.metrics")

router = APIRouter(prefix="/metrics", tags=["Metrics"])


@router.get("/billing")
def get_billing_dashboard(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Tenant status distribution plus unprocessed / dead-lettered event counts."""
    logger.info(f"Billing metrics requested by {admin.email}")
    return {"status": "success", "data": get_billing_metrics(db)}
