"""
Billing metrics for the admin dashboard.
Counts tenants per subscription status and the state of the event ledger.
"""

import logging
from datetime import timedelta
from typing import Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import func

from app.models.tenant import Tenant, SubscriptionStatus
from app.models.subscription_event import SubscriptionEvent
from app.utils.datetime import utc_now

logger = logging.getLogger("app.metrics")


def get_tenant_metrics(db: Session) -> Dict[str, Any]:
    rows = (
        db.query(Tenant.subscription_status, func.count(Tenant.id))
        .group_by(Tenant.subscription_status)
        .all()
    )
    by_status = {status.value: 0 for status in SubscriptionStatus}
    for status, count in rows:
        if status is not None:
            by_status[status.value] = count

    paid = db.query(func.count(Tenant.id)).filter(Tenant.is_paid.is_(True)).scalar() or 0
    now = utc_now()
    lapsed_trials = db.query(func.count(Tenant.id)).filter(
        Tenant.is_paid.is_(False),
        Tenant.trial_ends.isnot(None),
        Tenant.trial_ends < now,
    ).scalar() or 0

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "paid": paid,
        "lapsed_trials": lapsed_trials,
    }


def get_event_metrics(db: Session, period_days: int = 7) -> Dict[str, Any]:
    since = utc_now() - timedelta(days=period_days)
    total = db.query(func.count(SubscriptionEvent.id)).scalar() or 0
    recent = db.query(func.count(SubscriptionEvent.id)).filter(SubscriptionEvent.created_at >= since).scalar() or 0
    unprocessed = db.query(func.count(SubscriptionEvent.id)).filter(
        SubscriptionEvent.processed.is_(False),
        SubscriptionEvent.dead_lettered_at.is_(None),
    ).scalar() or 0
    dead_lettered = db.query(func.count(SubscriptionEvent.id)).filter(
        SubscriptionEvent.processed.is_(False),
        SubscriptionEvent.dead_lettered_at.isnot(None),
    ).scalar() or 0
    unlinked = db.query(func.count(SubscriptionEvent.id)).filter(
        SubscriptionEvent.tenant_id.is_(None)
    ).scalar() or 0

    by_type = dict(
        db.query(SubscriptionEvent.event_type, func.count(SubscriptionEvent.id))
        .group_by(SubscriptionEvent.event_type)
        .all()
    )

    return {
        "total": total,
        f"last_{period_days}_days": recent,
        "unprocessed": unprocessed,
        "dead_lettered": dead_lettered,
        "unlinked": unlinked,
        "by_type": by_type,
    }


def get_billing_metrics(db: Session) -> Dict[str, Any]:
    return {
        "generated_at": utc_now().isoformat(),
        "tenants": get_tenant_metrics(db),
        "events": get_event_metrics(db),
    }
