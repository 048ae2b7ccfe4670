"""Durable ledger of received FastSpring events.

``record_event`` is the idempotency anchor: it upserts on ``event_id`` and
commits on its own, before any tenant mutation is attempted. Workers take a
time-limited claim on a row (``claim_event``) before applying it, so a
redelivery, a sweep and a background task never apply the same event twice.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, List, Mapping, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from app.db import dialect_insert
from app.models.subscription_event import SubscriptionEvent
from app.services.billing.events import BillingEvent
from app.utils.datetime import utc_now, ensure_aware_utc

logger = logging.getLogger(__name__)


@dataclass
class LoggedEvent:
    event_id: str
    created: bool       # False when the event_id was already in the ledger
    processed: bool
    dead_lettered: bool
    claimed: bool = False   # a worker holds a live processing claim


def _clip(value: Optional[str], column) -> Optional[str]:
    length = getattr(column.type, "length", None)
    if value is None or length is None or len(value) <= length:
        return value
    return value[:length]


def _claim_live(row: SubscriptionEvent, lease_seconds: float) -> bool:
    claimed_at = ensure_aware_utc(row.claimed_at)
    return claimed_at is not None and utc_now() - claimed_at < timedelta(seconds=lease_seconds)


def record_event(
    db: Session,
    event: BillingEvent,
    payload: Mapping[str, Any],
    lease_seconds: Optional[float] = None,
) -> LoggedEvent:
    """Insert the event unless its ``event_id`` is already logged, then commit.

    Strings longer than their column are truncated so an oversized field never
    keeps an authenticated event out of the ledger.
    """
    cols = SubscriptionEvent.__table__.c
    event_id = _clip(event.event_id, cols.event_id)
    stmt = dialect_insert(db, SubscriptionEvent).values(
        event_id=event_id,
        event_type=_clip(event.event_type, cols.event_type),
        fastspring_order_id=_clip(event.order_id, cols.fastspring_order_id),
        fastspring_subscription_id=_clip(event.subscription_id, cols.fastspring_subscription_id),
        customer_id=_clip(event.customer_email, cols.customer_id),
        product_id=_clip(event.product_id, cols.product_id),
        amount=event.amount,
        currency=_clip(event.currency, cols.currency),
        sequence=event.sequence,
        is_test=event.is_test,
        event_data=dict(payload),
        processed=False,
        attempts=0,
    ).on_conflict_do_nothing(index_elements=["event_id"])

    result = db.execute(stmt)
    db.commit()
    created = result.rowcount > 0

    row = get_event(db, event_id)
    if row is None:
        # Insert reported success but nothing is readable; treat as a storage failure
        raise RuntimeError(f"Subscription event {event_id} not found after insert")

    if not created:
        logger.info(f"Duplicate delivery of event {event_id} (processed={row.processed})")

    return LoggedEvent(
        event_id=row.event_id,
        created=created,
        processed=bool(row.processed),
        dead_lettered=row.dead_lettered_at is not None,
        claimed=lease_seconds is not None and _claim_live(row, lease_seconds),
    )


def get_event(db: Session, event_id: str) -> Optional[SubscriptionEvent]:
    return db.query(SubscriptionEvent).filter(SubscriptionEvent.event_id == event_id).first()


def claim_event(db: Session, event_id: str, lease_seconds: float) -> Optional[str]:
    """Take the processing claim on a pending event. Commits.

    A single conditional UPDATE, so of two concurrent workers only one sees a
    row count of 1. A claim older than ``lease_seconds`` is treated as
    abandoned and can be taken over. Returns the claim token, or None when the
    event is unknown, processed, dead-lettered or claimed by someone else.
    """
    now = utc_now()
    token = str(uuid.uuid4())
    result = db.execute(
        update(SubscriptionEvent)
        .where(
            SubscriptionEvent.event_id == event_id,
            SubscriptionEvent.processed.is_(False),
            SubscriptionEvent.dead_lettered_at.is_(None),
            or_(
                SubscriptionEvent.claimed_at.is_(None),
                SubscriptionEvent.claimed_at < now - timedelta(seconds=lease_seconds),
            ),
        )
        .values(claimed_at=now, claim_token=token)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return token if result.rowcount == 1 else None


def mark_processed(
    db: Session,
    event_id: str,
    tenant_id: Optional[str] = None,
    claim_token: Optional[str] = None,
) -> bool:
    """Flag the event processed and drop its claim.

    With ``claim_token`` the update only lands while that claim is still held
    and the row is unprocessed; False means the claim was lost. Without one it
    is safe to repeat (only ``processed_at`` moves). Flushes only; the caller
    commits together with the tenant mutation.
    """
    values = {
        "processed": True,
        "processed_at": utc_now(),
        "last_error": None,
        "claimed_at": None,
        "claim_token": None,
    }
    if tenant_id:
        values["tenant_id"] = func.coalesce(SubscriptionEvent.tenant_id, tenant_id)

    stmt = update(SubscriptionEvent).where(SubscriptionEvent.event_id == event_id)
    if claim_token is not None:
        stmt = stmt.where(
            SubscriptionEvent.claim_token == claim_token,
            SubscriptionEvent.processed.is_(False),
        )
    result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    if result.rowcount == 0:
        logger.warning(f"mark_processed: event {event_id} not updated (unknown or claim lost)")
        return False
    return True


def record_failure(
    db: Session,
    event_id: str,
    reason: str,
    max_attempts: int,
    claim_token: Optional[str] = None,
) -> bool:
    """Count a failed attempt; dead-letter once ``max_attempts`` is reached.

    Releases the claim when ``claim_token`` still holds it. Commits. Returns
    True when the event was dead-lettered by this call.
    """
    row = get_event(db, event_id)
    if row is None:
        return False
    if row.processed:
        # Another worker finished it after our claim lapsed
        return False
    row.attempts = (row.attempts or 0) + 1
    row.last_error = reason[:2000]
    if claim_token is not None and row.claim_token == claim_token:
        row.claimed_at = None
        row.claim_token = None
    dead_lettered = False
    if row.attempts >= max_attempts and row.dead_lettered_at is None:
        row.dead_lettered_at = utc_now()
        dead_lettered = True
    db.commit()
    return dead_lettered


def list_unprocessed(db: Session, limit: Optional[int] = None, include_dead_letter: bool = False) -> List[SubscriptionEvent]:
    query = db.query(SubscriptionEvent).filter(SubscriptionEvent.processed.is_(False))
    if not include_dead_letter:
        query = query.filter(SubscriptionEvent.dead_lettered_at.is_(None))
    query = query.order_by(SubscriptionEvent.created_at)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def list_dead_letter(db: Session, event_ids: Optional[List[str]] = None) -> List[SubscriptionEvent]:
    query = db.query(SubscriptionEvent).filter(
        SubscriptionEvent.dead_lettered_at.isnot(None),
        SubscriptionEvent.processed.is_(False),
    )
    if event_ids:
        query = query.filter(SubscriptionEvent.event_id.in_(event_ids))
    return query.order_by(SubscriptionEvent.created_at).all()


def release_dead_letter(db: Session, row: SubscriptionEvent) -> None:
    """Return a dead-lettered event to the retry pool with a fresh attempt budget."""
    row.dead_lettered_at = None
    row.attempts = 0
    row.claimed_at = None
    row.claim_token = None
    db.commit()
