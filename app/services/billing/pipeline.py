"""
Post-acknowledgement processing of logged FastSpring events.

The webhook route only verifies and logs; everything here runs afterwards
(FastAPI background task, reconciliation sweep, or the billing CLI). Failures
are recorded on the event row and in the audit log, never raised to callers.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from app.core.settings import settings
from app.exceptions import EventClaimLost, HandlerFailure, HandlerTimeout
from app.services import audit
from app.services.billing import event_log
from app.services.billing.events import classify_event
from app.services.billing.handlers import apply_event
from app.services.billing.tenant_resolver import resolve_tenant

logger = logging.getLogger("app.billing")


class ProcessOutcome:
    PROCESSED = "processed"
    UNRESOLVED = "unresolved"      # logged, no tenant to mutate
    SKIPPED = "skipped"            # already processed, claimed elsewhere, or no such event
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class SweepResult:
    examined: int = 0
    processed: int = 0
    unresolved: int = 0
    failed: int = 0
    dead_lettered: int = 0
    event_ids: List[str] = field(default_factory=list)

    def count(self, event_id: str, outcome: str) -> None:
        self.examined += 1
        self.event_ids.append(event_id)
        if outcome == ProcessOutcome.PROCESSED:
            self.processed += 1
        elif outcome == ProcessOutcome.UNRESOLVED:
            self.unresolved += 1
        elif outcome == ProcessOutcome.DEAD_LETTERED:
            self.dead_lettered += 1
        elif outcome == ProcessOutcome.FAILED:
            self.failed += 1

    def to_dict(self):
        return {
            "examined": self.examined,
            "processed": self.processed,
            "unresolved": self.unresolved,
            "failed": self.failed,
            "dead_lettered": self.dead_lettered,
            "event_ids": self.event_ids,
        }


def _check_deadline(event_id: str, deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise HandlerTimeout(event_id, "handler exceeded its time budget")


def _apply_logged_event(db: Session, event_id: str, claim_token: str, deadline: Optional[float]) -> str:
    row = event_log.get_event(db, event_id)
    event = classify_event(row.event_data or {})
    resolution = resolve_tenant(db, event)
    tenant = resolution.tenant

    previous_status = None
    if tenant is not None:
        if not resolution.created and tenant.subscription_status:
            previous_status = tenant.subscription_status.value
        apply_event(event, tenant)
        _check_deadline(event_id, deadline)

    if not event_log.mark_processed(db, event_id, tenant_id=tenant.id if tenant else None, claim_token=claim_token):
        raise EventClaimLost(event_id)
    _check_deadline(event_id, deadline)
    db.commit()

    if tenant is None:
        audit.log_unresolved_tenant(event_id, event.event_type, event.customer_email)
        return ProcessOutcome.UNRESOLVED

    if resolution.created:
        audit.log_tenant_created(tenant.id, event_id, tenant.billing_email, tenant.subscription_plan)
    audit.log_tenant_transition(
        tenant.id, event_id, event.event_type, previous_status,
        tenant.subscription_status.value, tenant.is_paid,
    )
    return ProcessOutcome.PROCESSED


def process_event(
    session_factory: sessionmaker,
    event_id: str,
    timeout_seconds: Optional[float] = None,
    max_attempts: Optional[int] = None,
    lease_seconds: Optional[float] = None,
) -> str:
    """Resolve the tenant and apply the handler for one logged event.

    The event is claimed first; if another worker holds a live claim, or the
    event is already processed or dead-lettered, nothing runs. The tenant
    mutation and the processed flag commit together, and only while the claim
    is still ours. On any error the transaction rolls back, the attempt is
    counted, and the event stays ``processed = false`` for the reconciliation sweep.
    """
    timeout_seconds = settings.billing_handler_timeout_seconds if timeout_seconds is None else timeout_seconds
    max_attempts = settings.billing_max_attempts if max_attempts is None else max_attempts
    lease_seconds = settings.billing_claim_lease_seconds if lease_seconds is None else lease_seconds
    deadline = time.monotonic() + timeout_seconds if timeout_seconds else None

    db = session_factory()
    try:
        claim_token = event_log.claim_event(db, event_id, lease_seconds)
        if claim_token is None:
            logger.info(f"Event {event_id} is unknown, done, dead-lettered or claimed by another worker; skipping")
            return ProcessOutcome.SKIPPED

        try:
            return _apply_logged_event(db, event_id, claim_token, deadline)
        except EventClaimLost:
            db.rollback()
            logger.warning(f"Event {event_id} claim was taken over before commit; changes discarded")
            return ProcessOutcome.SKIPPED
        except HandlerFailure as e:
            failure = e
        except Exception as e:
            failure = HandlerFailure(event_id, f"{type(e).__name__}: {e}")

        db.rollback()
        logger.error(f"Handler failure for event {event_id}: {failure.reason}")
        dead_lettered = event_log.record_failure(db, event_id, failure.reason, max_attempts, claim_token=claim_token)
        audit.log_handler_failure(event_id, failure.reason, timed_out=isinstance(failure, HandlerTimeout))
        if dead_lettered:
            audit.log_dead_letter(event_id, failure.reason)
            return ProcessOutcome.DEAD_LETTERED
        return ProcessOutcome.FAILED
    finally:
        db.close()


def _is_processed(session_factory: sessionmaker, event_id: str) -> bool:
    db = session_factory()
    try:
        row = event_log.get_event(db, event_id)
        return bool(row and row.processed)
    finally:
        db.close()


def _log_late_outcome(event_id: str, worker: "asyncio.Future[str]") -> None:
    if worker.cancelled():
        logger.error(f"Event {event_id} background worker was cancelled; left for reconciliation")
    elif worker.exception() is not None:
        logger.error(f"Event {event_id} background worker failed after its deadline: {worker.exception()}")
    else:
        logger.warning(f"Event {event_id} finished after its background deadline: {worker.result()}")


async def dispatch_event(session_factory: sessionmaker, event_id: str) -> None:
    """Background-task entry point: run ``process_event`` off the event loop, time-bounded.

    The worker enforces the same deadline before committing and audits its own
    failures, so a timeout here never leaves a half-applied tenant update behind.
    A thread cannot be cancelled, so on timeout the row is re-read and the
    worker's eventual outcome is logged once it finishes.
    """
    timeout = settings.billing_handler_timeout_seconds
    worker = asyncio.ensure_future(asyncio.to_thread(process_event, session_factory, event_id, timeout))
    try:
        outcome = await asyncio.wait_for(asyncio.shield(worker), timeout=timeout + 1 if timeout else None)
        logger.info(f"Event {event_id} background processing finished: {outcome}")
    except asyncio.TimeoutError:
        if await asyncio.to_thread(_is_processed, session_factory, event_id):
            logger.warning(f"Event {event_id} committed after its background deadline")
        else:
            logger.error(f"Event {event_id} still running past its background deadline")
        worker.add_done_callback(partial(_log_late_outcome, event_id))
    except Exception as e:
        # process_event records its own failures; this covers scheduler-level errors
        logger.error(f"Event {event_id} dispatch failed: {e}", exc_info=True)


def reconcile_unprocessed(session_factory: sessionmaker, limit: Optional[int] = 100) -> SweepResult:
    """Re-run every logged but unprocessed, not dead-lettered event."""
    db = session_factory()
    try:
        pending = [row.event_id for row in event_log.list_unprocessed(db, limit=limit)]
    finally:
        db.close()

    result = SweepResult()
    for event_id in pending:
        result.count(event_id, process_event(session_factory, event_id))
    logger.info(f"Billing reconciliation sweep: {result.to_dict()}")
    return result


def replay_dead_letter(session_factory: sessionmaker, event_ids: Optional[List[str]] = None) -> SweepResult:
    """Give dead-lettered events a fresh attempt budget and run them again."""
    db = session_factory()
    try:
        rows = event_log.list_dead_letter(db, event_ids)
        for row in rows:
            event_log.release_dead_letter(db, row)
        replay_ids = [row.event_id for row in rows]
    finally:
        db.close()

    result = SweepResult()
    for event_id in replay_ids:
        result.count(event_id, process_event(session_factory, event_id))
    return result
