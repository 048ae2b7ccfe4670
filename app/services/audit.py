"""Audit logging helper functions for billing lifecycle events.

Standard JSON-ish single-line logs so they are easy to index.
"""
from __future__ import annotations
import logging
from typing import Optional, Any

from app.utils.datetime import utc_now

_logger = logging.getLogger("app.audit")


def _emit(event: str, tenant_id: Optional[str] = None, level: int = logging.INFO, **data: Any):
    payload = {"ts": utc_now().isoformat(), "event": event}
    if tenant_id:
        payload["tenant_id"] = tenant_id
    payload.update(data)
    # Single-line stable ordering (rough) for readability
    parts = [f"{k}={repr(v)}" for k, v in payload.items()]
    _logger.log(level, "AUDIT " + " ".join(parts))

# Public convenience wrappers

def log_webhook_received(event_id: str, event_type: str, customer_email: str | None, duplicate: bool):
    _emit("billing.webhook.received", event_id=event_id, event_type=event_type,
          customer_email=customer_email, duplicate=duplicate)

def log_webhook_rejected(reason: str, remote_addr: str | None):
    _emit("billing.webhook.rejected", level=logging.WARNING, reason=reason, remote_addr=remote_addr)

def log_duplicate_skipped(event_id: str):
    _emit("billing.event.duplicate_skipped", event_id=event_id)

def log_tenant_created(tenant_id: str, event_id: str, billing_email: str | None, plan: str | None):
    _emit("billing.tenant.created", tenant_id=tenant_id, event_id=event_id,
          billing_email=billing_email, plan=plan)

def log_tenant_transition(tenant_id: str, event_id: str, event_type: str, from_status: str | None,
                          to_status: str, is_paid: bool):
    _emit(
        "billing.tenant.transition",
        tenant_id=tenant_id,
        event_id=event_id,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        is_paid=is_paid,
    )

def log_unresolved_tenant(event_id: str, event_type: str, customer_email: str | None):
    _emit("billing.tenant.unresolved", event_id=event_id, event_type=event_type, customer_email=customer_email)

def log_handler_failure(event_id: str, reason: str, timed_out: bool = False):
    _emit("billing.handler.failure", level=logging.ERROR, event_id=event_id, reason=reason, timed_out=timed_out)

def log_dead_letter(event_id: str, reason: str):
    _emit("billing.event.dead_lettered", level=logging.ERROR, event_id=event_id, reason=reason)

def log_trial_blocked(tenant_id: str, user_id: str | None, path: str):
    _emit("billing.trial_gate.blocked", tenant_id=tenant_id, user_id=user_id, path=path)

def log_tenant_synced(tenant_id: str, actor_id: str | None, status: str, plan: str | None):
    _emit("billing.tenant.synced", tenant_id=tenant_id, actor_id=actor_id, status=status, plan=plan)
