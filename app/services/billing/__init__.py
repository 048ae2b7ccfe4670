"""FastSpring subscription lifecycle: verify, classify, log, resolve, apply."""
from app.services.billing.signature import verify_webhook_signature, compute_signature
from app.services.billing.events import classify_event, BillingEvent
from app.services.billing.event_log import record_event, claim_event, mark_processed, LoggedEvent
from app.services.billing.tenant_resolver import resolve_tenant, Resolution
from app.services.billing.handlers import apply_event, map_product_to_plan, PRODUCT_PLAN_MAP, BASE_PLAN_ID
from app.services.billing.pipeline import (
    process_event,
    dispatch_event,
    reconcile_unprocessed,
    replay_dead_letter,
    ProcessOutcome,
)

__all__ = [
    "verify_webhook_signature",
    "compute_signature",
    "classify_event",
    "BillingEvent",
    "record_event",
    "claim_event",
    "mark_processed",
    "LoggedEvent",
    "resolve_tenant",
    "Resolution",
    "apply_event",
    "map_product_to_plan",
    "PRODUCT_PLAN_MAP",
    "BASE_PLAN_ID",
    "process_event",
    "dispatch_event",
    "reconcile_unprocessed",
    "replay_dead_letter",
    "ProcessOutcome",
]
