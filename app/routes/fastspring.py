"""
FastSpring billing endpoints.

Handles:
- Webhook receiver (verify -> classify -> log -> ack, processing in background)
- Plan catalogue and tenant billing projection
- Admin passthrough to the FastSpring REST API and tenant sync
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session, sessionmaker

from app.core.settings import settings
from app.db import get_db, get_session_factory
from app.exceptions import (
    BillingConfigurationError, NotFoundException, ValidationException, WebhookSignatureError,
)
from app.models.subscription_plan import SubscriptionPlan
from app.models.tenant import Tenant
from app.models.user import User
from app.schemas.billing import (
    PlanListResponse,
    ProviderResponse,
    TenantBillingResponse,
    UpdateSubscriptionRequest,
)
from app.services import audit
from app.services.auth import require_admin
from app.services.billing import event_log
from app.services.billing.events import classify_event
from app.services.billing.fastspring_client import FastSpringClient, get_fastspring_client
from app.services.billing.handlers import apply_provider_sync
from app.services.billing.pipeline import dispatch_event
from app.services.billing.signature import verify_webhook_signature

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/fastspring", tags=["FastSpring"])


async def _read_webhook_params(request: Request) -> Dict[str, Any]:
    """FastSpring posts form-encoded params; JSON bodies are accepted for replays/tests."""
    content_type = request.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            body = await request.json()
            return body if isinstance(body, dict) else {}
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Unreadable webhook body: {e}")
        return {}


# =============================================================================
# Webhook
# =============================================================================

@router.post("/webhook", response_class=PlainTextResponse)
async def fastspring_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """
    FastSpring webhook receiver.

    The acknowledgement depends only on the signature check and the event
    being logged. Tenant mutation runs after the response; its failures are
    recorded on the event row, never returned to FastSpring.
    """
    private_key = settings.fastspring_private_key
    if not private_key:
        raise BillingConfigurationError("FastSpring private key not configured")

    params = await _read_webhook_params(request)
    if not verify_webhook_signature(params, private_key):
        audit.log_webhook_rejected("invalid_signature", request.client.host if request.client else None)
        raise WebhookSignatureError("Invalid webhook signature")

    event = classify_event(params)
    logged = event_log.record_event(db, event, params, lease_seconds=settings.billing_claim_lease_seconds)
    audit.log_webhook_received(logged.event_id, event.event_type, event.customer_email, duplicate=not logged.created)

    if logged.processed:
        audit.log_duplicate_skipped(logged.event_id)
    elif logged.dead_lettered:
        logger.warning(f"Event {logged.event_id} is dead-lettered; redelivery not processed")
    elif logged.claimed:
        logger.info(f"Event {logged.event_id} is already being processed; redelivery not dispatched")
    else:
        background_tasks.add_task(dispatch_event, session_factory, logged.event_id)

    return PlainTextResponse("SUCCESS", status_code=200)


# =============================================================================
# Read-only projections
# =============================================================================

@router.get("/plans", response_model=PlanListResponse)
def list_plans(db: Session = Depends(get_db)):
    """Active subscription plans, cheapest first."""
    plans = (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.price.asc())
        .all()
    )
    return {"status": "success", "data": [plan.to_dict() for plan in plans]}


@router.get("/subscription/{tenant_id}", response_model=TenantBillingResponse)
def get_tenant_subscription(tenant_id: str, db: Session = Depends(get_db)):
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise NotFoundException("Tenant not found")
    return {"status": "success", "data": tenant.billing_dict()}


# =============================================================================
# FastSpring REST passthrough (admin)
# =============================================================================

@router.get("/customers", response_model=ProviderResponse)
def list_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_admin),
    client: FastSpringClient = Depends(get_fastspring_client),
):
    return {"status": "success", "data": client.list_customers(page=page, limit=limit)}


@router.get("/customers/{customer_id}", response_model=ProviderResponse)
def get_customer(
    customer_id: str,
    admin: User = Depends(require_admin),
    client: FastSpringClient = Depends(get_fastspring_client),
):
    return {"status": "success", "data": client.get_customer(customer_id)}


@router.get("/subscriptions", response_model=ProviderResponse)
def list_subscriptions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    subscription_status: Optional[str] = Query(None, alias="status"),
    admin: User = Depends(require_admin),
    client: FastSpringClient = Depends(get_fastspring_client),
):
    data = client.list_subscriptions(page=page, limit=limit, status=subscription_status)
    return {"status": "success", "data": data}


@router.get("/subscriptions/{subscription_id}", response_model=ProviderResponse)
def get_subscription(
    subscription_id: str,
    admin: User = Depends(require_admin),
    client: FastSpringClient = Depends(get_fastspring_client),
):
    return {"status": "success", "data": client.get_subscription(subscription_id)}


@router.put("/subscriptions/{subscription_id}", response_model=ProviderResponse)
def update_subscription(
    subscription_id: str,
    body: UpdateSubscriptionRequest,
    admin: User = Depends(require_admin),
    client: FastSpringClient = Depends(get_fastspring_client),
):
    data = client.update_subscription(subscription_id, status=body.status, reason=body.reason)
    logger.info(f"Admin {admin.email} updated FastSpring subscription {subscription_id} -> {body.status}")
    return {"status": "success", "data": data}


@router.post("/sync-tenant/{tenant_id}", response_model=ProviderResponse)
def sync_tenant(
    tenant_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    client: FastSpringClient = Depends(get_fastspring_client),
):
    """Pull the tenant's FastSpring customer record and overwrite local billing state."""
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise NotFoundException("Tenant not found")
    if not tenant.fastspring_customer_id:
        raise ValidationException("Tenant has no FastSpring customer ID")

    customer = client.get_customer(tenant.fastspring_customer_id)
    apply_provider_sync(tenant, customer)
    db.commit()
    audit.log_tenant_synced(tenant.id, admin.id, tenant.subscription_status.value, tenant.subscription_plan)

    return {"status": "success", "message": "Tenant synced with FastSpring data", "data": customer}
