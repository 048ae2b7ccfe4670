"""
Subscription state transition handlers.

One handler per FastSpring event type. Each handler writes only the tenant row
it is given and never commits; the pipeline owns the transaction.

State table (applies regardless of the tenant's prior status):
- order.completed               -> active,    paid  (plan, subscription id, start, next billing +30d)
- subscription.activated        -> active,    paid  (start date)
- subscription.deactivated      -> inactive,  unpaid
- subscription.updated          -> active,    paid  (plan re-resolved)
- subscription.cancelled        -> cancelled, unpaid (end date from provider)
- subscription.charge.completed -> active,    paid  (last payment, next billing from provider)
- subscription.charge.failed    -> past_due,  unpaid
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional
import logging

from app.core.settings import settings
from app.models.subscription_event import SubscriptionEventType as EventTypes
from app.models.tenant import Tenant, SubscriptionStatus
from app.services.billing.events import (
    BillingEvent,
    SubscriptionCancelled,
    SubscriptionChargeCompleted,
)
from app.utils.datetime import utc_now, days_from_now

logger = logging.getLogger(__name__)

BASE_PLAN_ID = "modulyn-one-plus"

# FastSpring product path -> internal plan id
PRODUCT_PLAN_MAP: Dict[str, str] = {
    "modulyn-one-plus": "modulyn-one-plus",
    "modulyn-one-pro": "modulyn-one-pro",
}


def map_product_to_plan(product_id: Optional[str], fallback: Optional[str] = BASE_PLAN_ID) -> Optional[str]:
    """Resolve a FastSpring product id; unmapped ids return ``fallback``."""
    if not product_id:
        return fallback
    return PRODUCT_PLAN_MAP.get(product_id, fallback)


def apply_status(tenant: Tenant, status: SubscriptionStatus, **fields: Any) -> None:
    """Single write path for billing status. ``is_paid`` is derived, never passed in."""
    tenant.subscription_status = status
    tenant.is_paid = status == SubscriptionStatus.active
    for name, value in fields.items():
        setattr(tenant, name, value)


def order_completed_values(event: BillingEvent, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Field values an order.completed event writes. Shared with tenant creation."""
    now = now or utc_now()
    values: Dict[str, Any] = {
        "subscription_plan": map_product_to_plan(event.product_id),
        "subscription_id": event.subscription_id,
        "subscription_start_date": now,
        "next_billing_date": days_from_now(settings.billing_period_days, now),
    }
    if event.customer_email:
        values["fastspring_customer_id"] = event.customer_email
        values["billing_email"] = event.customer_email
    return values


def handle_order_completed(event: BillingEvent, tenant: Optional[Tenant]) -> bool:
    if tenant is None:
        return False
    apply_status(tenant, SubscriptionStatus.active, **order_completed_values(event))
    return True


def handle_subscription_activated(event: BillingEvent, tenant: Optional[Tenant]) -> bool:
    if tenant is None:
        return False
    apply_status(tenant, SubscriptionStatus.active, subscription_start_date=utc_now())
    return True


def handle_subscription_deactivated(event: BillingEvent, tenant: Optional[Tenant]) -> bool:
    if tenant is None:
        return False
    apply_status(tenant, SubscriptionStatus.inactive)
    return True


def handle_subscription_updated(event: BillingEvent, tenant: Optional[Tenant]) -> bool:
    if tenant is None:
        return False
    plan = map_product_to_plan(event.product_id, fallback=tenant.subscription_plan)
    apply_status(tenant, SubscriptionStatus.active, subscription_plan=plan)
    return True


def handle_subscription_cancelled(event: BillingEvent, tenant: Optional[Tenant]) -> bool:
    if tenant is None:
        return False
    end_date = event.end_date if isinstance(event, SubscriptionCancelled) else None
    apply_status(tenant, SubscriptionStatus.cancelled, subscription_end_date=end_date)
    return True


def handle_subscription_charge_completed(event: BillingEvent, tenant: Optional[Tenant]) -> bool:
    if tenant is None:
        return False
    next_charge = event.next_charge_date if isinstance(event, SubscriptionChargeCompleted) else None
    apply_status(
        tenant,
        SubscriptionStatus.active,
        last_payment_date=utc_now(),
        next_billing_date=next_charge,
    )
    return True


def handle_subscription_charge_failed(event: BillingEvent, tenant: Optional[Tenant]) -> bool:
    if tenant is None:
        return False
    apply_status(tenant, SubscriptionStatus.past_due)
    return True


EVENT_HANDLERS: Dict[str, Callable[[BillingEvent, Optional[Tenant]], bool]] = {
    EventTypes.ORDER_COMPLETED: handle_order_completed,
    EventTypes.SUBSCRIPTION_ACTIVATED: handle_subscription_activated,
    EventTypes.SUBSCRIPTION_DEACTIVATED: handle_subscription_deactivated,
    EventTypes.SUBSCRIPTION_UPDATED: handle_subscription_updated,
    EventTypes.SUBSCRIPTION_CANCELLED: handle_subscription_cancelled,
    EventTypes.SUBSCRIPTION_CHARGE_COMPLETED: handle_subscription_charge_completed,
    EventTypes.SUBSCRIPTION_CHARGE_FAILED: handle_subscription_charge_failed,
}


# FastSpring REST subscription states -> tenant status
PROVIDER_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.active,
    "trial": SubscriptionStatus.trialing,
    "trialing": SubscriptionStatus.trialing,
    "overdue": SubscriptionStatus.past_due,
    "past_due": SubscriptionStatus.past_due,
    "canceled": SubscriptionStatus.cancelled,
    "cancelled": SubscriptionStatus.cancelled,
    "deactivated": SubscriptionStatus.inactive,
}


def apply_provider_sync(tenant: Tenant, customer: Dict[str, Any]) -> None:
    """Overwrite billing status/plan from a FastSpring customer record.

    A customer without a subscription is treated as trialing, and unknown
    provider states as inactive.
    """
    subscription = customer.get("subscription") or {}
    raw_status = str(subscription.get("status") or "trial").lower()
    status = PROVIDER_STATUS_MAP.get(raw_status, SubscriptionStatus.inactive)
    plan = map_product_to_plan(subscription.get("product"), fallback=tenant.subscription_plan)
    apply_status(tenant, status, subscription_plan=plan, subscription_metadata=customer)


def apply_event(event: BillingEvent, tenant: Optional[Tenant]) -> bool:
    """Run the handler for ``event``. Returns True when a tenant row was changed."""
    handler = EVENT_HANDLERS.get(event.event_type)
    if handler is None:
        logger.info(f"No handler for event type {event.event_type} ({event.event_id}); skipping")
        return False
    return handler(event, tenant)
