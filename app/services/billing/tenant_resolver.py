"""Map a FastSpring billing email to a tenant, creating one on first purchase."""
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.db import dialect_insert
from app.models.subscription_event import SubscriptionEventType as EventTypes
from app.models.tenant import Tenant, SubscriptionStatus
from app.services.billing.events import BillingEvent
from app.services.billing.handlers import order_completed_values

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    tenant: Optional[Tenant]
    created: bool = False

    @property
    def is_noop(self) -> bool:
        return self.tenant is None


def generate_tenant_slug() -> str:
    """Random slug for provider-created tenants; uniqueness does not depend on the clock."""
    return f"customer-{secrets.token_hex(6)}"


def find_tenant_by_billing_email(db: Session, email: Optional[str]) -> Optional[Tenant]:
    if not email:
        return None
    return db.query(Tenant).filter(Tenant.billing_email == email).first()


def _create_paid_tenant(db: Session, event: BillingEvent) -> bool:
    """Insert-or-ignore on ``billing_email`` so concurrent first webhooks create one row."""
    values = order_completed_values(event)
    stmt = dialect_insert(db, Tenant).values(
        name=event.customer_company or event.customer_name or "New Customer",
        slug=generate_tenant_slug(),
        subscription_status=SubscriptionStatus.active,
        is_paid=True,
        **values,
    ).on_conflict_do_nothing(index_elements=["billing_email"])
    result = db.execute(stmt)
    db.flush()
    return result.rowcount > 0


def resolve_tenant(db: Session, event: BillingEvent) -> Resolution:
    """Find the tenant billed under ``event.customer_email``.

    Unknown emails create a tenant only for order.completed; any other event
    type resolves to a no-op, which is not an error.
    """
    tenant = find_tenant_by_billing_email(db, event.customer_email)
    if tenant is not None:
        return Resolution(tenant=tenant)

    if event.event_type != EventTypes.ORDER_COMPLETED or not event.customer_email:
        logger.info(
            f"No tenant for billing email {event.customer_email!r} on {event.event_type} "
            f"({event.event_id}); event stays unlinked"
        )
        return Resolution(tenant=None)

    created = _create_paid_tenant(db, event)
    tenant = find_tenant_by_billing_email(db, event.customer_email)
    if created:
        logger.info(f"Created tenant {tenant.id} for new customer {event.customer_email}")
    return Resolution(tenant=tenant, created=created)
