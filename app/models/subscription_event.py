"""Subscription Events - idempotency ledger for FastSpring webhooks.

Every authenticated webhook is recorded here before any tenant is touched.
Rows are never deleted; ``processed`` flips once the matching handler has
committed, and ``dead_lettered_at`` marks events that exhausted their retries.
"""

from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON, Numeric, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
from app.db import Base
import uuid


class SubscriptionEventType:
    """FastSpring event names handled by the subscription lifecycle."""
    ORDER_COMPLETED = "order.completed"
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_DEACTIVATED = "subscription.deactivated"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_CHARGE_COMPLETED = "subscription.charge.completed"
    SUBSCRIPTION_CHARGE_FAILED = "subscription.charge.failed"

    ALL = (
        ORDER_COMPLETED,
        SUBSCRIPTION_ACTIVATED,
        SUBSCRIPTION_DEACTIVATED,
        SUBSCRIPTION_UPDATED,
        SUBSCRIPTION_CANCELLED,
        SUBSCRIPTION_CHARGE_COMPLETED,
        SUBSCRIPTION_CHARGE_FAILED,
    )


class SubscriptionEvent(Base):
    __tablename__ = "subscription_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # External order/reference id; the idempotency key
    event_id = Column(String(255), nullable=False, unique=True, index=True)

    # Null until the resolver links a tenant (unknown email on a non-creating event stays null)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=True, index=True)
    tenant = relationship("Tenant", back_populates="subscription_events")

    event_type = Column(String(50), nullable=False, index=True)
    fastspring_order_id = Column(String(255), nullable=True)
    fastspring_subscription_id = Column(String(255), nullable=True, index=True)
    customer_id = Column(String(255), nullable=True)  # billing email
    product_id = Column(String(100), nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    sequence = Column(Integer, nullable=True)
    is_test = Column(Boolean, nullable=False, default=False)

    # Raw verified payload; the reconciliation sweep re-runs from this
    event_data = Column(JSON, nullable=False)

    processed = Column(Boolean, nullable=False, default=False, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    dead_lettered_at = Column(DateTime(timezone=True), nullable=True)

    # Processing claim; a worker applies the event only while its token is on the row
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    claim_token = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)

    def __repr__(self):
        return f"<SubscriptionEvent {self.event_type} {self.event_id} processed={self.processed}>"

    def to_dict(self):
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "event_id": self.event_id,
            "tenant_id": self.tenant_id,
            "event_type": self.event_type,
            "product_id": self.product_id,
            "customer_id": self.customer_id,
            "processed": self.processed,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "dead_lettered_at": self.dead_lettered_at.isoformat() if self.dead_lettered_at else None,
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
