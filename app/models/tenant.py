"""Tenant - a billed customer organization.

Billing fields are written only by the subscription handlers in
``app.services.billing.handlers``; the rest of the CRM reads them.
"""

from sqlalchemy import Column, String, Boolean, DateTime, JSON, Enum, Index
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
from app.db import Base
import enum
import uuid


class SubscriptionStatus(enum.Enum):
    trialing = "trialing"
    active = "active"
    past_due = "past_due"
    cancelled = "cancelled"
    inactive = "inactive"


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True)

    # Billing identity; FastSpring only tells us the customer email
    billing_email = Column(String, nullable=True)
    fastspring_customer_id = Column(String, nullable=True)

    subscription_status = Column(
        Enum(SubscriptionStatus, native_enum=False, length=20),
        nullable=False,
        default=SubscriptionStatus.trialing,
    )
    is_paid = Column(Boolean, nullable=False, default=False)
    subscription_plan = Column(String(100), nullable=True)
    subscription_id = Column(String(255), nullable=True)
    subscription_metadata = Column(JSON, nullable=True)

    trial_start = Column(DateTime(timezone=True), nullable=True)
    trial_ends = Column(DateTime(timezone=True), nullable=True)
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    next_billing_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    users = relationship("User", back_populates="tenant")
    subscription_events = relationship("SubscriptionEvent", back_populates="tenant")

    __table_args__ = (
        Index("uq_tenants_billing_email", "billing_email", unique=True),
    )

    def __repr__(self):
        return f"<Tenant {self.slug} status={self.subscription_status} paid={self.is_paid}>"

    def billing_dict(self):
        """Read-only billing projection served by GET /subscription/{tenant_id}."""
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "subscription_status": self.subscription_status.value if self.subscription_status else None,
            "subscription_plan": self.subscription_plan,
            "subscription_id": self.subscription_id,
            "fastspring_customer_id": self.fastspring_customer_id,
            "is_paid": self.is_paid,
            "trial_start": _iso(self.trial_start),
            "trial_ends": _iso(self.trial_ends),
            "subscription_start_date": _iso(self.subscription_start_date),
            "subscription_end_date": _iso(self.subscription_end_date),
            "last_payment_date": _iso(self.last_payment_date),
            "next_billing_date": _iso(self.next_billing_date),
        }
