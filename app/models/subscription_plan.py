"""Subscription plans offered through FastSpring (read by GET /plans)."""

from sqlalchemy import Column, String, Integer, Boolean, Numeric
from app.db import Base


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    # Plan id doubles as the FastSpring product path (e.g. "modulyn-one-plus")
    id = Column(String(100), primary_key=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    billing_interval = Column(String(20), nullable=False, default="month")
    max_users = Column(Integer, nullable=True)  # None = unlimited
    is_active = Column(Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "price": float(self.price) if self.price is not None else None,
            "currency": self.currency,
            "billing_interval": self.billing_interval,
            "max_users": self.max_users,
            "is_active": self.is_active,
        }
