from pydantic import BaseModel, Field
from typing import Any, List, Optional


class PlanOut(BaseModel):
    id: str
    name: str
    price: float
    currency: str
    billing_interval: str
    max_users: Optional[int] = None
    is_active: bool


class PlanListResponse(BaseModel):
    status: str = "success"
    data: List[PlanOut]


class TenantBillingOut(BaseModel):
    id: str
    subscription_status: str
    subscription_plan: Optional[str] = None
    subscription_id: Optional[str] = None
    fastspring_customer_id: Optional[str] = None
    is_paid: bool
    trial_start: Optional[str] = None
    trial_ends: Optional[str] = None
    subscription_start_date: Optional[str] = None
    subscription_end_date: Optional[str] = None
    last_payment_date: Optional[str] = None
    next_billing_date: Optional[str] = None


class TenantBillingResponse(BaseModel):
    status: str = "success"
    data: TenantBillingOut


class UpdateSubscriptionRequest(BaseModel):
    """Body for PUT /subscriptions/{id} (forwarded to FastSpring as-is)."""
    status: Optional[str] = Field(None, description="Target FastSpring subscription status")
    reason: Optional[str] = Field(None, max_length=500)


class ProviderResponse(BaseModel):
    status: str = "success"
    data: Any = None
    message: Optional[str] = None


class SweepResultOut(BaseModel):
    examined: int
    processed: int
    unresolved: int
    failed: int
    dead_lettered: int
    event_ids: List[str] = []
