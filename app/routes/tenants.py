"""Tenant endpoints for authenticated CRM users. Every route sits behind the trial gate."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.tenant import Tenant
from app.models.user import User
from app.services.auth import require_billing_access

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/tenants",
    tags=["Tenants"],
    dependencies=[Depends(require_billing_access)],
)

UNLIMITED_USERS = 999999

# Seat limits per plan; unknown plans fall back to starter
PLAN_LIMITS = {
    "starter": {"max_users": 5, "name": "Starter", "price": 29},
    "professional": {"max_users": 20, "name": "Professional", "price": 79},
    "enterprise": {"max_users": UNLIMITED_USERS, "name": "Enterprise", "price": 199},
}


def _display_limit(max_users: int):
    return "Unlimited" if max_users == UNLIMITED_USERS else max_users


@router.get("/me")
def get_my_tenant(tenant: Tenant = Depends(require_billing_access), db: Session = Depends(get_db)):
    member_count = db.query(func.count(User.id)).filter(User.tenant_id == tenant.id).scalar() or 0
    return {
        "tenant": {
            "id": tenant.id,
            "name": tenant.name,
            "slug": tenant.slug,
            "member_count": member_count,
            **tenant.billing_dict(),
        }
    }


@router.get("/me/check-limits")
def check_user_limits(tenant: Tenant = Depends(require_billing_access), db: Session = Depends(get_db)):
    """Compare the tenant's member count against its plan's seat limit."""
    current_plan = tenant.subscription_plan if tenant.subscription_plan in PLAN_LIMITS else "starter"
    plan = PLAN_LIMITS[current_plan]
    current_users = db.query(func.count(User.id)).filter(User.tenant_id == tenant.id).scalar() or 0
    limit_reached = current_users >= plan["max_users"]

    recommended = []
    if limit_reached:
        recommended = [
            {
                "id": key,
                "name": data["name"],
                "price": data["price"],
                "max_users": _display_limit(data["max_users"]),
            }
            for key, data in PLAN_LIMITS.items()
            if data["max_users"] > current_users and key != current_plan
        ]

    return {
        "limit_reached": limit_reached,
        "current_users": current_users,
        "max_users": plan["max_users"],
        "current_plan": {
            "id": current_plan,
            "name": plan["name"],
            "price": plan["price"],
            "max_users": _display_limit(plan["max_users"]),
        },
        "recommended_plans": recommended,
        "tenant": {"id": tenant.id, "name": tenant.name},
    }
