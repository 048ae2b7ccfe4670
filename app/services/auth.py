from firebase_admin import auth as firebase_auth
from fastapi import Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import logging

from app.db import get_db
from app.core.settings import settings
from app.exceptions import ForbiddenException, PaymentRequiredException, UnauthorizedException
from app.models.tenant import Tenant
from app.models.user import User, UserRole
from app.services import audit
from app.utils.datetime import utc_now, ensure_aware_utc

logger = logging.getLogger(__name__)
security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        decoded_token = firebase_auth.verify_id_token(token)
        user_id = decoded_token["uid"]
        email = decoded_token.get("email")
    except Exception as e:
        raise UnauthorizedException("Invalid or expired Firebase token") from e

    # First try to find user by Firebase UID
    user = db.query(User).filter(User.id == user_id).first()

    # Fall back to email for profiles created before the UID was known
    if not user and email:
        user = db.query(User).filter(User.email == email).first()
        if user:
            user.id = user_id
            db.commit()

    if not user:
        raise UnauthorizedException("Profile not found")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.admin:
        raise ForbiddenException("Admin privileges required")
    return user


def get_current_tenant(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Tenant:
    """Tenant the authenticated user belongs to."""
    tenant = None
    if user.tenant_id:
        tenant = db.query(Tenant).filter(Tenant.id == user.tenant_id).first()
    if tenant is None:
        raise UnauthorizedException("Tenant not found")
    return tenant


def trial_lapsed(tenant: Tenant, now: Optional[datetime] = None) -> bool:
    """True when the trial end has passed and the tenant has not paid."""
    trial_ends = ensure_aware_utc(tenant.trial_ends)
    if trial_ends is None:
        return False
    return (now or utc_now()) > trial_ends and not tenant.is_paid


def require_billing_access(
    request: Request,
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
) -> Tenant:
    """Trial gate for authenticated routes.

    Blocks with 402 once the trial has lapsed without payment; otherwise
    attaches the tenant to ``request.state`` and lets the route run. Read-only.
    """
    if trial_lapsed(tenant):
        audit.log_trial_blocked(tenant.id, getattr(user, "id", None), request.url.path)
        raise PaymentRequiredException(settings.trial_upgrade_message, settings.trial_upgrade_url)
    request.state.tenant = tenant
    request.state.user = user
    return tenant
