"""Exception types mapped to HTTP responses in ``app.main``."""
from typing import Optional


class AppException(Exception):
    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail


class UnauthorizedException(AppException):
    status_code = 401


class ForbiddenException(AppException):
    status_code = 403


class NotFoundException(AppException):
    status_code = 404


class ValidationException(AppException):
    status_code = 400


class PaymentRequiredException(AppException):
    """Trial lapsed without payment; carries the upgrade path shown to the client."""
    status_code = 402

    def __init__(self, detail: str, upgrade_url: str):
        super().__init__(detail)
        self.upgrade_url = upgrade_url


# --- Billing webhook ---

class WebhookSignatureError(AppException):
    """security_request_hash did not match the recomputed digest."""
    status_code = 401


class BillingConfigurationError(AppException):
    """Server is missing configuration required to authenticate webhooks."""
    status_code = 500


class HandlerFailure(Exception):
    """Tenant mutation for a logged event failed. Never surfaced to the provider."""

    def __init__(self, event_id: str, reason: str):
        super().__init__(f"{event_id}: {reason}")
        self.event_id = event_id
        self.reason = reason


class HandlerTimeout(HandlerFailure):
    pass


class EventClaimLost(Exception):
    """Another worker took over the event before this one committed."""

    def __init__(self, event_id: str):
        super().__init__(event_id)
        self.event_id = event_id


class EventClaimLost(Exception):
    """Another worker took over the event before this one committed."""

    def __init__(self, event_id: str):
        super().__init__(event_id)
        self.event_id = event_id


class FastSpringAPIError(AppException):
    status_code = 502

    def __init__(self, detail: str, upstream_status: Optional[int] = None):
        super().__init__(detail)
        self.upstream_status = upstream_status
