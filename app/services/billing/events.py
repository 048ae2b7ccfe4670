"""Normalize verified FastSpring payloads into typed billing events.

Each known event name maps to its own pydantic model (a tagged union keyed on
``event_type``). Payload fields that are not part of any known shape are kept
in ``extensions`` rather than being spread onto the record.
"""
from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from app.models.subscription_event import SubscriptionEventType as EventTypes
from app.services.billing.signature import SIGNATURE_FIELD
from app.utils.datetime import parse_provider_datetime

logger = logging.getLogger(__name__)

DEFAULT_EVENT_TYPE = EventTypes.ORDER_COMPLETED

# Bounds of the ledger columns (Integer, Numeric(12, 2)); larger values are dropped to None
INT_COLUMN_MAX = 2**31 - 1
AMOUNT_LIMIT = Decimal(10) ** 10
CENT = Decimal("0.01")

# Payload keys that map onto typed fields; everything else lands in ``extensions``
_KNOWN_KEYS = {
    "name", "quantity", "reference", "email", "company", "referrer", "product",
    "sku", "tags", "attributes", "test", "subscription", "sequence", "periods",
    SIGNATURE_FIELD, "type", "event", "endDate", "nextChargeDate",
    "total", "amount", "currency",
}


class BillingEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    order_id: Optional[str] = None
    subscription_id: Optional[str] = None
    product_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_company: Optional[str] = None
    customer_name: Optional[str] = None
    quantity: Optional[int] = None
    referrer: Optional[str] = None
    sku: Optional[str] = None
    tags: Optional[str] = None
    attributes: Optional[str] = None
    is_test: bool = False
    sequence: Optional[int] = None
    periods: Optional[int] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)


class OrderCompleted(BillingEventBase):
    event_type: Literal["order.completed"] = EventTypes.ORDER_COMPLETED


class SubscriptionActivated(BillingEventBase):
    event_type: Literal["subscription.activated"] = EventTypes.SUBSCRIPTION_ACTIVATED


class SubscriptionDeactivated(BillingEventBase):
    event_type: Literal["subscription.deactivated"] = EventTypes.SUBSCRIPTION_DEACTIVATED


class SubscriptionUpdated(BillingEventBase):
    event_type: Literal["subscription.updated"] = EventTypes.SUBSCRIPTION_UPDATED


class SubscriptionCancelled(BillingEventBase):
    event_type: Literal["subscription.cancelled"] = EventTypes.SUBSCRIPTION_CANCELLED
    end_date: Optional[datetime] = None


class SubscriptionChargeCompleted(BillingEventBase):
    event_type: Literal["subscription.charge.completed"] = EventTypes.SUBSCRIPTION_CHARGE_COMPLETED
    next_charge_date: Optional[datetime] = None


class SubscriptionChargeFailed(BillingEventBase):
    event_type: Literal["subscription.charge.failed"] = EventTypes.SUBSCRIPTION_CHARGE_FAILED


class UnrecognizedEvent(BillingEventBase):
    """Authenticated payload whose event name has no handler. Logged, never applied."""
    event_type: str


KnownBillingEvent = Annotated[
    Union[
        OrderCompleted,
        SubscriptionActivated,
        SubscriptionDeactivated,
        SubscriptionUpdated,
        SubscriptionCancelled,
        SubscriptionChargeCompleted,
        SubscriptionChargeFailed,
    ],
    Field(discriminator="event_type"),
]

BillingEvent = Union[KnownBillingEvent, UnrecognizedEvent]

_known_adapter = TypeAdapter(KnownBillingEvent)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    text = str(value).strip()
    return text or None


def _int(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if abs(number) <= INT_COLUMN_MAX else None


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not number.is_finite() or abs(number) >= AMOUNT_LIMIT:
        return None
    number = number.quantize(CENT)
    return number if abs(number) < AMOUNT_LIMIT else None


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("true", "1", "yes")


def _derive_event_id(payload: Mapping[str, Any], event_type: str) -> str:
    """Stable id for payloads without an order reference (trial signups, some subscription events).

    Redelivery of the same payload must land on the same id.
    """
    subscription = _text(payload.get("subscription"))
    sequence = _text(payload.get("sequence"))
    if subscription and sequence:
        return f"{subscription}:{event_type}:{sequence}"
    body = {k: payload[k] for k in sorted(payload) if k != SIGNATURE_FIELD}
    digest = hashlib.sha256(json.dumps(body, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"anon-{digest[:32]}"


def resolve_event_type(payload: Mapping[str, Any]) -> str:
    raw = _text(payload.get("type")) or _text(payload.get("event"))
    return raw or DEFAULT_EVENT_TYPE


def classify_event(payload: Mapping[str, Any]) -> BillingEvent:
    """Build the typed event for a verified payload. Missing fields fall back to defaults."""
    event_type = resolve_event_type(payload)
    reference = _text(payload.get("reference"))
    email = _text(payload.get("email"))

    fields: Dict[str, Any] = {
        "event_type": event_type,
        "event_id": reference or _derive_event_id(payload, event_type),
        "order_id": reference,
        "subscription_id": _text(payload.get("subscription")),
        "product_id": _text(payload.get("product")),
        "customer_email": email,
        "customer_company": _text(payload.get("company")),
        "customer_name": _text(payload.get("name")),
        "quantity": _int(payload.get("quantity")),
        "referrer": _text(payload.get("referrer")),
        "sku": _text(payload.get("sku")),
        "tags": _text(payload.get("tags")),
        "attributes": _text(payload.get("attributes")),
        "is_test": _flag(payload.get("test")),
        "sequence": _int(payload.get("sequence")),
        "periods": _int(payload.get("periods")),
        "amount": _decimal(payload.get("total", payload.get("amount"))),
        "currency": (_text(payload.get("currency")) or "USD").upper()[:3],
        "extensions": {k: v for k, v in payload.items() if k not in _KNOWN_KEYS},
    }

    if event_type == EventTypes.SUBSCRIPTION_CANCELLED:
        fields["end_date"] = parse_provider_datetime(payload.get("endDate"))
    elif event_type == EventTypes.SUBSCRIPTION_CHARGE_COMPLETED:
        fields["next_charge_date"] = parse_provider_datetime(payload.get("nextChargeDate"))

    if event_type in EventTypes.ALL:
        return _known_adapter.validate_python(fields)

    logger.warning(f"Unrecognized FastSpring event type '{event_type}' for event {fields['event_id']}")
    return UnrecognizedEvent(**fields)
