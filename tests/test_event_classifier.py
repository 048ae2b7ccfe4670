"""Tests for turning verified payloads into typed billing events."""
from datetime import datetime, UTC
from decimal import Decimal

import pytest

from app.services.billing.events import (
    OrderCompleted,
    SubscriptionCancelled,
    SubscriptionChargeCompleted,
    SubscriptionChargeFailed,
    UnrecognizedEvent,
    classify_event,
    resolve_event_type,
)
from app.services.billing.signature import SIGNATURE_FIELD


def test_missing_type_defaults_to_order_completed():
    event = classify_event({"reference": "ORD-100", "email": "buyer@acme.example"})
    assert isinstance(event, OrderCompleted)
    assert event.event_type == "order.completed"


def test_event_field_is_accepted_as_type():
    assert resolve_event_type({"event": "subscription.charge.failed"}) == "subscription.charge.failed"
    event = classify_event({"event": "subscription.charge.failed", "reference": "X-1"})
    assert isinstance(event, SubscriptionChargeFailed)


def test_reference_is_the_event_id():
    event = classify_event({"reference": "ORD-100", "email": "buyer@acme.example"})
    assert event.event_id == "ORD-100"
    assert event.order_id == "ORD-100"


def test_fields_are_normalized():
    event = classify_event({
        "reference": "ORD-100",
        "email": "  Buyer@Acme.example ",
        "company": "Acme",
        "name": "Jane Buyer",
        "product": "modulyn-one-plus",
        "subscription": "SUB-9",
        "quantity": "3",
        "test": "true",
        "total": "49.00",
        "currency": "eur",
    })
    assert event.customer_email == "Buyer@Acme.example"
    assert event.customer_company == "Acme"
    assert event.customer_name == "Jane Buyer"
    assert event.product_id == "modulyn-one-plus"
    assert event.subscription_id == "SUB-9"
    assert event.quantity == 3
    assert event.is_test is True
    assert event.amount == Decimal("49.00")
    assert event.currency == "EUR"


def test_missing_optional_fields_fall_back_to_defaults():
    event = classify_event({"reference": "ORD-1"})
    assert event.customer_email is None
    assert event.quantity is None
    assert event.is_test is False
    assert event.currency == "USD"
    assert event.extensions == {}


def test_unknown_keys_land_in_extensions():
    event = classify_event({"reference": "ORD-1", "coupon": "SPRING", "custom": {"a": 1}})
    assert event.extensions == {"coupon": "SPRING", "custom": {"a": 1}}


def test_signature_field_is_not_an_extension():
    event = classify_event({"reference": "ORD-1", SIGNATURE_FIELD: "abc"})
    assert SIGNATURE_FIELD not in event.extensions


def test_cancelled_event_parses_end_date_from_epoch_millis():
    event = classify_event({
        "type": "subscription.cancelled",
        "reference": "C-1",
        "endDate": "1767225600000",
    })
    assert isinstance(event, SubscriptionCancelled)
    assert event.end_date == datetime(2026, 1, 1, tzinfo=UTC)


def test_charge_completed_parses_next_charge_date_from_iso():
    event = classify_event({
        "type": "subscription.charge.completed",
        "reference": "CH-1",
        "nextChargeDate": "2026-02-01T00:00:00Z",
    })
    assert isinstance(event, SubscriptionChargeCompleted)
    assert event.next_charge_date == datetime(2026, 2, 1, tzinfo=UTC)


def test_unparseable_dates_become_none():
    event = classify_event({"type": "subscription.cancelled", "reference": "C-2", "endDate": "soon"})
    assert event.end_date is None


@pytest.mark.parametrize("value", [
    "99999999999999999999",
    99999999999999999999,
    1e300,
    float("inf"),
    float("nan"),
    "9" * 5000,
])
def test_out_of_range_epoch_dates_become_none(value):
    cancelled = classify_event({"type": "subscription.cancelled", "reference": "C-3", "endDate": value})
    charged = classify_event({"type": "subscription.charge.completed", "reference": "CC-3", "nextChargeDate": value})

    assert cancelled.end_date is None
    assert charged.next_charge_date is None


@pytest.mark.parametrize("field,value", [
    ("sequence", str(2**31)),
    ("sequence", "-99999999999"),
    ("quantity", "1" * 30),
    ("total", "1e20"),
    ("total", "10000000000"),
    ("total", "NaN"),
    ("total", "Infinity"),
])
def test_values_outside_ledger_columns_become_none(field, value):
    event = classify_event({"reference": "BIG-1", field: value})
    target = "amount" if field == "total" else field
    assert getattr(event, target) is None


def test_amounts_are_rounded_to_cents():
    assert classify_event({"reference": "R-1", "total": "49.999"}).amount == Decimal("50.00")
    assert classify_event({"reference": "R-2", "total": "9999999999.99"}).amount == Decimal("9999999999.99")
    assert classify_event({"reference": "R-3", "sequence": str(2**31 - 1)}).sequence == 2**31 - 1


def test_unknown_type_is_classified_as_unrecognized():
    event = classify_event({"type": "account.updated", "reference": "A-1"})
    assert isinstance(event, UnrecognizedEvent)
    assert event.event_type == "account.updated"


def test_event_id_derived_from_subscription_and_sequence():
    event = classify_event({
        "type": "subscription.charge.completed",
        "subscription": "SUB-9",
        "sequence": "4",
    })
    assert event.event_id == "SUB-9:subscription.charge.completed:4"
    assert event.sequence == 4


def test_derived_event_id_is_stable_across_redeliveries():
    payload = {"type": "subscription.activated", "email": "buyer@acme.example"}
    first = classify_event(dict(payload, **{SIGNATURE_FIELD: "aaa"}))
    second = classify_event(dict(payload, **{SIGNATURE_FIELD: "bbb"}))
    assert first.event_id == second.event_id
    assert first.event_id.startswith("anon-")


def test_events_are_immutable():
    event = classify_event({"reference": "ORD-1"})
    with pytest.raises(Exception):
        event.event_id = "other"
