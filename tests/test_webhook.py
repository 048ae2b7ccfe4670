"""End-to-end tests for POST /api/fastspring/webhook."""
import logging
from datetime import timedelta

import pytest

from app.core.settings import settings
from app.models.subscription_event import SubscriptionEvent
from app.models.tenant import Tenant, SubscriptionStatus
from app.services.billing import event_log, pipeline
from app.services.billing.events import classify_event
from app.services.billing.pipeline import reconcile_unprocessed
from app.utils.datetime import utc_now

WEBHOOK_URL = "/api/fastspring/webhook"


def _reload_tenant(db_session, tenant_id):
    db_session.expire_all()
    return db_session.query(Tenant).filter(Tenant.id == tenant_id).one()


def _event_row(db_session, event_id):
    db_session.expire_all()
    return db_session.query(SubscriptionEvent).filter(SubscriptionEvent.event_id == event_id).one()


class TestWebhookAuthentication:

    def test_invalid_signature_is_rejected_without_writes(self, client, db_session, trial_tenant):
        payload = {"reference": "ORD1", "email": "owner@acme.example", "security_request_hash": "deadbeef"}
        response = client.post(WEBHOOK_URL, data=payload)

        assert response.status_code == 401
        assert db_session.query(SubscriptionEvent).count() == 0
        tenant = _reload_tenant(db_session, trial_tenant.id)
        assert tenant.subscription_status == SubscriptionStatus.trialing
        assert tenant.is_paid is False

    def test_unsigned_payload_for_unknown_email_creates_nothing(self, client, db_session):
        response = client.post(WEBHOOK_URL, data={"reference": "ORD9", "email": "new@x.example"})
        assert response.status_code == 401
        assert db_session.query(Tenant).count() == 0
        assert db_session.query(SubscriptionEvent).count() == 0

    def test_payload_signed_with_other_key_is_rejected(self, client, db_session, sign):
        response = client.post(WEBHOOK_URL, data=sign({"reference": "ORD1"}, key="wrong-key"))
        assert response.status_code == 401
        assert db_session.query(SubscriptionEvent).count() == 0

    def test_unreadable_body_is_rejected(self, client):
        response = client.post(
            WEBHOOK_URL,
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 401

    def test_missing_private_key_returns_plain_error(self, client, db_session, sign, monkeypatch):
        signed = sign({"reference": "ORD1", "email": "owner@acme.example"})
        monkeypatch.setattr(settings, "fastspring_private_key", None)

        response = client.post(WEBHOOK_URL, data=signed)

        assert response.status_code == 500
        assert response.text == "ERROR"
        assert db_session.query(SubscriptionEvent).count() == 0

    def test_rejection_is_audited(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="app.audit"):
            client.post(WEBHOOK_URL, data={"reference": "ORD1", "security_request_hash": "nope"})
        assert any("billing.webhook.rejected" in record.getMessage() for record in caplog.records)


class TestWebhookProcessing:

    def test_order_for_existing_tenant_activates_it(self, client, db_session, tenant_factory, sign):
        tenant = tenant_factory(billing_email="a@b.com")
        payload = sign({
            "email": "a@b.com",
            "reference": "ORD1",
            "product": "modulyn-one-plus",
            "subscription": "SUB1",
        })

        response = client.post(WEBHOOK_URL, data=payload)

        assert response.status_code == 200
        assert response.text == "SUCCESS"

        tenant = _reload_tenant(db_session, tenant.id)
        assert tenant.subscription_status == SubscriptionStatus.active
        assert tenant.subscription_plan == "modulyn-one-plus"
        assert tenant.subscription_id == "SUB1"
        assert tenant.is_paid is True

        row = _event_row(db_session, "ORD1")
        assert row.processed is True
        assert row.tenant_id == tenant.id

    def test_json_body_is_accepted(self, client, db_session, tenant_factory, sign):
        tenant = tenant_factory(billing_email="json@b.com")
        payload = sign({
            "type": "subscription.charge.failed",
            "email": "json@b.com",
            "reference": "CF-1",
            "test": True,
        })

        response = client.post(WEBHOOK_URL, json=payload)

        assert response.status_code == 200
        tenant = _reload_tenant(db_session, tenant.id)
        assert tenant.subscription_status == SubscriptionStatus.past_due
        assert tenant.is_paid is False

    def test_duplicate_delivery_is_idempotent(self, client, db_session, tenant_factory, sign):
        tenant = tenant_factory(billing_email="a@b.com")
        payload = sign({"email": "a@b.com", "reference": "ORD1", "product": "modulyn-one-plus", "subscription": "SUB1"})

        first = client.post(WEBHOOK_URL, data=payload)
        after_first = _reload_tenant(db_session, tenant.id).billing_dict()
        second = client.post(WEBHOOK_URL, data=payload)
        after_second = _reload_tenant(db_session, tenant.id).billing_dict()

        assert first.status_code == second.status_code == 200
        assert second.text == "SUCCESS"
        assert after_first == after_second
        assert db_session.query(SubscriptionEvent).count() == 1

    def test_unknown_email_order_creates_exactly_one_paid_tenant(self, client, db_session, sign):
        payload = sign({"email": "new@customer.example", "reference": "ORD-NEW", "company": "Newco"})

        client.post(WEBHOOK_URL, data=payload)
        client.post(WEBHOOK_URL, data=payload)

        tenants = db_session.query(Tenant).filter(Tenant.billing_email == "new@customer.example").all()
        assert len(tenants) == 1
        assert tenants[0].is_paid is True
        assert tenants[0].subscription_status == SubscriptionStatus.active
        assert _event_row(db_session, "ORD-NEW").tenant_id == tenants[0].id

    @pytest.mark.parametrize("event_type", [
        "subscription.activated",
        "subscription.deactivated",
        "subscription.updated",
        "subscription.cancelled",
        "subscription.charge.completed",
        "subscription.charge.failed",
    ])
    def test_unknown_email_other_events_log_but_create_nothing(self, client, db_session, sign, event_type):
        payload = sign({"type": event_type, "email": "ghost@x.example", "reference": f"R-{event_type}"})

        response = client.post(WEBHOOK_URL, data=payload)

        assert response.status_code == 200
        assert db_session.query(Tenant).count() == 0
        row = _event_row(db_session, f"R-{event_type}")
        assert row.tenant_id is None
        assert row.processed is True

    def test_cancelled_tenant_can_be_reactivated(self, client, db_session, tenant_factory, sign):
        tenant = tenant_factory(
            billing_email="back@b.com",
            subscription_status=SubscriptionStatus.cancelled,
            is_paid=False,
        )
        client.post(WEBHOOK_URL, data=sign({"type": "subscription.activated", "email": "back@b.com", "reference": "RA-1"}))

        tenant = _reload_tenant(db_session, tenant.id)
        assert tenant.subscription_status == SubscriptionStatus.active
        assert tenant.is_paid is True

    def test_handler_failure_still_acknowledges(self, client, db_session, tenant_factory, sign, monkeypatch):
        tenant = tenant_factory(billing_email="fail@b.com")

        def _boom(event, tenant):
            raise RuntimeError("database went away")

        monkeypatch.setattr("app.services.billing.pipeline.apply_event", _boom)
        response = client.post(WEBHOOK_URL, data=sign({"email": "fail@b.com", "reference": "ORD-F"}))

        assert response.status_code == 200
        assert response.text == "SUCCESS"
        row = _event_row(db_session, "ORD-F")
        assert row.processed is False
        assert row.attempts == 1
        assert "database went away" in row.last_error
        assert _reload_tenant(db_session, tenant.id).subscription_status == SubscriptionStatus.trialing

    def test_dead_lettered_redelivery_is_acknowledged_but_not_processed(
        self, client, db_session, tenant_factory, sign, monkeypatch
    ):
        tenant = tenant_factory(billing_email="dl@b.com")
        payload = sign({"email": "dl@b.com", "reference": "ORD-DL"})
        failing = {"on": True}
        real_apply = pipeline.apply_event

        def _maybe_fail(event, tenant):
            if failing["on"]:
                raise RuntimeError("boom")
            return real_apply(event, tenant)

        monkeypatch.setattr(settings, "billing_max_attempts", 1)
        monkeypatch.setattr(pipeline, "apply_event", _maybe_fail)
        client.post(WEBHOOK_URL, data=payload)
        assert _event_row(db_session, "ORD-DL").dead_lettered_at is not None

        failing["on"] = False
        response = client.post(WEBHOOK_URL, data=payload)

        assert response.status_code == 200
        row = _event_row(db_session, "ORD-DL")
        assert row.processed is False
        assert _reload_tenant(db_session, tenant.id).is_paid is False

    def test_event_logged_before_processing(self, db_session, sign):
        # The ledger row is the acknowledgement anchor; it exists even if nothing else runs
        payload = sign({"email": "x@b.com", "reference": "ORD-L"})
        logged = event_log.record_event(db_session, classify_event(payload), payload)
        assert logged.created is True
        assert _event_row(db_session, "ORD-L").processed is False


class TestWebhookHostileValues:

    def test_out_of_range_end_date_is_logged_and_acknowledged(self, client, db_session, tenant_factory, sign):
        tenant = tenant_factory(
            billing_email="c@b.com",
            subscription_status=SubscriptionStatus.active,
            is_paid=True,
        )
        payload = sign({
            "type": "subscription.cancelled",
            "email": "c@b.com",
            "reference": "CAN-1",
            "endDate": "99999999999999999999",
        })

        response = client.post(WEBHOOK_URL, data=payload)

        assert response.status_code == 200
        assert response.text == "SUCCESS"
        assert _event_row(db_session, "CAN-1").processed is True
        assert _reload_tenant(db_session, tenant.id).subscription_status == SubscriptionStatus.cancelled

    def test_oversized_numbers_and_strings_are_still_logged(self, client, db_session, sign):
        reference = "R" * 300
        payload = sign({
            "type": "x" * 80,
            "reference": reference,
            "sequence": str(2**40),
            "total": "1e20",
            "product": "p" * 150,
        })

        response = client.post(WEBHOOK_URL, data=payload)

        assert response.status_code == 200
        row = _event_row(db_session, reference[:255])
        assert row.sequence is None
        assert row.amount is None
        assert len(row.product_id) == 100
        assert len(row.event_type) == 50
        assert row.event_data["reference"] == reference


class TestWebhookRedeliveryWhileProcessing:

    def test_redelivery_is_not_applied_while_first_attempt_holds_claim(
        self, client, db_session, session_factory, tenant_factory, sign, monkeypatch
    ):
        tenant = tenant_factory(billing_email="a@b.com")
        applied = []
        real_apply = pipeline.apply_event

        def _record(event, tenant):
            applied.append(event.event_id)
            return real_apply(event, tenant)

        monkeypatch.setattr(pipeline, "apply_event", _record)

        # First delivery of ORD1 is logged and its worker is still mid-flight
        order = sign({"email": "a@b.com", "reference": "ORD1", "product": "modulyn-one-plus"})
        event_log.record_event(db_session, classify_event(order), order)
        assert event_log.claim_event(db_session, "ORD1", lease_seconds=settings.billing_claim_lease_seconds)

        assert client.post(WEBHOOK_URL, data=order).status_code == 200
        failed = sign({"type": "subscription.charge.failed", "email": "a@b.com", "reference": "CF1"})
        assert client.post(WEBHOOK_URL, data=failed).status_code == 200

        assert applied == ["CF1"]
        assert _reload_tenant(db_session, tenant.id).subscription_status == SubscriptionStatus.past_due
        assert _event_row(db_session, "ORD1").processed is False

        # The first worker died; once its claim lapses the sweep applies ORD1 exactly once
        row = _event_row(db_session, "ORD1")
        row.claimed_at = utc_now() - timedelta(hours=1)
        db_session.commit()
        reconcile_unprocessed(session_factory)

        assert applied == ["CF1", "ORD1"]
        assert _event_row(db_session, "ORD1").processed is True
