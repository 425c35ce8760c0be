"""Tests for the webhooks blueprint and gateway event handling.

Covers:
- HMAC signature verification (missing, invalid, secret not configured)
- Malformed bodies
- Asaas PAYMENT_CONFIRMED / RECEIVED / OVERDUE handling
- Idempotent event processing (duplicate events skipped)
- Unknown event types (acknowledged but not processed)
- Transition table enforced (no going back to PENDING)
- PushinPay notifications keyed by external_reference
"""

import json

import pytest

from pixcheckout.extensions import db
from pixcheckout.models.order import Order
from pixcheckout.models.payment import PaymentRecord
from pixcheckout.models.webhook_log import WebhookLog

ASAAS_SECRET = "whsec_asaas_test"
PUSHINPAY_SECRET = "whsec_pushinpay_test"


def _asaas_event(event="PAYMENT_CONFIRMED", payment_id="pay_123", status="CONFIRMED",
                 event_id="evt_05b708f961d739ea7eba7e4db318f621"):
    payment = {"id": payment_id, "value": 100.0}
    if status:
        payment["status"] = status
    return {"id": event_id, "event": event, "payment": payment}


def _post(client, sign, path, body, secret, signature=None):
    raw = body if isinstance(body, (str, bytes)) else json.dumps(body)
    headers = {"X-Webhook-Signature": signature or sign(raw, secret)}
    return client.post(path, data=raw, content_type="application/json", headers=headers)


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client, charged_order):
        resp = client.post(
            "/webhooks/asaas",
            data=json.dumps(_asaas_event()),
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert b"Missing signature" in resp.data

    def test_invalid_signature_returns_400(self, client, sign, charged_order, app):
        resp = _post(
            client, sign, "/webhooks/asaas", _asaas_event(), ASAAS_SECRET,
            signature="sha256=" + "0" * 64,
        )
        assert resp.status_code == 400
        assert b"Invalid signature" in resp.data

        with app.app_context():
            db.session.expire_all()
            assert db.session.get(Order, charged_order).status == "PENDING"
            assert WebhookLog.query.count() == 0

    def test_signature_from_other_secret_rejected(self, client, sign, charged_order):
        resp = _post(client, sign, "/webhooks/asaas", _asaas_event(), PUSHINPAY_SECRET)
        assert resp.status_code == 400

    def test_secret_not_configured_returns_500(self, client, sign, app, monkeypatch):
        monkeypatch.setitem(app.config, "ASAAS_WEBHOOK_SECRET", None)
        resp = _post(client, sign, "/webhooks/asaas", _asaas_event(), ASAAS_SECRET)
        assert resp.status_code == 500

    def test_malformed_body_returns_400(self, client, sign):
        resp = _post(client, sign, "/webhooks/asaas", "{not json", ASAAS_SECRET)
        assert resp.status_code == 400
        assert b"Malformed" in resp.data

    def test_get_not_allowed(self, client):
        resp = client.get("/webhooks/asaas")
        assert resp.status_code == 405


class TestAsaasEvents:
    """Tests for Asaas event handling."""

    def test_payment_confirmed_updates_order(self, client, sign, charged_order, app):
        resp = _post(client, sign, "/webhooks/asaas", _asaas_event(), ASAAS_SECRET)

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "updated"

        with app.app_context():
            db.session.expire_all()
            order = db.session.get(Order, charged_order)
            assert order.status == "CONFIRMED"
            assert order.version == 2
            assert WebhookLog.query.count() == 1
            log = WebhookLog.query.one()
            assert log.source == "asaas"
            assert log.event_type == "PAYMENT_CONFIRMED"
            assert log.outcome == "updated"
            record = PaymentRecord.query.filter_by(gateway_payment_id="pay_123").one()
            assert record.status == "CONFIRMED"

    def test_status_taken_from_event_when_payment_has_none(
        self, client, sign, charged_order, app
    ):
        resp = _post(
            client, sign, "/webhooks/asaas",
            _asaas_event(event="PAYMENT_OVERDUE", status=None), ASAAS_SECRET,
        )
        assert resp.status_code == 200

        with app.app_context():
            db.session.expire_all()
            assert db.session.get(Order, charged_order).status == "OVERDUE"

    def test_received_in_cash_maps_to_received(self, client, sign, charged_order, app):
        _post(
            client, sign, "/webhooks/asaas",
            _asaas_event(event="PAYMENT_RECEIVED_IN_CASH", status="RECEIVED_IN_CASH"),
            ASAAS_SECRET,
        )
        with app.app_context():
            db.session.expire_all()
            assert db.session.get(Order, charged_order).status == "RECEIVED"

    def test_duplicate_event_is_skipped(self, client, sign, charged_order, app):
        first = _post(client, sign, "/webhooks/asaas", _asaas_event(), ASAAS_SECRET)
        second = _post(client, sign, "/webhooks/asaas", _asaas_event(), ASAAS_SECRET)

        assert first.get_json()["status"] == "updated"
        assert second.status_code == 200
        assert second.get_json()["status"] == "already_processed"

        with app.app_context():
            assert WebhookLog.query.count() == 1

    def test_cannot_go_back_to_pending(self, client, sign, charged_order, app):
        _post(client, sign, "/webhooks/asaas", _asaas_event(), ASAAS_SECRET)
        resp = _post(
            client, sign, "/webhooks/asaas",
            _asaas_event(event="PAYMENT_CREATED", status="PENDING", event_id="evt_late"),
            ASAAS_SECRET,
        )

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "rejected"
        with app.app_context():
            db.session.expire_all()
            assert db.session.get(Order, charged_order).status == "CONFIRMED"
            assert WebhookLog.query.count() == 2

    def test_unknown_payment_is_logged(self, client, sign, seed_data, app):
        resp = _post(
            client, sign, "/webhooks/asaas",
            _asaas_event(payment_id="pay_unknown"), ASAAS_SECRET,
        )

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "order_not_found"
        with app.app_context():
            assert WebhookLog.query.one().outcome == "order_not_found"

    def test_unknown_event_type_ignored(self, client, sign, charged_order, app):
        resp = _post(
            client, sign, "/webhooks/asaas",
            {"id": "evt_x", "event": "TRANSFER_DONE", "transfer": {"id": "t_1"}},
            ASAAS_SECRET,
        )

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ignored"
        with app.app_context():
            assert WebhookLog.query.count() == 0

    @pytest.mark.parametrize("body", [
        '[{"event": "PAYMENT_CONFIRMED"}]',
        '"PAYMENT_CONFIRMED"',
        "42",
        "null",
    ])
    def test_json_that_is_not_an_object_is_ignored(
        self, client, sign, charged_order, app, body
    ):
        resp = _post(client, sign, "/webhooks/asaas", body, ASAAS_SECRET)

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ignored"
        with app.app_context():
            db.session.expire_all()
            assert db.session.get(Order, charged_order).status == "PENDING"
            assert WebhookLog.query.count() == 0


class TestPushinPayEvents:
    """Tests for PushinPay notifications."""

    def _attach(self, app, order_id):
        with app.app_context():
            order = db.session.get(Order, order_id)
            order.gateway_payment_id = "9c29870c-9f69-4bb6-90d3-2dce9453bb45"
            order.gateway = "pushinpay"
            db.session.commit()

    def test_paid_confirms_order(self, client, sign, seed_data, app):
        order_id = seed_data["order_id"]
        self._attach(app, order_id)

        resp = _post(client, sign, "/webhooks/pushinpay", {
            "id": "9c29870c-9f69-4bb6-90d3-2dce9453bb45",
            "status": "paid",
            "value": 10000,
            "external_reference": order_id,
            "end_to_end_id": "E18236120202610171230s0123456789",
        }, PUSHINPAY_SECRET)

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "updated"
        with app.app_context():
            db.session.expire_all()
            order = db.session.get(Order, order_id)
            assert order.status == "CONFIRMED"
            assert order.end_to_end_id == "E18236120202610171230s0123456789"
            log = WebhookLog.query.one()
            assert log.source == "pushinpay"
            assert log.gateway_payment_id == "9c29870c-9f69-4bb6-90d3-2dce9453bb45"

    def test_resent_status_is_skipped(self, client, sign, seed_data):
        body = {"id": "abc", "status": "paid", "external_reference": seed_data["order_id"]}
        _post(client, sign, "/webhooks/pushinpay", body, PUSHINPAY_SECRET)
        resp = _post(client, sign, "/webhooks/pushinpay", body, PUSHINPAY_SECRET)

        assert resp.get_json()["status"] == "already_processed"

    def test_unknown_order(self, client, sign, seed_data):
        resp = _post(client, sign, "/webhooks/pushinpay", {
            "id": "abc", "status": "paid", "external_reference": "no-such-order",
        }, PUSHINPAY_SECRET)

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "order_not_found"

    def test_without_reference_ignored(self, client, sign, seed_data):
        resp = _post(
            client, sign, "/webhooks/pushinpay", {"id": "abc", "status": "paid"},
            PUSHINPAY_SECRET,
        )
        assert resp.get_json()["status"] == "ignored"

    def test_asaas_secret_does_not_verify_pushinpay(self, client, sign, seed_data):
        resp = _post(client, sign, "/webhooks/pushinpay", {
            "id": "abc", "status": "paid", "external_reference": seed_data["order_id"],
        }, ASAAS_SECRET)
        assert resp.status_code == 400
