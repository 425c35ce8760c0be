"""Tests for the auth and admin blueprints.

Covers:
- Login / logout and the admin guard (401 anonymous, 403 non-admin)
- Key store CRUD, activation and live test
- Temporary notification email settings
- Diagnostics bundle
- Webhook simulator
"""

from unittest.mock import patch

from werkzeug.security import generate_password_hash

from pixcheckout.extensions import db
from pixcheckout.models.audit import AuditEvent
from pixcheckout.models.credential import GatewayCredential
from pixcheckout.models.order import Order
from pixcheckout.models.user import User
from pixcheckout.models.webhook_log import WebhookLog

NEW_KEY = "$aact_" + "N" * 60


def login_admin(client):
    """Log in as the seeded admin."""
    return client.post("/auth/login", json={
        "email": "admin@pixcheckout.local",
        "password": "admin123",
    })


def login_operator(client, app):
    """Create and log in a user without the admin flag."""
    with app.app_context():
        db.session.add(User(
            email="operator@pixcheckout.local",
            password_hash=generate_password_hash("operator123"),
            full_name="Operator",
            is_admin=False,
        ))
        db.session.commit()
    return client.post("/auth/login", json={
        "email": "operator@pixcheckout.local",
        "password": "operator123",
    })


class TestAuth:

    def test_login_success(self, client, seed_data, app):
        resp = login_admin(client)
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["user"]["is_admin"] is True
        assert data["csrf_token"]
        with app.app_context():
            assert AuditEvent.query.filter_by(action="user.logged_in").count() == 1

    def test_wrong_password(self, client, seed_data):
        resp = client.post("/auth/login", json={
            "email": "admin@pixcheckout.local", "password": "nope",
        })
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "invalid_credentials"

    def test_missing_fields(self, client, seed_data):
        resp = client.post("/auth/login", json={"email": "admin@pixcheckout.local"})
        assert resp.status_code == 400

    def test_inactive_user(self, client, seed_data, app):
        with app.app_context():
            db.session.get(User, seed_data["admin_id"]).is_active = False
            db.session.commit()
        resp = login_admin(client)
        assert resp.status_code == 403

    def test_logout(self, client, seed_data):
        login_admin(client)
        resp = client.post("/auth/logout")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "logged_out"


class TestAdminGuard:

    def test_anonymous_gets_401(self, client, seed_data):
        resp = client.get("/admin/keys")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "unauthorized"

    def test_non_admin_gets_403(self, client, app, seed_data):
        login_operator(client, app)
        resp = client.get("/admin/keys")
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "forbidden"


class TestKeyStore:

    def test_list_masks_secrets(self, client, seed_data):
        login_admin(client)
        resp = client.get("/admin/keys")

        assert resp.status_code == 200
        keys = resp.get_json()["keys"]
        assert len(keys) == 2
        body = resp.get_data(as_text=True)
        for key in keys:
            assert key["secret"].startswith("$aact_")
            assert "..." in key["secret"]
        assert "OiRhYWNoXzRkNjE0" not in body

    def test_list_by_environment(self, client, seed_data):
        login_admin(client)
        resp = client.get("/admin/keys?environment=production")
        keys = resp.get_json()["keys"]
        assert [k["environment"] for k in keys] == ["production"]

    def test_create_key(self, client, seed_data, app):
        login_admin(client)
        resp = client.post("/admin/keys", json={
            "label": "backup",
            "secret": f"  {NEW_KEY}\n",
            "environment": "sandbox",
            "priority": 2,
        })

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["validation"] == {"valid": True, "reason": ""}
        assert data["key"]["priority"] == 2
        with app.app_context():
            stored = db.session.get(GatewayCredential, data["key"]["id"])
            assert stored.secret == NEW_KEY

    def test_create_key_bad_environment(self, client, seed_data):
        login_admin(client)
        resp = client.post("/admin/keys", json={
            "label": "x", "secret": NEW_KEY, "environment": "staging",
        })
        assert resp.status_code == 400
        assert "environment" in resp.get_json()["message"]

    def test_update_key(self, client, seed_data):
        login_admin(client)
        resp = client.patch(
            f"/admin/keys/{seed_data['sandbox_key_id']}",
            json={"label": "renamed", "priority": 4},
        )
        assert resp.status_code == 200
        assert resp.get_json()["key"]["label"] == "renamed"
        assert resp.get_json()["key"]["priority"] == 4

    def test_activate_is_exclusive(self, client, seed_data, app):
        login_admin(client)
        created = client.post("/admin/keys", json={
            "label": "backup", "secret": NEW_KEY, "environment": "sandbox",
            "priority": 5, "isActive": False,
        }).get_json()["key"]

        resp = client.post(f"/admin/keys/{created['id']}/activate")

        assert resp.status_code == 200
        with app.app_context():
            active = GatewayCredential.query.filter_by(
                environment="sandbox", is_active=True
            ).all()
            assert [c.id for c in active] == [created["id"]]
            production = db.session.get(GatewayCredential, seed_data["production_key_id"])
            assert production.is_active is True

    def test_deactivate(self, client, seed_data, app):
        login_admin(client)
        resp = client.post(f"/admin/keys/{seed_data['sandbox_key_id']}/deactivate")

        assert resp.status_code == 200
        assert resp.get_json()["key"]["is_active"] is False
        with app.app_context():
            assert db.session.get(GatewayCredential, seed_data["sandbox_key_id"]) is not None

    def test_unknown_key(self, client, seed_data):
        login_admin(client)
        resp = client.post("/admin/keys/999/activate")
        assert resp.status_code == 404

    @patch("pixcheckout.services.asaas_client.requests.request")
    def test_live_test_uses_key_environment(
        self, mock_request, client, seed_data, fake_response
    ):
        mock_request.return_value = fake_response(200, {"data": []})
        login_admin(client)

        resp = client.post(f"/admin/keys/{seed_data['sandbox_key_id']}/test")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["reachable"] is True
        assert data["valid"] is True
        args, _ = mock_request.call_args
        assert args[1] == "https://sandbox.asaas.test/api/v3/customers"


class TestEmailSettings:

    def test_defaults(self, client, seed_data):
        login_admin(client)
        resp = client.get("/admin/settings/email")
        assert resp.get_json() == {"use_temp_email": False, "temp_email": None}

    def test_enable_temp_email(self, client, seed_data, app):
        login_admin(client)
        resp = client.post("/admin/settings/email", json={
            "useTempEmail": True, "tempEmail": "PIX@Loja.test",
        })

        assert resp.status_code == 200
        assert resp.get_json() == {"use_temp_email": True, "temp_email": "pix@loja.test"}
        with app.app_context():
            assert AuditEvent.query.filter_by(action="settings.email_updated").count() == 1

    def test_enable_requires_address(self, client, seed_data):
        login_admin(client)
        resp = client.post("/admin/settings/email", json={"useTempEmail": True})
        assert resp.status_code == 400

    def test_invalid_address(self, client, seed_data):
        login_admin(client)
        resp = client.post("/admin/settings/email", json={
            "useTempEmail": True, "tempEmail": "not-an-email",
        })
        assert resp.status_code == 400


class TestDiagnostics:

    def test_report_sections(self, client, charged_order):
        login_admin(client)
        resp = client.get("/admin/diagnostics")

        assert resp.status_code == 200
        report = resp.get_json()
        assert report["environment"]["environment"] == "sandbox"
        assert report["environment"]["payment_provider"] == "asaas"
        assert report["keys"]["sandbox"]["active_id"] is not None
        assert report["keys"]["production"]["keys"][0]["valid"] is True
        assert report["recent"]["orders"][0]["id"] == charged_order
        assert report["recent"]["payments"][0]["payment_id"] == "pay_123"
        assert "connectivity" not in report
        assert "OiRhYWNoXzRkNjE0" not in resp.get_data(as_text=True)

    @patch("pixcheckout.services.asaas_client.requests.request")
    def test_connectivity_check(self, mock_request, client, seed_data, fake_response):
        mock_request.return_value = fake_response(401, {
            "errors": [{"code": "invalid_access_token", "description": "Chave inválida"}]
        })
        login_admin(client)

        resp = client.get("/admin/diagnostics?connectivity=1")

        connectivity = resp.get_json()["connectivity"]
        assert connectivity["ok"] is False
        assert connectivity["http_status"] == 401
        assert connectivity["credential_id"] == seed_data["sandbox_key_id"]


class TestWebhookSimulator:

    def test_simulate_confirmation(self, client, charged_order, app):
        login_admin(client)
        resp = client.post("/admin/webhooks/simulate", json={
            "paymentId": "pay_123", "status": "CONFIRMED",
        })

        assert resp.status_code == 200
        data = resp.get_json()
        assert data == {"outcome": "updated", "previous": "PENDING", "status": "CONFIRMED"}
        with app.app_context():
            db.session.expire_all()
            assert db.session.get(Order, charged_order).status == "CONFIRMED"
            log = WebhookLog.query.one()
            assert log.source == "simulator"
            assert log.event_type == "PAYMENT_CONFIRMED"

    def test_simulator_obeys_transition_table(self, client, charged_order):
        login_admin(client)
        client.post("/admin/webhooks/simulate", json={
            "paymentId": "pay_123", "status": "RECEIVED",
        })
        resp = client.post("/admin/webhooks/simulate", json={
            "paymentId": "pay_123", "status": "PENDING",
        })
        assert resp.get_json()["outcome"] == "rejected"
        assert resp.get_json()["status"] == "RECEIVED"

    def test_unknown_payment(self, client, seed_data):
        login_admin(client)
        resp = client.post("/admin/webhooks/simulate", json={
            "paymentId": "pay_nope", "status": "CONFIRMED",
        })
        assert resp.status_code == 404

    def test_missing_fields(self, client, seed_data):
        login_admin(client)
        resp = client.post("/admin/webhooks/simulate", json={"paymentId": "pay_123"})
        assert resp.status_code == 400
