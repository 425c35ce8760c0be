"""Shared test fixtures for the pixcheckout test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: admin user, sandbox/production keys, a pending order
- fake_response: builds requests.Response stand-ins for gateway mocks
- sign: computes the X-Webhook-Signature header for a body
"""

import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests
from werkzeug.security import generate_password_hash

from pixcheckout import create_app
from pixcheckout.extensions import db as _db
from pixcheckout.models.credential import GatewayCredential
from pixcheckout.models.order import Order
from pixcheckout.models.user import User
from pixcheckout.services.webhook_service import sign_payload

SANDBOX_KEY = "$aact_YTU5YTE0M2M2N2I4MTliNzk0YTI5N2U5MzdjNWZmNDQ6OjAwMDAwMDAwMDAwMDAwNjI3NjY6OiRhYWNoXzRkNjE0"
PRODUCTION_KEY = "$aact_MzkwODA2MWY2OGM3MWRlMDU2NWM3MzJlNzZmNGZhZGY6OjAwMDAwMDAwMDAwMDAwMDAwMDA6OiRhYWNoXzk5OTk5"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def persistence(app):
    """The app's Persistence handle."""
    return app.extensions["pixcheckout.persistence"]


@pytest.fixture
def seed_data(app, db_session):
    """Seed the database with an admin, keys for both environments and an order.

    Returns a dict with plain ids so tests can use them across contexts.
    """
    admin = User(
        email="admin@pixcheckout.local",
        password_hash=generate_password_hash("admin123"),
        full_name="Admin User",
        is_admin=True,
    )
    _db.session.add(admin)

    sandbox_key = GatewayCredential(
        label="sandbox main", secret=SANDBOX_KEY, environment="sandbox",
        is_active=True, priority=1,
    )
    production_key = GatewayCredential(
        label="production main", secret=PRODUCTION_KEY, environment="production",
        is_active=True, priority=1,
    )
    _db.session.add_all([sandbox_key, production_key])

    order = Order(
        customer_name="Maria Silva",
        customer_email="maria@example.com",
        customer_cpf_cnpj="123.456.789-09",
        customer_phone="(11) 98765-4321",
        product_id="curso-pix",
        product_name="Curso PIX",
        amount=Decimal("100.00"),
    )
    _db.session.add(order)
    _db.session.commit()

    return {
        "admin_id": admin.id,
        "sandbox_key_id": sandbox_key.id,
        "production_key_id": production_key.id,
        "order_id": order.id,
    }


@pytest.fixture
def charged_order(seed_data, db_session):
    """The seeded order, already attached to Asaas payment pay_123."""
    from pixcheckout.models.payment import PaymentRecord

    order = db_session.get(Order, seed_data["order_id"])
    order.gateway_payment_id = "pay_123"
    order.gateway = "asaas"
    db_session.add(PaymentRecord(
        order_id=order.id,
        gateway="asaas",
        gateway_payment_id="pay_123",
        status="PENDING",
        amount=Decimal("100.00"),
        qr_payload="00020101021226820014br.gov.bcb.pix",
        qr_image="iVBORw0KGgoAAAANSUhEUgAA",
        copy_paste_key="00020101021226820014br.gov.bcb.pix",
    ))
    db_session.commit()
    return seed_data["order_id"]


def make_response(status_code=200, payload=None, text=None):
    """A stand-in for requests.Response."""
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 400
    resp.reason = "OK" if resp.ok else "Error"
    if payload is not None:
        resp.json.return_value = payload
        resp.text = json.dumps(payload)
    else:
        resp.json.side_effect = ValueError("No JSON object could be decoded")
        resp.text = text or ""
    return resp


@pytest.fixture
def fake_response():
    return make_response


@pytest.fixture
def sign():
    return sign_payload

