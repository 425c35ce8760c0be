"""Persistence adapter: the one handle the payment layer uses for the DB.

Built once in create_app() around the Flask-SQLAlchemy session and
stored in ``app.extensions``. The orchestrator, webhook service, status
service and diagnostics receive it explicitly instead of importing the
session themselves, so tests can hand them a fake.

Every SQLAlchemyError is converted into PersistenceError so callers can
tell database trouble apart from gateway trouble.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from pixcheckout.errors import PersistenceError
from pixcheckout.models.audit import AuditEvent
from pixcheckout.models.credential import GatewayCredential
from pixcheckout.models.gateway_settings import GatewaySettings
from pixcheckout.models.order import Order
from pixcheckout.models.payment import PaymentRecord
from pixcheckout.models.webhook_log import WebhookLog

logger = logging.getLogger(__name__)

EXTENSION_KEY = "pixcheckout.persistence"


def get_persistence():
    """Return the Persistence handle bound to the current app."""
    return current_app.extensions[EXTENSION_KEY]


class Persistence:
    """Thin wrapper over a SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    @contextmanager
    def _guard(self, operation):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"Database error during {operation}: {e}", exc_info=True)
            self.session.rollback()
            raise PersistenceError(
                f"Database error during {operation}", operation=operation
            ) from e

    # ──────────────────────────────────────────────
    # Unit of work
    # ──────────────────────────────────────────────

    def commit(self):
        with self._guard("commit"):
            self.session.commit()

    def rollback(self):
        self.session.rollback()

    def add(self, obj):
        self.session.add(obj)
        return obj

    def flush(self):
        with self._guard("flush"):
            self.session.flush()

    # ──────────────────────────────────────────────
    # Credentials
    # ──────────────────────────────────────────────

    def get_credential(self, credential_id):
        with self._guard("get_credential"):
            return self.session.get(GatewayCredential, credential_id)

    def first_active_credential(self, environment):
        """Lowest priority active credential for ``environment``, or None."""
        with self._guard("first_active_credential"):
            return (
                GatewayCredential.query
                .filter_by(environment=environment, is_active=True)
                .order_by(
                    GatewayCredential.priority.asc(),
                    GatewayCredential.id.asc(),
                )
                .first()
            )

    def list_credentials(self, environment=None):
        with self._guard("list_credentials"):
            query = GatewayCredential.query
            if environment:
                query = query.filter_by(environment=environment)
            return query.order_by(
                GatewayCredential.environment.asc(),
                GatewayCredential.priority.asc(),
                GatewayCredential.id.asc(),
            ).all()

    def deactivate_credentials(self, environment, except_id=None):
        with self._guard("deactivate_credentials"):
            query = GatewayCredential.query.filter_by(environment=environment)
            if except_id is not None:
                query = query.filter(GatewayCredential.id != except_id)
            for credential in query.all():
                credential.is_active = False
            self.session.flush()

    # ──────────────────────────────────────────────
    # Orders
    # ──────────────────────────────────────────────

    def get_order(self, order_id):
        with self._guard("get_order"):
            return self.session.get(Order, order_id)

    def get_order_by_payment_id(self, gateway_payment_id):
        with self._guard("get_order_by_payment_id"):
            return Order.query.filter_by(
                gateway_payment_id=gateway_payment_id
            ).first()

    def attach_gateway_payment(self, order, gateway_payment_id, gateway):
        with self._guard("attach_gateway_payment"):
            order.gateway_payment_id = gateway_payment_id
            order.gateway = gateway
            self.session.flush()

    def claim_order_for_charge(self, order_id, expected_version, gateway):
        """Mark an uncharged order as being charged through ``gateway``.

        Conditional on ``expected_version`` and on the order having neither
        a gateway nor a payment id yet. Commits, so an overlapping request
        sees the claim. Returns False when someone else holds it.
        """
        with self._guard("claim_order_for_charge"):
            result = self.session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.version == expected_version,
                    Order.gateway_payment_id.is_(None),
                    Order.gateway.is_(None),
                )
                .values(
                    gateway=gateway,
                    version=Order.version + 1,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            claimed = result.rowcount == 1
            self.session.commit()
        return claimed

    def release_order_claim(self, order_id):
        """Undo ``claim_order_for_charge`` while no payment id is attached."""
        with self._guard("release_order_claim"):
            self.session.execute(
                update(Order)
                .where(Order.id == order_id, Order.gateway_payment_id.is_(None))
                .values(
                    gateway=None,
                    version=Order.version + 1,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            self.session.commit()

    def compare_and_set_status(self, order_id, expected_version, new_status,
                               **extra):
        """Write ``new_status`` only if the row is still at ``expected_version``.

        Returns True when the row was updated, False when another writer
        got there first.
        """
        with self._guard("compare_and_set_status"):
            result = self.session.execute(
                update(Order)
                .where(Order.id == order_id, Order.version == expected_version)
                .values(
                    status=new_status,
                    version=Order.version + 1,
                    updated_at=datetime.now(timezone.utc),
                    **extra,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def refresh(self, obj):
        with self._guard("refresh"):
            self.session.refresh(obj)
        return obj

    def recent_orders(self, limit=5):
        with self._guard("recent_orders"):
            return Order.query.order_by(Order.created_at.desc()).limit(limit).all()

    # ──────────────────────────────────────────────
    # Payment records
    # ──────────────────────────────────────────────

    def save_payment_record(self, **fields):
        with self._guard("save_payment_record"):
            record = PaymentRecord(**fields)
            self.session.add(record)
            self.session.flush()
        return record

    def get_payment_record(self, gateway_payment_id):
        with self._guard("get_payment_record"):
            return (
                PaymentRecord.query
                .filter_by(gateway_payment_id=gateway_payment_id)
                .order_by(PaymentRecord.created_at.desc())
                .first()
            )

    def latest_payment_record_for_order(self, order_id):
        with self._guard("latest_payment_record_for_order"):
            return (
                PaymentRecord.query
                .filter_by(order_id=order_id)
                .order_by(PaymentRecord.created_at.desc())
                .first()
            )

    def set_payment_records_status(self, order_id, status):
        with self._guard("set_payment_records_status"):
            for record in PaymentRecord.query.filter_by(order_id=order_id).all():
                record.status = status
            self.session.flush()

    def recent_payment_records(self, limit=5):
        with self._guard("recent_payment_records"):
            return (
                PaymentRecord.query
                .order_by(PaymentRecord.created_at.desc())
                .limit(limit)
                .all()
            )

    # ──────────────────────────────────────────────
    # Webhook logs
    # ──────────────────────────────────────────────

    def webhook_event_seen(self, event_id):
        if not event_id:
            return False
        with self._guard("webhook_event_seen"):
            return WebhookLog.query.filter_by(event_id=event_id).first() is not None

    def append_webhook_log(self, **fields):
        with self._guard("append_webhook_log"):
            log = WebhookLog(**fields)
            self.session.add(log)
            self.session.flush()
        return log

    def recent_webhook_logs(self, limit=5):
        with self._guard("recent_webhook_logs"):
            return (
                WebhookLog.query
                .order_by(WebhookLog.created_at.desc())
                .limit(limit)
                .all()
            )

    # ──────────────────────────────────────────────
    # Settings / audit
    # ──────────────────────────────────────────────

    def get_gateway_settings(self):
        """Return the settings row, or None if an admin never saved one."""
        with self._guard("get_gateway_settings"):
            return GatewaySettings.query.order_by(GatewaySettings.id.asc()).first()

    def get_or_create_gateway_settings(self):
        settings = self.get_gateway_settings()
        if settings is None:
            settings = GatewaySettings(use_temp_email=False)
            self.session.add(settings)
            self.session.flush()
        return settings

    def log_audit(self, action, metadata=None, order_id=None, actor_user_id=None):
        event = AuditEvent(
            action=action,
            order_id=order_id,
            actor_user_id=actor_user_id,
            metadata_=metadata or {},
        )
        self.session.add(event)
        self.session.flush()
        return event
