"""Webhook log model (append-only audit trail + idempotency table).

Every webhook delivery that reaches a handler, real or simulated, is
recorded here. When the gateway sends an event id it is stored in
``event_id``; a delivery whose id is already present is acknowledged
without being processed again, so gateway retries cannot double-write.
"""

import uuid

from pixcheckout.extensions import db


class WebhookLog(db.Model):
    __tablename__ = "webhook_logs"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "evt_05b708f961d739ea7eba7e4db318f621"
    source = db.Column(
        db.String(20), nullable=False
    )  # asaas | pushinpay | simulator
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "PAYMENT_CONFIRMED"
    gateway_payment_id = db.Column(db.String(255), nullable=True, index=True)
    status = db.Column(db.String(50), nullable=True)
    outcome = db.Column(
        db.String(50), nullable=True
    )  # updated | unchanged | rejected | order_not_found
    payload = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "source": self.source,
            "event_type": self.event_type,
            "payment_id": self.gateway_payment_id,
            "status": self.status,
            "outcome": self.outcome,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WebhookLog {self.event_type} {self.gateway_payment_id}>"
