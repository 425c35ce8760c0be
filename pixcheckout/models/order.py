"""Order model.

The application's own record of a checkout attempt, distinct from the
gateway's charge. Created at the end of the customer data step, then
mutated by the payment orchestrator (gateway payment id) and by the
status transition function (status). Never deleted by the normal flow.

``version`` is bumped on every status write so concurrent writers
(webhook, status check, simulator) can do a conditional update.
"""

import uuid

from pixcheckout.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    # -- Valid statuses --
    STATUSES = [
        "PENDING",
        "CONFIRMED",
        "RECEIVED",
        "OVERDUE",
        "CANCELLED",
        "REFUNDED",
        "FAILED",
    ]

    # -- Valid status transitions (enforced in order_service) --
    VALID_TRANSITIONS = {
        "PENDING": ["CONFIRMED", "RECEIVED", "OVERDUE", "CANCELLED", "REFUNDED", "FAILED"],
        "OVERDUE": ["CONFIRMED", "RECEIVED", "CANCELLED"],
        "CONFIRMED": ["RECEIVED", "REFUNDED"],
        "RECEIVED": ["REFUNDED"],
    }

    PAYMENT_METHODS = ["pix", "card", "boleto"]
    GATEWAYS = ["asaas", "pushinpay"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # --- Customer snapshot ---
    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_cpf_cnpj = db.Column(db.String(20), nullable=False)
    customer_phone = db.Column(db.String(30), nullable=True)

    # --- Product snapshot ---
    product_id = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)

    # --- Payment ---
    status = db.Column(
        db.String(20), nullable=False, default="PENDING"
    )  # see STATUSES
    payment_method = db.Column(
        db.String(20), nullable=False, default="pix"
    )  # pix | card | boleto
    gateway_payment_id = db.Column(
        db.String(255), unique=True, nullable=True, index=True
    )  # e.g. "pay_080225913252"
    gateway = db.Column(db.String(20), nullable=True)  # asaas | pushinpay
    end_to_end_id = db.Column(db.String(255), nullable=True)  # PIX E2E id
    utm = db.Column(db.JSON, default=dict)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    payment_records = db.relationship(
        "PaymentRecord", back_populates="order", lazy="dynamic"
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="order", lazy="dynamic"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "product_id": self.product_id,
            "amount": str(self.amount) if self.amount is not None else None,
            "status": self.status,
            "payment_method": self.payment_method,
            "gateway_payment_id": self.gateway_payment_id,
            "gateway": self.gateway,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Order {self.id} ({self.status})>"
