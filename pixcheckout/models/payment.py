"""Payment record model.

One row per successful charge creation, keyed by order. Holds what the
customer needs to pay (QR payload, QR image, copy-paste key) and the
amount exactly as the order requested it.
"""

import uuid

from pixcheckout.extensions import db


class PaymentRecord(db.Model):
    __tablename__ = "payment_records"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True
    )
    gateway = db.Column(db.String(20), nullable=False)  # asaas | pushinpay
    gateway_payment_id = db.Column(
        db.String(255), nullable=False, index=True
    )
    status = db.Column(db.String(20), nullable=False, default="PENDING")
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    qr_payload = db.Column(db.Text, nullable=True)
    qr_image = db.Column(db.Text, nullable=True)  # base64 PNG or image URL
    copy_paste_key = db.Column(db.Text, nullable=True)
    expiration_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    order = db.relationship("Order", back_populates="payment_records")

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "gateway": self.gateway,
            "payment_id": self.gateway_payment_id,
            "status": self.status,
            "amount": str(self.amount) if self.amount is not None else None,
            "qr_code": self.qr_payload,
            "qr_code_image": self.qr_image,
            "copy_paste_key": self.copy_paste_key,
            "expiration_date": (
                self.expiration_date.isoformat() if self.expiration_date else None
            ),
        }

    def __repr__(self):
        return f"<PaymentRecord {self.gateway_payment_id} ({self.status})>"
