"""Gateway credential model (the key store).

One row per API key. Keys are scoped to an environment and routed by
priority: the active row with the lowest priority value wins. Rows are
deactivated, never deleted, so the audit trail keeps pointing at them.
"""

from pixcheckout.extensions import db


class GatewayCredential(db.Model):
    __tablename__ = "gateway_credentials"

    ENVIRONMENTS = ["sandbox", "production"]

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    label = db.Column(db.String(255), nullable=False)
    secret = db.Column(db.Text, nullable=False)
    environment = db.Column(
        db.String(20), nullable=False, index=True
    )  # sandbox | production
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    priority = db.Column(
        db.Integer, nullable=False, default=1
    )  # lower = preferred
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self, include_secret=False):
        from pixcheckout.services.credentials import mask_secret

        data = {
            "id": self.id,
            "label": self.label,
            "environment": self.environment,
            "is_active": self.is_active,
            "priority": self.priority,
            "secret": mask_secret(self.secret),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_secret:
            data["secret"] = self.secret
        return data

    def __repr__(self):
        state = "active" if self.is_active else "inactive"
        return f"<GatewayCredential {self.label} ({self.environment}, p{self.priority}, {state})>"
