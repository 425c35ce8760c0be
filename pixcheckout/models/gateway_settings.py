"""Gateway settings model.

Single-row table for runtime switches an administrator flips without a
deploy. Currently: the temporary notification email that replaces the
customer's real email on the gateway side.
"""

from pixcheckout.extensions import db


class GatewaySettings(db.Model):
    __tablename__ = "gateway_settings"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    use_temp_email = db.Column(db.Boolean, nullable=False, default=False)
    temp_email = db.Column(db.String(255), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "use_temp_email": bool(self.use_temp_email),
            "temp_email": self.temp_email,
        }

    def __repr__(self):
        return f"<GatewaySettings temp_email={self.use_temp_email}>"
