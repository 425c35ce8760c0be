"""Gateway settings: the temporary notification email switch."""

import logging
import re

from pixcheckout.errors import ValidationError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def get_email_settings(persistence):
    settings = persistence.get_gateway_settings()
    if settings is None:
        return {"use_temp_email": False, "temp_email": None}
    return settings.to_dict()


def update_email_settings(persistence, use_temp_email, temp_email=None, actor_user_id=None):
    """Turn the temporary email on/off. An address is required to turn it on."""
    temp_email = (temp_email or "").strip().lower() or None
    if temp_email and not EMAIL_RE.match(temp_email):
        raise ValidationError("temp_email is not a valid email address")
    if use_temp_email and not temp_email:
        raise ValidationError("temp_email is required when use_temp_email is on")

    settings = persistence.get_or_create_gateway_settings()
    settings.use_temp_email = bool(use_temp_email)
    settings.temp_email = temp_email

    persistence.log_audit("settings.email_updated", {
        "use_temp_email": settings.use_temp_email,
        "temp_email": temp_email,
    }, actor_user_id=actor_user_id)
    persistence.commit()

    logger.info(f"Temporary notification email {'on' if use_temp_email else 'off'}")
    return settings.to_dict()
