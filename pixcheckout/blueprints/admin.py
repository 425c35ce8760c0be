"""Admin blueprint: /admin/*

Key store administration, gateway settings, diagnostics and the webhook
simulator. JSON in, JSON out. All routes protected by @admin_required.

Route Map:
  GET   /admin/keys                      : List credentials (masked)
  POST  /admin/keys                      : Add a credential
  PATCH /admin/keys/<id>                 : Edit label / priority
  POST  /admin/keys/<id>/activate        : Make it the only active key of its environment
  POST  /admin/keys/<id>/deactivate      : Deactivate (keys are never deleted)
  POST  /admin/keys/<id>/test            : Live test against Asaas
  GET   /admin/settings/email            : Temporary notification email
  POST  /admin/settings/email            : Update it
  GET   /admin/diagnostics               : Diagnostic bundle (?connectivity=1 pings Asaas)
  POST  /admin/webhooks/simulate         : Pretend a gateway pushed a status
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from pixcheckout.decorators import admin_required
from pixcheckout.errors import CheckoutError, ValidationError
from pixcheckout.services import (
    diagnostic_service,
    key_service,
    settings_service,
    webhook_service,
)
from pixcheckout.services.gateways import asaas_base_url
from pixcheckout.services.persistence import get_persistence

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

logger = logging.getLogger(__name__)


def _json():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@admin_bp.errorhandler(CheckoutError)
def handle_checkout_error(e):
    # Admins get the detailed message, customers never do.
    return jsonify(error=e.error_code, message=e.message), e.http_status


# ══════════════════════════════════════════════
#  KEY STORE
# ══════════════════════════════════════════════

@admin_bp.route("/keys", methods=["GET"])
@admin_required
def key_list():
    environment = request.args.get("environment") or None
    keys = key_service.list_credentials(get_persistence(), environment)
    return jsonify(keys=[k.to_dict() for k in keys])


@admin_bp.route("/keys", methods=["POST"])
@admin_required
def key_create():
    """Add a key. The secret is sanitized before it is stored.

    Body: {label, secret, environment, priority?, isActive?}
    """
    data = _json()
    credential, result = key_service.add_credential(
        get_persistence(),
        label=data.get("label"),
        secret=data.get("secret"),
        environment=data.get("environment"),
        priority=data.get("priority", 1),
        is_active=data.get("isActive", True),
        actor_user_id=current_user.id,
    )
    return jsonify(
        key=credential.to_dict(),
        validation={"valid": result.valid, "reason": result.reason},
    ), 201


@admin_bp.route("/keys/<int:credential_id>", methods=["PATCH"])
@admin_required
def key_update(credential_id):
    data = _json()
    credential = key_service.update_credential(
        get_persistence(),
        credential_id,
        label=data.get("label"),
        priority=data.get("priority"),
        actor_user_id=current_user.id,
    )
    return jsonify(key=credential.to_dict())


@admin_bp.route("/keys/<int:credential_id>/activate", methods=["POST"])
@admin_required
def key_activate(credential_id):
    credential = key_service.set_active(
        get_persistence(), credential_id, actor_user_id=current_user.id
    )
    return jsonify(key=credential.to_dict())


@admin_bp.route("/keys/<int:credential_id>/deactivate", methods=["POST"])
@admin_required
def key_deactivate(credential_id):
    credential = key_service.deactivate_credential(
        get_persistence(), credential_id, actor_user_id=current_user.id
    )
    return jsonify(key=credential.to_dict())


@admin_bp.route("/keys/<int:credential_id>/test", methods=["POST"])
@admin_required
def key_test(credential_id):
    """Call Asaas with this key against its own environment's URL."""
    persistence = get_persistence()
    credential = persistence.get_credential(credential_id)
    environment = credential.environment if credential else "sandbox"

    result = key_service.test_credential(
        persistence,
        credential_id,
        asaas_base_url(current_app.config, environment),
        timeout=current_app.config.get("GATEWAY_TIMEOUT", 30),
    )
    return jsonify(result)


# ══════════════════════════════════════════════
#  SETTINGS
# ══════════════════════════════════════════════

@admin_bp.route("/settings/email", methods=["GET"])
@admin_required
def email_settings():
    return jsonify(settings_service.get_email_settings(get_persistence()))


@admin_bp.route("/settings/email", methods=["POST"])
@admin_required
def email_settings_update():
    """Body: {useTempEmail, tempEmail?}"""
    data = _json()
    settings = settings_service.update_email_settings(
        get_persistence(),
        use_temp_email=bool(data.get("useTempEmail")),
        temp_email=data.get("tempEmail"),
        actor_user_id=current_user.id,
    )
    return jsonify(settings)


# ══════════════════════════════════════════════
#  DIAGNOSTICS
# ══════════════════════════════════════════════

@admin_bp.route("/diagnostics", methods=["GET"])
@admin_required
def diagnostics():
    connectivity = request.args.get("connectivity") in ("1", "true", "yes")
    report = diagnostic_service.build_report(
        current_app.config, get_persistence(), connectivity=connectivity
    )
    return jsonify(report)


# ══════════════════════════════════════════════
#  WEBHOOK SIMULATOR
# ══════════════════════════════════════════════

@admin_bp.route("/webhooks/simulate", methods=["POST"])
@admin_required
def webhook_simulate():
    """Body: {paymentId, status, event?}

    Uses the same transition table as real webhooks.
    """
    data = _json()
    result = webhook_service.simulate_event(
        get_persistence(),
        payment_id=data.get("paymentId"),
        status=data.get("status"),
        event_type=data.get("event"),
    )
    logger.info(
        f"Admin {current_user.email} simulated {data.get('status')} "
        f"for {data.get('paymentId')}: {result.outcome}"
    )
    return jsonify(
        outcome=result.outcome,
        previous=result.previous,
        status=result.order.status if result.order else None,
    )
