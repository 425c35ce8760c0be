"""Webhooks blueprint: /webhooks/*

Receives payment status notifications from Asaas and PushinPay.
CSRF-exempt. The raw body is required for signature verification.

Responses:
  200  acknowledged (processed, ignored or already_processed)
  400  missing/invalid signature or unparseable body
  405  anything but POST
  500  webhook secret not configured, or the update could not be stored
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from pixcheckout.errors import CheckoutError, ConfigurationError, ValidationError
from pixcheckout.services import webhook_service
from pixcheckout.services.persistence import get_persistence

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")


def _receive(source, secret_key, handler):
    """Verify, parse and hand the event to ``handler``.

    1. Get raw body (required for signature verification)
    2. Verify the HMAC signature with the provider's secret
    3. Parse JSON
    4. Apply the event (idempotent via webhook_logs.event_id)
    """
    payload = request.get_data()

    # --- Verify signature ---
    try:
        webhook_service.verify_signature(
            payload,
            request.headers.get(webhook_service.SIGNATURE_HEADER),
            current_app.config.get(secret_key),
        )
    except ConfigurationError as e:
        logger.error(f"{source} webhook rejected: {e.message}")
        return jsonify(error=e.error_code, message="Webhook not configured"), 500
    except ValidationError as e:
        logger.warning(f"{source} webhook signature verification failed: {e.message}")
        return jsonify(error=e.error_code, message=e.message), 400

    # --- Parse ---
    try:
        event = webhook_service.parse_payload(payload)
    except ValidationError as e:
        logger.warning(f"{source} webhook with unparseable body")
        return jsonify(error=e.error_code, message=e.message), 400

    if not isinstance(event, dict):
        logger.info(f"Ignoring {source} webhook whose body is not a JSON object")
        return jsonify(status="ignored"), 200

    # --- Apply ---
    try:
        outcome = handler(get_persistence(), event)
    except CheckoutError as e:
        logger.error(f"{source} webhook processing failed: {e.message}")
        return jsonify(e.to_dict()), 500

    return jsonify(status=outcome), 200


@webhooks_bp.route("/asaas", methods=["POST"])
def asaas_webhook():
    return _receive("Asaas", "ASAAS_WEBHOOK_SECRET", webhook_service.handle_asaas_event)


@webhooks_bp.route("/pushinpay", methods=["POST"])
def pushinpay_webhook():
    return _receive(
        "PushinPay", "PUSHINPAY_WEBHOOK_SECRET", webhook_service.handle_pushinpay_event
    )
