"""Payments blueprint: /api/*

Public JSON API hit by the checkout page.

Route Map:
  POST /api/orders           : Create an order at the end of the customer data step
  POST /api/payments         : Run the payment orchestrator for an order
  GET  /api/payments/status  : Status for the polling UI (always 200)
  OPTIONS on each            : CORS preflight
"""

import json
import logging
from decimal import Decimal

from flask import Blueprint, jsonify, make_response, request

from pixcheckout.errors import CheckoutError, ValidationError
from pixcheckout.extensions import limiter
from pixcheckout.services import order_service, status_service
from pixcheckout.services.gateways import get_gateway
from pixcheckout.services.payment_service import build_orchestrator, parse_payment_request
from pixcheckout.services.persistence import get_persistence

payments_bp = Blueprint("payments", __name__, url_prefix="/api")

logger = logging.getLogger(__name__)


def _cors_response(response):
    """Add CORS headers so the checkout page can call us cross-origin."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


def _error_response(error):
    return _cors_response(jsonify(error.to_dict())), error.http_status


def _json_body():
    """Decode the body keeping money as Decimal (no float drift)."""
    raw = request.get_data()
    if not raw:
        raise ValidationError("Request body is required")
    try:
        data = json.loads(raw, parse_float=Decimal)
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@payments_bp.route("/orders", methods=["OPTIONS"])
@payments_bp.route("/payments", methods=["OPTIONS"])
@payments_bp.route("/payments/status", methods=["OPTIONS"])
def preflight():
    """Handle CORS preflight requests."""
    return _cors_response(make_response("", 204))


# ──────────────────────────────────────────────
# POST /api/orders
# ──────────────────────────────────────────────

@payments_bp.route("/orders", methods=["POST"])
@limiter.limit("30 per minute")
def create_order():
    try:
        order = order_service.create_order(get_persistence(), _json_body())
    except CheckoutError as e:
        return _error_response(e)

    return _cors_response(jsonify(orderId=order.id, status=order.status)), 201


# ──────────────────────────────────────────────
# POST /api/payments
# ──────────────────────────────────────────────

@payments_bp.route("/payments", methods=["POST"])
@limiter.limit("20 per minute")
def create_payment():
    """Create the PIX charge for an order.

    Body: {name, cpfCnpj, email, phone, orderId, value, description?, utms?}

    Errors come back as {error, message}. The message is always the
    user-facing one; gateway bodies only reach the server log.
    """
    try:
        payment_request = parse_payment_request(_json_body())
        result = build_orchestrator().process_payment(payment_request)
    except CheckoutError as e:
        if getattr(e, "reconciliation_required", False):
            logger.critical(
                f"Charge {e.gateway_payment_id} needs reconciliation"
            )
        return _error_response(e)

    return _cors_response(jsonify(result)), 200


# ──────────────────────────────────────────────
# GET /api/payments/status?paymentId=
# ──────────────────────────────────────────────

@payments_bp.route("/payments/status", methods=["GET"])
@limiter.limit("120 per minute")
def payment_status():
    """Always 200 once a paymentId is given; failures are in the body."""
    payment_id = (request.args.get("paymentId") or "").strip()
    if not payment_id:
        return _cors_response(jsonify(
            error="validation_error",
            message="paymentId is required",
            status="ERROR",
        )), 400

    result = status_service.check_status(get_persistence(), get_gateway(), payment_id)
    response = _cors_response(jsonify(result))
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    return response, 200
