"""Webhook service: verifying and applying gateway push notifications.

Responsible for:
- HMAC-SHA256 signature verification of the raw request body
- Parsing Asaas and PushinPay payloads
- Idempotency via the webhook_logs.event_id column
- Routing status changes through transition_order_status
- The admin webhook simulator

Every handled delivery appends exactly one WebhookLog row.
"""

import hashlib
import hmac
import json
import logging

from pixcheckout.errors import ConfigurationError, NotFoundError, ValidationError
from pixcheckout.services.order_service import transition_order_status

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_PREFIX = "sha256="

# Asaas events that carry a status change, and the status they imply when
# the payment object has none.
ASAAS_EVENT_STATUS = {
    "PAYMENT_CREATED": "PENDING",
    "PAYMENT_UPDATED": None,
    "PAYMENT_CONFIRMED": "CONFIRMED",
    "PAYMENT_RECEIVED": "RECEIVED",
    "PAYMENT_RECEIVED_IN_CASH": "RECEIVED",
    "PAYMENT_OVERDUE": "OVERDUE",
    "PAYMENT_DELETED": "CANCELLED",
    "PAYMENT_REFUNDED": "REFUNDED",
}


class SignatureError(ValidationError):
    """Missing or wrong webhook signature."""

    error_code = "invalid_signature"


def sign_payload(raw_body, secret):
    """Return the header value a sender computes for ``raw_body``."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_body, header_value, secret):
    """Raise unless ``header_value`` is the HMAC of ``raw_body`` under ``secret``.

    ConfigurationError when no secret is configured (a server problem),
    SignatureError when the header is missing or does not match.
    """
    if not secret:
        raise ConfigurationError(
            "Webhook secret is not configured", operation="verify_signature"
        )
    if not header_value:
        raise SignatureError("Missing signature", operation="verify_signature")

    expected = sign_payload(raw_body, secret)
    if not hmac.compare_digest(expected, header_value.strip()):
        raise SignatureError("Invalid signature", operation="verify_signature")


def parse_payload(raw_body):
    """Decode a JSON body or raise ValidationError.

    Any valid JSON is returned as is; callers ignore what is not an object.
    """
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError, UnicodeDecodeError):
        raise ValidationError("Malformed JSON body", operation="parse_webhook")
    return payload


def _already_processed(persistence, event_id):
    if persistence.webhook_event_seen(event_id):
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True
    return False


# ──────────────────────────────────────────────
# Asaas
# ──────────────────────────────────────────────

def handle_asaas_event(persistence, payload):
    """Apply an Asaas ``{event, payment: {id, status}}`` notification.

    Returns the outcome string the endpoint acknowledges with.
    """
    event_type = payload.get("event")
    payment = payload.get("payment")
    event_id = payload.get("id")

    if (
        event_type not in ASAAS_EVENT_STATUS
        or not isinstance(payment, dict)
        or not payment.get("id")
    ):
        logger.info(f"Ignoring Asaas webhook event {event_type!r}")
        return "ignored"

    if _already_processed(persistence, event_id):
        return "already_processed"

    payment_id = payment["id"]
    status = payment.get("status") or ASAAS_EVENT_STATUS[event_type]
    logger.info(f"Asaas webhook {event_type} for {payment_id}: {status}")

    order = persistence.get_order_by_payment_id(payment_id)
    if order is None:
        logger.warning(f"Asaas webhook for unknown payment {payment_id}")
        outcome = "order_not_found"
    else:
        outcome = transition_order_status(
            persistence, order.id, status, "webhook"
        ).outcome

    persistence.append_webhook_log(
        event_id=event_id,
        source="asaas",
        event_type=event_type,
        gateway_payment_id=payment_id,
        status=status,
        outcome=outcome,
        payload=payload,
    )
    persistence.commit()
    return outcome


# ──────────────────────────────────────────────
# PushinPay
# ──────────────────────────────────────────────

def handle_pushinpay_event(persistence, payload):
    """Apply a PushinPay ``{external_reference, status, end_to_end_id}`` notification."""
    order_id = payload.get("external_reference")
    status = payload.get("status")

    if not order_id or not status:
        logger.info("Ignoring PushinPay webhook without external_reference/status")
        return "ignored"

    # PushinPay resends the same transaction once per status change.
    event_id = f"pushinpay:{payload['id']}:{status}" if payload.get("id") else None
    if _already_processed(persistence, event_id):
        return "already_processed"

    end_to_end_id = payload.get("end_to_end_id") or payload.get("endToEndId")
    extra = {"end_to_end_id": end_to_end_id} if end_to_end_id else {}

    logger.info(f"PushinPay webhook for order {order_id}: {status}")
    result = transition_order_status(persistence, order_id, status, "webhook", **extra)

    order = result.order
    persistence.append_webhook_log(
        event_id=event_id,
        source="pushinpay",
        event_type="pushinpay_webhook",
        gateway_payment_id=(
            order.gateway_payment_id if order and order.gateway_payment_id
            else f"pushinpay_{order_id}"
        ),
        status=status,
        outcome=result.outcome,
        payload=payload,
    )
    persistence.commit()
    return result.outcome


# ──────────────────────────────────────────────
# Simulator
# ──────────────────────────────────────────────

def simulate_event(persistence, payment_id, status, event_type=None):
    """Admin tool: pretend the gateway pushed ``status`` for ``payment_id``.

    Goes through the same transition table as a real webhook.
    """
    if not payment_id or not status:
        raise ValidationError("paymentId and status are required")

    order = persistence.get_order_by_payment_id(payment_id)
    if order is None:
        raise NotFoundError(f"No order with payment id {payment_id}")

    event_type = event_type or f"PAYMENT_{str(status).upper()}"
    result = transition_order_status(persistence, order.id, status, "simulator")

    persistence.append_webhook_log(
        source="simulator",
        event_type=event_type,
        gateway_payment_id=payment_id,
        status=str(status).upper(),
        outcome=result.outcome,
        payload={
            "event": event_type,
            "payment": {"id": payment_id, "status": str(status).upper()},
        },
    )
    persistence.commit()

    logger.info(f"Simulated {event_type} for {payment_id}: {result.outcome}")
    return result
