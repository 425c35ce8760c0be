"""Order service: creating orders and moving them through their statuses.

``transition_order_status`` is the only code that writes Order.status.
Webhooks, the status check endpoint and the admin simulator all go
through it, so they all obey Order.VALID_TRANSITIONS and all leave an
audit trail.
"""

import logging
from collections import namedtuple
from decimal import Decimal, InvalidOperation

from pixcheckout.errors import ValidationError
from pixcheckout.models.order import Order

logger = logging.getLogger(__name__)

# Gateway status names that map onto ours.
STATUS_ALIASES = {
    "RECEIVED_IN_CASH": "RECEIVED",
    "DELETED": "CANCELLED",
    "PAID": "CONFIRMED",
    "CANCELED": "CANCELLED",
    "REFUND_REQUESTED": "REFUNDED",
}

SOURCES = ("webhook", "status_check", "simulator")

# outcome: updated | unchanged | rejected | unknown_status | order_not_found
TransitionResult = namedtuple("TransitionResult", ["outcome", "order", "previous", "status"])


def normalize_status(status):
    """Map a gateway status to one of Order.STATUSES, or None."""
    if not status:
        return None
    status = str(status).strip().upper()
    status = STATUS_ALIASES.get(status, status)
    return status if status in Order.STATUSES else None


def can_transition(current, new):
    return new in Order.VALID_TRANSITIONS.get(current, [])


def transition_order_status(persistence, order_id, new_status, source, **extra):
    """Move an order to ``new_status`` if the transition table allows it.

    The write is conditional on ``orders.version``; a writer that loses the
    race re-reads the order and re-evaluates once. ``extra`` columns (e.g.
    end_to_end_id) are written together with the status. Commits.
    """
    if source not in SOURCES:
        raise ValueError(f"Unknown status source: {source}")

    status = normalize_status(new_status)

    order = persistence.get_order(order_id)
    if order is None:
        logger.warning(f"Status {new_status} from {source}: order {order_id} not found")
        return TransitionResult("order_not_found", None, None, status)

    if status is None:
        logger.info(f"Ignoring unknown status {new_status!r} for order {order_id} ({source})")
        return TransitionResult("unknown_status", order, order.status, None)

    for attempt in range(2):
        previous = order.status

        if previous == status:
            return TransitionResult("unchanged", order, previous, status)

        if not can_transition(previous, status):
            logger.warning(
                f"Rejected status transition {previous} -> {status} "
                f"for order {order_id} (source={source})"
            )
            return TransitionResult("rejected", order, previous, status)

        if persistence.compare_and_set_status(order.id, order.version, status, **extra):
            break

        logger.info(
            f"Order {order_id} changed under us ({source}), re-reading "
            f"(attempt {attempt + 1})"
        )
        persistence.refresh(order)
    else:
        logger.warning(f"Gave up updating order {order_id} to {status} after a lost race")
        return TransitionResult("rejected", order, order.status, status)

    persistence.set_payment_records_status(order.id, status)
    persistence.log_audit("order.status_changed", {
        "from": previous,
        "to": status,
        "source": source,
        "gateway_payment_id": order.gateway_payment_id,
    }, order_id=order.id)
    persistence.commit()
    persistence.refresh(order)

    logger.info(f"Order {order_id}: {previous} -> {status} (source={source})")
    return TransitionResult("updated", order, previous, status)


# ──────────────────────────────────────────────
# Order creation
# ──────────────────────────────────────────────

def parse_amount(value):
    """Decimal amount with two places, or ValidationError."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("value is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("value must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("value must be greater than zero")
    if amount != amount.quantize(Decimal("0.01")):
        raise ValidationError("value cannot have more than two decimal places")
    return amount.quantize(Decimal("0.01"))


def clean_text(data, *keys):
    """First non-blank value among ``keys`` as a stripped string, or "".

    JSON numbers are accepted (a CPF or phone sent unquoted); objects,
    arrays and booleans raise ValidationError.
    """
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
            raise ValidationError(f"{key} must be a string")
        value = str(value).strip()
        if value:
            return value
    return ""


def create_order(persistence, data):
    """Create a PENDING order from the customer data step."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    name = clean_text(data, "customerName", "name")
    cpf_cnpj = clean_text(data, "cpfCnpj")
    if not name:
        raise ValidationError("customerName is required")
    if not cpf_cnpj:
        raise ValidationError("cpfCnpj is required")

    payment_method = (clean_text(data, "paymentMethod") or "pix").lower()
    if payment_method not in Order.PAYMENT_METHODS:
        raise ValidationError(
            f"paymentMethod must be one of: {', '.join(Order.PAYMENT_METHODS)}"
        )

    utms = data.get("utms") or {}
    if not isinstance(utms, dict):
        raise ValidationError("utms must be an object")

    order = Order(
        customer_name=name,
        customer_email=clean_text(data, "email") or None,
        customer_cpf_cnpj=cpf_cnpj,
        customer_phone=clean_text(data, "phone") or None,
        product_id=clean_text(data, "productId") or None,
        product_name=clean_text(data, "productName") or None,
        amount=parse_amount(data.get("value")),
        payment_method=payment_method,
        utm={k: str(v) for k, v in utms.items()},
    )
    persistence.add(order)
    persistence.commit()

    logger.info(f"Order {order.id} created ({order.amount}, {payment_method})")
    return order
