"""Status service: what the checkout page polls.

``check_status`` never raises: the polling UI must keep working while a
gateway or the database is having trouble, so failures come back as
``{"status": "PENDING", "source": "error"}``.

Lookup order:
    1. the order row (by gateway payment id)   -> source "database"
    2. the payment record                      -> source "database"
    3. the configured gateway                  -> source "api"
"""

import logging

from pixcheckout.errors import CheckoutError
from pixcheckout.services.order_service import normalize_status, transition_order_status

logger = logging.getLogger(__name__)

# Settled statuses the gateway will not change again on its own.
SETTLED_STATUSES = {"CONFIRMED", "RECEIVED", "CANCELLED", "REFUNDED", "FAILED"}


def _iso(value):
    return value.isoformat() if value else None


def check_status(persistence, gateway, payment_id):
    """Return ``{status, paymentId, updatedAt?, error?, source}``."""
    try:
        return _lookup(persistence, gateway, payment_id)
    except CheckoutError as e:
        logger.warning(f"Status check for {payment_id} failed ({type(e).__name__}): {e.message}")
        return {
            "status": "PENDING",
            "paymentId": payment_id,
            "error": e.public_message,
            "source": "error",
        }
    except Exception:
        logger.error(f"Unexpected error checking status of {payment_id}", exc_info=True)
        return {
            "status": "PENDING",
            "paymentId": payment_id,
            "error": "Unable to check the payment status right now.",
            "source": "error",
        }


def _lookup(persistence, gateway, payment_id):
    order = persistence.get_order_by_payment_id(payment_id)

    # Orders charged through another provider (after a PAYMENT_PROVIDER
    # switch) cannot be looked up through this gateway.
    if order is not None and (
        order.status in SETTLED_STATUSES
        or not gateway.supports_status_lookup
        or (order.gateway and order.gateway != gateway.name)
    ):
        return {
            "status": order.status,
            "paymentId": payment_id,
            "orderId": order.id,
            "updatedAt": _iso(order.updated_at),
            "source": "database",
        }

    if order is None:
        record = persistence.get_payment_record(payment_id)
        if record is not None:
            return {
                "status": record.status,
                "paymentId": payment_id,
                "orderId": record.order_id,
                "updatedAt": _iso(record.updated_at),
                "source": "database",
            }

    # Unsettled (or unknown): ask the gateway.
    gateway_status = gateway.fetch_status(payment_id)
    status = normalize_status(gateway_status) or "PENDING"
    logger.info(f"Gateway reports {gateway_status} for {payment_id}")

    if order is not None:
        result = transition_order_status(persistence, order.id, status, "status_check")
        order = result.order
        return {
            "status": order.status,
            "paymentId": payment_id,
            "orderId": order.id,
            "updatedAt": _iso(order.updated_at),
            "source": "api",
        }

    return {"status": status, "paymentId": payment_id, "source": "api"}
