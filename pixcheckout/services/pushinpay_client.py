"""PushinPay client: the alternate PIX gateway.

A single call creates the charge. The response is flat and may carry an
image URL instead of a copy-paste code; callers must accept an empty
``qr_code``.
"""

import logging

import requests

from pixcheckout.errors import GatewayError, NetworkError
from pixcheckout.services.credentials import build_auth_headers

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


def create_cobranca(amount, description, external_reference, credential,
                    base_url, webhook_url, utms=None, timeout=DEFAULT_TIMEOUT):
    """Create a PIX charge and return the normalized response dict."""
    payload = {
        "value": float(amount),
        "description": description,
        "external_reference": external_reference,
        "callback_url": webhook_url,
    }
    for key in UTM_KEYS:
        if utms and utms.get(key):
            payload[key] = utms[key]

    logger.info(f"Creating PushinPay charge: value={amount} ref={external_reference}")

    try:
        resp = requests.post(
            f"{base_url}/api/v1/checkout/pix",
            headers=build_auth_headers(credential),
            json=payload,
            timeout=timeout,
        )
    except requests.exceptions.Timeout as e:
        logger.warning(f"PushinPay create_cobranca timed out after {timeout}s")
        raise NetworkError(
            f"PushinPay create_cobranca timed out after {timeout}s",
            operation="create_cobranca",
        ) from e
    except requests.exceptions.ConnectionError as e:
        logger.warning(f"PushinPay connection failed: {e}")
        raise NetworkError(
            "Could not reach PushinPay during create_cobranca",
            operation="create_cobranca",
        ) from e

    if not resp.ok:
        try:
            body = resp.json()
        except ValueError:
            body = None
        logger.error(f"PushinPay error: HTTP {resp.status_code} {resp.text[:500]}")
        raise GatewayError(
            f"PushinPay create_cobranca failed (HTTP {resp.status_code})",
            operation="create_cobranca",
            status_code=resp.status_code,
            body=body,
            raw_body=resp.text,
        )

    data = resp.json()
    logger.info(f"PushinPay charge created: {data.get('id')} ({data.get('status')})")

    return {
        "id": data.get("id"),
        "payment_url": data.get("payment_url"),
        "qr_code_url": data.get("qr_code_url"),
        "qr_code": data.get("qr_code") or "",
        "endToEndId": data.get("endToEndId") or "",
        "status": data.get("status") or "PENDING",
    }
