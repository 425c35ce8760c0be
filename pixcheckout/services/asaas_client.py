"""Asaas client: the primary PIX gateway.

Stateless request/response functions, one per gateway call. Every call
takes the sanitized credential and the base URL explicitly, sets an
explicit timeout and wraps failures with the operation name:

- non-2xx answer        -> GatewayError (status code, parsed/raw body)
- timeout / connection  -> NetworkError (retryable)
"""

import logging
import re
from datetime import date, timedelta

import requests

from pixcheckout.errors import GatewayError, NetworkError
from pixcheckout.services.credentials import build_auth_headers

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
NON_DIGITS_RE = re.compile(r"\D")


def _digits(value):
    return NON_DIGITS_RE.sub("", value or "")


def _headers(credential):
    headers = build_auth_headers(credential)
    # Asaas reads the key from ``access_token``; the bearer header is kept
    # for proxies that only forward Authorization.
    headers["access_token"] = credential
    return headers


def _error_message(data):
    """Pull a human readable message out of an Asaas error body."""
    if not isinstance(data, dict):
        return None
    errors = data.get("errors")
    if errors and isinstance(errors, list) and isinstance(errors[0], dict):
        return errors[0].get("description") or errors[0].get("code")
    return data.get("message")


def _request(method, operation, url, credential, timeout, payload=None, params=None):
    """Issue one call and return the decoded JSON body."""
    try:
        resp = requests.request(
            method,
            url,
            headers=_headers(credential),
            json=payload,
            params=params,
            timeout=timeout,
        )
    except requests.exceptions.Timeout as e:
        logger.warning(f"Asaas {operation} timed out after {timeout}s")
        raise NetworkError(
            f"Asaas {operation} timed out after {timeout}s", operation=operation
        ) from e
    except requests.exceptions.ConnectionError as e:
        logger.warning(f"Asaas {operation} connection failed: {e}")
        raise NetworkError(
            f"Could not reach Asaas during {operation}", operation=operation
        ) from e

    if not resp.ok:
        raw_body = resp.text
        try:
            body = resp.json()
        except ValueError:
            body = None
        detail = _error_message(body) or raw_body or resp.reason
        logger.error(
            f"Asaas {operation} failed: HTTP {resp.status_code} {raw_body[:500]}"
        )
        raise GatewayError(
            f"Asaas {operation} failed (HTTP {resp.status_code}): {detail}",
            operation=operation,
            status_code=resp.status_code,
            body=body,
            raw_body=raw_body,
        )

    try:
        return resp.json()
    except ValueError as e:
        raise GatewayError(
            f"Asaas {operation} returned a non-JSON body",
            operation=operation,
            status_code=resp.status_code,
            raw_body=resp.text,
        ) from e


def create_customer(profile, credential, base_url, timeout=DEFAULT_TIMEOUT):
    """Create a customer. ``profile`` keys: name, cpfCnpj, email, phone.

    Returns the customer object as Asaas sends it (``id`` is the ref).
    """
    phone = _digits(profile.get("phone"))
    payload = {
        "name": profile["name"],
        "cpfCnpj": _digits(profile["cpfCnpj"]),
        "email": profile.get("email") or None,
        "phone": phone or None,
        "mobilePhone": phone or None,
        "notificationDisabled": False,
    }

    logger.info(f"Creating Asaas customer for cpfCnpj ending {payload['cpfCnpj'][-4:]}")
    customer = _request(
        "POST", "create_customer", f"{base_url}/customers", credential,
        timeout, payload=payload,
    )
    logger.info(f"Asaas customer created: {customer.get('id')}")
    return customer


def create_charge(customer_id, amount, description, external_reference,
                  credential, base_url, due_days=0, timeout=DEFAULT_TIMEOUT):
    """Create a PIX charge for ``customer_id``.

    ``amount`` is a Decimal; it crosses the wire as a JSON number with
    two decimal places. The due date is today plus ``due_days``.
    """
    due_date = date.today() + timedelta(days=due_days)
    payload = {
        "customer": customer_id,
        "billingType": "PIX",
        "value": float(amount),
        "dueDate": due_date.isoformat(),
        "description": description or f"Pedido #{external_reference}",
        "externalReference": external_reference,
        "postalService": False,
    }

    logger.info(
        f"Creating Asaas PIX charge: customer={customer_id} value={amount} "
        f"due={payload['dueDate']} ref={external_reference}"
    )
    charge = _request(
        "POST", "create_charge", f"{base_url}/payments", credential,
        timeout, payload=payload,
    )
    logger.info(f"Asaas charge created: {charge.get('id')} ({charge.get('status')})")
    return charge


def fetch_qr_code(charge_id, credential, base_url, timeout=DEFAULT_TIMEOUT):
    """Return ``{payload, encodedImage, expirationDate, success}`` for a charge."""
    data = _request(
        "GET", "fetch_qr_code", f"{base_url}/payments/{charge_id}/pixQrCode",
        credential, timeout,
    )
    logger.info(f"Asaas QR code received for {charge_id}")
    return {
        "payload": data.get("payload"),
        "encodedImage": data.get("encodedImage"),
        "expirationDate": data.get("expirationDate"),
        "success": data.get("success", True),
    }


def get_charge(charge_id, credential, base_url, timeout=DEFAULT_TIMEOUT):
    """Current state of a charge as Asaas sees it."""
    return _request(
        "GET", "get_charge", f"{base_url}/payments/{charge_id}", credential, timeout
    )


def ping(credential, base_url, timeout=DEFAULT_TIMEOUT):
    """Cheapest authenticated call; raises if the key is refused."""
    return _request(
        "GET", "ping", f"{base_url}/customers", credential, timeout,
        params={"limit": 1},
    )
