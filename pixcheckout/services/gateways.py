"""Payment gateways behind one interface.

The orchestrator only ever talks to a PaymentGateway. ``build_gateway``
picks the implementation once, from ``PAYMENT_PROVIDER``:

    asaas      -> AsaasGateway      (customer -> charge -> QR code)
    pushinpay  -> PushinPayGateway  (single charge call)
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from flask import current_app

from pixcheckout.errors import ConfigurationError, GatewayError, NetworkError
from pixcheckout.services import asaas_client, credentials, key_service, pushinpay_client

logger = logging.getLogger(__name__)

EXTENSION_KEY = "pixcheckout.gateway"


def get_gateway():
    """Return the PaymentGateway selected for the current app."""
    return current_app.extensions[EXTENSION_KEY]


@dataclass
class PaymentRequest:
    name: str
    cpf_cnpj: str
    order_id: str
    value: Decimal
    email: Optional[str] = None
    phone: Optional[str] = None
    description: Optional[str] = None
    utms: dict = field(default_factory=dict)


@dataclass
class ChargeResult:
    gateway: str
    payment_id: str
    status: str
    charge: dict
    customer: Optional[dict] = None
    qr_payload: Optional[str] = None
    qr_image: Optional[str] = None
    copy_paste_key: str = ""
    expiration_date: Optional[str] = None
    end_to_end_id: Optional[str] = None


class Deadline:
    """Overall time budget for one orchestration run."""

    def __init__(self, seconds, per_call):
        self.per_call = per_call
        self._expires_at = time.monotonic() + seconds

    def remaining(self):
        return max(0.0, self._expires_at - time.monotonic())

    def timeout_for(self, operation):
        """Timeout for the next call: min(per-call, remaining budget)."""
        remaining = self.remaining()
        if remaining <= 0:
            raise NetworkError(
                f"Orchestration deadline exceeded before {operation}",
                operation=operation,
            )
        return min(self.per_call, remaining)


def _noop(state):
    pass


class PaymentGateway(ABC):
    """What the orchestrator needs from a payment provider."""

    name = None
    credential_format = None
    supports_status_lookup = True

    @abstractmethod
    def resolve_credential(self, environment):
        """Return the raw credential for ``environment``, or None."""

    @abstractmethod
    def create_payment(self, request, credential, deadline, advance=_noop):
        """Create the charge and return a ChargeResult.

        ``advance(state)`` is called as each intermediate step completes.
        """

    @abstractmethod
    def fetch_status(self, payment_id):
        """Return the provider's current status string for a payment."""


class AsaasGateway(PaymentGateway):
    name = "asaas"
    credential_format = credentials.ASAAS_FORMAT

    def __init__(self, persistence, base_url, environment, timeout=30, due_days=0):
        self.persistence = persistence
        self.base_url = base_url.rstrip("/")
        self.environment = environment
        self.timeout = timeout
        self.due_days = due_days

    def resolve_credential(self, environment):
        credential = key_service.get_active_credential(self.persistence, environment)
        return credential.secret if credential else None

    def create_payment(self, request, credential, deadline, advance=_noop):
        customer = asaas_client.create_customer(
            {
                "name": request.name,
                "cpfCnpj": request.cpf_cnpj,
                "email": request.email,
                "phone": request.phone,
            },
            credential,
            self.base_url,
            timeout=deadline.timeout_for("create_customer"),
        )
        advance("CUSTOMER_CREATED")

        charge = asaas_client.create_charge(
            customer["id"],
            request.value,
            request.description,
            request.order_id,
            credential,
            self.base_url,
            due_days=self.due_days,
            timeout=deadline.timeout_for("create_charge"),
        )
        advance("CHARGE_CREATED")

        qr = asaas_client.fetch_qr_code(
            charge["id"],
            credential,
            self.base_url,
            timeout=deadline.timeout_for("fetch_qr_code"),
        )
        advance("QR_FETCHED")

        return ChargeResult(
            gateway=self.name,
            payment_id=charge["id"],
            status=charge.get("status") or "PENDING",
            charge=charge,
            customer=customer,
            qr_payload=qr["payload"],
            qr_image=qr["encodedImage"],
            copy_paste_key=qr["payload"] or "",
            expiration_date=qr["expirationDate"],
        )

    def fetch_status(self, payment_id):
        secret = self.resolve_credential(self.environment)
        if not secret:
            raise ConfigurationError(
                f"No active {self.environment} credential", operation="fetch_status"
            )
        charge = asaas_client.get_charge(
            payment_id, credentials.sanitize(secret), self.base_url,
            timeout=self.timeout,
        )
        return charge.get("status")


class PushinPayGateway(PaymentGateway):
    name = "pushinpay"
    credential_format = credentials.PUSHINPAY_FORMAT
    supports_status_lookup = False

    def __init__(self, api_key, base_url, webhook_url, timeout=30):
        self.api_key = api_key
        self.base_url = (base_url or "").rstrip("/")
        self.webhook_url = webhook_url
        self.timeout = timeout

    def resolve_credential(self, environment):
        # PushinPay has a single key, configured in the environment.
        return self.api_key or None

    def create_payment(self, request, credential, deadline, advance=_noop):
        if not self.webhook_url:
            raise ConfigurationError(
                "PUSHINPAY_WEBHOOK_URL is not configured", operation="create_cobranca"
            )

        data = pushinpay_client.create_cobranca(
            request.value,
            request.description or f"Pedido #{request.order_id}",
            request.order_id,
            credential,
            self.base_url,
            self.webhook_url,
            utms=request.utms,
            timeout=deadline.timeout_for("create_cobranca"),
        )
        advance("CHARGE_CREATED")
        advance("QR_FETCHED")

        return ChargeResult(
            gateway=self.name,
            payment_id=data["id"] or f"pushinpay_{request.order_id}",
            status=data["status"],
            charge=data,
            qr_payload=data["qr_code"] or None,
            qr_image=data["qr_code_url"],
            copy_paste_key=data["qr_code"],
            end_to_end_id=data["endToEndId"] or None,
        )

    def fetch_status(self, payment_id):
        raise GatewayError(
            "PushinPay does not support status lookups; rely on its webhook",
            operation="fetch_status",
        )


def asaas_base_url(config, environment):
    if environment == "production":
        return config["ASAAS_PRODUCTION_URL"]
    return config["ASAAS_SANDBOX_URL"]


def build_gateway(config, persistence):
    """Select the configured provider. Called once per app."""
    provider = (config.get("PAYMENT_PROVIDER") or "asaas").lower()
    timeout = config.get("GATEWAY_TIMEOUT", 30)

    if provider == "pushinpay":
        logger.info("Payment provider: PushinPay")
        return PushinPayGateway(
            api_key=config.get("PUSHINPAY_API_KEY"),
            base_url=config.get("PUSHINPAY_API_URL"),
            webhook_url=config.get("PUSHINPAY_WEBHOOK_URL"),
            timeout=timeout,
        )

    if provider != "asaas":
        raise ConfigurationError(
            f"Unknown PAYMENT_PROVIDER {provider!r}", operation="build_gateway"
        )

    environment = key_service.environment_from_flag(config.get("ASAAS_USE_PRODUCTION"))
    base_url = asaas_base_url(config, environment)
    if not base_url:
        raise ConfigurationError(
            f"Asaas {environment} URL is not configured", operation="build_gateway"
        )

    logger.info(f"Payment provider: Asaas ({environment}, {base_url})")
    return AsaasGateway(
        persistence,
        base_url,
        environment,
        timeout=timeout,
        due_days=config.get("CHARGE_DUE_DAYS", 0),
    )
