"""Payment service: orchestrates one checkout attempt.

Responsible for:
- Validating the payment request against its order
- Refusing to charge an order twice (returns the stored charge instead)
- Claiming the order atomically before any gateway call, so overlapping
  requests for one order get a ConflictError
- Resolving and validating the gateway credential under the policy
- Driving the configured PaymentGateway
- Persisting the payment record and the order update in one commit
- Flagging charges that succeeded but could not be stored

States, logged as they are reached:

    START -> CREDENTIAL_RESOLVED -> CUSTOMER_CREATED -> CHARGE_CREATED
          -> QR_FETCHED -> PERSISTED -> DONE

Any failure moves the run to ERROR and re-raises.
"""

import logging
from datetime import datetime

from flask import current_app

from pixcheckout.errors import (
    CheckoutError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from pixcheckout.services import credentials, key_service
from pixcheckout.services.gateways import Deadline, PaymentRequest, get_gateway
from pixcheckout.services.order_service import clean_text, parse_amount
from pixcheckout.services.persistence import get_persistence

logger = logging.getLogger(__name__)

STATES = [
    "START",
    "CREDENTIAL_RESOLVED",
    "CUSTOMER_CREATED",
    "CHARGE_CREATED",
    "QR_FETCHED",
    "PERSISTED",
    "DONE",
    "ERROR",
]


def parse_payment_request(data):
    """Build a PaymentRequest from the JSON body, or raise ValidationError."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    name = clean_text(data, "name")
    cpf_cnpj = clean_text(data, "cpfCnpj")
    order_id = clean_text(data, "orderId")

    if not name:
        raise ValidationError("name is required")
    if not cpf_cnpj:
        raise ValidationError("cpfCnpj is required")
    if not order_id:
        raise ValidationError("orderId is required")

    utms = data.get("utms") or {}
    if not isinstance(utms, dict):
        raise ValidationError("utms must be an object")

    return PaymentRequest(
        name=name,
        cpf_cnpj=cpf_cnpj,
        order_id=order_id,
        value=parse_amount(data.get("value")),
        email=clean_text(data, "email") or None,
        phone=clean_text(data, "phone") or None,
        description=clean_text(data, "description") or None,
        utms=utms,
    )


def _parse_expiration(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        logger.warning(f"Unparseable QR expiration date: {value!r}")
        return None


def _result_from_record(record, order, customer=None, charge=None, replayed=False):
    """Normalized response body for a stored (or just stored) payment."""
    payment = charge or {
        "id": record.gateway_payment_id,
        "status": record.status,
        "value": str(record.amount),
        "externalReference": order.id,
    }
    expiration = record.expiration_date.isoformat() if record.expiration_date else None
    result = {
        "payment": payment,
        "pixQrCode": {
            "payload": record.qr_payload,
            "encodedImage": record.qr_image,
            "expirationDate": expiration,
        },
        "paymentData": {
            "orderId": order.id,
            "gateway": record.gateway,
            "status": record.status,
            "value": str(record.amount),
        },
        "qrCodeImage": record.qr_image,
        "qrCode": record.qr_payload,
        "copyPasteKey": record.copy_paste_key or "",
        "expirationDate": expiration,
        "paymentId": record.gateway_payment_id,
    }
    if customer is not None:
        result["customer"] = customer
    if replayed:
        result["replayed"] = True
    return result


class PaymentOrchestrator:
    """Runs one payment per call to ``process_payment``.

    All collaborators are passed in; nothing is read from module globals.
    """

    def __init__(self, persistence, gateway, policy, environment,
                 deadline_seconds=90, per_call_timeout=30):
        self.persistence = persistence
        self.gateway = gateway
        self.policy = policy
        self.environment = environment
        self.deadline_seconds = deadline_seconds
        self.per_call_timeout = per_call_timeout
        self.state = "START"

    def _advance(self, state, order_id):
        self.state = state
        logger.info(f"[payment {order_id}] {state}")

    def process_payment(self, request):
        """Run the whole flow for ``request`` and return the result dict."""
        self.state = "START"
        order_id = request.order_id
        logger.info(
            f"[payment {order_id}] START via {self.gateway.name} "
            f"({self.environment}, policy={self.policy.value})"
        )

        try:
            return self._run(request)
        except CheckoutError as e:
            failed_at = self.state
            self.state = "ERROR"
            logger.error(
                f"[payment {order_id}] ERROR after {failed_at} "
                f"({type(e).__name__}, operation={e.operation}): {e.message}"
            )
            raise
        except Exception:
            failed_at = self.state
            self.state = "ERROR"
            logger.error(
                f"[payment {order_id}] ERROR after {failed_at}: unexpected failure",
                exc_info=True,
            )
            raise

    def _run(self, request):
        order = self.persistence.get_order(request.order_id)
        if order is None:
            raise NotFoundError(f"Order {request.order_id} not found")
        if order.amount != request.value:
            raise ValidationError(
                f"value {request.value} does not match the order amount {order.amount}"
            )

        # An order carries at most one charge. Hand back the stored one.
        if order.gateway_payment_id:
            record = self.persistence.latest_payment_record_for_order(order.id)
            if record is not None:
                logger.info(
                    f"[payment {order.id}] already charged as "
                    f"{order.gateway_payment_id}, returning stored payment"
                )
                self.state = "DONE"
                return _result_from_record(record, order, replayed=True)
            raise ConflictError(
                f"Order {order.id} already has payment {order.gateway_payment_id}"
            )
        if order.gateway:
            raise ConflictError(
                f"Order {order.id} is already being charged through {order.gateway}"
            )

        deadline = Deadline(self.deadline_seconds, self.per_call_timeout)

        raw = self.gateway.resolve_credential(self.environment)
        if not raw:
            raise ConfigurationError(
                f"No active {self.environment} credential for {self.gateway.name}",
                operation="resolve_credential",
            )
        credential = credentials.sanitize(raw)
        credentials.enforce(credential, self.gateway.credential_format, self.policy)
        self._advance("CREDENTIAL_RESOLVED", order.id)

        request.email = self._notification_email(request.email)

        if not self.persistence.claim_order_for_charge(
            order.id, order.version, self.gateway.name
        ):
            raise ConflictError(f"Order {order.id} is already being charged")

        reached = []

        def advance(state):
            reached.append(state)
            self._advance(state, order.id)

        try:
            charge = self.gateway.create_payment(request, credential, deadline, advance=advance)
        except Exception:
            if "CHARGE_CREATED" in reached:
                logger.critical(
                    f"RECONCILIATION REQUIRED: {self.gateway.name} charge was created "
                    f"for order {order.id} but the run failed after {reached[-1]}; "
                    f"the order stays claimed"
                )
            else:
                self.persistence.release_order_claim(order.id)
            raise

        record = self._persist(order, request, charge)
        self._advance("PERSISTED", order.id)

        result = _result_from_record(
            record, order, customer=charge.customer, charge=charge.charge
        )
        self._advance("DONE", order.id)
        return result

    def _notification_email(self, email):
        """Swap in the configured temporary email when the flag is on."""
        settings = self.persistence.get_gateway_settings()
        if settings and settings.use_temp_email and settings.temp_email:
            logger.info("Using the configured temporary notification email")
            return settings.temp_email
        return email

    def _persist(self, order, request, charge):
        """Store the payment record and attach the charge to the order.

        The gateway charge already exists at this point. If the database
        write fails the charge must be reconciled by hand.
        """
        try:
            record = self.persistence.save_payment_record(
                order_id=order.id,
                gateway=charge.gateway,
                gateway_payment_id=charge.payment_id,
                status="PENDING",
                amount=request.value,
                qr_payload=charge.qr_payload,
                qr_image=charge.qr_image,
                copy_paste_key=charge.copy_paste_key,
                expiration_date=_parse_expiration(charge.expiration_date),
            )
            self.persistence.attach_gateway_payment(order, charge.payment_id, charge.gateway)
            if charge.end_to_end_id:
                order.end_to_end_id = charge.end_to_end_id
            if request.utms and not order.utm:
                order.utm = {k: str(v) for k, v in request.utms.items()}
            self.persistence.commit()
        except PersistenceError as e:
            self.persistence.rollback()
            logger.critical(
                f"RECONCILIATION REQUIRED: {charge.gateway} charge "
                f"{charge.payment_id} was created for order {order.id} "
                f"but could not be stored ({e.message})"
            )
            raise PersistenceError(
                f"Charge {charge.payment_id} created but not stored for order {order.id}",
                operation="persist_payment",
                reconciliation_required=True,
                gateway_payment_id=charge.payment_id,
            ) from e
        return record


def build_orchestrator(app=None):
    """Orchestrator wired from the app config and its Persistence handle."""
    config = (app or current_app).config
    return PaymentOrchestrator(
        persistence=get_persistence(),
        gateway=get_gateway(),
        policy=credentials.ValidationPolicy.from_config(config.get("VALIDATION_POLICY")),
        environment=key_service.environment_from_flag(config.get("ASAAS_USE_PRODUCTION")),
        deadline_seconds=config.get("ORCHESTRATION_TIMEOUT", 90),
        per_call_timeout=config.get("GATEWAY_TIMEOUT", 30),
    )
