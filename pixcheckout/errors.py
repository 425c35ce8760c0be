"""Checkout error taxonomy.

Every failure raised by the payment layer is one of these. Blueprints map
them to HTTP status codes via ``http_status``; the user-facing message is
always ``public_message``, never the raw gateway body.
"""


class CheckoutError(Exception):
    """Base class for payment-layer errors."""

    http_status = 500
    error_code = "checkout_error"
    public_message = "Something went wrong processing your payment. Please try again."
    retryable = False

    def __init__(self, message, operation=None):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def to_dict(self):
        return {"error": self.error_code, "message": self.public_message}


class ConfigurationError(CheckoutError):
    """Missing/invalid credential or gateway URL. Fatal, never retried."""

    error_code = "configuration_error"
    public_message = "Payments are temporarily unavailable. Please try again later."


class GatewayError(CheckoutError):
    """Non-2xx answer from a payment gateway.

    ``body`` holds the parsed JSON error body when the gateway sent one,
    ``raw_body`` the text as received. Retryable at the orchestration
    level only.
    """

    http_status = 502
    error_code = "gateway_error"

    def __init__(self, message, operation=None, status_code=None,
                 body=None, raw_body=None):
        super().__init__(message, operation=operation)
        self.status_code = status_code
        self.body = body
        self.raw_body = raw_body


class ValidationError(CheckoutError):
    """Malformed caller input. Surfaced to the end user."""

    http_status = 400
    error_code = "validation_error"

    def __init__(self, message, operation=None):
        super().__init__(message, operation=operation)
        self.public_message = message


class NotFoundError(ValidationError):
    http_status = 404
    error_code = "not_found"


class ConflictError(ValidationError):
    http_status = 409
    error_code = "conflict"


class PersistenceError(CheckoutError):
    """Database failure.

    When ``reconciliation_required`` is set the gateway charge already
    exists and the local rows do not: an operator has to reconcile it.
    """

    error_code = "persistence_error"

    def __init__(self, message, operation=None, reconciliation_required=False,
                 gateway_payment_id=None):
        super().__init__(message, operation=operation)
        self.reconciliation_required = reconciliation_required
        self.gateway_payment_id = gateway_payment_id


class NetworkError(CheckoutError):
    """Timeout or connection failure talking to a gateway. Retryable."""

    http_status = 503
    error_code = "network_error"
    retryable = True
