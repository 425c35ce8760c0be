# Models package: import all models here so Alembic can discover them.

from pixcheckout.models.user import User  # noqa: F401
from pixcheckout.models.credential import GatewayCredential  # noqa: F401
from pixcheckout.models.order import Order  # noqa: F401
from pixcheckout.models.payment import PaymentRecord  # noqa: F401
from pixcheckout.models.webhook_log import WebhookLog  # noqa: F401
from pixcheckout.models.gateway_settings import GatewaySettings  # noqa: F401
from pixcheckout.models.audit import AuditEvent  # noqa: F401
