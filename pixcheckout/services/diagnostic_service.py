"""Diagnostics: one JSON bundle describing the payment setup.

Operational tooling for administrators: which environment and provider
are configured, what the key store holds (masked), whether the active
key is accepted by Asaas, and the latest orders / payments / webhooks.
"""

import logging

from pixcheckout.errors import CheckoutError
from pixcheckout.services import asaas_client, credentials, key_service
from pixcheckout.services.gateways import asaas_base_url

logger = logging.getLogger(__name__)


def _environment_flags(config):
    environment = key_service.environment_from_flag(config.get("ASAAS_USE_PRODUCTION"))
    return {
        "environment": environment,
        "environment_is_production": bool(config.get("ASAAS_USE_PRODUCTION")),
        "payment_provider": config.get("PAYMENT_PROVIDER"),
        "validation_policy": config.get("VALIDATION_POLICY"),
        "asaas_base_url": asaas_base_url(config, environment),
        "gateway_timeout": config.get("GATEWAY_TIMEOUT"),
        "orchestration_timeout": config.get("ORCHESTRATION_TIMEOUT"),
        "charge_due_days": config.get("CHARGE_DUE_DAYS"),
        "pushinpay_api_key_configured": bool(config.get("PUSHINPAY_API_KEY")),
        "pushinpay_webhook_url_configured": bool(config.get("PUSHINPAY_WEBHOOK_URL")),
        "asaas_webhook_secret_configured": bool(config.get("ASAAS_WEBHOOK_SECRET")),
        "pushinpay_webhook_secret_configured": bool(config.get("PUSHINPAY_WEBHOOK_SECRET")),
    }


def _key_analysis(persistence):
    analysis = {}
    for environment in ("sandbox", "production"):
        active = key_service.get_active_credential(persistence, environment)
        analysis[environment] = {
            "active_id": active.id if active else None,
            "keys": [
                key_service.analyze_credential(c)
                for c in persistence.list_credentials(environment)
            ],
        }
    return analysis


def _connectivity(config, persistence):
    """Ping Asaas with the active key of the configured environment."""
    environment = key_service.environment_from_flag(config.get("ASAAS_USE_PRODUCTION"))
    base_url = asaas_base_url(config, environment)
    active = key_service.get_active_credential(persistence, environment)

    if active is None:
        return {"ok": False, "environment": environment, "error": "No active credential"}

    try:
        asaas_client.ping(
            credentials.sanitize(active.secret),
            base_url,
            timeout=config.get("GATEWAY_TIMEOUT", 30),
        )
    except CheckoutError as e:
        return {
            "ok": False,
            "environment": environment,
            "credential_id": active.id,
            "http_status": getattr(e, "status_code", None),
            "error": e.message,
        }

    return {"ok": True, "environment": environment, "credential_id": active.id}


def build_report(config, persistence, connectivity=False, limit=5):
    """Collect the diagnostic bundle. Sections that fail report their error."""
    report = {"environment": _environment_flags(config)}

    try:
        report["keys"] = _key_analysis(persistence)
    except CheckoutError as e:
        report["keys"] = {"error": e.message}

    if connectivity:
        try:
            report["connectivity"] = _connectivity(config, persistence)
        except CheckoutError as e:
            report["connectivity"] = {"ok": False, "error": e.message}

    try:
        report["recent"] = {
            "orders": [o.to_dict() for o in persistence.recent_orders(limit)],
            "payments": [p.to_dict() for p in persistence.recent_payment_records(limit)],
            "webhooks": [w.to_dict() for w in persistence.recent_webhook_logs(limit)],
        }
    except CheckoutError as e:
        report["recent"] = {"error": e.message}

    settings = persistence.get_gateway_settings()
    report["email_settings"] = settings.to_dict() if settings else None

    logger.info(f"Diagnostics built (connectivity={connectivity})")
    return report
