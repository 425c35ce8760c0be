"""Key service: the gateway credential store and selector.

Responsible for:
- Picking the credential to route a payment with (per environment)
- Administrator CRUD: add, edit, activate, deactivate (never delete)
- Live-testing a credential against the gateway
- Audit events for every change to the store
"""

import logging

from pixcheckout.errors import CheckoutError, NotFoundError, ValidationError
from pixcheckout.models.credential import GatewayCredential
from pixcheckout.services import asaas_client, credentials

logger = logging.getLogger(__name__)


def environment_from_flag(is_production):
    """Map the single ASAAS_USE_PRODUCTION flag to an environment name."""
    return "production" if is_production else "sandbox"


def get_active_credential(persistence, environment):
    """Return the active credential with the lowest priority, or None.

    Never raises on zero matches: callers must turn None into a
    ConfigurationError. A database failure propagates as
    PersistenceError, which is not the same thing as "not configured".
    """
    credential = persistence.first_active_credential(environment)

    if credential is None:
        logger.warning(f"No active {environment} credential in the key store")
        return None

    logger.info(
        f"Selected {environment} credential '{credential.label}' "
        f"(id={credential.id}, priority={credential.priority}, "
        f"key={credentials.mask_secret(credential.secret)})"
    )
    return credential


# ──────────────────────────────────────────────
# Administration
# ──────────────────────────────────────────────

def _check_environment(environment):
    if environment not in GatewayCredential.ENVIRONMENTS:
        raise ValidationError(
            f"environment must be one of: {', '.join(GatewayCredential.ENVIRONMENTS)}"
        )


def _check_priority(priority):
    try:
        priority = int(priority)
    except (TypeError, ValueError):
        raise ValidationError("priority must be an integer")
    if priority < 0:
        raise ValidationError("priority must be zero or positive")
    return priority


def _require(persistence, credential_id):
    credential = persistence.get_credential(credential_id)
    if credential is None:
        raise NotFoundError(f"Credential {credential_id} not found")
    return credential


def list_credentials(persistence, environment=None):
    if environment:
        _check_environment(environment)
    return persistence.list_credentials(environment)


def add_credential(persistence, label, secret, environment, priority=1,
                   is_active=True, actor_user_id=None):
    """Sanitize and store a new credential.

    Returns (credential, validation_result). The validation result is
    advisory here: an administrator may store a key the format check
    dislikes, and the orchestrator's policy decides what happens later.
    """
    label = (label or "").strip()
    if not label:
        raise ValidationError("label is required")
    _check_environment(environment)
    priority = _check_priority(priority)

    cleaned = credentials.sanitize(secret)
    if not cleaned:
        raise ValidationError("secret is required")
    result = credentials.validate(cleaned, credentials.ASAAS_FORMAT)

    credential = GatewayCredential(
        label=label,
        secret=cleaned,
        environment=environment,
        priority=priority,
        is_active=bool(is_active),
    )
    persistence.add(credential)
    persistence.flush()

    persistence.log_audit("credential.created", {
        "credential_id": credential.id,
        "label": label,
        "environment": environment,
        "priority": priority,
        "format_valid": result.valid,
    }, actor_user_id=actor_user_id)
    persistence.commit()

    logger.info(
        f"Credential '{label}' added for {environment} "
        f"(priority={priority}, key={credentials.mask_secret(cleaned)})"
    )
    return credential, result


def update_credential(persistence, credential_id, label=None, priority=None,
                      actor_user_id=None):
    """Edit label and/or priority. The secret itself is immutable."""
    credential = _require(persistence, credential_id)
    changes = {}

    if label is not None:
        label = label.strip()
        if not label:
            raise ValidationError("label cannot be empty")
        changes["label"] = [credential.label, label]
        credential.label = label

    if priority is not None:
        priority = _check_priority(priority)
        changes["priority"] = [credential.priority, priority]
        credential.priority = priority

    if changes:
        persistence.log_audit("credential.updated", {
            "credential_id": credential.id,
            "changes": changes,
        }, actor_user_id=actor_user_id)
        persistence.commit()
    return credential


def set_active(persistence, credential_id, actor_user_id=None):
    """Make this the only active credential of its environment."""
    credential = _require(persistence, credential_id)

    persistence.deactivate_credentials(credential.environment, except_id=credential.id)
    credential.is_active = True

    persistence.log_audit("credential.activated", {
        "credential_id": credential.id,
        "environment": credential.environment,
        "exclusive": True,
    }, actor_user_id=actor_user_id)
    persistence.commit()

    logger.info(f"Credential {credential.id} is now the only active {credential.environment} key")
    return credential


def deactivate_credential(persistence, credential_id, actor_user_id=None):
    credential = _require(persistence, credential_id)
    if not credential.is_active:
        return credential

    credential.is_active = False
    persistence.log_audit("credential.deactivated", {
        "credential_id": credential.id,
        "environment": credential.environment,
    }, actor_user_id=actor_user_id)
    persistence.commit()

    logger.info(f"Credential {credential.id} deactivated")
    return credential


def analyze_credential(credential):
    """Format analysis of a stored credential, safe to show an admin."""
    cleaned = credentials.sanitize(credential.secret)
    result = credentials.validate(cleaned, credentials.ASAAS_FORMAT)
    return {
        "id": credential.id,
        "label": credential.label,
        "environment": credential.environment,
        "is_active": credential.is_active,
        "priority": credential.priority,
        "masked": credentials.mask_secret(cleaned),
        "length": len(cleaned),
        "has_prefix": cleaned.startswith(credentials.ASAAS_FORMAT.prefix),
        "needed_sanitizing": cleaned != credential.secret,
        "valid": result.valid,
        "reason": result.reason,
    }


def test_credential(persistence, credential_id, base_url, timeout=30):
    """Call the gateway with the credential. Returns a result dict."""
    credential = _require(persistence, credential_id)
    analysis = analyze_credential(credential)

    try:
        asaas_client.ping(credentials.sanitize(credential.secret), base_url, timeout=timeout)
    except CheckoutError as e:
        logger.warning(f"Credential {credential.id} failed live test: {e.message}")
        return {
            **analysis,
            "reachable": False,
            "http_status": getattr(e, "status_code", None),
            "error": e.message,
        }

    return {**analysis, "reachable": True, "http_status": 200, "error": None}
