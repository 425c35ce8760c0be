"""Credential service: sanitizing, validating and masking gateway keys.

Responsible for:
- Cleaning keys pasted from dashboards/emails (invisible chars, whitespace)
- Format checks per gateway, returning an actionable reason
- The strict/permissive validation policy used by the orchestrator
- Building auth headers and masking secrets for logs
"""

import enum
import logging
import re
from collections import namedtuple

from pixcheckout.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Zero-width and other invisible code points that survive copy/paste.
INVISIBLE_CHARS_RE = re.compile("[\u00ad\u200b-\u200f\u2060-\u2064\ufeff]")
WHITESPACE_RE = re.compile(r"\s+")

# prefix=None means the gateway has no format marker.
CredentialFormat = namedtuple("CredentialFormat", ["gateway", "prefix", "min_length"])

ASAAS_FORMAT = CredentialFormat("asaas", "$aact_", 30)
PUSHINPAY_FORMAT = CredentialFormat("pushinpay", None, 10)

ValidationResult = namedtuple("ValidationResult", ["valid", "reason"])


class ValidationPolicy(enum.Enum):
    """What the orchestrator does with a credential that fails validation.

    STRICT     -> ConfigurationError, the payment is not attempted
    PERMISSIVE -> warning logged, the payment is attempted anyway
    """

    STRICT = "strict"
    PERMISSIVE = "permissive"

    @classmethod
    def from_config(cls, value):
        try:
            return cls((value or "strict").lower())
        except ValueError:
            logger.warning(f"Unknown VALIDATION_POLICY {value!r}, using strict")
            return cls.STRICT


def sanitize(raw):
    """Return the key with invisible characters and all whitespace removed.

    The leading ``$`` of Asaas keys is part of the key and is kept.
    Idempotent: sanitize(sanitize(x)) == sanitize(x).
    """
    if not raw:
        return ""

    cleaned = INVISIBLE_CHARS_RE.sub("", str(raw))
    cleaned = WHITESPACE_RE.sub("", cleaned)

    if len(cleaned) != len(str(raw)):
        logger.warning(
            f"Credential sanitized: {len(str(raw)) - len(cleaned)} "
            f"character(s) removed"
        )
    return cleaned


def validate(cleaned, fmt=ASAAS_FORMAT):
    """Check a sanitized key against a gateway's format.

    Returns ValidationResult(valid, reason). ``reason`` is empty when valid.
    """
    if not cleaned:
        return ValidationResult(False, "Credential is empty.")

    if fmt.prefix and not cleaned.startswith(fmt.prefix):
        return ValidationResult(
            False,
            f"Credential does not start with the {fmt.gateway} prefix "
            f"'{fmt.prefix}' (starts with '{cleaned[:len(fmt.prefix)]}').",
        )

    if len(cleaned) < fmt.min_length:
        return ValidationResult(
            False,
            f"Credential is too short ({len(cleaned)} chars, minimum "
            f"{fmt.min_length}); it may have been truncated.",
        )

    return ValidationResult(True, "")


def enforce(cleaned, fmt, policy):
    """Apply the validation policy. Returns the ValidationResult.

    Raises ConfigurationError under STRICT when the key is invalid.
    """
    result = validate(cleaned, fmt)
    if result.valid:
        return result

    if policy is ValidationPolicy.STRICT:
        logger.error(f"Credential rejected ({fmt.gateway}): {result.reason}")
        raise ConfigurationError(
            f"Invalid {fmt.gateway} credential: {result.reason}",
            operation="validate_credential",
        )

    logger.warning(
        f"Credential failed validation ({fmt.gateway}) but policy is "
        f"permissive, continuing: {result.reason}"
    )
    return result


def build_auth_headers(credential):
    """Headers for a gateway call authenticated with ``credential``."""
    if not credential:
        raise ConfigurationError(
            "Gateway credential is empty", operation="build_auth_headers"
        )
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Authorization": f"Bearer {credential}",
    }


def mask_secret(secret):
    """'$aact_YTU5YTE0...' -> '$aact_YT...c4f1'. Never log a raw key."""
    if not secret:
        return ""
    if len(secret) <= 12:
        return secret[:2] + "..."
    return f"{secret[:8]}...{secret[-4:]}"
