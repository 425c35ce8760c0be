"""Tests for the credential sanitizer / validator.

Covers:
- sanitize strips invisible characters and whitespace, keeps the $ marker
- sanitize is idempotent
- validate returns structured reasons (prefix, length, empty)
- the strict / permissive policy
- auth headers and secret masking
"""

import pytest

from pixcheckout.errors import ConfigurationError
from pixcheckout.services import credentials
from pixcheckout.services.credentials import (
    ASAAS_FORMAT,
    PUSHINPAY_FORMAT,
    ValidationPolicy,
)

VALID_KEY = "$aact_YTU5YTE0M2M2N2I4MTliNzk0YTI5N2U5MzdjNWZmNDQ6OjAwMDA"


class TestSanitize:

    def test_keeps_dollar_prefix(self):
        assert credentials.sanitize(VALID_KEY) == VALID_KEY

    def test_strips_surrounding_whitespace(self):
        assert credentials.sanitize(f"  {VALID_KEY}\n") == VALID_KEY

    def test_strips_internal_whitespace(self):
        broken = VALID_KEY[:20] + "\n\t " + VALID_KEY[20:]
        assert credentials.sanitize(broken) == VALID_KEY

    def test_strips_zero_width_characters(self):
        dirty = "\u200b" + VALID_KEY[:10] + "\u200d\ufeff" + VALID_KEY[10:] + "\u2060\u00ad"
        assert credentials.sanitize(dirty) == VALID_KEY

    def test_empty_and_none(self):
        assert credentials.sanitize("") == ""
        assert credentials.sanitize(None) == ""
        assert credentials.sanitize(" \u200b\n") == ""

    @pytest.mark.parametrize("raw", [
        VALID_KEY,
        f" {VALID_KEY} ",
        "\ufeff$aact_abc def\u200b",
        "$$aact_ \t x",
        "",
    ])
    def test_idempotent(self, raw):
        once = credentials.sanitize(raw)
        assert credentials.sanitize(once) == once


class TestValidate:

    def test_valid_asaas_key(self):
        result = credentials.validate(VALID_KEY, ASAAS_FORMAT)
        assert result.valid is True
        assert result.reason == ""

    @pytest.mark.parametrize("key", [
        VALID_KEY[1:],                      # lost the $ marker
        "aact_" + "x" * 40,
        "sk_live_" + "x" * 40,
    ])
    def test_missing_prefix_is_invalid_with_reason(self, key):
        result = credentials.validate(key, ASAAS_FORMAT)
        assert result.valid is False
        assert "prefix" in result.reason

    def test_too_short(self):
        result = credentials.validate("$aact_short", ASAAS_FORMAT)
        assert result.valid is False
        assert "too short" in result.reason

    def test_empty(self):
        result = credentials.validate("", ASAAS_FORMAT)
        assert result.valid is False
        assert result.reason

    def test_pushinpay_has_no_prefix(self):
        assert credentials.validate("12345|abcdefghijkl", PUSHINPAY_FORMAT).valid is True
        assert credentials.validate("123", PUSHINPAY_FORMAT).valid is False


class TestPolicy:

    def test_strict_raises_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc:
            credentials.enforce("bad", ASAAS_FORMAT, ValidationPolicy.STRICT)
        assert exc.value.operation == "validate_credential"

    def test_permissive_logs_and_continues(self, caplog):
        result = credentials.enforce("bad", ASAAS_FORMAT, ValidationPolicy.PERMISSIVE)
        assert result.valid is False
        assert "permissive" in caplog.text

    def test_valid_key_passes_strict(self):
        assert credentials.enforce(VALID_KEY, ASAAS_FORMAT, ValidationPolicy.STRICT).valid

    def test_from_config(self):
        assert ValidationPolicy.from_config("PERMISSIVE") is ValidationPolicy.PERMISSIVE
        assert ValidationPolicy.from_config(None) is ValidationPolicy.STRICT
        assert ValidationPolicy.from_config("lenient") is ValidationPolicy.STRICT


class TestHeadersAndMasking:

    def test_bearer_header(self):
        headers = credentials.build_auth_headers(VALID_KEY)
        assert headers["Authorization"] == f"Bearer {VALID_KEY}"
        assert headers["Content-Type"] == "application/json"

    def test_empty_credential_refused(self):
        with pytest.raises(ConfigurationError):
            credentials.build_auth_headers("")

    def test_mask_never_reveals_the_key(self):
        masked = credentials.mask_secret(VALID_KEY)
        assert masked.startswith("$aact_YT")
        assert masked.endswith(VALID_KEY[-4:])
        assert VALID_KEY not in masked
        assert credentials.mask_secret("short") == "sh..."
        assert credentials.mask_secret(None) == ""
