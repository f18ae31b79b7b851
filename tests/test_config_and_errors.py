from __future__ import annotations

import pytest

from sheetpilot.config import load_settings
from sheetpilot.errors import (
    ExchangeInProgress,
    LoopExhausted,
    ProviderAuthFailure,
    ProviderRateLimited,
    ProviderTimeout,
    SheetPilotApiError,
    error_from_exception,
)
from sheetpilot.observability.redaction import redact

ENV_NAMES = (
    "SHEETPILOT_PROVIDER",
    "SHEETPILOT_MODEL",
    "SHEETPILOT_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "SHEETPILOT_MAX_ITERATIONS",
    "SHEETPILOT_STREAMING",
    "SHEETPILOT_REQUIRE_APPROVAL",
    "SHEETPILOT_PORT",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_settings_defaults(clean_env):
    settings = load_settings()
    assert settings.provider == "openai"
    assert settings.port == 8787
    assert settings.max_iterations == 25
    assert settings.streaming is True
    assert settings.require_approval is False
    assert settings.api_key == ""


def test_settings_read_provider_specific_key(clean_env):
    clean_env.setenv("SHEETPILOT_PROVIDER", "Anthropic")
    clean_env.setenv("ANTHROPIC_API_KEY", "anthropic-key")
    clean_env.setenv("OPENAI_API_KEY", "openai-key")
    settings = load_settings()
    assert settings.provider == "anthropic"
    assert settings.api_key == "anthropic-key"

    clean_env.setenv("SHEETPILOT_API_KEY", "explicit")
    assert load_settings().api_key == "explicit"


def test_settings_parse_flags_and_reject_bad_integers(clean_env):
    clean_env.setenv("SHEETPILOT_STREAMING", "off")
    clean_env.setenv("SHEETPILOT_REQUIRE_APPROVAL", "yes")
    settings = load_settings()
    assert settings.streaming is False
    assert settings.require_approval is True

    clean_env.setenv("SHEETPILOT_MAX_ITERATIONS", "0")
    with pytest.raises(RuntimeError, match="SHEETPILOT_MAX_ITERATIONS"):
        load_settings()
    clean_env.setenv("SHEETPILOT_MAX_ITERATIONS", "many")
    with pytest.raises(RuntimeError):
        load_settings()


def test_exchange_failures_map_to_envelope():
    status, payload = error_from_exception(ExchangeInProgress("busy"), "trace-1")
    assert status == 409
    assert payload["error"]["code"] == "E_EXCHANGE_IN_PROGRESS"
    assert payload["error"]["retryable"] is True
    assert payload["error"]["trace_id"] == "trace-1"

    status, payload = error_from_exception(LoopExhausted("stopped"), "trace-2")
    assert status == 500
    assert payload["error"]["code"] == "E_LOOP_EXHAUSTED"


def test_api_error_keeps_details():
    error = SheetPilotApiError(
        code="E_EXCHANGE_NOT_FOUND",
        message="No exchange matches this id.",
        retryable=False,
        status_code=404,
        details={"exchange_id": "ex_1"},
    )
    status, payload = error_from_exception(error, "trace-3")
    assert status == 404
    assert payload["error"]["details"] == {"exchange_id": "ex_1"}


def test_provider_failures_keep_their_own_codes():
    status, payload = error_from_exception(ProviderRateLimited("slow down"), "t")
    assert status == 429
    assert payload["error"]["code"] == "E_PROVIDER_RATE_LIMIT"
    assert payload["error"]["retryable"] is True
    assert payload["error"]["cause"] == "ProviderRateLimited"

    status, payload = error_from_exception(ProviderAuthFailure("bad key"), "t")
    assert status == 401
    assert payload["error"]["retryable"] is False
    assert error_from_exception(ProviderTimeout("slow"), "t")[1]["error"]["code"] == "E_NETWORK_TIMEOUT"


def test_plain_exceptions_map_to_generic_codes():
    assert error_from_exception(ValueError("bad"), "t")[1]["error"]["code"] == "E_SCHEMA_INVALID"
    status, payload = error_from_exception(ZeroDivisionError(), "t")
    assert status == 500
    assert payload["error"]["message"] == "Internal server error"


def test_redaction_masks_secrets_and_truncates():
    redacted = redact({
        "api_key": "sk-abcdefghijklmnop",
        "header": "Bearer abc.def",
        "note": "key sk-abcdefghijklmnop leaked",
        "values": [["x" * 300]],
    })
    assert redacted["api_key"] == "<redacted>"
    assert redacted["header"] == "Bearer <redacted>"
    assert redacted["note"] == "key <redacted> leaked"
    assert redacted["values"][0][0].endswith("...[truncated]")
