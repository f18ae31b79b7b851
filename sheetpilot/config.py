from __future__ import annotations

import os
from dataclasses import dataclass

from sheetpilot.agent.loop import DEFAULT_MAX_ITERATIONS
from sheetpilot.services.embedding_service import DEFAULT_EMBEDDING_MODEL, DEFAULT_TTL_SECONDS


@dataclass(slots=True)
class Settings:
    host: str
    port: int
    provider: str
    model: str
    api_key: str
    base_url: str | None
    max_iterations: int
    streaming: bool
    require_approval: bool
    approval_timeout_seconds: int
    embedding_model: str
    embedding_ttl_seconds: int


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got {value}")
    return value


def _default_api_key(provider: str) -> str:
    explicit = os.getenv("SHEETPILOT_API_KEY", "").strip()
    if explicit:
        return explicit
    if provider == "anthropic":
        return os.getenv("ANTHROPIC_API_KEY", "").strip()
    return os.getenv("OPENAI_API_KEY", "").strip()


def load_settings() -> Settings:
    provider = os.getenv("SHEETPILOT_PROVIDER", "openai").strip().lower() or "openai"
    base_url = os.getenv("SHEETPILOT_BASE_URL", "").strip() or None

    return Settings(
        host=os.getenv("SHEETPILOT_HOST", "127.0.0.1"),
        port=_parse_int("SHEETPILOT_PORT", 8787),
        provider=provider,
        model=os.getenv("SHEETPILOT_MODEL", "gpt-4o-2024-08-06").strip(),
        api_key=_default_api_key(provider),
        base_url=base_url,
        max_iterations=_parse_int("SHEETPILOT_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS),
        streaming=_parse_bool(os.getenv("SHEETPILOT_STREAMING"), True),
        require_approval=_parse_bool(os.getenv("SHEETPILOT_REQUIRE_APPROVAL"), False),
        approval_timeout_seconds=_parse_int("SHEETPILOT_APPROVAL_TIMEOUT_SECONDS", 600),
        embedding_model=os.getenv("SHEETPILOT_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL).strip(),
        embedding_ttl_seconds=_parse_int("SHEETPILOT_EMBEDDING_TTL_SECONDS", DEFAULT_TTL_SECONDS),
    )
