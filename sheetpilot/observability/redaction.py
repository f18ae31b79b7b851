from __future__ import annotations

import re
from typing import Any

_SENSITIVE_KEYWORDS = ("authorization", "api_key", "apikey", "token", "secret", "password")
_BEARER_PATTERN = re.compile(r"(?i)bearer\s+[a-z0-9_\-\.]+")
_OPENAI_KEY_PATTERN = re.compile(r"sk-[A-Za-z0-9_\-]{8,}")
MAX_STRING_CHARS = 200


def _is_sensitive_key(key: str) -> bool:
    normalized = key.lower()
    return any(word in normalized for word in _SENSITIVE_KEYWORDS)


def _redact_string(key: str, value: str) -> str:
    if _is_sensitive_key(key):
        return "<redacted>" if value else ""

    redacted = _BEARER_PATTERN.sub("Bearer <redacted>", value)
    redacted = _OPENAI_KEY_PATTERN.sub("<redacted>", redacted)
    if len(redacted) > MAX_STRING_CHARS:
        return redacted[:MAX_STRING_CHARS] + "...[truncated]"
    return redacted


def redact(value: Any, key: str = "") -> Any:
    if isinstance(value, dict):
        return {k: redact(v, str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(item, key) for item in value]
    if isinstance(value, str):
        return _redact_string(key, value)
    return value
