"""Argument validation against an operation's JSON Schema.

The same schema dict an operation advertises to the model is the one
validated here, so the two can never drift apart.
"""
from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Mapping

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError

from sheetpilot.errors import InvalidArguments


def decode_arguments(raw_arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    if raw_arguments is None:
        return {}
    if isinstance(raw_arguments, Mapping):
        return dict(raw_arguments)
    text = raw_arguments.strip()
    if not text:
        return {}
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError) as exc:
        raise InvalidArguments(f"arguments are not valid JSON: {exc.msg}") from exc
    if not isinstance(value, dict):
        raise InvalidArguments(f"arguments must be a JSON object, got {type(value).__name__}")
    return value


def validate(schema: Mapping[str, Any], raw_arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Return the decoded arguments or raise InvalidArguments naming the field at fault."""
    arguments = decode_arguments(raw_arguments)
    validator = _validator_for(json.dumps(schema, sort_keys=True))
    errors = sorted(validator.iter_errors(arguments), key=_error_sort_key)
    if errors:
        raise InvalidArguments("; ".join(_describe(error) for error in errors))
    return arguments


def check_schema(schema: Mapping[str, Any]) -> None:
    Draft7Validator.check_schema(dict(schema))


@lru_cache(maxsize=256)
def _validator_for(schema_key: str) -> Draft7Validator:
    return Draft7Validator(json.loads(schema_key))


def _error_sort_key(error: ValidationError) -> tuple[str, str]:
    return (_field_path(error), error.message)


def _field_path(error: ValidationError) -> str:
    # Missing fields are reported against their parent object; the message names them.
    return ".".join(str(part) for part in error.absolute_path) or "<root>"


def _describe(error: ValidationError) -> str:
    return f"{_field_path(error)}: {error.message}"
