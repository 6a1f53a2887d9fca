"""JSON schema checks for tool arguments and structured model output."""

from __future__ import annotations

import json
from json import JSONDecodeError
from typing import Any, Mapping, Sequence

import jsonschema
from jsonschema import Draft7Validator

from .messages import MessageCode, MessageOrigin, RuntimeMessage

__all__ = [
    "MAX_SCHEMA_ERRORS",
    "load_schema",
    "schema_errors",
    "validate_tool_arguments",
    "validate_json_output",
]

MAX_SCHEMA_ERRORS = 25


def load_schema(schema: str | Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Return *schema* as a dict; ``None`` for empty input.

    Raises:
        ValueError: If *schema* is a string that is not a JSON object.
    """
    if schema is None:
        return None
    if isinstance(schema, Mapping):
        return dict(schema)
    text = schema.strip()
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except JSONDecodeError as exc:
        raise ValueError(f"Schema is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Schema must be a JSON object")
    return parsed


def schema_errors(instance: Any, schema: Mapping[str, Any]) -> list[str]:
    """Return human-readable violations of *schema* by *instance*."""
    try:
        Draft7Validator.check_schema(schema)
    except jsonschema.exceptions.SchemaError as exc:
        return [f"Invalid JSON schema: {exc.message}"]

    errors: list[str] = []
    validator = Draft7Validator(schema)
    for issue in sorted(validator.iter_errors(instance), key=lambda item: list(map(str, item.absolute_path))):
        path = _format_schema_path(issue.absolute_path)
        errors.append(f"{path}: {issue.message}" if path else issue.message)
        if len(errors) >= MAX_SCHEMA_ERRORS:
            errors.append("Too many validation errors; stopping early.")
            break
    return errors


def validate_tool_arguments(
    tool_name: str,
    arguments: Mapping[str, Any] | None,
    schema: Mapping[str, Any] | None,
) -> list[RuntimeMessage]:
    """Check tool call arguments against the tool's parameter schema."""
    if not schema:
        return []
    return [
        RuntimeMessage.error(
            MessageOrigin.VALIDATION,
            f"Tool '{tool_name}' arguments invalid: {error}",
            MessageCode.TOOL_VALIDATION_ERROR,
        )
        for error in schema_errors(dict(arguments or {}), schema)
    ]


def validate_json_output(text: str | None, schema: str | Mapping[str, Any] | None) -> list[RuntimeMessage]:
    """Check a model's JSON answer against the requested output schema.

    Mismatches are warnings: the answer is still returned to the caller.
    """
    try:
        parsed_schema = load_schema(schema)
    except ValueError as exc:
        return [RuntimeMessage.warning(MessageOrigin.RETURN, f"JSON output schema unusable: {exc}")]
    if parsed_schema is None:
        return []
    if text is None or not text.strip():
        return [RuntimeMessage.warning(MessageOrigin.RETURN, "JSON output expected but the response was empty")]
    try:
        instance = json.loads(text)
    except JSONDecodeError as exc:
        return [
            RuntimeMessage.warning(
                MessageOrigin.RETURN,
                f"Response is not valid JSON (line {exc.lineno}, column {exc.colno}): {exc.msg}",
            )
        ]
    return [
        RuntimeMessage.warning(MessageOrigin.RETURN, f"JSON output does not match schema: {error}")
        for error in schema_errors(instance, parsed_schema)
    ]


def _format_schema_path(path: Sequence[Any]) -> str:
    if not path:
        return ""
    components: list[str] = []
    for segment in path:
        if isinstance(segment, int):
            if components:
                components[-1] = f"{components[-1]}[{segment}]"
            else:
                components.append(f"[{segment}]")
        else:
            components.append(str(segment))
    return ".".join(filter(None, components))
