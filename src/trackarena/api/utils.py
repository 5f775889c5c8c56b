"""
Shared utilities for the TrackArena API.

Request validation and authentication helpers used across all blueprints.
"""

import secrets
from functools import wraps
from typing import Any

from flask import current_app, jsonify, request

MAX_ID_LENGTH = 128
MAX_TEXT_LENGTH = 256


def validate_json_schema(
    data: Any,
    required_fields: dict[str, type | tuple],
    optional_fields: dict[str, type | tuple] | None = None,
    max_lengths: dict[str, int] | None = None,
) -> tuple[bool, str | None]:
    """
    Validate a JSON payload against a simple schema.

    Booleans are rejected where a number is expected, since bool is an int
    subclass.

    Args:
        data: The JSON data to validate
        required_fields: Field name -> expected type(s)
        optional_fields: Optional field name -> expected type(s)
        max_lengths: Field name -> maximum string length

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    def type_ok(value, expected) -> bool:
        if isinstance(value, bool) and bool not in (expected if isinstance(expected, tuple) else (expected,)):
            return False
        return isinstance(value, expected)

    def type_name(expected) -> str:
        if isinstance(expected, tuple):
            return " or ".join(t.__name__ for t in expected)
        return expected.__name__

    for field_name, expected in required_fields.items():
        if field_name not in data or data[field_name] is None:
            return False, f"Missing required field: {field_name}"
        if not type_ok(data[field_name], expected):
            return False, f"Field '{field_name}' must be of type {type_name(expected)}"

    for field_name, expected in (optional_fields or {}).items():
        value = data.get(field_name)
        if value is not None and not type_ok(value, expected):
            return False, f"Field '{field_name}' must be of type {type_name(expected)}"

    for field_name, max_len in (max_lengths or {}).items():
        value = data.get(field_name)
        if isinstance(value, str) and len(value) > max_len:
            return False, f"Field '{field_name}' exceeds maximum length of {max_len}"

    return True, None


def json_body() -> Any:
    """Request JSON, or None when the body is missing or malformed."""
    return request.get_json(silent=True)


def bad_request(message: str):
    return jsonify({"error": message}), 400


def require_api_key(f):
    """Require the X-API-Key header on write endpoints when auth is enabled."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_app.config.get("ARENA_REQUIRE_AUTH", False):
            return f(*args, **kwargs)

        provided_key = request.headers.get("X-API-Key")
        if not provided_key:
            return jsonify({
                "error": "API key required",
                "hint": "Provide API key in X-API-Key header",
            }), 401

        api_key = current_app.config.get("ARENA_API_KEY")
        if not api_key:
            return jsonify({
                "error": "Server API key not configured",
                "hint": "Set ARENA_API_KEY environment variable",
            }), 503

        if not secrets.compare_digest(provided_key, api_key):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)

    return decorated_function
