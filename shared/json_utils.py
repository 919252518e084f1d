# shared/json_utils.py
"""
JSON helpers shared by the service modules.

asyncpg hands JSONB columns back as strings unless a codec is registered, and
LLM providers wrap JSON answers in markdown fences. Both land here.
"""

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\n?")
_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


def safe_json_parse(value: Any, default: Any = None, expected_type: Optional[type] = None) -> Any:
    """
    Safely parse JSON with consistent error handling.

    Args:
        value: Value to parse (string, dict, list, etc.)
        default: Default value to return on parse failure
        expected_type: Expected type for validation (dict, list, etc.)

    Returns:
        Parsed value or default on failure
    """
    if expected_type and isinstance(value, expected_type):
        return value

    if not isinstance(value, str):
        return value if value is not None else default

    try:
        parsed = json.loads(value)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.debug(f"JSON parse failed for value '{value[:100]}...': {e}")
        return default

    if expected_type and not isinstance(parsed, expected_type):
        logger.warning(f"Parsed JSON type {type(parsed)} doesn't match expected {expected_type}")
        return default

    return parsed


def parse_jsonb_field(field_value: Any, default: Optional[dict] = None, field_name: str = "unknown") -> dict:
    """Parse a JSONB column from the database with fallback to an empty dict"""
    if default is None:
        default = {}

    if field_value is None:
        return default

    if isinstance(field_value, dict):
        return field_value

    parsed = safe_json_parse(field_value, default, dict)

    if parsed == default and field_value:
        logger.warning(f"Failed to parse JSONB field '{field_name}': {field_value}")

    return parsed


def safe_json_dumps(obj: Any, default_str: str = "{}") -> str:
    """Serialize to a JSON string, falling back to default_str"""
    try:
        return json.dumps(obj, ensure_ascii=False, default=str)
    except (TypeError, ValueError) as e:
        logger.warning(f"JSON serialization failed: {e}")
        return default_str


def extract_json_object(text: str) -> dict:
    """
    Pull the first JSON object out of a model response.

    Markdown code fences are stripped before matching.

    Raises:
        ValueError: When no JSON object can be found or decoded
    """
    cleaned = _FENCE_PATTERN.sub("", text or "").strip()
    match = _OBJECT_PATTERN.search(cleaned)
    if not match:
        raise ValueError("Response does not contain a JSON object")

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ValueError(f"Response JSON is malformed: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError("Response JSON is not an object")
    return parsed
