"""
JSON Serialisation Helpers
==========================
Turns gateway objects into JSON-safe structures for API responses and
WebSocket broadcasts.

Handles:
1. Dataclasses (DeviceRecord, DeviceRuntimeState, ResolvedMatch)
2. Enums (ChannelKind)
3. Recursive dicts, lists, tuples and sets
4. Fallback string conversion for anything else
"""
import json
import logging
import dataclasses
from typing import Any
from datetime import datetime, date
from enum import Enum

logger = logging.getLogger("json_helpers")


def serialise_value(value: Any) -> Any:
    """
    Recursively serialise a value to be JSON-compatible.

    Args:
        value: Any value that needs to be JSON-serialisable

    Returns:
        JSON-serialisable representation of the value
    """
    if value is None:
        return None

    # Enums first: ChannelKind is also a str
    if isinstance(value, Enum):
        return value.value

    # Basic JSON types (fast path)
    if isinstance(value, (str, int, float, bool)):
        return value

    if isinstance(value, bytes):
        try:
            return value.decode('utf-8')
        except UnicodeDecodeError:
            return value.hex()

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return serialise_value(dataclasses.asdict(value))

    if isinstance(value, dict):
        return {serialise_key(k): serialise_value(v) for k, v in value.items()}

    if isinstance(value, (list, tuple, set)):
        return [serialise_value(item) for item in value]

    # Objects exposing their own dict form (ResolveResult)
    if hasattr(value, 'to_dict'):
        try:
            return serialise_value(value.to_dict())
        except Exception:
            pass

    # Last resort: convert to string
    try:
        return str(value)
    except Exception as e:
        logger.warning(f"Failed to serialise {type(value).__name__}: {e}")
        return f"<{type(value).__name__}>"


def serialise_key(key: Any) -> str:
    """Convert any key type to a string for JSON dict keys."""
    if key is None:
        return "null"

    if isinstance(key, Enum):
        return str(key.value)

    if isinstance(key, str):
        return key

    return str(key)


def safe_json_dumps(obj: Any, **kwargs) -> str:
    """
    Safely serialise any object to JSON string.

    Args:
        obj: Object to serialise
        **kwargs: Additional arguments to pass to json.dumps

    Returns:
        JSON string
    """
    try:
        serialised = serialise_value(obj)
        return json.dumps(serialised, **kwargs)
    except Exception as e:
        logger.error(f"Failed to serialise to JSON: {e}")
        return json.dumps({"error": "serialisation_failed", "type": type(obj).__name__})


def prepare_for_json(data: Any) -> Any:
    """
    Prepare data structure for JSON serialization.

    This is the main function to use before passing data to json.dumps(),
    FastAPI responses, or WebSocket broadcasts.
    """
    return serialise_value(data)
