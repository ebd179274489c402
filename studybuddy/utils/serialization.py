"""Centralized serialization utilities.

Converts the in-memory records used across the error-handling core
(dataclasses, enums, timezone-aware datetimes, LayerError instances) into
JSON-compatible structures for report export and the HTTP layer.

Usage:
    from studybuddy.utils.serialization import to_json_compatible, safe_json_dumps

    payload = to_json_compatible(health_monitor.get_health_status())
    text = safe_json_dumps(payload, indent=2)
"""

import dataclasses
import json
from datetime import datetime
from enum import Enum
from typing import Any


def to_json_compatible(obj: Any) -> Any:
    """Convert any object to JSON-compatible format.

    Handles:
    - datetime: timezone-aware -> ISO with offset, timezone-naive -> ISO with 'Z'
    - Enum: its value
    - objects exposing to_dict() (LayerError)
    - dataclasses: field-by-field, recursively
    - dict/list/tuple/set: recursive processing
    - Other types: returned as-is (int, str, float, bool, None)

    Examples:
        >>> from datetime import datetime, timezone
        >>> to_json_compatible(datetime(2025, 1, 1, 12, 0, 0))
        '2025-01-01T12:00:00Z'
        >>> to_json_compatible(datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc))
        '2025-01-01T12:00:00+00:00'
    """
    if obj is None:
        return None

    if isinstance(obj, datetime):
        if obj.tzinfo is not None:
            return obj.isoformat()
        return obj.isoformat() + 'Z'

    if isinstance(obj, Enum):
        return obj.value

    if hasattr(obj, 'to_dict') and callable(obj.to_dict):
        return to_json_compatible(obj.to_dict())

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: to_json_compatible(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
            if not f.name.startswith('_')
        }

    if isinstance(obj, dict):
        return {to_json_compatible(key): to_json_compatible(value) for key, value in obj.items()}

    if isinstance(obj, (list, tuple, set)):
        return [to_json_compatible(item) for item in obj]

    return obj


def safe_json_dumps(obj: Any, **kwargs) -> str:
    """Serialize any object to a JSON string via to_json_compatible.

    Raises:
        TypeError: If object contains types that can't be serialized
    """
    return json.dumps(to_json_compatible(obj), **kwargs)
