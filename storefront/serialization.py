"""
Ordered string lists (product features, supported maps) are persisted as JSON
text in both backends and handed back to callers as Python lists.
"""
from __future__ import annotations

import json

from .errors import ValidationError


def dump_list(value, *, field: str = "value") -> str:
    """Serialize a list of strings (or already-serialized JSON text) to JSON text."""
    if value is None:
        return "[]"
    if isinstance(value, str):
        value = load_list(value, field=field)
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list of strings")
    items = []
    for item in value:
        if not isinstance(item, str):
            raise ValidationError(f"{field} must be a list of strings")
        items.append(item)
    return json.dumps(items, ensure_ascii=False)


def load_list(text, *, field: str = "value") -> list[str]:
    if text is None or text == "":
        return []
    if isinstance(text, (list, tuple)):
        return list(text)
    try:
        value = json.loads(text)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a JSON list of strings")
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{field} must be a JSON list of strings")
    return value
