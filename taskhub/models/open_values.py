"""
Open-schema values for ``Task.labels`` / ``Task.custom_fields`` / ``Task.tags``.

An open value is one of:

    string | integer | float | boolean | null | list[value] | map[str, value]

``normalize_open_value`` is total: every input either comes back as a
JSON-compatible value of one of those kinds or raises ``ValidationError``
naming the offending path (``custom_fields.budget[2]``). Nothing untyped
reaches the JSON columns.
"""

import math

from taskhub.core.exceptions import ValidationError

MAX_DEPTH = 8
MAX_KEY_LENGTH = 100
MAX_TAG_LENGTH = 50

SCALAR_KINDS = {
    bool: "boolean",
    int: "integer",
    float: "float",
    str: "string",
}


def value_kind(value):
    """Return the tag of an open value: string/integer/float/boolean/null/list/map."""
    if value is None:
        return "null"
    # bool before int: bool is an int subclass
    for py_type, kind in SCALAR_KINDS.items():
        if isinstance(value, py_type):
            return kind
    if isinstance(value, (list, tuple)):
        return "list"
    if isinstance(value, dict):
        return "map"
    return None


def normalize_open_value(value, path, depth=0):
    kind = value_kind(value)
    if kind is None:
        raise ValidationError(
            f"{path}: unsupported value type {type(value).__name__}",
            details={path: "must be string, number, boolean, null, list or map"},
        )
    if depth > MAX_DEPTH:
        raise ValidationError(f"{path}: nesting too deep", details={path: f"max depth {MAX_DEPTH}"})
    if kind == "float" and not math.isfinite(value):
        raise ValidationError(f"{path}: non-finite number", details={path: "must be finite"})
    if kind == "list":
        return [normalize_open_value(v, f"{path}[{i}]", depth + 1) for i, v in enumerate(value)]
    if kind == "map":
        return normalize_open_map(value, path, depth + 1)
    return value


def normalize_open_map(value, path, depth=0):
    """Validate a string-keyed map of open values. ``None`` means empty."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{path} must be an object", details={path: "must be an object"})
    result = {}
    for key, item in value.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError(f"{path}: keys must be non-empty strings", details={path: "invalid key"})
        if len(key) > MAX_KEY_LENGTH:
            raise ValidationError(
                f"{path}.{key[:20]}…: key too long", details={path: f"keys ≤ {MAX_KEY_LENGTH} chars"},
            )
        result[key] = normalize_open_value(item, f"{path}.{key}", depth)
    return result


def normalize_tags(value, path="tags"):
    """Tags are a set of strings; first-seen order is kept, duplicates dropped."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{path} must be a list of strings", details={path: "must be a list"})
    seen = []
    for i, tag in enumerate(value):
        if not isinstance(tag, str):
            raise ValidationError(f"{path}[{i}] must be a string", details={f"{path}[{i}]": "must be a string"})
        tag = tag.strip()
        if not tag:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValidationError(
                f"{path}[{i}] too long", details={f"{path}[{i}]": f"≤ {MAX_TAG_LENGTH} chars"},
            )
        if tag not in seen:
            seen.append(tag)
    return seen
