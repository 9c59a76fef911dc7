"""
Shared model helpers.

JSON-in-text columns, enum coercion and timestamp serialization used by
every model module.
"""

import json
from enum import Enum


def json_text_property(attr_name, default=list):
    """
    Expose a Text column holding JSON as a Python value.

    The column keeps its raw string under ``attr_name``; unreadable content
    falls back to ``default()``.
    """
    def getter(self):
        raw = getattr(self, attr_name)
        if not raw:
            return default()
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return default()

    def setter(self, value):
        setattr(self, attr_name, json.dumps(value) if value is not None else None)

    return property(getter, setter)


def parse_enum(enum_cls, value, field_name=None, default=None):
    """
    Coerce a request value into ``enum_cls``.

    Accepts enum members, their values and case-insensitive names.
    Missing values return ``default``; unknown values raise ValueError.
    """
    if value is None or value == '':
        return default
    if isinstance(value, enum_cls):
        return value
    candidate = str(value).strip().upper().replace(' ', '_').replace('-', '_')
    try:
        return enum_cls(candidate)
    except ValueError:
        pass
    if candidate in enum_cls.__members__:
        return enum_cls[candidate]
    raise ValueError(f"Invalid {field_name or enum_cls.__name__}: {value}")


def require_enum(enum_cls, value, field_name):
    """Like parse_enum, but a missing value is an error rather than a default."""
    member = parse_enum(enum_cls, value, field_name)
    if member is None:
        raise ValueError(f"{field_name} cannot be empty")
    return member


def enum_value(value):
    """Serialize an enum member (or None) for JSON output."""
    if isinstance(value, Enum):
        return value.value
    return value


def isoformat(dt):
    return dt.isoformat() if dt else None
