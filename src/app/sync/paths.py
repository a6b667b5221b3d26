"""Minimal path accessor for mapping configuration.

Mapping entries address values with dotted paths (``Owner.email``,
``Tag.0.name``). Only nested dict keys and list indices are supported;
there is no expression language.
"""

from __future__ import annotations

from typing import Any


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Look up ``path`` in nested dicts/lists, returning ``default`` when absent.

    A key containing dots is matched whole before the path is split, so
    flat attribute names such as ``traits_zoho_lead/id`` or ``a.b`` keys
    stored verbatim still resolve.
    """
    if isinstance(data, dict) and path in data:
        return data[path]

    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current
