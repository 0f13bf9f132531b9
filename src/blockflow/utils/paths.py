"""Dotted-path access into nested payloads."""

from typing import Any, Optional

# Distinguishes "field missing" from a field explicitly set to None.
MISSING = object()


def get_path(data: Any, path: Optional[str], default: Any = None) -> Any:
    """Resolve ``a.b.c`` against nested mappings and sequences.

    Any missing segment yields ``default``. Integer segments index into
    lists (``rows.0.id``); ``length`` on a list or string returns its size.
    An empty path returns ``data`` itself.
    """
    if not path:
        return data

    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, (list, tuple)):
            if part == "length":
                current = len(current)
            elif part.lstrip("-").isdigit():
                index = int(part)
                if not -len(current) <= index < len(current):
                    return default
                current = current[index]
            else:
                return default
        elif isinstance(current, str) and part == "length":
            current = len(current)
        else:
            return default
    return current


def has_path(data: Any, path: Optional[str]) -> bool:
    return get_path(data, path, MISSING) is not MISSING
