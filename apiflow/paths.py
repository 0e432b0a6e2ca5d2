"""Path expressions over JSON-like values.

Paths are dotted property names with bracketed numeric indices, e.g.
``data.items[0].id``. In JSONPath mode the same grammar is prefixed with an
indicator (``$`` by default): ``$.data.items[0].id``.
"""

from __future__ import annotations

import re
from typing import Any, List, Mapping

from .constants import DEFAULT_JSON_PATH_INDICATOR

_INDEX_SEGMENT = re.compile(r"^\[(\d+)\]$")


class _NotFound:
    """Sentinel for a path that does not resolve."""

    _instance = None

    def __new__(cls) -> "_NotFound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "NOT_FOUND"


NOT_FOUND: Any = _NotFound()


def parse_path(path: str) -> List[str]:
    """Split ``path`` into property and ``[N]`` index segments.

    Dots inside brackets are not separators and a single leading dot is
    ignored, so ``".a.b"`` and ``"a.b"`` parse the same way.
    """
    if not path or path == ".":
        return []

    normalized = path[1:] if path.startswith(".") else path
    segments: List[str] = []
    current = ""
    in_bracket = False

    for char in normalized:
        if char == "[" and not in_bracket:
            if current:
                segments.append(current)
            current = char
            in_bracket = True
        elif char == "]" and in_bracket:
            current += char
            segments.append(current)
            current = ""
            in_bracket = False
        elif char == "." and not in_bracket:
            if current:
                segments.append(current)
                current = ""
        else:
            current += char

    if current:
        segments.append(current)
    return segments


def _step(current: Any, segment: str) -> Any:
    index_match = _INDEX_SEGMENT.match(segment)
    if index_match:
        index = int(index_match.group(1))
        if isinstance(current, list) and index < len(current):
            return current[index]
        return NOT_FOUND

    if isinstance(current, Mapping):
        return current.get(segment, NOT_FOUND)
    # ``items.0`` behaves like ``items[0]``
    if isinstance(current, list) and segment.isdigit():
        index = int(segment)
        return current[index] if index < len(current) else NOT_FOUND
    return NOT_FOUND


def resolve_path(value: Any, path: str) -> Any:
    """Walk ``path`` through ``value``; return ``NOT_FOUND`` on any miss."""
    current = value
    for segment in parse_path(path):
        if current is None or current is NOT_FOUND:
            return NOT_FOUND
        current = _step(current, segment)
    return current


def get_path(value: Any, path: str, default: Any = None) -> Any:
    """Return the value at ``path`` or ``default`` when it does not resolve."""
    result = resolve_path(value, path)
    return default if result is NOT_FOUND else result


def resolve_json_path(
    value: Any,
    path: str,
    indicator: str = DEFAULT_JSON_PATH_INDICATOR,
    strict: bool = True,
) -> Any:
    """Resolve a JSONPath-style expression such as ``$.data.id``.

    With ``strict`` an expression lacking ``indicator`` is rejected as
    ``NOT_FOUND``; otherwise the indicator is optional and the remainder is
    treated as a plain path. ``$`` alone, or an empty path when not
    ``strict``, yields ``value`` itself.
    """
    if not path:
        return NOT_FOUND if strict else value
    if path.startswith(indicator):
        normalized = path[len(indicator):]
    elif strict:
        return NOT_FOUND
    else:
        normalized = path

    if normalized == "":
        return value
    return resolve_path(value, normalized)
