"""Dotted-path access into nested form state.

Paths address top-level fields ("quantity"), subform members
("address.city") and array items ("items.0.qty"). Numeric segments index
lists. Writes never mutate the input: `set_path` returns a partial update
holding a copy of the affected top-level value, which the state manager
merges wholesale.
"""

import copy
from collections.abc import Mapping
from typing import Any


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def split_path(path: str) -> list[str | int]:
    """Split "items.0.qty" into ["items", 0, "qty"]."""
    if not path or any(not part for part in path.split(".")):
        raise ValueError(f"Invalid field path: {path!r}")
    return [int(part) if part.isdigit() else part for part in path.split(".")]


def schema_path(path: str) -> str:
    """Drop array indexes: "items.0.qty" -> "items.qty"."""
    return ".".join(str(part) for part in split_path(path) if not isinstance(part, int))


def _step(container: Any, segment: str | int) -> Any:
    if isinstance(segment, int) and isinstance(container, list):
        if 0 <= segment < len(container):
            return container[segment]
        return MISSING
    if isinstance(container, Mapping):
        return container.get(str(segment), MISSING)
    return MISSING


def get_path(data: Mapping[str, Any], path: str, default: Any = MISSING) -> Any:
    """Read a value by dotted path, returning `default` when any segment is absent."""
    current: Any = data
    for segment in split_path(path):
        current = _step(current, segment)
        if current is MISSING:
            return default
    return current


def has_path(data: Mapping[str, Any], path: str) -> bool:
    return get_path(data, path) is not MISSING


def set_path(data: Mapping[str, Any], path: str, value: Any) -> dict[str, Any]:
    """
    Build the partial update that writes `value` at `path`.

    Intermediate mappings are created when absent. List indexes must exist,
    except one past the end, which appends.

    Returns:
        {top_level_key: new_value}; the input mapping is left untouched.

    Raises:
        KeyError: If the path runs through a scalar or an out-of-range index
    """
    segments = split_path(path)
    head = str(segments[0])
    if len(segments) == 1:
        return {head: value}

    root = copy.deepcopy(data.get(head)) if isinstance(data, Mapping) else None
    if root is None:
        root = [] if isinstance(segments[1], int) else {}

    container: Any = root
    for index, segment in enumerate(segments[1:], start=1):
        last = index == len(segments) - 1
        if isinstance(container, list):
            if not isinstance(segment, int) or segment > len(container):
                raise KeyError(f"Cannot address {segment!r} in list at '{path}'")
            if segment == len(container):
                container.append(value if last else {})
            elif last:
                container[segment] = value
            container = container[segment]
        elif isinstance(container, dict):
            key = str(segment)
            if last:
                container[key] = value
            else:
                if not isinstance(container.get(key), (dict, list)):
                    container[key] = [] if isinstance(segments[index + 1], int) else {}
                container = container[key]
        else:
            raise KeyError(f"Cannot address {segment!r} in scalar value at '{path}'")
    return {head: root}
