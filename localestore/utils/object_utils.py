"""
Plain-data helpers used for cache snapshots and consistency diffing.
Only JSON-shaped data (dict, list, tuple, scalars) is supported.
"""

import copy
from typing import Any, Dict


def deep_clone(value: Any) -> Any:
    """Return an independent copy of a JSON-shaped value."""
    if isinstance(value, dict):
        return {key: deep_clone(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [deep_clone(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return copy.deepcopy(value)


def deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge source into a copy of target.

    Nested dicts are merged recursively, lists are replaced wholesale and a
    None in source overwrites the target value.

    Args:
        target: Base mapping
        source: Mapping whose values take precedence

    Returns:
        New merged mapping; neither input is modified
    """
    result = deep_clone(target)
    for key, value in source.items():
        current = result.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = deep_clone(value)
    return result


def compare_objects(left: Any, right: Any) -> bool:
    """Deep structural equality for JSON-shaped values."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right

    if isinstance(left, dict):
        if not isinstance(right, dict) or left.keys() != right.keys():
            return False
        return all(compare_objects(left[key], right[key]) for key in left)

    if isinstance(left, (list, tuple)):
        if not isinstance(right, (list, tuple)) or len(left) != len(right):
            return False
        return all(compare_objects(a, b) for a, b in zip(left, right))

    if isinstance(right, (dict, list, tuple)):
        return False

    return left == right
