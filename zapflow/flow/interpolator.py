"""
Interpolator - {{path}} template substitution over the variable bag

Missing paths are left in the output verbatim. Substituted values are not
rescanned for tokens.
"""
import re
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")
INDEX_PATTERN = re.compile(r"\[(\d+)\]")

_MISSING = object()


@dataclass
class InterpolationMiss:
    """A token that could not be resolved (non-fatal)"""
    token: str
    path: str


def resolve_path(variables: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Walk the variable bag by dot-separated segments.

    Dict segments are key lookups; list segments are decimal indexes.

    Example:
        >>> resolve_path({"order": {"items": [{"sku": "A1"}]}}, "order.items.0.sku")
        'A1'
    """
    value = _walk(variables, path)
    return default if value is _MISSING else value


def _segments(path: str) -> List[str]:
    # items[0].name -> items.0.name
    return INDEX_PATTERN.sub(r".\1", path).strip(".").split(".")


def _walk(variables: Any, path: str) -> Any:
    if not path:
        return _MISSING

    current = variables
    for segment in _segments(path):
        if isinstance(current, dict):
            if segment not in current:
                return _MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            if not segment.isdigit() or int(segment) >= len(current):
                return _MISSING
            current = current[int(segment)]
        else:
            return _MISSING

        if current is None:
            return _MISSING

    return current


def stringify(value: Any) -> str:
    """Render a variable value the way it appears inside a message"""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return str(value)


def interpolate(
    template: Optional[str],
    variables: Dict[str, Any],
    misses: Optional[List[InterpolationMiss]] = None
) -> str:
    """
    Replace every {{path}} token with the stringified variable value.

    Args:
        template: Text with tokens (None renders as "")
        variables: The variable bag
        misses: Optional list that receives an InterpolationMiss per unresolved token

    Returns:
        The rendered text

    Example:
        >>> interpolate("Hello {{user.name}}", {"user": {"name": "Bob"}})
        'Hello Bob'
        >>> interpolate("{{missing}}", {})
        '{{missing}}'
    """
    if not template:
        return ""

    def replace(match: "re.Match[str]") -> str:
        path = match.group(1)
        value = _walk(variables, path)
        if value is _MISSING:
            if misses is not None:
                misses.append(InterpolationMiss(token=match.group(0), path=path))
            return match.group(0)
        return stringify(value)

    return TOKEN_PATTERN.sub(replace, template)


def interpolate_data(
    value: Any,
    variables: Dict[str, Any],
    misses: Optional[List[InterpolationMiss]] = None
) -> Any:
    """Interpolate every string inside a nested dict/list structure"""
    if isinstance(value, str):
        return interpolate(value, variables, misses)
    if isinstance(value, dict):
        return {key: interpolate_data(item, variables, misses) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_data(item, variables, misses) for item in value]
    return value


def strip_braces(name: str) -> str:
    """`{{name}}` -> `name` (variable names are sometimes written as tokens)"""
    match = TOKEN_PATTERN.fullmatch((name or "").strip())
    return match.group(1) if match else (name or "").strip()


def assign_path(variables: Dict[str, Any], path: str, value: Any) -> None:
    """
    Set a value by dot path, creating nested dicts as needed.

    Example:
        >>> bag = {}
        >>> assign_path(bag, "customer.name", "Bob")
        >>> bag
        {'customer': {'name': 'Bob'}}
    """
    segments = _segments(strip_braces(path))
    current = variables
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = value
