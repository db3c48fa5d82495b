"""Small helpers shared across the bridge."""

from __future__ import annotations

from collections.abc import Mapping
import math
import re
from typing import Any

_WORD_SPLIT_RE = re.compile(r"[^A-Za-z0-9]+")
_CASE_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

_MISSING = object()


def deep_get(data: Any, dotted_key: str, default: Any = None) -> Any:
    """Return the value at ``dotted_key`` inside nested mappings.

    Any missing segment, or a segment that is not a mapping, yields
    ``default`` instead of raising.
    """

    current: Any = data
    for part in dotted_key.split("."):
        if not isinstance(current, Mapping):
            return default
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return default
    return current


def has_path(data: Any, dotted_key: str) -> bool:
    """Return True when every segment of ``dotted_key`` exists in ``data``."""

    return deep_get(data, dotted_key, _MISSING) is not _MISSING


def camel_case(value: str) -> str:
    """Convert a free-form device name into a lowerCamelCase path segment."""

    words: list[str] = []
    for chunk in _WORD_SPLIT_RE.split(value.strip()):
        if chunk:
            words.extend(part for part in _CASE_BOUNDARY_RE.split(chunk) if part)
    if not words:
        return ""
    head, *tail = words
    return head.lower() + "".join(word[:1].upper() + word[1:].lower() for word in tail)


def coerce_bool(value: Any) -> bool:
    """Normalise boolean-ish write inputs.

    Only ``True``, ``1``, ``"on"`` and ``"true"`` count as on.
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value in {"on", "true"}
    return False


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded away from zero."""

    return int(math.floor(value + 0.5))


def kelvin_from_celsius(value: float) -> float:
    """Convert degrees Celsius to Kelvin."""

    return value + 273.15


def ratio_from_percent(value: float) -> float:
    """Convert a 0-100 percentage into a 0-1 ratio."""

    return value / 100
