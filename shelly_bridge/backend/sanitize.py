"""Sanitisation helpers for logging device traffic."""

from __future__ import annotations

import re

_SECRET_FIELD_RE = re.compile(
    r'"(response|cnonce|password|nonce)"\s*:\s*("(?:[^"\\]|\\.)*"|-?\d+)',
    re.IGNORECASE,
)


def redact_frame(value: str | None) -> str:
    """Return ``value`` with digest credentials and passwords masked."""

    if not value:
        return ""
    return _SECRET_FIELD_RE.sub(lambda match: f'"{match.group(1)}":"***"', str(value))


def mask_identifier(value: str | None) -> str:
    """Return a masked identifier suitable for log output."""

    if value is None:
        return ""
    trimmed = str(value).strip()
    if not trimmed:
        return ""
    if len(trimmed) <= 4:
        return "***"
    if len(trimmed) <= 8:
        return f"{trimmed[:2]}...{trimmed[-2:]}"
    return f"{trimmed[:6]}...{trimmed[-4:]}"


__all__ = ["mask_identifier", "redact_frame"]
