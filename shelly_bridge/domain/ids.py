"""Identifiers for device components."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re


class ComponentType(str, Enum):
    """Supported component kinds, in discovery priority order."""

    SWITCH = "switch"
    LIGHT = "light"
    RGB = "rgb"
    RGBW = "rgbw"
    EM = "em"
    EM1 = "em1"
    PM1 = "pm1"
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    VOLTMETER = "voltmeter"
    INPUT = "input"
    SMOKE = "smoke"
    FLOOD = "flood"
    DEVICEPOWER = "devicepower"


# Longest names first so "em10" resolves to em1/0 before em/10.
_SETTINGS_KEY_RE = re.compile(
    r"^(?P<kind>"
    + "|".join(sorted((re.escape(t.value) for t in ComponentType), key=len, reverse=True))
    + r")(?P<index>\d+)$"
)


def normalize_component_type(kind: ComponentType | str) -> ComponentType:
    """Normalize assorted kind inputs to ``ComponentType``."""

    try:
        return ComponentType(kind)
    except ValueError as err:
        raise ValueError(f"Unknown component kind: {kind}") from err


@dataclass(frozen=True, slots=True)
class ComponentKey:
    """Identifier for a component instance: kind plus device-side index."""

    kind: ComponentType
    index: int

    def __post_init__(self) -> None:
        """Validate the kind and index."""

        object.__setattr__(self, "kind", normalize_component_type(self.kind))
        if isinstance(self.index, bool) or int(self.index) < 0:
            msg = "index must be a non-negative integer"
            raise ValueError(msg)
        object.__setattr__(self, "index", int(self.index))

    @property
    def status_key(self) -> str:
        """Return the key the device uses in status payloads."""

        return f"{self.kind.value}:{self.index}"

    @property
    def settings_key(self) -> str:
        """Return the key used for this instance in a settings blob."""

        return f"{self.kind.value}{self.index}"

    @classmethod
    def from_settings_key(cls, key: str) -> ComponentKey | None:
        """Parse a ``"<kind><index>"`` settings key, or return None."""

        match = _SETTINGS_KEY_RE.match(key)
        if match is None:
            return None
        return cls(ComponentType(match.group("kind")), int(match.group("index")))
