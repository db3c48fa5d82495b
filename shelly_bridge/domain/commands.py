"""Device write commands produced by the path mapping."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class BaseCommand:
    """Base type for component writes."""

    rpc_name: str
    index: int

    @property
    def set_method(self) -> str:
        """Return the ``<Component>.Set`` method name."""

        return f"{self.rpc_name}.Set"

    @property
    def status_method(self) -> str:
        """Return the ``<Component>.GetStatus`` method name."""

        return f"{self.rpc_name}.GetStatus"


@dataclass(slots=True)
class SetField(BaseCommand):
    """Set a single field and confirm it by reading the component back."""

    set_key: str
    value: Any
    read_key: str

    @property
    def params(self) -> dict[str, Any]:
        """Return the ``Set`` parameters."""

        return {"id": self.index, self.set_key: self.value}

    def confirmed_by(self, status: Any) -> bool:
        """Return True when ``status`` reports exactly the requested value."""

        if not isinstance(status, dict):
            return False
        return status.get(self.read_key) == self.value


@dataclass(slots=True)
class ApplyPreset(BaseCommand):
    """Apply a colour preset: colour first, then optional brightness."""

    name: str
    rgb: list[int]
    white: int | None = None
    brightness: int | None = None

    def steps(self) -> list[tuple[str, dict[str, Any]]]:
        """Return the ordered ``(method, params)`` calls for this preset."""

        colour: dict[str, Any] = {"id": self.index, "rgb": list(self.rgb)}
        if self.white is not None:
            colour["white"] = self.white
        steps = [(self.set_method, colour)]
        if self.brightness:
            steps.append(
                (self.set_method, {"id": self.index, "brightness": self.brightness})
            )
        return steps


__all__ = ["ApplyPreset", "BaseCommand", "SetField"]
