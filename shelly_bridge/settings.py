"""Typed per-device settings records."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from .const import UNLIMITED_RECONNECTS
from .domain.ids import ComponentKey


class ColorPreset(BaseModel):
    """Named colour preset for RGB and RGBW lights."""

    model_config = ConfigDict(extra="ignore")

    name: str
    red: int = 255
    green: int = 255
    blue: int = 255
    white: int | None = None
    bright: int | None = None

    @property
    def rgb(self) -> list[int]:
        """Return the preset colour as an ``[r, g, b]`` list."""

        return [self.red, self.green, self.blue]

    @property
    def ignores_brightness(self) -> bool:
        """Return True when matching and applying skip brightness."""

        return not self.bright


class ComponentSettings(BaseModel):
    """Overrides for a single component instance."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    enabled: bool | None = None
    display_name: str | None = Field(default=None, alias="displayName")
    path: str | None = None
    switch_path: str | None = Field(default=None, alias="switchPath")

    @property
    def is_enabled(self) -> bool:
        """Return False only when the instance is explicitly disabled."""

        return self.enabled is not False

    @property
    def path_segment(self) -> str | None:
        """Return the administrator supplied path segment, if any."""

        return self.path or self.switch_path or None


class DeviceSettings(BaseModel):
    """Settings blob for one device.

    Component overrides arrive as top-level ``"<kind><index>"`` keys (for
    example ``switch0``); they are parsed into :attr:`components`, keyed by
    :class:`ComponentKey`. Unknown keys are preserved so the blob
    round-trips through :meth:`to_blob` unchanged.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    name: str | None = None
    address: str | None = None
    hostname: str | None = None
    model: str | None = None
    enabled: bool | None = None
    device_path: str | None = Field(default=None, alias="devicePath")
    display_name: str | None = Field(default=None, alias="displayName")
    password: str | None = None
    max_reconnect_attempts: int = Field(
        default=UNLIMITED_RECONNECTS, alias="maxReconnectAttempts"
    )
    enable_reconnection: bool = Field(default=True, alias="enableReconnection")
    presets: list[ColorPreset] = Field(default_factory=list)

    _components: dict[ComponentKey, ComponentSettings] = PrivateAttr(
        default_factory=dict
    )

    @model_validator(mode="after")
    def _collect_components(self) -> DeviceSettings:
        """Parse ``"<kind><index>"`` extras into typed component records."""

        components: dict[ComponentKey, ComponentSettings] = {}
        for key, value in (self.model_extra or {}).items():
            component_key = ComponentKey.from_settings_key(key)
            if component_key is None or not isinstance(value, Mapping):
                continue
            components[component_key] = ComponentSettings.model_validate(value)
        self._components = components
        return self

    @classmethod
    def from_blob(cls, blob: Mapping[str, Any] | DeviceSettings | None) -> DeviceSettings:
        """Return settings parsed from a raw blob (``None`` means defaults)."""

        if isinstance(blob, DeviceSettings):
            return blob
        return cls.model_validate(dict(blob or {}))

    @property
    def is_enabled(self) -> bool:
        """Return False only when the device is explicitly disabled."""

        return self.enabled is not False

    @property
    def components(self) -> dict[ComponentKey, ComponentSettings]:
        """Return the per-instance overrides keyed by component."""

        return dict(self._components)

    def component(self, key: ComponentKey) -> ComponentSettings | None:
        """Return overrides for ``key`` or None when none are configured."""

        return self._components.get(key)

    def to_blob(self) -> dict[str, Any]:
        """Return the wire-shaped settings blob."""

        blob = self.model_dump(by_alias=True, exclude_none=True)
        if not self.presets:
            blob.pop("presets", None)
        for key, component in self._components.items():
            blob[key.settings_key] = component.model_dump(
                by_alias=True, exclude_none=True
            )
        return blob


__all__ = ["ColorPreset", "ComponentSettings", "DeviceSettings"]
