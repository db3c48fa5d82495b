"""Plugin option validation, legacy conversion and per-device UI schemas."""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
import logging
from typing import TYPE_CHECKING, Any

import voluptuous as vol

from .const import (
    CONF_DEVICES,
    CONF_MOCK_DEVICES,
    CONF_POLL,
    DEFAULT_POLL_MS,
    LEGACY_DEVICE_PREFIX,
)
from .domain.components import iter_kinds
from .domain.ids import ComponentKey, ComponentType

if TYPE_CHECKING:
    from .session import DeviceSession

_LOGGER = logging.getLogger(__name__)

_COLOR_CHANNEL = vol.All(vol.Coerce(int), vol.Range(min=0, max=255))

PRESET_SCHEMA = vol.Schema(
    {
        vol.Required("name"): str,
        vol.Optional("red", default=255): _COLOR_CHANNEL,
        vol.Optional("green", default=255): _COLOR_CHANNEL,
        vol.Optional("blue", default=255): _COLOR_CHANNEL,
        vol.Optional("white"): _COLOR_CHANNEL,
        vol.Optional("bright"): vol.Any(
            None, vol.All(vol.Coerce(int), vol.Range(min=0, max=100))
        ),
    },
    extra=vol.REMOVE_EXTRA,
)

COMPONENT_CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional("enabled"): bool,
        vol.Optional("displayName"): vol.Any(None, str),
        vol.Optional("path"): vol.Any(None, str),
        vol.Optional("switchPath"): vol.Any(None, str),
    },
    extra=vol.ALLOW_EXTRA,
)

DEVICE_CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required("id"): vol.All(str, vol.Length(min=1)),
        vol.Optional("name"): vol.Any(None, str),
        vol.Optional("address"): vol.Any(None, str),
        vol.Optional("hostname"): vol.Any(None, str),
        vol.Optional("model"): vol.Any(None, str),
        vol.Optional("enabled"): bool,
        vol.Optional("devicePath"): vol.Any(None, str),
        vol.Optional("displayName"): vol.Any(None, str),
        vol.Optional("password"): vol.Any(None, str),
        vol.Optional("maxReconnectAttempts"): vol.All(
            vol.Coerce(int), vol.Range(min=-1)
        ),
        vol.Optional("enableReconnection"): bool,
        vol.Optional("presets"): [PRESET_SCHEMA],
    },
    extra=vol.ALLOW_EXTRA,
)

PLUGIN_OPTIONS_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_POLL, default=DEFAULT_POLL_MS): vol.Coerce(int),
        vol.Optional(CONF_DEVICES, default=list): [dict],
        vol.Optional(CONF_MOCK_DEVICES, default=False): bool,
    },
    extra=vol.ALLOW_EXTRA,
)

_LEGACY_FIELDS = (
    ("deviceId", "id"),
    ("deviceAddress", "address"),
    ("deviceHostname", "hostname"),
    ("deviceName", "name"),
    ("deviceModel", "model"),
)


def validate_device_config(blob: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a device settings blob, including per-component entries."""

    validated = DEVICE_CONFIG_SCHEMA(dict(blob))
    for key, value in list(validated.items()):
        if ComponentKey.from_settings_key(key) is not None and isinstance(value, Mapping):
            validated[key] = COMPONENT_CONFIG_SCHEMA(dict(value))
    return validated


def convert_legacy_settings(options: MutableMapping[str, Any]) -> bool:
    """Move ``"Device ID <id>"`` entries into the ``devices`` list in place.

    Returns True when anything was converted so the caller can persist.
    """

    changed = False
    for key in [key for key in options if key.startswith(LEGACY_DEVICE_PREFIX)]:
        legacy = dict(options.pop(key) or {})
        converted: dict[str, Any] = {}
        for old, new in _LEGACY_FIELDS:
            converted[new] = legacy.pop(old, None)
        legacy.pop("deviceGeneration", None)
        converted.update(legacy)
        options.setdefault(CONF_DEVICES, []).append(converted)
        _LOGGER.debug("Converted legacy settings for %s", converted.get("id"))
        changed = True
    return changed


def load_options(raw: Mapping[str, Any] | None) -> tuple[dict[str, Any], bool]:
    """Return validated plugin options and whether legacy keys were converted."""

    options = dict(raw or {})
    changed = convert_legacy_settings(options)
    validated = PLUGIN_OPTIONS_SCHEMA(options)
    devices: list[dict[str, Any]] = []
    for device in validated[CONF_DEVICES]:
        try:
            devices.append(validate_device_config(device))
        except vol.Invalid as err:
            _LOGGER.warning("Ignoring invalid device settings %s: %s", device.get("id"), err)
    validated[CONF_DEVICES] = devices
    return validated, changed


def _preset_schema(with_white: bool) -> dict[str, Any]:
    required = ["name", "red", "green", "blue", "bright"]
    properties: dict[str, Any] = {
        "name": {"type": "string", "title": "Name"},
        "red": {"type": "number", "title": "Red", "default": 255},
        "green": {"type": "number", "title": "Green", "default": 255},
        "blue": {"type": "number", "title": "Blue", "default": 255},
        "bright": {
            "type": "number",
            "title": "Brightness",
            "description": "Number between 1-100. Set to 0 to preserve current brightness",
            "default": 100,
        },
    }
    if with_white:
        required.append("white")
        properties["white"] = {"type": "number", "title": "White", "default": 255}
    return {
        "title": "Presets",
        "type": "array",
        "items": {"type": "object", "required": required, "properties": properties},
    }


def device_schema(session: DeviceSession) -> dict[str, Any]:
    """Return the JSON schema used to edit one device's settings."""

    properties: dict[str, Any] = {
        "enabled": {"type": "boolean", "title": "Enabled", "default": True},
        "devicePath": {
            "type": "string",
            "title": "Device Path",
            "default": session.device_path,
            "description": "Used to generate the path name",
        },
        "displayName": {
            "type": "string",
            "title": "Display Name (meta)",
            "default": session.name or "",
        },
        "password": {
            "type": "string",
            "title": "Password",
            "description": "The password for the device, leave empty if no password is set",
        },
    }

    counts = session.components
    for kind in iter_kinds():
        count = counts.get(kind.kind, 0)
        layout = session.layout
        if count > 1 and layout is not None:
            for instance in layout.instances.get(kind.type, ()):
                properties[instance.key.settings_key] = {
                    "type": "object",
                    "properties": {
                        "path": {
                            "type": "string",
                            "title": "Path",
                            "default": str(instance.index),
                            "description": "Used to generate the path name",
                        },
                        "displayName": {"type": "string", "title": "Display Name (meta)"},
                        "enabled": {"type": "boolean", "title": "Enabled", "default": True},
                    },
                }
        if count > 0 and kind.supports_presets:
            properties["presets"] = _preset_schema(kind.type is ComponentType.RGBW)

    return {"type": "object", "properties": properties}


__all__ = [
    "COMPONENT_CONFIG_SCHEMA",
    "DEVICE_CONFIG_SCHEMA",
    "PLUGIN_OPTIONS_SCHEMA",
    "PRESET_SCHEMA",
    "convert_legacy_settings",
    "device_schema",
    "load_options",
    "validate_device_config",
]
