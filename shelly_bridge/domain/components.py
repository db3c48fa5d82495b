"""Static registry of supported component kinds and their field tables."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import logging
from typing import Any, Final

from ..errors import InvalidValue
from ..util import coerce_bool, kelvin_from_celsius, ratio_from_percent, round_half_up
from .ids import ComponentType

_LOGGER = logging.getLogger(__name__)

# Returned by FieldSpec.to_output when the device reports a value of the wrong type.
UNCONVERTIBLE: Final = object()


@dataclass(frozen=True, slots=True)
class WriteSpec:
    """Translate a requested value into the device-side ``Set`` parameter."""

    set_key: str
    encode: Callable[[Any], Any]


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """One readable (and optionally writable) status field."""

    source_key: str
    target_suffix: str | None = None
    unit: str | None = None
    convert: Callable[[Any], Any] | None = None
    write: WriteSpec | None = None

    @property
    def suffix(self) -> str:
        """Return the output path suffix."""

        return self.target_suffix or self.source_key

    def to_output(self, raw: Any) -> Any:
        """Apply the conversion, passing ``None`` through untouched.

        Values the converter rejects yield ``UNCONVERTIBLE`` so callers can
        skip them.
        """

        if self.convert is None or raw is None:
            return raw
        try:
            return self.convert(raw)
        except (TypeError, ValueError):
            _LOGGER.debug("Skipping unconvertible %s value %r", self.source_key, raw)
            return UNCONVERTIBLE


@dataclass(frozen=True, slots=True)
class AlarmSpec:
    """Notification wording for alarm-type kinds."""

    detected: str
    clear: str


@dataclass(frozen=True, slots=True)
class ComponentKind:
    """Registry entry describing one component kind."""

    type: ComponentType
    base_path: str
    rpc_name: str
    fields: tuple[FieldSpec, ...]
    flatten: bool = True
    supports_presets: bool = False
    alarm: AlarmSpec | None = None

    @property
    def kind(self) -> str:
        """Return the kind tag used in status keys."""

        return self.type.value

    def field_for_suffix(self, suffix: str) -> FieldSpec | None:
        """Return the field whose output suffix is ``suffix``."""

        for spec in self.fields:
            if spec.suffix == suffix:
                return spec
        return None

    @property
    def writable_fields(self) -> tuple[FieldSpec, ...]:
        """Return the fields that accept writes."""

        return tuple(spec for spec in self.fields if spec.write is not None)


def _encode_on(value: Any) -> bool:
    return coerce_bool(value)


def _encode_unit_interval(value: Any) -> int:
    """Scale a 0-1 ratio to the device's integer 0-100 range."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidValue(f"expected a number between 0 and 1, got {value!r}")
    scaled = round_half_up(value * 100)
    if not 0 <= scaled <= 100:
        raise InvalidValue(f"value {value!r} is outside 0-1")
    return scaled


def _encode_channel(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidValue(f"expected a colour channel 0-255, got {value!r}")
    channel = round_half_up(value)
    if not 0 <= channel <= 255:
        raise InvalidValue(f"colour channel {value!r} is outside 0-255")
    return channel


def _encode_rgb(value: Any) -> list[int]:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise InvalidValue(f"expected [red, green, blue], got {value!r}")
    return [_encode_channel(channel) for channel in value]


_OUTPUT = FieldSpec(
    "output", "state", unit="bool", write=WriteSpec("on", _encode_on)
)
_BRIGHTNESS = FieldSpec(
    "brightness",
    "dimmingLevel",
    unit="ratio",
    convert=ratio_from_percent,
    write=WriteSpec("brightness", _encode_unit_interval),
)

_SWITCH_COMMON: tuple[FieldSpec, ...] = (
    _OUTPUT,
    FieldSpec("voltage", unit="V"),
    FieldSpec("temperature.tC", "temperature", unit="K", convert=kelvin_from_celsius),
    FieldSpec("apower", unit="W"),
    FieldSpec("current", unit="A"),
    FieldSpec("aenergy.total", unit="Wh"),
    FieldSpec("aenergy.by_minute"),
    FieldSpec("aenergy.minute_ts"),
)

_RETURNED_ENERGY: tuple[FieldSpec, ...] = (
    FieldSpec("ret_aenergy.total", unit="Wh"),
    FieldSpec("ret_aenergy.by_minute"),
    FieldSpec("ret_aenergy.minute_ts"),
)

_RGB_FIELDS: tuple[FieldSpec, ...] = (
    *_SWITCH_COMMON,
    _BRIGHTNESS,
    FieldSpec("rgb", write=WriteSpec("rgb", _encode_rgb)),
)


def _em_phase_fields() -> tuple[FieldSpec, ...]:
    fields: list[FieldSpec] = []
    for phase in ("a", "b", "c"):
        fields.extend(
            (
                FieldSpec(f"{phase}_current", unit="A"),
                FieldSpec(f"{phase}_voltage", unit="V"),
                FieldSpec(f"{phase}_act_power", unit="W"),
                FieldSpec(f"{phase}_aprt_power", unit="VA"),
                FieldSpec(f"{phase}_pf", unit="ratio"),
                FieldSpec(f"{phase}_freq", unit="Hz"),
            )
        )
    fields.extend(
        (
            FieldSpec("n_current", unit="A"),
            FieldSpec("total_current", unit="A"),
            FieldSpec("total_act_power", unit="W"),
            FieldSpec("total_aprt_power", unit="VA"),
            FieldSpec("user_calibrated_phase"),
        )
    )
    return tuple(fields)


_KINDS: tuple[ComponentKind, ...] = (
    ComponentKind(
        ComponentType.SWITCH,
        "electrical.switches",
        "Switch",
        (
            *_SWITCH_COMMON,
            FieldSpec("pf", unit="ratio"),
            FieldSpec("freq", unit="Hz"),
            *_RETURNED_ENERGY,
        ),
    ),
    ComponentKind(
        ComponentType.LIGHT,
        "electrical.switches",
        "Light",
        (*_SWITCH_COMMON, _BRIGHTNESS),
    ),
    ComponentKind(
        ComponentType.RGB,
        "electrical.switches",
        "RGB",
        _RGB_FIELDS,
        supports_presets=True,
    ),
    ComponentKind(
        ComponentType.RGBW,
        "electrical.switches",
        "RGBW",
        (*_RGB_FIELDS, FieldSpec("white", write=WriteSpec("white", _encode_channel))),
        supports_presets=True,
    ),
    ComponentKind(
        ComponentType.EM,
        "electrical.energymeter",
        "EM",
        _em_phase_fields(),
    ),
    ComponentKind(
        ComponentType.EM1,
        "electrical.energymeter",
        "EM1",
        (
            FieldSpec("current", unit="A"),
            FieldSpec("voltage", unit="V"),
            FieldSpec("act_power", unit="W"),
            FieldSpec("aprt_power", unit="VA"),
            FieldSpec("pf", unit="ratio"),
            FieldSpec("freq", unit="Hz"),
        ),
    ),
    ComponentKind(
        ComponentType.PM1,
        "electrical.powermeter",
        "PM1",
        (
            FieldSpec("voltage", unit="V"),
            FieldSpec("current", unit="A"),
            FieldSpec("apower", unit="W"),
            FieldSpec("aprtpower", unit="VA"),
            FieldSpec("pf", unit="ratio"),
            FieldSpec("freq", unit="Hz"),
            FieldSpec("aenergy.total", unit="Wh"),
            FieldSpec("aenergy.by_minute"),
            FieldSpec("aenergy.minute_ts"),
            *_RETURNED_ENERGY,
        ),
    ),
    ComponentKind(
        ComponentType.TEMPERATURE,
        "environment",
        "Temperature",
        (FieldSpec("tC", "temperature", unit="K", convert=kelvin_from_celsius),),
    ),
    ComponentKind(
        ComponentType.HUMIDITY,
        "environment",
        "Humidity",
        (FieldSpec("rh", "humidity", unit="ratio", convert=ratio_from_percent),),
    ),
    ComponentKind(
        ComponentType.VOLTMETER,
        "electrical.voltmeter",
        "Voltmeter",
        (FieldSpec("voltage", unit="V"),),
    ),
    ComponentKind(
        ComponentType.INPUT,
        "electrical.inputs",
        "Input",
        (
            FieldSpec("state", unit="bool"),
            FieldSpec("percent", unit="ratio", convert=ratio_from_percent),
            FieldSpec("xpercent", unit="ratio"),
            FieldSpec("counts.total"),
            FieldSpec("counts.xtotal"),
            FieldSpec("counts.by_minute"),
            FieldSpec("counts.xby_minute"),
            FieldSpec("counts.minute_ts"),
            FieldSpec("counts.freq", unit="Hz"),
            FieldSpec("counts.xfreq", unit="Hz"),
        ),
        flatten=False,
    ),
    ComponentKind(
        ComponentType.SMOKE,
        "environment.smoke",
        "Smoke",
        (),
        alarm=AlarmSpec("Smoke detected", "No smoke detected"),
    ),
    ComponentKind(
        ComponentType.FLOOD,
        "environment.flood",
        "Flood",
        (FieldSpec("alarm", unit="bool"), FieldSpec("mute", unit="bool")),
        flatten=False,
        alarm=AlarmSpec("Water detected", "No water detected"),
    ),
    ComponentKind(
        ComponentType.DEVICEPOWER,
        "electrical.batteries",
        "DevicePower",
        (
            FieldSpec("battery.V", "battery.voltage", unit="V"),
            FieldSpec("battery.percent", unit="ratio", convert=ratio_from_percent),
            FieldSpec("external.present", "externalPower", unit="bool"),
        ),
    ),
)

COMPONENT_KINDS: Mapping[ComponentType, ComponentKind] = {
    kind.type: kind for kind in _KINDS
}


def get_kind(kind: ComponentType | str) -> ComponentKind:
    """Return the registry entry for ``kind``."""

    return COMPONENT_KINDS[ComponentType(kind)]


def iter_kinds() -> tuple[ComponentKind, ...]:
    """Return every registered kind in priority order."""

    return _KINDS


__all__ = [
    "COMPONENT_KINDS",
    "UNCONVERTIBLE",
    "AlarmSpec",
    "ComponentKind",
    "FieldSpec",
    "WriteSpec",
    "get_kind",
    "iter_kinds",
]
