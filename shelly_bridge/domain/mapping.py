"""Translate raw device status into telemetry paths, deltas and metadata.

Everything here is a pure function of the status snapshot and the device
settings. Missing fields are skipped rather than treated as errors; only
:func:`translate_write` can fail.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
import re
from typing import Any, NamedTuple

from ..const import NOTIFICATIONS_ROOT, PRESET_SUFFIX, PRESET_UNKNOWN, UNKNOWN_ROOT
from ..errors import InvalidValue, UnwritableField
from ..settings import ColorPreset, ComponentSettings, DeviceSettings
from ..util import camel_case, deep_get, has_path
from .commands import ApplyPreset, SetField
from .components import UNCONVERTIBLE, AlarmSpec, ComponentKind, iter_kinds
from .ids import ComponentKey, ComponentType


class PathValue(NamedTuple):
    """A ``(path, value)`` pair emitted to the telemetry host."""

    path: str
    value: Any

    def as_message(self) -> dict[str, Any]:
        """Return the host wire shape."""

        return {"path": self.path, "value": self.value}


@dataclass(frozen=True, slots=True)
class ComponentInstance:
    """One discovered occurrence of a component kind on a device."""

    kind: ComponentKind
    index: int
    settings: ComponentSettings | None = None

    @property
    def key(self) -> ComponentKey:
        """Return the composite identifier of this instance."""

        return ComponentKey(self.kind.type, self.index)

    @property
    def enabled(self) -> bool:
        """Return False when the instance is disabled in settings."""

        return self.settings is None or self.settings.is_enabled

    @property
    def display_name(self) -> str | None:
        """Return the administrator supplied display name, if any."""

        return self.settings.display_name if self.settings else None

    @property
    def path_override(self) -> str | None:
        """Return the administrator supplied path segment, if any."""

        return self.settings.path_segment if self.settings else None

    def status(self, raw_status: Mapping[str, Any]) -> Any:
        """Return this instance's fragment of a raw status snapshot."""

        return raw_status.get(self.key.status_key)


@dataclass(frozen=True, slots=True)
class DeviceLayout:
    """Discovered component instances plus the device's root path."""

    root: str
    instances: Mapping[ComponentType, tuple[ComponentInstance, ...]]
    name: str | None = None
    display_name: str | None = None
    presets: tuple[ColorPreset, ...] = field(default_factory=tuple)

    def count(self, kind: ComponentType) -> int:
        """Return how many instances of ``kind`` were discovered."""

        return len(self.instances.get(kind, ()))

    def iter_instances(self) -> Iterator[ComponentInstance]:
        """Yield every instance in registry order."""

        for kind in iter_kinds():
            yield from self.instances.get(kind.type, ())

    def instance(self, key: ComponentKey) -> ComponentInstance | None:
        """Return the instance for ``key`` or None."""

        for candidate in self.instances.get(key.kind, ()):
            if candidate.index == key.index:
                return candidate
        return None

    @property
    def counts(self) -> dict[str, int]:
        """Return instance counts keyed by kind tag."""

        return {
            kind.kind: self.count(kind.type)
            for kind in iter_kinds()
            if self.count(kind.type)
        }


def discover_instances(kind: ComponentType | str, raw_status: Mapping[str, Any]) -> list[int]:
    """Return the sorted indices of ``kind`` present in ``raw_status``."""

    tag = ComponentType(kind).value
    pattern = re.compile(rf"^{re.escape(tag)}:(\d+)$")
    indices = {
        int(match.group(1))
        for key in raw_status
        if isinstance(key, str) and (match := pattern.match(key))
    }
    return sorted(indices)


def build_instances(
    raw_status: Mapping[str, Any], settings: DeviceSettings | None = None
) -> dict[ComponentType, tuple[ComponentInstance, ...]]:
    """Rebuild the full instance map from a status snapshot."""

    instances: dict[ComponentType, tuple[ComponentInstance, ...]] = {}
    for kind in iter_kinds():
        indices = discover_instances(kind.type, raw_status)
        if not indices:
            continue
        instances[kind.type] = tuple(
            ComponentInstance(
                kind,
                index,
                settings.component(ComponentKey(kind.type, index)) if settings else None,
            )
            for index in indices
        )
    return instances


def device_root_path(
    instances: Mapping[ComponentType, Sequence[ComponentInstance]],
    settings: DeviceSettings | None,
    *,
    name: str | None,
    device_id: str | None,
) -> str:
    """Return the device's namespace root.

    The root lives under the base path of the first kind (in registry order)
    the device exposes. A ``devicePath`` override without a dot is a single
    segment below that base; a dotted override is used verbatim.
    """

    base = UNKNOWN_ROOT
    for kind in iter_kinds():
        if instances.get(kind.type):
            base = kind.base_path
            break

    override = settings.device_path if settings else None
    if override:
        if "." in override:
            return override
        return f"{base}.{override}"
    segment = camel_case(name) if name else ""
    return f"{base}.{segment or device_id or 'unknown'}"


def build_layout(
    raw_status: Mapping[str, Any],
    settings: DeviceSettings | None,
    *,
    name: str | None,
    device_id: str | None,
) -> DeviceLayout:
    """Discover instances and compute the device root in one step."""

    instances = build_instances(raw_status, settings)
    return DeviceLayout(
        root=device_root_path(instances, settings, name=name, device_id=device_id),
        instances=instances,
        name=name,
        display_name=settings.display_name if settings else None,
        presets=tuple(settings.presets) if settings else (),
    )


def component_path(
    layout: DeviceLayout, instance: ComponentInstance, suffix: str | None = None
) -> str:
    """Return the telemetry path for ``instance`` and an optional suffix."""

    kind = instance.kind
    path = layout.root
    count = layout.count(kind.type)
    if count > 1:
        if not kind.flatten:
            path = f"{path}.{kind.kind}"
        path = f"{path}.{instance.path_override or instance.index}"
    elif count == 1 and not kind.flatten:
        path = f"{path}.{kind.kind}"
    return f"{path}.{suffix}" if suffix else path


def match_preset(presets: Sequence[ColorPreset], component_status: Any) -> str:
    """Return the first preset matching the current colour, or ``Unknown``."""

    if not isinstance(component_status, Mapping):
        return PRESET_UNKNOWN
    rgb = component_status.get("rgb")
    if not isinstance(rgb, Sequence) or len(rgb) < 3:
        return PRESET_UNKNOWN
    white = component_status.get("white", rgb[3] if len(rgb) > 3 else None)
    brightness = component_status.get("brightness")
    for preset in presets:
        if list(rgb[:3]) != preset.rgb:
            continue
        if preset.white is not None and white != preset.white:
            continue
        if not preset.ignores_brightness and brightness != preset.bright:
            continue
        return preset.name
    return PRESET_UNKNOWN


def _alarm_delta(
    layout: DeviceLayout,
    instance: ComponentInstance,
    alarm: AlarmSpec,
    component_status: Mapping[str, Any],
) -> PathValue:
    active = bool(component_status.get("alarm"))
    method = ["visual"]
    if component_status.get("mute") is not True:
        method.append("sound")
    where = (
        instance.display_name
        or layout.display_name
        or layout.name
        or str(instance.index)
    )
    phrase = alarm.detected if active else alarm.clear
    return PathValue(
        f"{NOTIFICATIONS_ROOT}.{component_path(layout, instance)}",
        {
            "state": "alarm" if active else "normal",
            "method": method,
            "message": f"{phrase} in {where}",
        },
    )


def compute_deltas(
    layout: DeviceLayout, instance: ComponentInstance, raw_status: Mapping[str, Any]
) -> list[PathValue]:
    """Return the value deltas for one instance."""

    if not instance.enabled:
        return []
    component_status = instance.status(raw_status)
    if not isinstance(component_status, Mapping):
        return []

    values: list[PathValue] = []
    if instance.kind.supports_presets and layout.presets:
        values.append(
            PathValue(
                component_path(layout, instance, PRESET_SUFFIX),
                match_preset(layout.presets, component_status),
            )
        )
    for spec in instance.kind.fields:
        if not has_path(component_status, spec.source_key):
            continue
        value = spec.to_output(deep_get(component_status, spec.source_key))
        if value is UNCONVERTIBLE:
            continue
        values.append(PathValue(component_path(layout, instance, spec.suffix), value))
    alarm = instance.kind.alarm
    if alarm is not None:
        values.append(_alarm_delta(layout, instance, alarm, component_status))
    return values


def compute_meta(
    layout: DeviceLayout, instance: ComponentInstance, raw_status: Mapping[str, Any]
) -> list[PathValue]:
    """Return metadata for the fields ``instance`` currently reports."""

    if not instance.enabled:
        return []
    component_status = instance.status(raw_status)
    if not isinstance(component_status, Mapping):
        return []

    display_name = instance.display_name or layout.display_name
    meta: list[PathValue] = []
    if instance.kind.supports_presets and layout.presets:
        names = [preset.name for preset in layout.presets]
        preset_meta: dict[str, Any] = {
            "possibleValues": [{"title": name, "value": name} for name in names],
            "enum": names,
        }
        if instance.display_name:
            preset_meta["displayName"] = instance.display_name
        meta.append(PathValue(component_path(layout, instance, PRESET_SUFFIX), preset_meta))

    for spec in instance.kind.fields:
        if not has_path(component_status, spec.source_key):
            continue
        value = {
            key: item
            for key, item in (("units", spec.unit), ("displayName", display_name))
            if item is not None
        }
        if value:
            meta.append(PathValue(component_path(layout, instance, spec.suffix), value))

    if layout.count(instance.kind.type) > 1 and instance.display_name:
        meta.append(
            PathValue(
                component_path(layout, instance), {"displayName": instance.display_name}
            )
        )
    return meta


def device_meta(layout: DeviceLayout) -> list[PathValue]:
    """Return metadata describing the device root itself."""

    display_name = layout.display_name or layout.name
    if not display_name:
        return []
    return [PathValue(layout.root, {"displayName": display_name})]


def static_deltas(layout: DeviceLayout, identity: Mapping[str, Any]) -> list[PathValue]:
    """Return the once-per-connection identity deltas."""

    return [
        PathValue(f"{layout.root}.{key}", identity[key])
        for key in ("name", "model", "address", "hostname", "id")
        if identity.get(key) is not None
    ]


def writable_suffixes(
    layout: DeviceLayout, instance: ComponentInstance, raw_status: Mapping[str, Any]
) -> list[str]:
    """Return the suffixes that accept writes for ``instance``.

    Only fields the device currently reports are offered, so a light
    without dimming gets no ``dimmingLevel`` handler.
    """

    if not instance.enabled:
        return []
    component_status = instance.status(raw_status)
    if not isinstance(component_status, Mapping):
        return []
    suffixes = [
        spec.suffix
        for spec in instance.kind.writable_fields
        if has_path(component_status, spec.source_key)
    ]
    if instance.kind.supports_presets and layout.presets and "rgb" in component_status:
        suffixes.append(PRESET_SUFFIX)
    return suffixes


def translate_write(
    layout: DeviceLayout, instance: ComponentInstance, suffix: str, value: Any
) -> SetField | ApplyPreset:
    """Translate a write on ``<component path>.<suffix>`` into a device command."""

    kind = instance.kind
    if not instance.enabled:
        raise UnwritableField(f"{component_path(layout, instance)} is disabled")

    if suffix == PRESET_SUFFIX and kind.supports_presets:
        if not layout.presets:
            raise UnwritableField(f"no presets configured for {kind.kind}:{instance.index}")
        preset = next(
            (item for item in layout.presets if item.name == value), None
        )
        if preset is None or value == PRESET_UNKNOWN:
            raise InvalidValue(f"invalid preset {value}")
        return ApplyPreset(
            kind.rpc_name,
            instance.index,
            name=preset.name,
            rgb=preset.rgb,
            white=preset.white if kind.type is ComponentType.RGBW else None,
            brightness=None if preset.ignores_brightness else preset.bright,
        )

    spec = kind.field_for_suffix(suffix)
    if spec is None or spec.write is None:
        raise UnwritableField(f"{component_path(layout, instance, suffix)} is not writable")
    return SetField(
        kind.rpc_name,
        instance.index,
        set_key=spec.write.set_key,
        value=spec.write.encode(value),
        read_key=spec.source_key,
    )


__all__ = [
    "ComponentInstance",
    "DeviceLayout",
    "PathValue",
    "build_instances",
    "build_layout",
    "compute_deltas",
    "compute_meta",
    "component_path",
    "device_meta",
    "device_root_path",
    "discover_instances",
    "match_preset",
    "static_deltas",
    "translate_write",
    "writable_suffixes",
]
