"""Domain-layer primitives for the Shelly bridge."""

from .commands import ApplyPreset, BaseCommand, SetField
from .components import (
    COMPONENT_KINDS,
    AlarmSpec,
    ComponentKind,
    FieldSpec,
    WriteSpec,
    get_kind,
    iter_kinds,
)
from .ids import ComponentKey, ComponentType, normalize_component_type

__all__ = [
    "COMPONENT_KINDS",
    "AlarmSpec",
    "ApplyPreset",
    "BaseCommand",
    "ComponentKey",
    "ComponentKind",
    "ComponentType",
    "FieldSpec",
    "SetField",
    "WriteSpec",
    "get_kind",
    "iter_kinds",
    "normalize_component_type",
]
