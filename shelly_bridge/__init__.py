"""Bridge Shelly Gen2+ devices into a path-based telemetry model."""

from .errors import (
    AuthenticationError,
    DeviceDisconnectedError,
    InvalidValue,
    RequestTimeout,
    RpcError,
    SessionStateError,
    SetMismatch,
    ShellyBridgeError,
    TransportError,
    UnwritableField,
    WriteError,
)
from .host import PutRequestBridge, TelemetryHost
from .manager import DeviceManager
from .session import ConnectionState, DeviceSession
from .settings import ColorPreset, ComponentSettings, DeviceSettings

__all__ = [
    "AuthenticationError",
    "ColorPreset",
    "ComponentSettings",
    "ConnectionState",
    "DeviceDisconnectedError",
    "DeviceManager",
    "DeviceSession",
    "DeviceSettings",
    "InvalidValue",
    "PutRequestBridge",
    "RequestTimeout",
    "RpcError",
    "SessionStateError",
    "SetMismatch",
    "ShellyBridgeError",
    "TelemetryHost",
    "TransportError",
    "UnwritableField",
    "WriteError",
]
