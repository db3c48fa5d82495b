"""Exception taxonomy for device sessions and writes."""

from __future__ import annotations


class ShellyBridgeError(Exception):
    """Base class for every error raised by the bridge."""


class TransportError(ShellyBridgeError):
    """The websocket could not be opened or was lost."""


class DeviceDisconnectedError(TransportError):
    """A pending request was abandoned because the device disconnected."""

    def __init__(self, message: str = "Device disconnected") -> None:
        super().__init__(message)


class AuthenticationError(ShellyBridgeError):
    """The device rejected the session credentials."""


class RequestTimeout(ShellyBridgeError):
    """No response arrived for a request within the timeout."""

    def __init__(self, request_id: int, method: str) -> None:
        super().__init__(f"Request {request_id} for {method} timed out")
        self.request_id = request_id
        self.method = method


class RpcError(ShellyBridgeError):
    """The device answered a request with an error object."""

    def __init__(self, code: int, message: str, *, method: str | None = None) -> None:
        super().__init__(f"{method or 'RPC'} failed ({code}): {message}")
        self.code = code
        self.message = message
        self.method = method


class SessionStateError(ShellyBridgeError):
    """A session operation was called in a state that forbids it."""


class WriteError(ShellyBridgeError):
    """Base class for failures of a PUT-style write."""


class UnwritableField(WriteError):
    """The requested path has no write translator."""


class InvalidValue(WriteError):
    """The requested value cannot be translated into a device command."""


class SetMismatch(WriteError):
    """The device accepted a write but reads back a different value."""

    def __init__(self, message: str, *, expected: object, actual: object) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


__all__ = [
    "AuthenticationError",
    "DeviceDisconnectedError",
    "InvalidValue",
    "RequestTimeout",
    "RpcError",
    "SessionStateError",
    "SetMismatch",
    "ShellyBridgeError",
    "TransportError",
    "UnwritableField",
    "WriteError",
]
