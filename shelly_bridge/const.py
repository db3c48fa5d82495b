"""Constants for the Shelly Gen2+ bridge."""

from __future__ import annotations

from typing import Final

# Identity
PLUGIN_ID: Final = "signalk-shelly2"
CLIENT_SRC: Final = PLUGIN_ID
PUT_CONTEXT: Final = "vessels.self"

# Device transport
RPC_PATH: Final = "/rpc"
JSONRPC_VERSION: Final = "2.0"
REQUEST_TIMEOUT: Final = 5.0
CONNECT_TIMEOUT: Final = 15.0
MIN_SERVICE_GENERATION: Final = 2

# Device RPC methods
METHOD_GET_DEVICE_INFO: Final = "Shelly.GetDeviceInfo"
METHOD_GET_STATUS: Final = "Shelly.GetStatus"
NOTIFY_STATUS: Final = "NotifyStatus"
NOTIFY_FULL_STATUS: Final = "NotifyFullStatus"
PUSH_METHODS: Final = frozenset({NOTIFY_STATUS, NOTIFY_FULL_STATUS})

# Digest authentication
AUTH_ERROR_CODE: Final = 401
AUTH_USERNAME: Final = "admin"
AUTH_ALGORITHM: Final = "SHA-256"
AUTH_QOP: Final = "auth"
AUTH_HA2_SOURCE: Final = "dummy_method:dummy_uri"

# Reconnection
RECONNECT_BASE_DELAY: Final = 1.0
RECONNECT_MAX_DELAY: Final = 10.0
UNLIMITED_RECONNECTS: Final = -1

# Plugin options
CONF_POLL: Final = "poll"
CONF_DEVICES: Final = "devices"
CONF_MOCK_DEVICES: Final = "mockDevices"
DEFAULT_POLL_MS: Final = 5000
CONFIGURED_CONNECT_DELAY: Final = 5.0
LEGACY_DEVICE_PREFIX: Final = "Device ID "

# Paths
UNKNOWN_ROOT: Final = "electrical.unknown"
NOTIFICATIONS_ROOT: Final = "notifications"
PRESET_SUFFIX: Final = "preset"
PRESET_UNKNOWN: Final = "Unknown"

# Manager events
EVENT_NEW_DEVICE: Final = "newDevice"
EVENT_DEVICE_CHANGED: Final = "deviceChanged"
EVENT_RESET_DEVICES: Final = "resetDevices"
