"""Simulated devices answering RPCs from an in-memory status snapshot."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
import copy
from dataclasses import dataclass, field
import json
import logging
from typing import Any

from .const import METHOD_GET_DEVICE_INFO, METHOD_GET_STATUS
from .errors import TransportError

_LOGGER = logging.getLogger(__name__)

MOCK_ADDRESS = "192.168.99.100"

# Device-side error codes used by the firmware.
_ERR_NOT_FOUND = -105
_ERR_NO_HANDLER = 404


class SnapshotTransport:
    """Transport that serves ``Shelly.*`` and ``<Component>.*`` calls locally.

    ``<Component>.Set`` merges its parameters into the snapshot (``on`` is
    stored as ``output``), so writes read back the way a real device would.
    """

    def __init__(self, info: Mapping[str, Any], status: Mapping[str, Any]) -> None:
        self._info = dict(info)
        self._status: dict[str, Any] = copy.deepcopy(dict(status))
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def status(self) -> dict[str, Any]:
        """Return the live snapshot."""

        return self._status

    async def send_str(self, data: str) -> None:
        if self._closed:
            raise TransportError("snapshot transport is closed")
        request = json.loads(data)
        reply = self._answer(request)
        await self._inbox.put(json.dumps(reply))

    async def frames(self) -> AsyncIterator[str]:
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            yield item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inbox.put_nowait(None)

    def push(self, fragment: Mapping[str, Any]) -> None:
        """Merge ``fragment`` into the snapshot and send a ``NotifyStatus``."""

        for key, value in fragment.items():
            current = self._status.get(key)
            if isinstance(current, dict) and isinstance(value, Mapping):
                current.update(value)
            else:
                self._status[key] = copy.deepcopy(value)
        self._inbox.put_nowait(
            json.dumps({"method": "NotifyStatus", "params": dict(fragment)})
        )

    def _answer(self, request: Mapping[str, Any]) -> dict[str, Any]:
        request_id = request.get("id")
        method = str(request.get("method", ""))
        params = request.get("params") or {}
        _LOGGER.debug("Mock %s: %s %s", self._info.get("id"), method, params)

        if method == METHOD_GET_DEVICE_INFO:
            return {"id": request_id, "result": dict(self._info)}
        if method == METHOD_GET_STATUS:
            return {"id": request_id, "result": copy.deepcopy(self._status)}

        rpc_name, _, action = method.partition(".")
        index = params.get("id", 0)
        component = self._status.get(f"{rpc_name.lower()}:{index}")
        if not isinstance(component, dict):
            return _error(request_id, _ERR_NOT_FOUND, f"Argument 'id', value {index} not found!")
        if action == "GetStatus":
            return {"id": request_id, "result": copy.deepcopy(component)}
        if action == "Set":
            was_on = component.get("output")
            for key, value in params.items():
                if key == "id":
                    continue
                component["output" if key == "on" else key] = value
            return {"id": request_id, "result": {"was_on": was_on}}
        return _error(request_id, _ERR_NO_HANDLER, f"No handler for {method}")


def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"id": request_id, "error": {"code": code, "message": message}}


@dataclass(slots=True)
class MockDevice:
    """A catalogue entry: identity plus the status it reports."""

    id: str
    status: dict[str, Any]
    name: str | None = None
    model: str = "Mock"
    address: str = MOCK_ADDRESS
    info: dict[str, Any] = field(default_factory=dict)

    def device_info(self) -> dict[str, Any]:
        """Return the ``Shelly.GetDeviceInfo`` payload."""

        return {
            "id": self.id,
            "name": self.name,
            "model": self.model,
            "gen": 2,
            **self.info,
        }

    def transport(self) -> SnapshotTransport:
        """Return a fresh transport serving this device."""

        return SnapshotTransport(self.device_info(), self.status)


def mock_catalogue() -> list[MockDevice]:
    """Return the built-in simulated devices."""

    return [
        MockDevice(
            "shelly-smokeDetector1",
            {
                "devicepower:0": {
                    "battery": {"V": 3.7, "percent": 50},
                    "external": {"present": True},
                },
                "smoke:0": {"alarm": False, "mute": False},
            },
        ),
        MockDevice(
            "shelly-smokeDetector2",
            {
                "devicepower:0": {
                    "battery": {"V": 3.7, "percent": 50},
                    "external": {"present": True},
                },
                "smoke:0": {"alarm": False, "mute": False},
                "smoke:1": {"alarm": True, "mute": True},
            },
        ),
        MockDevice(
            "shelly-powerMeter",
            {
                "pm1:0": {
                    "freq": 10,
                    "voltage": 12.2,
                    "current": 1.5,
                    "apower": 18.3,
                    "aprtpower": 5.0,
                    "pf": 0.8,
                    "aenergy": {"total": 100, "by_minute": 10, "minute_ts": 1696111230},
                    "ret_aenergy": {"total": 500, "by_minute": 50, "minute_ts": 16230},
                }
            },
        ),
        MockDevice(
            "shelly-hm",
            {"temperature:0": {"tC": 22}, "humidity:0": {"rh": 22}},
        ),
        MockDevice(
            "shelly-energyMeter1",
            {
                "em1:0": {
                    "freq": 10,
                    "voltage": 12.2,
                    "current": 1.5,
                    "act_power": 18.3,
                    "aprt_power": 5.0,
                    "pf": 0.8,
                }
            },
        ),
        MockDevice(
            "shelly-energyMeter",
            {
                "em:0": {
                    **{
                        f"{phase}_{field_name}": value
                        for phase, current in (("a", 10), ("b", 10), ("c", 24))
                        for field_name, value in (
                            ("current", current),
                            ("voltage", 221 if phase == "c" else 220),
                            ("act_power", 100),
                            ("aprt_power", 120),
                            ("pf", 0.8),
                            ("freq", 50),
                        )
                    },
                    "n_current": 0.3,
                    "total_current": 200,
                    "total_act_power": 100,
                    "total_aprt_power": 120,
                    "user_calibrated_phase": ["A"],
                }
            },
        ),
        MockDevice(
            "shelly-rgb",
            {"rgb:0": {"output": True, "rgb": [255, 0, 0], "brightness": 50}},
        ),
        MockDevice(
            "shelly-rgbw",
            {
                "rgbw:0": {"output": True, "rgb": [255, 0, 0], "brightness": 50, "white": 255},
                "rgbw:1": {"output": False, "rgb": [255, 255, 0], "brightness": 90, "white": 198},
            },
        ),
        MockDevice(
            "shelly-light",
            {
                "light:0": {
                    "output": True,
                    "brightness": 50,
                    "pf": 0.8,
                    "freq": 50,
                    "ret_aenergy": {"total": 100, "by_minute": 10},
                },
                "light:1": {"output": False, "brightness": 90},
            },
        ),
        MockDevice(
            "shelly-uni",
            {
                "voltmeter:100": {"id": 100, "voltage": 12.41},
                "temperature:100": {"id": 100, "tC": 19.9, "tF": 67.9},
                "switch:0": {"id": 0, "source": "HTTP_in", "output": False},
                "switch:1": {"id": 1, "source": "SHC", "output": False},
                "input:0": {"id": 0, "state": False},
                "input:1": {"id": 1, "state": False},
                "input:2": {"id": 2, "counts": None, "freq": None},
            },
        ),
    ]


__all__ = ["MOCK_ADDRESS", "MockDevice", "SnapshotTransport", "mock_catalogue"]
