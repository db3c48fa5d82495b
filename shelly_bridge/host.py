"""Host telemetry adapter: delta sink, metadata sink and PUT bridging."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
from typing import Any, Protocol

from .errors import ShellyBridgeError

_LOGGER = logging.getLogger(__name__)

PutCallback = Callable[[dict[str, Any]], None]
PutHandler = Callable[[str, str, Any, PutCallback], dict[str, Any]]

STATE_PENDING = "PENDING"
STATE_COMPLETED = "COMPLETED"


class TelemetryHost(Protocol):
    """Protocol for the host system receiving telemetry and write requests."""

    def handle_deltas(self, values: list[dict[str, Any]]) -> None:
        """Accept one batch of ``{path, value}`` updates."""

    def handle_meta(self, meta: list[dict[str, Any]]) -> None:
        """Accept one batch of ``{path, value}`` metadata entries."""

    def register_put_handler(
        self, context: str, path: str, handler: PutHandler
    ) -> None:
        """Register ``handler`` for writes to ``path``."""


class PutRequestBridge:
    """Adapt async write coroutines to the host's PENDING/COMPLETED callbacks."""

    def __init__(self, host: TelemetryHost) -> None:
        self._host = host
        self._tasks: set[asyncio.Task[None]] = set()

    def handler(self, write: Callable[[Any], Awaitable[Any]]) -> PutHandler:
        """Return a host handler that runs ``write(value)`` in the background."""

        def _handle(
            context: str, path: str, value: Any, callback: PutCallback
        ) -> dict[str, Any]:
            loop = asyncio.get_running_loop()
            task = loop.create_task(self._complete(path, write(value), callback))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return {"state": STATE_PENDING}

        return _handle

    async def _complete(
        self, path: str, pending: Awaitable[Any], callback: PutCallback
    ) -> None:
        try:
            await pending
        except ShellyBridgeError as err:
            self._report_failure(path, str(err), callback)
        except Exception as err:  # pragma: no cover - unexpected failure
            _LOGGER.exception("Write to %s failed unexpectedly", path)
            self._report_failure(path, str(err) or type(err).__name__, callback)
        else:
            _LOGGER.debug("Write to %s completed", path)
            callback({"state": STATE_COMPLETED, "statusCode": 200})

    def _report_failure(self, path: str, message: str, callback: PutCallback) -> None:
        _LOGGER.error("Write to %s failed: %s", path, message)
        set_plugin_error = getattr(self._host, "set_plugin_error", None)
        if callable(set_plugin_error):
            set_plugin_error(message)
        callback({"state": STATE_COMPLETED, "statusCode": 400, "message": message})

    async def async_drain(self) -> None:
        """Wait for every in-flight write to finish."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = [
    "STATE_COMPLETED",
    "STATE_PENDING",
    "PutCallback",
    "PutHandler",
    "PutRequestBridge",
    "TelemetryHost",
]
