"""Device manager: discovery intake, configured fallback, polling and config edits."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from contextlib import suppress
import copy
from functools import partial
import inspect
import logging
from typing import Any

import aiohttp

from .backend.backoff import Scheduler
from .backend.transport import Transport, TransportFactory
from .config import device_schema, load_options, validate_device_config
from .const import (
    CONF_DEVICES,
    CONF_MOCK_DEVICES,
    CONF_POLL,
    CONFIGURED_CONNECT_DELAY,
    EVENT_DEVICE_CHANGED,
    EVENT_NEW_DEVICE,
    EVENT_RESET_DEVICES,
    MIN_SERVICE_GENERATION,
)
from .errors import AuthenticationError, ShellyBridgeError
from .host import TelemetryHost
from .mock_devices import MockDevice, mock_catalogue
from .session import DeviceSession

_LOGGER = logging.getLogger(__name__)

SaveOptions = Callable[[dict[str, Any]], Awaitable[None] | None]
DeviceListener = Callable[[str, dict[str, Any]], None]


async def _open_mock_transport(device: MockDevice, url: str) -> Transport:
    return device.transport()


class DeviceManager:
    """Track every known device session and drive them from plugin options."""

    def __init__(
        self,
        host: TelemetryHost,
        options: Mapping[str, Any] | None = None,
        *,
        save_options: SaveOptions | None = None,
        http_session: aiohttp.ClientSession | None = None,
        scheduler: Scheduler | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._host = host
        self._options, self._legacy_converted = load_options(options)
        self._save_options = save_options
        self._http_session = http_session
        self._scheduler = scheduler
        self._transport_factory = transport_factory
        self._sessions: dict[str, DeviceSession] = {}
        self._unidentified: set[str] = set()
        self._listeners: list[DeviceListener] = []
        self._poll_jobs: dict[str, asyncio.Task[None]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def options(self) -> dict[str, Any]:
        """Return the validated plugin options."""

        return self._options

    @property
    def sessions(self) -> dict[str, DeviceSession]:
        """Return known sessions keyed by address (mock devices by id)."""

        return dict(self._sessions)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def async_start(self) -> None:
        """Start the configured-device fallback, mock devices and polling."""

        if self._legacy_converted:
            self._legacy_converted = False
            await self._async_save()
        self._spawn(self._delayed_connect_configured(), "shelly-configured-connect")
        if self._options[CONF_MOCK_DEVICES]:
            await self.async_load_mock_devices()
        poll_ms = self._options[CONF_POLL]
        if poll_ms > 0:
            _LOGGER.debug("Setting poll interval to %s ms", poll_ms)
            self._spawn(self._poll_loop(poll_ms / 1000), "shelly-poll")

    async def async_stop(self) -> None:
        """Cancel background work and disconnect every session."""

        tasks = [*self._tasks, *self._poll_jobs.values()]
        self._tasks.clear()
        self._poll_jobs.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for session in list(self._sessions.values()):
            await session.disconnect()
        self._sessions.clear()
        self._unidentified.clear()

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Listeners and persistence
    # ------------------------------------------------------------------
    def add_listener(self, listener: DeviceListener) -> Callable[[], None]:
        """Register ``listener(event, payload)``; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def _remove() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return _remove

    def _notify(self, event: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            listener(event, payload)

    async def _async_save(self) -> None:
        if self._save_options is None:
            return
        try:
            result = self._save_options(copy.deepcopy(self._options))
            if inspect.isawaitable(result):
                await result
        except Exception:  # pragma: no cover
            _LOGGER.exception("Failed to save plugin options")

    def device_config(self, device_id: str | None) -> dict[str, Any] | None:
        """Return the stored settings blob for ``device_id``."""

        if device_id is None:
            return None
        for blob in self._options[CONF_DEVICES]:
            if blob.get("id") == device_id:
                return blob
        return None

    def _config_for_endpoint(
        self, address: str, hostname: str | None
    ) -> dict[str, Any] | None:
        for blob in self._options[CONF_DEVICES]:
            if blob.get("address") == address:
                return blob
            if hostname and blob.get("hostname") == hostname:
                return blob
        return None

    def find_session(self, device_id: str) -> DeviceSession | None:
        """Return the session whose device reported ``device_id``."""

        for session in self._sessions.values():
            if session.id == device_id:
                return session
        return None

    def _create_session(
        self,
        address: str,
        hostname: str | None,
        *,
        device_id: str | None = None,
        settings: Mapping[str, Any] | None = None,
        name: str | None = None,
        model: str | None = None,
        transport_factory: TransportFactory | None = None,
        on_reconnected: Callable[[DeviceSession], Awaitable[None]] | None = None,
    ) -> DeviceSession:
        return DeviceSession(
            self._host,
            address,
            hostname,
            device_id,
            settings,
            name=name,
            model=model,
            http_session=self._http_session,
            transport_factory=transport_factory or self._transport_factory,
            scheduler=self._scheduler,
            on_reconnected=on_reconnected,
        )

    # ------------------------------------------------------------------
    # Discovery and configured devices
    # ------------------------------------------------------------------
    async def async_handle_discovery(
        self, generation: int, address: str, hostname: str | None
    ) -> DeviceSession | None:
        """Connect to a device announced by service discovery."""

        if generation < MIN_SERVICE_GENERATION:
            _LOGGER.debug("Ignoring gen %s device at %s", generation, address)
            return None
        if address in self._sessions:
            _LOGGER.debug("Ignoring known device at %s/%s", hostname, address)
            return None

        _LOGGER.debug("Discovered gen %s device at %s/%s", generation, hostname, address)
        session = self._create_session(
            address,
            hostname,
            settings=self._config_for_endpoint(address, hostname),
            on_reconnected=self._async_identified_after_retry,
        )
        self._sessions[address] = session
        try:
            await session.connect()
        except AuthenticationError:
            self._notify(EVENT_NEW_DEVICE, self.device_to_json(session))
            return session
        except ShellyBridgeError as err:
            _LOGGER.error("Failed to connect to device at %s: %s", address, err)
            self._unidentified.add(address)
            return session

        await self._async_identified(session)
        return session

    async def _async_identified_after_retry(self, session: DeviceSession) -> None:
        if session.address not in self._unidentified:
            return
        self._unidentified.discard(session.address)
        await self._async_identified(session)

    async def _async_identified(self, session: DeviceSession) -> None:
        """Apply stored settings to a freshly identified discovery session."""

        self._notify(EVENT_NEW_DEVICE, self.device_to_json(session))
        blob = self.device_config(session.id)
        if blob is not None and blob.get("enabled") is not False:
            _LOGGER.debug("Found enabled settings for device %s", session.id)
            session.set_device_settings(blob)
            try:
                await session.resend_deltas()
            except ShellyBridgeError as err:
                _LOGGER.warning("Failed to refresh device %s: %s", session.id, err)
        else:
            _LOGGER.debug("No enabled settings for device %s, disconnecting", session.id)
            await session.disconnect()

        if blob is not None:
            for key, value in (
                ("name", session.name),
                ("address", session.address),
                ("hostname", session.hostname),
                ("model", session.model),
            ):
                if value is not None:
                    blob[key] = value
            await self._async_save()

    async def _delayed_connect_configured(self) -> None:
        await asyncio.sleep(CONFIGURED_CONNECT_DELAY)
        await self.async_connect_configured()

    async def async_connect_configured(self) -> list[DeviceSession]:
        """Connect configured devices that discovery has not announced."""

        created: list[DeviceSession] = []
        for blob in self._options[CONF_DEVICES]:
            device_id = blob.get("id")
            address = blob.get("address")
            if self.find_session(device_id) is not None or not address:
                continue
            if address in self._sessions:
                continue
            _LOGGER.debug(
                "No discovery for device %s at %s, connecting from settings",
                device_id,
                address,
            )
            session = self._create_session(
                address,
                blob.get("hostname"),
                device_id=device_id,
                settings=blob,
                name=blob.get("name"),
                model=blob.get("model"),
            )
            self._sessions[address] = session
            self._notify(EVENT_NEW_DEVICE, self.device_to_json(session))
            created.append(session)

        await asyncio.gather(
            *(
                self._async_connect_quietly(session)
                for session in created
                if session.settings.is_enabled
            )
        )
        return created

    async def _async_connect_quietly(self, session: DeviceSession) -> None:
        try:
            await session.connect()
        except ShellyBridgeError as err:
            _LOGGER.error(
                "Failed to connect to configured device %s at %s: %s",
                session.id,
                session.address,
                err,
            )

    async def async_load_mock_devices(self) -> list[DeviceSession]:
        """Connect the built-in simulated devices."""

        sessions: list[DeviceSession] = []
        for device in mock_catalogue():
            session = self._create_session(
                device.address,
                None,
                device_id=device.id,
                settings=self.device_config(device.id),
                transport_factory=partial(_open_mock_transport, device),
            )
            self._sessions[device.id] = session
            await self._async_connect_quietly(session)
            self._notify(EVENT_NEW_DEVICE, self.device_to_json(session))
            sessions.append(session)
        return sessions

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------
    async def _poll_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.poll_devices()

    def poll_devices(self) -> list[asyncio.Task[None]]:
        """Start one poll per enabled device; skip devices still polling."""

        started: list[asyncio.Task[None]] = []
        loop = asyncio.get_running_loop()
        for key, session in self._sessions.items():
            blob = self.device_config(session.id)
            if blob is None or blob.get("enabled") is False:
                continue
            running = self._poll_jobs.get(key)
            if running is not None and not running.done():
                _LOGGER.debug("Skipping poll of %s; previous poll still running", key)
                continue
            task = loop.create_task(
                self._async_poll_one(session), name=f"shelly-poll-{key}"
            )
            self._poll_jobs[key] = task
            started.append(task)
        return started

    async def _async_poll_one(self, session: DeviceSession) -> None:
        try:
            await session.poll()
        except ShellyBridgeError as err:
            _LOGGER.error(
                "Failed to poll device %s: %s", session.id or session.address, err
            )
            await session.handle_poll_failure(err)

    # ------------------------------------------------------------------
    # Configuration edits
    # ------------------------------------------------------------------
    async def async_update_device_config(self, blob: Mapping[str, Any]) -> dict[str, Any]:
        """Store settings for one device and reconnect it with them."""

        validated = validate_device_config(blob)
        devices = self._options[CONF_DEVICES]
        for index, existing in enumerate(devices):
            if existing.get("id") == validated["id"]:
                devices[index] = validated
                break
        else:
            devices.append(validated)
        await self._async_save()

        session = self.find_session(validated["id"])
        if session is not None:
            session.set_device_settings(validated)
            await session.disconnect()
            if validated.get("enabled"):
                await self._async_connect_quietly(session)
            self._notify(EVENT_DEVICE_CHANGED, self.device_to_json(session))
        return validated

    async def async_remove_device_config(self, device_id: str) -> bool:
        """Forget the settings for ``device_id``; returns False when unknown."""

        session = self.find_session(device_id)
        if session is None:
            return False
        self._options[CONF_DEVICES] = [
            blob for blob in self._options[CONF_DEVICES] if blob.get("id") != device_id
        ]
        if session.connected:
            await session.disconnect()
        await self._async_save()
        self._notify(EVENT_RESET_DEVICES, {})
        return True

    # ------------------------------------------------------------------
    # JSON views
    # ------------------------------------------------------------------
    def device_to_json(self, session: DeviceSession) -> dict[str, Any]:
        """Return the UI view of one device."""

        settings = self.device_config(session.id) or {}
        return {
            "id": session.id,
            "address": session.address,
            "hostname": session.hostname,
            "model": session.model,
            "gen": session.gen,
            "name": session.name,
            "connected": session.connected,
            "authFailed": session.auth_failed,
            "triedAuth": session.tried_auth,
            "schema": device_schema(session),
            "settings": settings,
            "settingsCopy": copy.deepcopy(settings),
        }

    def devices_to_json(self) -> list[dict[str, Any]]:
        """Return the UI view of every identified device."""

        return [
            self.device_to_json(session)
            for session in self._sessions.values()
            if session.id
        ]


__all__ = ["DeviceListener", "DeviceManager", "SaveOptions"]
