"""Connection lifecycle and telemetry translation for one Shelly device."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress
import copy
from dataclasses import dataclass
from enum import Enum
from functools import partial
import logging
import random
from typing import Any

import aiohttp

from .backend.backoff import LoopScheduler, Scheduler, TimerHandle, reconnect_delay
from .backend.sanitize import mask_identifier, redact_frame
from .backend.transport import Transport, TransportFactory, WebSocketTransport, device_url
from .codecs.rpc_codec import (
    build_digest_auth,
    decode_device_info,
    decode_frame,
    encode_request,
    parse_auth_challenge,
)
from .codecs.rpc_models import DeviceInfo, RpcFrame
from .const import (
    AUTH_ERROR_CODE,
    METHOD_GET_DEVICE_INFO,
    METHOD_GET_STATUS,
    PUSH_METHODS,
    PUT_CONTEXT,
    REQUEST_TIMEOUT,
    UNLIMITED_RECONNECTS,
)
from .domain.commands import ApplyPreset, SetField
from .domain.ids import ComponentKey
from .domain.mapping import (
    DeviceLayout,
    build_layout,
    component_path,
    compute_deltas,
    compute_meta,
    device_meta,
    device_root_path,
    static_deltas,
    translate_write,
    writable_suffixes,
)
from .errors import (
    AuthenticationError,
    DeviceDisconnectedError,
    RequestTimeout,
    RpcError,
    SessionStateError,
    SetMismatch,
    ShellyBridgeError,
    TransportError,
    UnwritableField,
)
from .host import PutRequestBridge, TelemetryHost
from .settings import DeviceSettings

_LOGGER = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle states of a device session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    AUTH_FAILED = "auth_failed"


@dataclass(slots=True)
class _PendingRequest:
    """A request awaiting its correlated response."""

    method: str
    future: asyncio.Future[Any]
    timer: TimerHandle


class DeviceSession:
    """Own one device's websocket, request table and telemetry emission.

    The session is the only writer of its :class:`ConnectionState`. All
    transitions happen on the event loop, so no locking is needed.
    """

    def __init__(
        self,
        host: TelemetryHost,
        address: str,
        hostname: str | None = None,
        device_id: str | None = None,
        settings: Mapping[str, Any] | DeviceSettings | None = None,
        *,
        name: str | None = None,
        model: str | None = None,
        http_session: aiohttp.ClientSession | None = None,
        transport_factory: TransportFactory | None = None,
        scheduler: Scheduler | None = None,
        request_timeout: float = REQUEST_TIMEOUT,
        on_reconnected: Callable[[DeviceSession], Awaitable[None]] | None = None,
    ) -> None:
        self._host = host
        self._address = address
        self._hostname = hostname
        self._id = device_id
        self._name = name
        self._model = model
        self._gen: int | None = None
        self._settings = DeviceSettings.from_blob(settings)

        self._http_session = http_session
        self._transport_factory = transport_factory or self._open_websocket
        self._scheduler = scheduler or LoopScheduler()
        self._request_timeout = request_timeout
        self._on_reconnected = on_reconnected

        self._state = ConnectionState.DISCONNECTED
        self._transport: Transport | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._next_id = 1
        self._pending: dict[int, _PendingRequest] = {}

        self._auth: dict[str, Any] | None = None
        self._auth_failed = False
        self._tried_auth = False

        self._should_reconnect = self._settings.enable_reconnection
        self._reconnect_attempts = 0
        self._reconnect_handle: TimerHandle | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        self._sent_meta = False
        self._sent_static = False
        self._status: dict[str, Any] = {}
        self._layout: DeviceLayout | None = None
        self._put_paths: dict[str, tuple[ComponentKey, str]] = {}
        self._registered_paths: set[str] = set()
        self._put_bridge = PutRequestBridge(host)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------
    @property
    def id(self) -> str | None:
        """Return the device-reported identifier."""

        return self._id

    @property
    def address(self) -> str:
        return self._address

    @property
    def hostname(self) -> str | None:
        return self._hostname

    @property
    def model(self) -> str | None:
        return self._model

    @property
    def gen(self) -> int | None:
        return self._gen

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def state(self) -> ConnectionState:
        """Return the current connection state."""

        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def auth_failed(self) -> bool:
        """Return True when the last connection attempt was refused credentials."""

        return self._auth_failed

    @property
    def tried_auth(self) -> bool:
        """Return True when digest credentials were sent on the last attempt."""

        return self._tried_auth

    @property
    def reconnecting(self) -> bool:
        return self._state is ConnectionState.RECONNECTING

    @property
    def reconnection_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def settings(self) -> DeviceSettings:
        return self._settings

    @property
    def layout(self) -> DeviceLayout | None:
        """Return the component layout from the last capability discovery."""

        return self._layout

    @property
    def components(self) -> dict[str, int]:
        """Return discovered instance counts keyed by kind."""

        return self._layout.counts if self._layout else {}

    @property
    def device_path(self) -> str:
        """Return the device's telemetry root path."""

        if self._layout is not None:
            return self._layout.root
        return device_root_path(
            {}, self._settings, name=self._name, device_id=self._id
        )

    @property
    def pending_requests(self) -> int:
        """Return how many requests await a response."""

        return len(self._pending)

    @property
    def _log_id(self) -> str:
        return self._id or self._address

    def to_json(self) -> dict[str, Any]:
        """Return a JSON-friendly snapshot of identity and connection state."""

        return {
            "id": self._id,
            "address": self._address,
            "hostname": self._hostname,
            "model": self._model,
            "gen": self._gen,
            "name": self._name,
            "connected": self.connected,
            "authFailed": self._auth_failed,
            "triedAuth": self._tried_auth,
            "reconnecting": self.reconnecting,
            "reconnectionAttempts": self._reconnect_attempts,
            "state": self._state.value,
            "components": self.components,
        }

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            _LOGGER.debug(
                "%s: state %s -> %s", self._log_id, self._state.value, state.value
            )
        self._state = state

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> DeviceSession:
        """Open the transport, identify the device and emit initial telemetry."""

        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            raise SessionStateError(
                f"{self._log_id}: connect() called while {self._state.value}"
            )
        self._cancel_reconnect_timer()
        self._should_reconnect = True
        self._reconnect_attempts = 0
        self._auth_failed = False
        await self._attempt_connection()
        return self

    async def disconnect(self) -> None:
        """Close the session and stop reconnecting. Safe to call repeatedly."""

        self._should_reconnect = False
        self._cancel_reconnect_timer()
        self._reject_pending()
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        had_transport = self._transport is not None
        await self._drop_transport()
        if had_transport:
            _LOGGER.info("%s: disconnected", self._log_id)
        self._set_state(ConnectionState.DISCONNECTED)

    async def force_reconnect(self) -> None:
        """Drop the connection and reconnect immediately, skipping backoff."""

        _LOGGER.debug("%s: force reconnecting", self._log_id)
        await self.disconnect()
        self._should_reconnect = True
        self._reconnect_attempts = 0
        self._auth_failed = False
        try:
            await self._attempt_connection()
        except ShellyBridgeError as err:
            _LOGGER.warning("%s: forced reconnect failed: %s", self._log_id, err)

    async def handle_poll_failure(self, err: BaseException) -> None:
        """Treat a failed poll as a lost connection and start reconnecting."""

        _LOGGER.warning("%s: poll failed: %s", self._log_id, err)
        if self._state is not ConnectionState.CONNECTED:
            return
        await self._drop_transport()
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    async def _open_websocket(self, url: str) -> Transport:
        return await WebSocketTransport.open(url, session=self._http_session)

    async def _attempt_connection(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        self._auth = None
        self._tried_auth = False
        try:
            await self._establish()
        except AuthenticationError as err:
            await self._drop_transport()
            self._auth_failed = True
            self._set_state(ConnectionState.AUTH_FAILED)
            _LOGGER.error("%s: authentication failed: %s", self._log_id, err)
            raise
        except ShellyBridgeError as err:
            await self._drop_transport()
            self._set_state(ConnectionState.DISCONNECTED)
            _LOGGER.warning("%s: connection failed: %s", self._log_id, err)
            self._schedule_reconnect()
            raise
        except asyncio.CancelledError:
            await self._drop_transport()
            self._set_state(ConnectionState.DISCONNECTED)
            raise

    async def _establish(self) -> None:
        url = device_url(self._hostname or self._address)
        _LOGGER.debug("%s: connecting to %s", self._log_id, url)
        transport = await self._transport_factory(url)
        self._transport = transport
        self._reader_task = asyncio.get_running_loop().create_task(
            self._read_loop(transport), name=f"shelly-reader-{self._log_id}"
        )

        info = decode_device_info(await self._call_with_auth(METHOD_GET_DEVICE_INFO))
        if info is None:
            raise TransportError(f"{self._log_id}: invalid device info payload")
        status = await self._call_with_auth(METHOD_GET_STATUS)
        if not isinstance(status, Mapping):
            raise TransportError(f"{self._log_id}: invalid status payload")
        self._on_connected(info, status)

    async def _call_with_auth(self, method: str) -> Any:
        """Call ``method``, answering one digest challenge if a password is set."""

        try:
            return await self.call(method)
        except RpcError as err:
            if err.code != AUTH_ERROR_CODE:
                raise
            if self._tried_auth:
                raise AuthenticationError(
                    f"{self._log_id}: device rejected the configured password"
                ) from err
            password = self._settings.password
            if not password:
                raise AuthenticationError(
                    f"{self._log_id}: device requires a password"
                ) from err
            challenge = parse_auth_challenge(err.message)
            if challenge is None:
                raise AuthenticationError(
                    f"{self._log_id}: unusable authentication challenge"
                ) from err
            self._tried_auth = True
            self._auth = build_digest_auth(
                challenge, password, cnonce=random.randint(1, 2**31 - 1)
            )
            _LOGGER.debug(
                "%s: retrying with digest credentials for realm %s",
                self._log_id,
                mask_identifier(challenge.realm),
            )
        try:
            return await self.call(method)
        except RpcError as err:
            if err.code == AUTH_ERROR_CODE:
                raise AuthenticationError(
                    f"{self._log_id}: device rejected the configured password"
                ) from err
            raise

    def _on_connected(self, info: DeviceInfo, status: Mapping[str, Any]) -> None:
        self._id = info.id
        self._name = info.name
        self._model = info.model
        self._gen = info.gen
        self._reconnect_attempts = 0
        self._sent_meta = False
        self._sent_static = False
        self._auth_failed = False
        self._set_state(ConnectionState.CONNECTED)
        _LOGGER.info(
            "%s: connected at %s (%s, gen %s)",
            self._log_id,
            self._address,
            self._model,
            self._gen,
        )
        self._remember_status(status, replace=True)
        self.get_capabilities(self._status)
        self.register_for_puts()
        self.send_deltas(self._status)

    def _schedule_reconnect(self) -> None:
        if not (self._should_reconnect and self._settings.enable_reconnection):
            return
        if self._reconnect_handle is not None:
            return
        max_attempts = self._settings.max_reconnect_attempts
        if (
            max_attempts != UNLIMITED_RECONNECTS
            and self._reconnect_attempts >= max_attempts
        ):
            _LOGGER.error(
                "%s: max reconnection attempts (%s) reached; giving up",
                self._log_id,
                max_attempts,
            )
            self._set_state(ConnectionState.DISCONNECTED)
            return
        self._reconnect_attempts += 1
        delay = reconnect_delay(self._reconnect_attempts)
        self._set_state(ConnectionState.RECONNECTING)
        _LOGGER.debug(
            "%s: reconnecting in %.1fs (attempt %s/%s)",
            self._log_id,
            delay,
            self._reconnect_attempts,
            max_attempts,
        )
        self._reconnect_handle = self._scheduler.call_later(
            delay, self._on_reconnect_timer
        )

    def _on_reconnect_timer(self) -> None:
        self._reconnect_handle = None
        if self._state is not ConnectionState.RECONNECTING:
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._run_reconnect(), name=f"shelly-reconnect-{self._log_id}"
        )

    async def _run_reconnect(self) -> None:
        _LOGGER.debug("%s: reconnecting", self._log_id)
        try:
            await self._attempt_connection()
        except ShellyBridgeError as err:
            _LOGGER.debug(
                "%s: reconnection attempt %s failed: %s",
                self._log_id,
                self._reconnect_attempts,
                err,
            )
        else:
            if self._on_reconnected is not None:
                await self._on_reconnected(self)

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    async def _drop_transport(self) -> None:
        """Reject pending requests, stop the reader and close the transport."""

        reader = self._reader_task
        transport = self._transport
        self._reader_task = None
        self._transport = None
        self._reject_pending()
        if (
            reader is not None
            and not reader.done()
            and reader is not asyncio.current_task()
        ):
            reader.cancel()
            with suppress(asyncio.CancelledError):
                await reader
        if transport is not None:
            await transport.close()

    def _reject_pending(self) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for entry in pending:
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(DeviceDisconnectedError())

    # ------------------------------------------------------------------
    # Requests and inbound frames
    # ------------------------------------------------------------------
    async def call(self, method: str, params: Mapping[str, Any] | None = None) -> Any:
        """Send one RPC and wait for its correlated response."""

        transport = self._transport
        if transport is None or transport.closed:
            raise TransportError(f"{self._log_id}: websocket is not connected")

        request_id = self._next_id
        self._next_id += 1
        frame = encode_request(request_id, method, params, auth=self._auth)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        timer = self._scheduler.call_later(
            self._request_timeout, partial(self._expire_request, request_id)
        )
        self._pending[request_id] = _PendingRequest(method, future, timer)
        try:
            _LOGGER.debug("%s: -> %s", self._log_id, redact_frame(frame))
            await transport.send_str(frame)
            return await future
        finally:
            entry = self._pending.pop(request_id, None)
            if entry is not None:
                entry.timer.cancel()

    def _expire_request(self, request_id: int) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        _LOGGER.debug("%s: request %s timed out", self._log_id, request_id)
        entry.future.set_exception(RequestTimeout(request_id, entry.method))

    async def _read_loop(self, transport: Transport) -> None:
        try:
            async for text in transport.frames():
                try:
                    self._handle_frame(text)
                except Exception:
                    _LOGGER.exception("%s: failed to handle frame", self._log_id)
        except TransportError as err:
            _LOGGER.warning("%s: websocket error: %s", self._log_id, err)
        else:
            _LOGGER.debug("%s: websocket closed by device", self._log_id)
        if transport is self._transport:
            await self._on_transport_lost()

    async def _on_transport_lost(self) -> None:
        transport = self._transport
        self._transport = None
        self._reader_task = None
        self._reject_pending()
        if transport is not None:
            await transport.close()
        if self._state is ConnectionState.CONNECTED:
            _LOGGER.info("%s: connection lost", self._log_id)
            self._set_state(ConnectionState.DISCONNECTED)
            self._schedule_reconnect()

    def _handle_frame(self, text: str) -> None:
        frame = decode_frame(text)
        if frame is None:
            _LOGGER.warning("%s: ignoring undecodable frame", self._log_id)
            return
        if frame.is_push:
            if frame.method in PUSH_METHODS:
                self._handle_push(frame)
            else:
                _LOGGER.debug("%s: ignoring frame %s", self._log_id, frame.method)
            return
        if frame.id is not None:
            self._resolve(frame.id, frame)

    def _resolve(self, request_id: int, frame: RpcFrame) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None:
            _LOGGER.debug("%s: ignoring late response %s", self._log_id, request_id)
            return
        entry.timer.cancel()
        if entry.future.done():
            return
        if frame.error is not None:
            entry.future.set_exception(
                RpcError(frame.error.code, frame.error.message, method=entry.method)
            )
        else:
            entry.future.set_result(frame.result)

    def _handle_push(self, frame: RpcFrame) -> None:
        if self._state is not ConnectionState.CONNECTED or not frame.params:
            return
        self._remember_status(frame.params)
        self.send_deltas(frame.params)

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------
    def _remember_status(self, status: Mapping[str, Any], *, replace: bool = False) -> None:
        if replace:
            self._status = copy.deepcopy(dict(status))
            return
        for key, value in status.items():
            current = self._status.get(key)
            if isinstance(current, dict) and isinstance(value, Mapping):
                current.update(copy.deepcopy(dict(value)))
            else:
                self._status[key] = copy.deepcopy(value)

    def get_capabilities(self, status: Mapping[str, Any]) -> DeviceLayout:
        """Rebuild the component layout from a full status snapshot."""

        self._layout = build_layout(
            status, self._settings, name=self._name, device_id=self._id
        )
        _LOGGER.debug("%s: components %s", self._log_id, self._layout.counts)
        return self._layout

    def _layout_for(self, status: Mapping[str, Any]) -> DeviceLayout:
        return self._layout or self.get_capabilities(status)

    def send_meta(self, status: Mapping[str, Any]) -> None:
        """Emit metadata for the device and every enabled instance."""

        if not self._settings.is_enabled:
            return
        layout = self._layout_for(status)
        meta = device_meta(layout)
        for instance in layout.iter_instances():
            meta.extend(compute_meta(layout, instance, status))
        if not meta:
            return
        _LOGGER.debug("%s: sending meta %s", self._log_id, meta)
        self._host.handle_meta([entry.as_message() for entry in meta])

    def send_deltas(self, status: Mapping[str, Any]) -> None:
        """Translate ``status`` into one delta batch and emit it."""

        if not self._settings.is_enabled:
            return
        layout = self._layout_for(status)
        if not self._sent_meta:
            self.send_meta(status)
            self._sent_meta = True

        values = []
        if not self._sent_static:
            values.extend(static_deltas(layout, self.to_json()))
            self._sent_static = True
        for instance in layout.iter_instances():
            values.extend(compute_deltas(layout, instance, status))
        if not values:
            return
        _LOGGER.debug("%s: sending deltas %s", self._log_id, values)
        self._host.handle_deltas([value.as_message() for value in values])

    async def poll(self) -> None:
        """Fetch full status and emit deltas; does nothing unless connected."""

        if self._state is not ConnectionState.CONNECTED:
            return
        status = await self.call(METHOD_GET_STATUS)
        if not isinstance(status, Mapping):
            raise TransportError(f"{self._log_id}: invalid status payload")
        self._remember_status(status, replace=True)
        self.send_deltas(self._status)

    async def resend_deltas(self) -> None:
        """Re-run discovery and replay the full status, metadata included."""

        self._sent_meta = False
        self._sent_static = False
        if self._state is ConnectionState.CONNECTED:
            status = await self.call(METHOD_GET_STATUS)
            if isinstance(status, Mapping):
                self._remember_status(status, replace=True)
        if not self._status:
            return
        self.get_capabilities(self._status)
        self.register_for_puts()
        self.send_deltas(self._status)

    def set_device_settings(
        self, settings: Mapping[str, Any] | DeviceSettings | None
    ) -> None:
        """Replace the settings and recompute paths from the cached status."""

        self._settings = DeviceSettings.from_blob(settings)
        if self._status:
            self.get_capabilities(self._status)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def register_for_puts(self, status: Mapping[str, Any] | None = None) -> list[str]:
        """Register a write handler for every writable path of enabled instances."""

        self._put_paths = {}
        if not self._settings.is_enabled:
            return []
        current = self._status if status is None else status
        layout = self._layout_for(current)
        for instance in layout.iter_instances():
            for suffix in writable_suffixes(layout, instance, current):
                path = component_path(layout, instance, suffix)
                self._put_paths[path] = (instance.key, suffix)
                if path in self._registered_paths:
                    continue
                self._host.register_put_handler(
                    PUT_CONTEXT, path, self._put_bridge.handler(partial(self.write, path))
                )
                self._registered_paths.add(path)
        return list(self._put_paths)

    async def write(self, path: str, value: Any) -> None:
        """Apply a write to ``path`` and confirm the device reports it."""

        target = self._put_paths.get(path)
        layout = self._layout
        if target is None or layout is None:
            raise UnwritableField(f"{path} is not writable")
        key, suffix = target
        instance = layout.instance(key)
        if instance is None:
            raise UnwritableField(f"{path} is not writable")

        command = translate_write(layout, instance, suffix, value)
        if isinstance(command, ApplyPreset):
            await self._apply_preset(command, key)
        else:
            await self._apply_field(command, key)

    async def _apply_field(self, command: SetField, key: ComponentKey) -> None:
        await self.call(command.set_method, command.params)
        status = await self.call(command.status_method, {"id": command.index})
        if not command.confirmed_by(status):
            actual = status.get(command.read_key) if isinstance(status, Mapping) else None
            raise SetMismatch(
                f"Failed to set {key.status_key} {command.read_key} to {command.value}",
                expected=command.value,
                actual=actual,
            )
        self._emit_component(key, status)

    async def _apply_preset(self, command: ApplyPreset, key: ComponentKey) -> None:
        for method, params in command.steps():
            await self.call(method, params)
        status = await self.call(command.status_method, {"id": command.index})
        if isinstance(status, Mapping):
            self._emit_component(key, status)

    def _emit_component(self, key: ComponentKey, status: Mapping[str, Any]) -> None:
        fragment = {key.status_key: dict(status)}
        self._remember_status(fragment)
        self.send_deltas(fragment)

    async def async_drain_writes(self) -> None:
        """Wait for in-flight host writes to complete."""

        await self._put_bridge.async_drain()


__all__ = ["ConnectionState", "DeviceSession"]
