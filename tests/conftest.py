# ruff: noqa: D100,D101,D102,D103,D105,D107,INP001
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
import inspect
import json
from typing import Any

import pytest

from shelly_bridge.errors import TransportError
from shelly_bridge.session import DeviceSession


def pytest_configure(config: pytest.Config) -> None:
    """Register custom pytest markers used across the suite."""

    if not config.pluginmanager.hasplugin("pytest_asyncio"):
        config.addinivalue_line(
            "markers", "asyncio: mark test as requiring asyncio event loop support."
        )


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async tests when pytest-asyncio is unavailable."""

    if pyfuncitem.config.pluginmanager.hasplugin("pytest_asyncio"):
        return None

    testfunction = pyfuncitem.obj
    if not inspect.iscoroutinefunction(testfunction):
        return None

    marker = pyfuncitem.get_closest_marker("asyncio")
    if marker is None:
        return None

    with asyncio.Runner(debug=False) as runner:
        runner.run(testfunction(**pyfuncitem.funcargs))
    return True


DEVICE_INFO = {"id": "shellyplus1-a8032ab12345", "name": "Hallway", "model": "SNSW-001X16EU", "gen": 2}


class FakeTimer:
    def __init__(self, scheduler: FakeScheduler, delay: float, callback: Callable[[], None]) -> None:
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Scheduler that records timers and fires them on demand."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self, delay, callback)
        self.timers.append(timer)
        return timer

    def active(self, delay: float | None = None) -> list[FakeTimer]:
        return [
            timer
            for timer in self.timers
            if not timer.cancelled and (delay is None or timer.delay == delay)
        ]

    def fire(self, timer: FakeTimer) -> None:
        assert not timer.cancelled
        timer.cancelled = True
        timer.callback()

    @property
    def backoff_delays(self) -> list[float]:
        """Delays of every timer that was not a request timeout."""

        return [timer.delay for timer in self.timers if timer.delay != 5.0]


Responder = Callable[[dict[str, Any]], dict[str, Any] | None]


class FakeTransport:
    """In-memory transport; ``responder`` maps each request to a reply."""

    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder
        self.sent: list[dict[str, Any]] = []
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_str(self, data: str) -> None:
        if self._closed:
            raise TransportError("closed")
        request = json.loads(data)
        self.sent.append(request)
        if self.responder is not None:
            reply = self.responder(request)
            if reply is not None:
                self._inbox.put_nowait(json.dumps(reply))

    async def frames(self) -> AsyncIterator[str]:
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    def push(self, payload: dict[str, Any]) -> None:
        self._inbox.put_nowait(json.dumps(payload))

    def push_raw(self, text: str) -> None:
        self._inbox.put_nowait(text)

    def device_close(self) -> None:
        """Simulate the device closing the socket."""

        self._closed = True
        self._inbox.put_nowait(None)

    def device_error(self, message: str = "boom") -> None:
        self._closed = True
        self._inbox.put_nowait(TransportError(message))

    async def close(self) -> None:
        self.close_calls += 1
        if not self._closed:
            self._closed = True
            self._inbox.put_nowait(None)

    def methods(self) -> list[str]:
        return [request["method"] for request in self.sent]


def device_responder(
    status: dict[str, Any],
    *,
    info: dict[str, Any] | None = None,
    overrides: dict[str, Callable[[dict[str, Any]], dict[str, Any] | None]] | None = None,
) -> Responder:
    """Answer GetDeviceInfo/GetStatus and component calls from ``status``."""

    device_info = dict(info or DEVICE_INFO)

    def _respond(request: dict[str, Any]) -> dict[str, Any] | None:
        method = request["method"]
        if overrides and method in overrides:
            return overrides[method](request)
        if method == "Shelly.GetDeviceInfo":
            return {"id": request["id"], "result": device_info}
        if method == "Shelly.GetStatus":
            return {"id": request["id"], "result": json.loads(json.dumps(status))}
        rpc_name, _, action = method.partition(".")
        key = f"{rpc_name.lower()}:{request['params'].get('id', 0)}"
        component = status.get(key)
        if component is None:
            return {"id": request["id"], "error": {"code": -105, "message": "not found"}}
        if action == "Set":
            for name, value in request["params"].items():
                if name != "id":
                    component["output" if name == "on" else name] = value
            return {"id": request["id"], "result": {}}
        return {"id": request["id"], "result": dict(component)}

    return _respond


class RecordingHost:
    """Telemetry host capturing every batch and handler."""

    def __init__(self) -> None:
        self.deltas: list[list[dict[str, Any]]] = []
        self.meta: list[list[dict[str, Any]]] = []
        self.handlers: dict[str, Callable[..., dict[str, Any]]] = {}
        self.contexts: dict[str, str] = {}
        self.plugin_errors: list[str] = []

    def handle_deltas(self, values: list[dict[str, Any]]) -> None:
        self.deltas.append(values)

    def handle_meta(self, meta: list[dict[str, Any]]) -> None:
        self.meta.append(meta)

    def register_put_handler(self, context: str, path: str, handler: Callable[..., dict[str, Any]]) -> None:
        self.handlers[path] = handler
        self.contexts[path] = context

    def set_plugin_error(self, message: str) -> None:
        self.plugin_errors.append(message)

    def values(self) -> dict[str, Any]:
        """Flatten every emitted delta into ``{path: last value}``."""

        merged: dict[str, Any] = {}
        for batch in self.deltas:
            for item in batch:
                merged[item["path"]] = item["value"]
        return merged

    def meta_for(self, path: str) -> list[dict[str, Any]]:
        return [item["value"] for batch in self.meta for item in batch if item["path"] == path]


class TransportQueue:
    """Transport factory handing out prepared outcomes in order.

    Each outcome is a transport, an exception to raise, or a zero-argument
    callable building a fresh transport. The last outcome repeats.
    """

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.urls: list[str] = []
        self.opened: list[Any] = []

    async def __call__(self, url: str) -> Any:
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome) and not isinstance(outcome, FakeTransport):
            outcome = outcome()
        self.opened.append(outcome)
        return outcome


def build_session(
    host: RecordingHost,
    scheduler: FakeScheduler,
    factory: Callable[[str], Any],
    *,
    settings: dict[str, Any] | None = None,
    address: str = "10.0.0.2",
    hostname: str | None = None,
) -> DeviceSession:
    return DeviceSession(
        host,
        address,
        hostname,
        settings=settings,
        transport_factory=factory,
        scheduler=scheduler,
    )


async def open_session(
    host: RecordingHost,
    scheduler: FakeScheduler,
    status: dict[str, Any],
    *,
    settings: dict[str, Any] | None = None,
    info: dict[str, Any] | None = None,
    overrides: dict[str, Callable[[dict[str, Any]], dict[str, Any] | None]] | None = None,
) -> tuple[DeviceSession, FakeTransport]:
    """Connect a session to a FakeTransport answering from ``status``."""

    transport = FakeTransport(device_responder(status, info=info, overrides=overrides))
    session = build_session(host, scheduler, TransportQueue(transport), settings=settings)
    await session.connect()
    return session, transport


async def settle(rounds: int = 20) -> None:
    """Let queued reader and writer tasks run."""

    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def host() -> RecordingHost:
    return RecordingHost()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()
