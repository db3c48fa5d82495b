"""Websocket transport to a single device."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import suppress
import logging
from typing import Protocol

import aiohttp

from ..const import CONNECT_TIMEOUT, RPC_PATH
from ..errors import TransportError

_LOGGER = logging.getLogger(__name__)


class Transport(Protocol):
    """Bidirectional text-frame channel to one device."""

    @property
    def closed(self) -> bool:
        """Return True once the channel has closed."""

    async def send_str(self, data: str) -> None:
        """Send one frame."""

    def frames(self) -> AsyncIterator[str]:
        """Yield inbound frames until the channel closes."""

    async def close(self) -> None:
        """Close the channel."""


TransportFactory = Callable[[str], Awaitable[Transport]]


def device_url(host: str) -> str:
    """Return the RPC websocket URL for ``host``."""

    return f"ws://{host}{RPC_PATH}"


class WebSocketTransport:
    """Thin wrapper over an aiohttp websocket carrying one JSON frame per message."""

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        *,
        session: aiohttp.ClientSession | None = None,
        owns_session: bool = False,
    ) -> None:
        self._ws = ws
        self._session = session
        self._owns_session = owns_session
        self.frames_total = 0

    @classmethod
    async def open(
        cls,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = CONNECT_TIMEOUT,
    ) -> WebSocketTransport:
        """Connect to ``url`` and return the open transport."""

        owns_session = session is None
        client = session or aiohttp.ClientSession()
        try:
            async with asyncio.timeout(timeout):
                ws = await client.ws_connect(url, heartbeat=None, autoclose=True)
        except (aiohttp.ClientError, OSError, TimeoutError) as err:
            if owns_session:
                await client.close()
            raise TransportError(f"Unable to connect to {url}: {err}") from err
        _LOGGER.debug("WS: connected to %s", url)
        return cls(ws, session=client, owns_session=owns_session)

    @property
    def closed(self) -> bool:
        """Return True once the websocket has closed."""

        return self._ws.closed

    async def send_str(self, data: str) -> None:
        """Send one text frame."""

        if self._ws.closed:
            raise TransportError("websocket is not connected")
        try:
            await self._ws.send_str(data)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as err:
            raise TransportError(f"Failed to send frame: {err}") from err

    async def frames(self) -> AsyncIterator[str]:
        """Yield inbound text frames until the socket closes.

        A websocket error raises :class:`TransportError`; a clean close ends
        the iteration.
        """

        ws = self._ws
        while True:
            msg = await ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.frames_total += 1
                yield msg.data
                continue
            if msg.type == aiohttp.WSMsgType.BINARY:
                self.frames_total += 1
                yield msg.data.decode("utf-8", "replace")
                continue
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise TransportError(f"websocket error: {ws.exception()}")
            if msg.type in {
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            }:
                _LOGGER.debug("WS: closed (code=%s)", ws.close_code)
                return

    async def close(self) -> None:
        """Close the websocket and any session this transport owns."""

        with suppress(aiohttp.ClientError, RuntimeError):
            await self._ws.close()
        if self._owns_session and self._session is not None:
            with suppress(aiohttp.ClientError, RuntimeError):
                await self._session.close()


__all__ = ["Transport", "TransportFactory", "WebSocketTransport", "device_url"]
