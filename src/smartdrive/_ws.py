"""Internal websocket channel built on aiohttp.

The connection manager only depends on the :class:`Channel` protocol, so
tests can substitute an in-memory channel while production uses
:class:`WebSocketChannel`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Protocol

import aiohttp

from smartdrive.exceptions import ChannelError

_logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Structural interface of an open, framed, bidirectional channel."""

    @property
    def close_code(self) -> int | None: ...

    @property
    def close_reason(self) -> str: ...

    async def send(self, text: str) -> None: ...

    def messages(self) -> AsyncIterator[str]: ...

    async def close(self, *, code: int, reason: str) -> None: ...


class WebSocketChannel:
    """aiohttp websocket wrapped as a :class:`Channel`."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws
        self._close_code: int | None = None
        self._close_reason = ""

    @property
    def close_code(self) -> int | None:
        return self._close_code if self._close_code is not None else self._ws.close_code

    @property
    def close_reason(self) -> str:
        return self._close_reason

    async def send(self, text: str) -> None:
        if self._ws.closed:
            raise ChannelError("Websocket is closed", code=self._ws.close_code)
        try:
            await self._ws.send_str(text)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            raise ChannelError(f"Websocket send failed: {exc}") from exc

    async def messages(self) -> AsyncIterator[str]:
        """Yield text frames until the peer closes the socket.

        Close code and reason are captured for the caller.  A transport
        error raises :class:`ChannelError`.
        """
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.BINARY:
                yield msg.data.decode("utf-8", errors="replace")
            elif msg.type == aiohttp.WSMsgType.CLOSE:
                self._close_code = msg.data
                self._close_reason = msg.extra or ""
                return
            elif msg.type in (aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                return
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ChannelError(f"Websocket error: {self._ws.exception()}")

    async def close(self, *, code: int, reason: str) -> None:
        self._close_code = code
        self._close_reason = reason
        await self._ws.close(code=code, message=reason.encode("utf-8"))


async def open_websocket_channel(
    http_session: aiohttp.ClientSession,
    url: str,
    *,
    timeout: float = 10.0,
) -> WebSocketChannel:
    """Open a websocket to *url*; every failure becomes :class:`ChannelError`."""
    _logger.debug("Websocket connect requested url=%s", url)
    try:
        async with asyncio.timeout(timeout):
            ws = await http_session.ws_connect(url, autoping=True)
    except TimeoutError as exc:
        raise ChannelError(f"Websocket connect to {url} timed out") from exc
    except (aiohttp.ClientError, OSError) as exc:
        raise ChannelError(f"Websocket connect to {url} failed: {exc}") from exc
    _logger.debug("Websocket connected url=%s", url)
    return WebSocketChannel(ws)
