"""
Duplex transports for realtime sessions.
"""

import asyncio
from typing import Protocol

import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from ..errors import RequestError

logger = structlog.get_logger()


class RealtimeTransport(Protocol):
    """Text-frame duplex channel. ``recv`` returns None once the peer has closed."""

    async def connect(self, url: str, headers: dict[str, str]) -> None: ...

    async def send(self, text: str) -> None: ...

    async def recv(self) -> str | None: ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """RealtimeTransport over a websockets client connection."""

    def __init__(self, open_timeout: float = 10.0):
        self.open_timeout = open_timeout
        self._connection: ClientConnection | None = None

    async def connect(self, url: str, headers: dict[str, str]) -> None:
        try:
            self._connection = await connect(
                url,
                additional_headers=headers,
                open_timeout=self.open_timeout,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise RequestError(f"WebSocket connection failed: {e}", transient=True) from e

    def _require_connection(self) -> ClientConnection:
        if self._connection is None:
            raise RequestError("Not connected")
        return self._connection

    async def send(self, text: str) -> None:
        connection = self._require_connection()
        try:
            await connection.send(text)
        except ConnectionClosed as e:
            raise RequestError(f"Failed to send event: {e}") from e

    async def recv(self) -> str | None:
        connection = self._require_connection()
        while True:
            try:
                message = await connection.recv()
            except ConnectionClosedOK:
                return None
            except ConnectionClosed as e:
                raise RequestError(f"WebSocket read error: {e}", transient=True) from e

            if isinstance(message, str):
                return message
            logger.debug("Ignoring binary frame", size=len(message))

    async def close(self) -> None:
        if self._connection is not None:
            try:
                await self._connection.close()
            finally:
                self._connection = None
