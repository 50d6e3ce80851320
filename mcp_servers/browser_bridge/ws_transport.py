"""WebSocket flavour of the client-facing transport.

Used when stdio is taken by the browser channel (native messaging). Each text
message carries one record; responses go back on the same socket.
"""

from __future__ import annotations

import logging
from typing import Any

import websockets

from .client_transport import RecordSession, RequestHandler

logger = logging.getLogger("mcp.bridge.ws")


class WebSocketClientTransport:
    def __init__(self, handler: RequestHandler, *, host: str, port: int, max_record_bytes: int) -> None:
        self._handler = handler
        self.host = host
        self.port = int(port)
        self._max_record = int(max_record_bytes)
        self._server: Any | None = None

    @property
    def bound_port(self) -> int | None:
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return int(sock.getsockname()[1])
        return None

    async def _client(self, ws: Any) -> None:
        peer = getattr(ws, "remote_address", None)
        logger.info("client connected %s", peer)

        async def _send(line: str) -> None:
            try:
                await ws.send(line)
            except websockets.ConnectionClosed as exc:
                raise ConnectionError(str(exc)) from exc

        session = RecordSession(self._handler, _send)
        try:
            async for raw in ws:
                session.submit(raw)
            await session.drain()
        except websockets.ConnectionClosed:
            pass
        finally:
            await session.aclose()
            logger.info("client disconnected %s", peer)

    async def start(self) -> None:
        self._server = await websockets.serve(
            self._client,
            self.host,
            self.port,
            max_size=self._max_record,
            ping_interval=None,
        )
        logger.info("listening for clients on ws://%s:%s", self.host, self.bound_port)

    async def serve(self) -> None:
        if self._server is None:
            await self.start()
        await self._server.wait_closed()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
