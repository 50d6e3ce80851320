"""Host wiring: client transport -> request handler -> call router -> supervisor -> browser."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Any

from .client_transport import RequestHandler, StdioClientTransport
from .config import BridgeConfig
from .connectors import Connector, StdioConnector, UnixSocketConnector, open_stdio
from .registry import ToolRegistry, create_default_registry
from .router import CallRouter
from .supervisor import ConnectionSupervisor
from .ws_transport import WebSocketClientTransport

logger = logging.getLogger("mcp.bridge.host")


def default_connector(config: BridgeConfig) -> Connector:
    if config.browser_transport == "stdio":
        return StdioConnector()
    return UnixSocketConnector(config.socket_path())


class BridgeHost:
    """Owns one router, one supervisor and one client transport for the life of the process."""

    def __init__(
        self,
        config: BridgeConfig,
        *,
        connector: Connector | None = None,
        registry: ToolRegistry | None = None,
    ) -> None:
        self.config = config
        self.registry = registry or create_default_registry()
        self.supervisor = ConnectionSupervisor(connector or default_connector(config), config)
        self.router = CallRouter(self.supervisor, default_timeout_ms=config.default_timeout_ms)
        self.supervisor.add_listener(self.router)
        self.handler = RequestHandler(self.registry, self.router)
        self._ws: WebSocketClientTransport | None = None

    def status(self) -> dict[str, Any]:
        return {**self.supervisor.status(), "pending": self.router.pending_count}

    async def _serve_clients(self, client_streams: tuple[asyncio.StreamReader, asyncio.StreamWriter] | None) -> None:
        if self.config.client_transport == "ws":
            self._ws = WebSocketClientTransport(
                self.handler,
                host=self.config.ws_host,
                port=self.config.ws_port,
                max_record_bytes=self.config.max_payload_bytes,
            )
            await self._ws.serve()
            return
        if client_streams is None:
            client_streams = await open_stdio(sys.stdin.buffer, sys.stdout.buffer)
        reader, writer = client_streams
        transport = StdioClientTransport(
            self.handler, reader, writer, max_record_bytes=self.config.max_payload_bytes
        )
        await transport.serve()
        logger.info("client input closed")

    async def run(
        self, client_streams: tuple[asyncio.StreamReader, asyncio.StreamWriter] | None = None
    ) -> None:
        """Serve until the client side ends or the browser side is gone for good.

        Raises StartupError (from the supervisor) when the browser side was never reached.
        """
        logger.info(
            "bridge starting browser=%s client=%s tools=%d",
            self.config.browser_transport,
            self.config.client_transport,
            len(self.registry),
        )
        supervisor_task = asyncio.create_task(self.supervisor.run(), name="bridge-supervisor")
        clients_task = asyncio.create_task(self._serve_clients(client_streams), name="bridge-clients")
        try:
            done, _ = await asyncio.wait({supervisor_task, clients_task}, return_when=asyncio.FIRST_COMPLETED)
            if supervisor_task in done:
                logger.info("browser connection ended; stopping")
            # Surface StartupError and client transport faults to the caller.
            for task in done:
                task.result()
        finally:
            await self.shutdown(supervisor_task, clients_task)

    async def shutdown(self, *tasks: asyncio.Task) -> None:
        logger.info("bridge stopping %s", self.status())
        await self.supervisor.close()
        if self._ws is not None:
            await self._ws.close()
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        logger.info("bridge stopped")
