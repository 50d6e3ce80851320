"""Browser-side endpoint: serves the dispatcher on a Unix socket for the host to connect to.

Each connection starts with the host's hello; the endpoint answers with helloAck
listing the tools it knows. After that every `call` frame is dispatched on its own
task so a slow handler never blocks the rest, and replies are written back as they
complete (serialized by a per-connection lock).
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import importlib
import logging
import signal
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from . import protocol
from .config import BridgeConfig
from .contexts import ContextRouter
from .dispatcher import BrowserDispatcher
from .errors import BridgeError, ConfigError, PayloadTooLargeError, ProtocolError
from .framing import FrameDecoder, decode_envelope, encode_frame
from .log import configure_logging
from .registry import ToolRegistry, create_handler_registry
from .types import ToolHandler, ToolResult

logger = logging.getLogger("mcp.bridge.endpoint")

_READ_CHUNK = 64 * 1024


def load_handlers(ref: str) -> Mapping[str, ToolHandler]:
    """Resolve a `module:attr` reference to a handler mapping.

    `attr` may be the mapping itself or a zero-argument factory returning one.
    """
    module_name, sep, attr = str(ref or "").partition(":")
    if not sep or not module_name.strip() or not attr.strip():
        raise ConfigError(f"Handler factory must look like 'package.module:attr', got {ref!r}")
    try:
        module = importlib.import_module(module_name.strip())
    except ImportError as exc:
        raise ConfigError(f"Cannot import handler module {module_name!r}: {exc}") from exc
    try:
        target = getattr(module, attr.strip())
    except AttributeError as exc:
        raise ConfigError(f"Handler module {module_name!r} has no attribute {attr!r}") from exc
    handlers = target() if callable(target) else target
    if not isinstance(handlers, Mapping):
        raise ConfigError(f"{ref} did not produce a mapping of tool name -> handler")
    return handlers


class _Connection:
    def __init__(self, writer: asyncio.StreamWriter, max_payload_bytes: int) -> None:
        self.writer = writer
        self.max_payload = max_payload_bytes
        self.lock = asyncio.Lock()
        self.tasks: set[asyncio.Task] = set()

    async def send(self, msg: dict[str, Any]) -> None:
        try:
            frame = encode_frame(msg, max_payload_bytes=self.max_payload)
        except PayloadTooLargeError as exc:
            logger.warning("reply id=%r too large: %s", msg.get("id"), exc.message)
            frame = encode_frame(
                protocol.result_envelope(msg.get("id"), ToolResult.error(f"Tool result too large: {exc.message}")),
                max_payload_bytes=self.max_payload,
            )
        async with self.lock:
            self.writer.write(frame)
            await self.writer.drain()


class BrowserEndpoint:
    def __init__(self, dispatcher: BrowserDispatcher, registry: ToolRegistry, config: BridgeConfig) -> None:
        self._dispatcher = dispatcher
        self._registry = registry
        self._config = config
        self._server: asyncio.AbstractServer | None = None
        self._socket_path: Path | None = None
        self._connections: set[_Connection] = set()

    @property
    def socket_path(self) -> Path | None:
        return self._socket_path

    async def start(self, path: str | Path | None = None) -> Path:
        sock = Path(path) if path else self._config.socket_path()
        sock.parent.mkdir(parents=True, exist_ok=True)
        # Stale socket from a previous run.
        with contextlib.suppress(FileNotFoundError):
            sock.unlink()
        self._server = await asyncio.start_unix_server(self._handle_connection, path=str(sock))
        self._socket_path = sock
        logger.info("endpoint ready socket=%s tools=%d", sock, len(self._registry))
        return sock

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
        for conn in list(self._connections):
            conn.writer.close()
            for task in list(conn.tasks):
                task.cancel()
        if self._server is not None:
            # Waits for live connections too on newer Pythons, so they are closed first.
            await self._server.wait_closed()
            self._server = None
        if self._socket_path is not None:
            with contextlib.suppress(FileNotFoundError):
                self._socket_path.unlink()

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        conn = _Connection(writer, self._config.max_payload_bytes)
        self._connections.add(conn)
        decoder = FrameDecoder(
            max_payload_bytes=self._config.max_payload_bytes, max_buffer_bytes=self._config.max_buffer_bytes
        )
        try:
            while True:
                chunk = await reader.read(_READ_CHUNK)
                if not chunk:
                    break
                try:
                    payloads = decoder.feed(chunk)
                except ProtocolError as exc:
                    logger.error("protocol violation from host, closing connection: %s", exc)
                    break
                for payload in payloads:
                    msg = decode_envelope(payload)
                    if msg is not None:
                        await self._on_envelope(conn, msg)
        except (OSError, ConnectionError) as exc:
            logger.info("host connection error: %s", exc)
        finally:
            self._connections.discard(conn)
            # Nobody is left to read these replies.
            if conn.tasks:
                logger.info("host gone, cancelling %d running call(s)", len(conn.tasks))
            for task in list(conn.tasks):
                task.cancel()
            with contextlib.suppress(Exception):
                writer.close()

    async def _on_envelope(self, conn: _Connection, msg: dict[str, Any]) -> None:
        mtype = protocol.envelope_type(msg)
        if mtype == protocol.HELLO:
            logger.info("host hello peer=%s protocol=%s", msg.get("peerId"), msg.get("protocolVersion"))
            await conn.send(protocol.hello_ack(self._registry.tool_names))
            return
        if mtype != protocol.CALL:
            logger.debug("ignoring envelope type=%r", mtype)
            return
        task = asyncio.create_task(self._run_call(conn, msg))
        conn.tasks.add(task)
        task.add_done_callback(conn.tasks.discard)

    async def _run_call(self, conn: _Connection, msg: dict[str, Any]) -> None:
        reply = await self._dispatcher.dispatch(msg)
        if reply is None:
            return
        try:
            await conn.send(reply)
        except (OSError, ConnectionError) as exc:
            logger.info("host went away before reply id=%r: %s", reply.get("id"), exc)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="browser-bridge-endpoint", description="Serve browser tool handlers on a Unix socket.")
    parser.add_argument("--handlers", help="handler factory as package.module:attr (env MCP_BRIDGE_HANDLERS)")
    parser.add_argument("--endpoint-id", help="endpoint id used to name the socket (env MCP_BRIDGE_ENDPOINT_ID)")
    parser.add_argument("--runtime-dir", help="directory for the socket (env MCP_BRIDGE_DIR)")
    parser.add_argument("--socket", help="explicit socket path (overrides endpoint id and runtime dir)")
    parser.add_argument("--log-level", help="log level (env MCP_BRIDGE_LOG_LEVEL)")
    parser.add_argument("--log-file", help="also log to this file (env MCP_BRIDGE_LOG_FILE)")
    return parser


async def _serve(endpoint: BrowserEndpoint, socket_path: str | None) -> None:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await endpoint.start(socket_path)
    try:
        await stop.wait()
    finally:
        await endpoint.close()


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        config = BridgeConfig.from_env().with_overrides(
            handlers=args.handlers,
            endpoint_id=args.endpoint_id,
            runtime_dir=args.runtime_dir,
            log_level=args.log_level,
            log_file=args.log_file,
        )
    except ConfigError as exc:
        print(f"browser-bridge-endpoint: {exc.message}", file=sys.stderr)
        return 1
    configure_logging(config.log_level, config.log_file)

    try:
        handlers = load_handlers(config.handlers) if config.handlers else {}
        registry = create_handler_registry(handlers)
    except (BridgeError, ValueError) as exc:
        logger.error("endpoint startup failed: %s", exc)
        return 1

    endpoint = BrowserEndpoint(BrowserDispatcher(registry, contexts=ContextRouter()), registry, config)
    try:
        asyncio.run(_serve(endpoint, args.socket))
    except KeyboardInterrupt:
        return 0
    except OSError as exc:
        logger.error("endpoint could not listen: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
