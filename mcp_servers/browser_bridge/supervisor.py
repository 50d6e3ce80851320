"""Connection supervisor for the framed host <-> browser stream.

Owns the connection state and the stream handle. Everything that reads or writes
the browser channel goes through here; loss of the stream is reported to the
listeners (the call router) exactly once per connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
from enum import Enum
from typing import Any, Protocol

from . import protocol
from .config import BackoffConfig, BridgeConfig
from .connectors import Connector
from .errors import ConnectionLostError, ProtocolError, StartupError
from .framing import FrameDecoder, decode_envelope, encode_frame

logger = logging.getLogger("mcp.bridge.supervisor")

_READ_CHUNK = 64 * 1024


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED, ConnectionState.CLOSING}
    ),
    # CONNECTED -> DISCONNECTED is the abrupt-loss path.
    ConnectionState.CONNECTED: frozenset({ConnectionState.CLOSING, ConnectionState.DISCONNECTED}),
    ConnectionState.CLOSING: frozenset({ConnectionState.DISCONNECTED}),
}


class ConnectionListener(Protocol):
    def handle_envelope(self, msg: dict[str, Any]) -> None: ...

    def connection_lost(self, exc: ConnectionLostError) -> None: ...


class Backoff:
    """Exponential reconnect delays; `next_delay()` returns None once attempts are exhausted."""

    def __init__(self, cfg: BackoffConfig) -> None:
        self._cfg = cfg
        self.attempts = 0

    def reset(self) -> None:
        self.attempts = 0

    def next_delay(self) -> float | None:
        if self._cfg.max_attempts and self.attempts >= self._cfg.max_attempts:
            return None
        delay = self._cfg.initial_delay * (self._cfg.factor**self.attempts)
        self.attempts += 1
        return min(delay, self._cfg.max_delay)


class ConnectionSupervisor:
    def __init__(self, connector: Connector, config: BridgeConfig, *, peer_id: str | None = None) -> None:
        self._connector = connector
        self._config = config
        self._peer_id = peer_id or f"host-{int(time.time() * 1000)}-{os.getpid()}"
        self._listeners: list[ConnectionListener] = []

        self._state = ConnectionState.DISCONNECTED
        self._session = 0
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._write_lock = asyncio.Lock()
        self._connected = asyncio.Event()
        self._stop = asyncio.Event()
        self._closing = False

        self._ever_connected = False
        self._remote_tools: list[str] = []
        self._last_error: str | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────────────────

    def add_listener(self, listener: ConnectionListener) -> None:
        self._listeners.append(listener)

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "target": self._connector.describe(),
            "peerId": self._peer_id,
            **({"remoteTools": len(self._remote_tools)} if self._remote_tools else {}),
            **({"lastError": self._last_error} if self._last_error else {}),
        }

    async def wait_connected(self, timeout: float) -> bool:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._connected.wait(), timeout=max(0.0, float(timeout)))
        return self.is_connected()

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        if new not in _TRANSITIONS[old]:
            raise RuntimeError(f"Illegal connection transition {old.value} -> {new.value}")
        self._state = new
        if new is ConnectionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()
        logger.info("connection %s -> %s (%s)", old.value, new.value, self._connector.describe())

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def run(self) -> None:
        """Connect and keep reconnecting until closed, the policy gives up, or the stream can't be reopened.

        Raises StartupError if no connection was ever established.
        """
        backoff = Backoff(self._config.backoff)
        while not self._closing:
            self._set_state(ConnectionState.CONNECTING)
            try:
                reader, writer, decoder, early = await self._open_and_handshake()
            except (OSError, asyncio.TimeoutError, ConnectionLostError, ProtocolError) as exc:
                self._last_error = str(exc) or type(exc).__name__
                if self._closing:
                    break
                self._set_state(ConnectionState.DISCONNECTED)
                if not self._connector.reconnectable:
                    break
                delay = backoff.next_delay()
                if delay is None:
                    logger.error("giving up after %d attempts: %s", backoff.attempts, self._last_error)
                    break
                logger.warning(
                    "connect attempt %d failed (%s); retrying in %.2fs", backoff.attempts, self._last_error, delay
                )
                await self._sleep(delay)
                continue

            if self._closing:
                writer.close()
                break

            backoff.reset()
            self._session += 1
            session = self._session
            self._reader, self._writer = reader, writer
            self._ever_connected = True
            self._last_error = None
            self._set_state(ConnectionState.CONNECTED)

            for msg in early:
                self._deliver(msg)
            reason = await self._read_loop(reader, decoder)
            if self._closing:
                break
            self._lose(session, reason)
            if not self._connector.reconnectable:
                break
            delay = backoff.next_delay()
            if delay is None:
                logger.error("connection lost and reconnect policy exhausted")
                break
            await self._sleep(delay)

        if not self._ever_connected and not self._closing:
            raise StartupError(
                f"Could not connect to the browser at {self._connector.describe()}: {self._last_error or 'unknown error'}"
            )

    async def close(self) -> None:
        """Graceful shutdown: CLOSING, close the stream, DISCONNECTED, fail whatever is still pending."""
        if self._closing:
            return
        self._closing = True
        self._stop.set()
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._set_state(ConnectionState.CLOSING)
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is not None:
            writer.close()
            with contextlib.suppress(OSError, ConnectionError):
                await writer.wait_closed()
        self._set_state(ConnectionState.DISCONNECTED)
        self._notify_lost(ConnectionLostError("Bridge is shutting down"))

    async def _sleep(self, delay: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=delay)

    async def _open_and_handshake(
        self,
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter, FrameDecoder, list[dict[str, Any]]]:
        reader, writer = await self._connector.open()
        decoder = FrameDecoder(
            max_payload_bytes=self._config.max_payload_bytes, max_buffer_bytes=self._config.max_buffer_bytes
        )
        try:
            writer.write(encode_frame(protocol.hello(self._peer_id), max_payload_bytes=self._config.max_payload_bytes))
            await writer.drain()
            early = await asyncio.wait_for(self._await_ack(reader, decoder), timeout=self._config.handshake_timeout)
        except BaseException:
            writer.close()
            raise
        return reader, writer, decoder, early

    async def _await_ack(self, reader: asyncio.StreamReader, decoder: FrameDecoder) -> list[dict[str, Any]]:
        while True:
            chunk = await reader.read(_READ_CHUNK)
            if not chunk:
                raise ConnectionLostError("Browser side closed the stream during handshake")
            payloads = decoder.feed(chunk)
            for i, payload in enumerate(payloads):
                msg = decode_envelope(payload)
                if msg is None or protocol.envelope_type(msg) != protocol.HELLO_ACK:
                    continue
                if msg.get("protocolVersion") != protocol.BRIDGE_PROTOCOL_VERSION:
                    logger.warning(
                        "browser side speaks protocol %s, host speaks %s",
                        msg.get("protocolVersion"),
                        protocol.BRIDGE_PROTOCOL_VERSION,
                    )
                tools = msg.get("tools")
                self._remote_tools = [t for t in tools if isinstance(t, str)] if isinstance(tools, list) else []
                rest = (decode_envelope(p) for p in payloads[i + 1 :])
                return [m for m in rest if m is not None]

    async def _read_loop(self, reader: asyncio.StreamReader, decoder: FrameDecoder) -> str:
        while True:
            try:
                chunk = await reader.read(_READ_CHUNK)
            except (OSError, ConnectionError) as exc:
                return f"stream error: {exc}"
            if not chunk:
                return "EOF"
            try:
                payloads = decoder.feed(chunk)
            except ProtocolError as exc:
                logger.error("protocol violation, tearing connection down: %s", exc)
                return f"protocol violation: {exc}"
            for payload in payloads:
                msg = decode_envelope(payload)
                if msg is not None:
                    self._deliver(msg)

    def _deliver(self, msg: dict[str, Any]) -> None:
        for listener in self._listeners:
            try:
                listener.handle_envelope(msg)
            except Exception:  # noqa: BLE001
                logger.exception("listener failed on inbound envelope")

    def _lose(self, session: int, reason: str) -> None:
        """Abrupt loss of the current connection; a no-op if that connection is already gone."""
        if session != self._session or self._state is not ConnectionState.CONNECTED:
            return
        writer = self._writer
        self._writer = None
        self._reader = None
        self._last_error = reason
        self._set_state(ConnectionState.DISCONNECTED)
        if writer is not None:
            writer.close()
        logger.warning("browser connection lost: %s", reason)
        self._notify_lost(ConnectionLostError(f"Browser connection lost: {reason}"))

    def _notify_lost(self, exc: ConnectionLostError) -> None:
        for listener in self._listeners:
            try:
                listener.connection_lost(exc)
            except Exception:  # noqa: BLE001
                logger.exception("listener failed on connection loss")

    # ─────────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────────

    async def send(self, msg: dict[str, Any]) -> None:
        """Write one envelope. Oversize payloads fail before any byte hits the stream."""
        frame = encode_frame(msg, max_payload_bytes=self._config.max_payload_bytes)
        async with self._write_lock:
            writer = self._writer
            if self._state is not ConnectionState.CONNECTED or writer is None:
                raise ConnectionLostError("Browser connection is not established")
            session = self._session
            try:
                writer.write(frame)
                await writer.drain()
            except (OSError, ConnectionError) as exc:
                # Broken pipe: the browser went away. Treat as a disconnect, never as fatal.
                self._lose(session, f"write failed: {exc}")
                raise ConnectionLostError(f"Browser connection lost while sending: {exc}") from exc
