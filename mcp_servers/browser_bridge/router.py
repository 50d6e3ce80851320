"""Call router: correlates outbound tool calls with inbound results by id.

The correlation table is owned by one CallRouter instance. All mutations happen in
synchronous code on the event loop (no awaits in between), so no lock guards it.
Every entry leaves the table exactly once: on its result, its error, its timeout,
connection loss, or the caller giving up.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from . import protocol
from .errors import BridgeError, CallTimeoutError, ConnectionLostError, DispatchError
from .log import describe_args
from .types import ToolCall, ToolResult

logger = logging.getLogger("mcp.bridge.router")


class Link(Protocol):
    def is_connected(self) -> bool: ...

    async def send(self, msg: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class PendingCall:
    call: ToolCall
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None


class CallRouter:
    def __init__(self, link: Link, *, default_timeout_ms: int) -> None:
        self._link = link
        self._default_timeout_ms = int(default_timeout_ms)
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingCall] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _next_id(self) -> int:
        call_id = next(self._ids)
        while call_id in self._pending:
            call_id = next(self._ids)
        return call_id

    async def invoke(self, name: str, args: dict[str, Any] | None = None, timeout_ms: int | None = None) -> ToolResult:
        """Send a tool call to the browser and wait for its result.

        Raises ConnectionLostError, CallTimeoutError, DispatchError, or
        PayloadTooLargeError (nothing was sent).
        """
        if not self._link.is_connected():
            raise ConnectionLostError("Browser is not connected")

        timeout = int(timeout_ms) if timeout_ms and int(timeout_ms) > 0 else self._default_timeout_ms
        loop = asyncio.get_running_loop()
        call = ToolCall(id=self._next_id(), name=name, args=dict(args or {}), timeout_ms=timeout)
        entry = PendingCall(call=call, future=loop.create_future())
        entry.timer = loop.call_later(timeout / 1000.0, self._expire, call.id)
        self._pending[call.id] = entry
        logger.info("invoke id=%s tool=%s args=%s timeout_ms=%d", call.id, name, describe_args(call.args), timeout)

        try:
            await self._link.send(call.to_envelope())
        except BridgeError as exc:
            self._settle(call.id, exc=exc)
        except BaseException:
            self._discard(call.id)
            raise

        try:
            return await entry.future
        except asyncio.CancelledError:
            self._discard(call.id)
            raise

    # ─────────────────────────────────────────────────────────────────────────
    # Inbound (called by the connection supervisor)
    # ─────────────────────────────────────────────────────────────────────────

    def handle_envelope(self, msg: dict[str, Any]) -> None:
        mtype = protocol.envelope_type(msg)
        if mtype not in (protocol.RESULT, protocol.ERROR):
            logger.debug("ignoring envelope type=%r", mtype)
            return
        call_id = protocol.envelope_id(msg)
        if call_id is None or call_id not in self._pending:
            logger.info("discarding %s for unknown or expired id=%r", mtype, msg.get("id"))
            return
        if mtype == protocol.RESULT:
            self._settle(call_id, result=ToolResult.from_dict(msg.get("payload")))
        else:
            self._settle(call_id, exc=DispatchError(protocol.error_message(msg)))

    def connection_lost(self, exc: ConnectionLostError) -> None:
        self.reject_all(exc)

    def reject_all(self, exc: BaseException) -> int:
        """Fail every pending call with `exc`; the table is empty afterwards."""
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(exc)
        if entries:
            logger.warning("rejected %d pending call(s): %s", len(entries), exc)
        return len(entries)

    # ─────────────────────────────────────────────────────────────────────────
    # Terminal transitions
    # ─────────────────────────────────────────────────────────────────────────

    def _expire(self, call_id: int) -> None:
        entry = self._pending.get(call_id)
        if entry is None:
            return
        logger.warning("timeout id=%s tool=%s after %dms", call_id, entry.call.name, entry.call.timeout_ms)
        self._settle(call_id, exc=CallTimeoutError(entry.call.name, entry.call.timeout_ms))

    def _settle(self, call_id: int, *, result: ToolResult | None = None, exc: BaseException | None = None) -> None:
        entry = self._pending.pop(call_id, None)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
        if entry.future.done():
            return
        logger.debug(
            "settled id=%s tool=%s ok=%s elapsed_ms=%d",
            call_id,
            entry.call.name,
            exc is None,
            int((time.monotonic() - entry.call.issued_at) * 1000),
        )
        if exc is not None:
            entry.future.set_exception(exc)
        else:
            entry.future.set_result(result)

    def _discard(self, call_id: int) -> None:
        entry = self._pending.pop(call_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
