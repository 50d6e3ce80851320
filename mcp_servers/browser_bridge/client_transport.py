"""Client-facing transport: delimited JSON records in, matching responses out.

Request   {id, method, params}
Response  {id, result} | {id, error}

`method` is a registered tool name (or one of the meta methods `tools/list`,
`tools/call`). Unknown methods are answered here without touching the router.
Bad input is logged and skipped; it never stops the read loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .errors import BridgeError
from .registry import ToolRegistry
from .router import CallRouter

logger = logging.getLogger("mcp.bridge.client")

_READ_CHUNK = 64 * 1024

METHOD_NOT_FOUND = -32601
INVALID_REQUEST = -32600
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


def error_body(code: int, message: str) -> dict[str, Any]:
    return {"code": int(code), "message": message, "isError": True, "content": [{"type": "text", "text": message}]}


def _respond(request: dict[str, Any], key: str, value: Any) -> dict[str, Any]:
    out: dict[str, Any] = {"id": request.get("id"), key: value}
    if "jsonrpc" in request:
        out["jsonrpc"] = request["jsonrpc"]
    return out


def parse_record(raw: bytes | str) -> dict[str, Any] | None:
    """Decode one record; malformed input is logged and yields None."""
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        text = text.strip()
        if not text:
            return None
        obj = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("skipping malformed record: %s", exc)
        return None
    if not isinstance(obj, dict):
        logger.warning("skipping non-object record (%s)", type(obj).__name__)
        return None
    return obj


def _timeout_ms(raw: Any) -> int | None:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    return int(raw) if raw > 0 else None


class RequestHandler:
    """Turns one decoded request into one response (or None for notifications)."""

    def __init__(self, registry: ToolRegistry, router: CallRouter) -> None:
        self._registry = registry
        self._router = router

    async def handle(self, request: dict[str, Any]) -> dict[str, Any] | None:
        if "id" not in request:
            logger.info("ignoring notification method=%r", request.get("method"))
            return None

        method = request.get("method")
        if not isinstance(method, str) or not method.strip():
            return _respond(request, "error", error_body(INVALID_REQUEST, "Invalid request: missing method"))
        method = method.strip()

        params = request.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return _respond(request, "error", error_body(INVALID_PARAMS, "params must be an object"))

        if method == "tools/list":
            return _respond(request, "result", {"tools": self._registry.definitions()})

        if method == "tools/call":
            name = params.get("name")
            args = params.get("arguments") or params.get("args") or {}
            if not isinstance(name, str) or not name.strip():
                return _respond(request, "error", error_body(INVALID_PARAMS, "tools/call requires a tool name"))
            name = name.strip()
        else:
            name, args = method, params

        if not self._registry.has(name):
            return _respond(request, "error", error_body(METHOD_NOT_FOUND, f"Unknown tool: {name}"))
        if not isinstance(args, dict):
            return _respond(request, "error", error_body(INVALID_PARAMS, "Tool arguments must be an object"))

        try:
            result = await self._router.invoke(name, args, _timeout_ms(request.get("timeoutMs")))
        except BridgeError as exc:
            logger.info("call_failed id=%r tool=%s code=%d reason=%s", request.get("id"), name, exc.code, exc.message)
            return _respond(request, "error", error_body(exc.code, exc.message))
        return _respond(request, "result", result.to_dict())


class RecordSession:
    """Runs requests from one client concurrently and writes responses as they finish."""

    def __init__(self, handler: RequestHandler, write: Callable[[str], Awaitable[None]]) -> None:
        self._handler = handler
        self._write = write
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self.closed = False

    def submit(self, raw: bytes | str) -> None:
        request = parse_record(raw)
        if request is None:
            return
        task = asyncio.create_task(self._run(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, request: dict[str, Any]) -> None:
        try:
            response = await self._handler.handle(request)
        except Exception:  # noqa: BLE001
            logger.exception("request_failed id=%r", request.get("id"))
            response = _respond(request, "error", error_body(INTERNAL_ERROR, "Internal error"))
        if response is None or self.closed:
            return
        line = json.dumps(response, ensure_ascii=False, default=str)
        async with self._write_lock:
            try:
                await self._write(line)
            except (BrokenPipeError, ConnectionError) as exc:
                logger.info("client went away while writing a response: %s", exc)
                self.closed = True

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self.closed = True
        for task in list(self._tasks):
            task.cancel()
        await self.drain()


class StdioClientTransport:
    """Newline-delimited records over a pair of asyncio streams (normally stdin/stdout)."""

    def __init__(
        self,
        handler: RequestHandler,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        max_record_bytes: int,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._max_record = int(max_record_bytes)
        self._session = RecordSession(handler, self._write_line)

    async def _write_line(self, line: str) -> None:
        self._writer.write(line.encode("utf-8") + b"\n")
        await self._writer.drain()

    async def serve(self) -> None:
        """Read until EOF, then let in-flight calls finish (each is bounded by its timeout)."""
        buf = bytearray()
        skipping = False
        try:
            while not self._session.closed:
                chunk = await self._reader.read(_READ_CHUNK)
                if not chunk:
                    break
                buf.extend(chunk)
                while True:
                    nl = buf.find(b"\n")
                    if nl < 0:
                        break
                    line = bytes(buf[:nl])
                    del buf[: nl + 1]
                    if skipping:
                        skipping = False
                        continue
                    if len(line) > self._max_record:
                        logger.warning("skipping record of %d bytes (limit %d)", len(line), self._max_record)
                        continue
                    self._session.submit(line)
                if len(buf) > self._max_record:
                    logger.warning("record exceeds %d bytes; skipping to next newline", self._max_record)
                    buf.clear()
                    skipping = True
            if buf.strip() and not skipping:
                self._session.submit(bytes(buf))
            await self._session.drain()
        except asyncio.CancelledError:
            await self._session.aclose()
            raise
