"""Browser-side dispatch: call envelope in, result/error envelope out.

Nothing a handler does may escape this boundary: unknown names, bad arguments
and handler exceptions all become error results tagged with the call id.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import ValidationError

from . import protocol
from .contexts import ContextRouter
from .log import describe_args
from .registry import ToolRegistry
from .types import ToolResult

logger = logging.getLogger("mcp.bridge.dispatcher")


def _format_validation_error(name: str, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "(root)"
        problems.append(f"{loc}: {err.get('msg')}")
    return f"Invalid arguments for {name}: " + "; ".join(problems)


def normalize_result(value: Any) -> ToolResult:
    if isinstance(value, ToolResult):
        return value
    if isinstance(value, dict) and isinstance(value.get("content"), list):
        return ToolResult.from_dict(value)
    if isinstance(value, str):
        return ToolResult.text(value)
    return ToolResult.json(value)


class BrowserDispatcher:
    def __init__(self, registry: ToolRegistry, *, contexts: ContextRouter | None = None) -> None:
        self._registry = registry
        self._contexts = contexts or ContextRouter()

    async def execute(self, name: str, args: Any) -> ToolResult:
        entry = self._registry.get(name)
        if entry is None:
            return ToolResult.error(f"Tool {name} not found")
        if entry.handler is None:
            return ToolResult.error(f"Tool {name} is not implemented in this browser")

        try:
            model = entry.descriptor.argument_shape.model_validate(args if args is not None else {})
        except ValidationError as exc:
            return ToolResult.error(_format_validation_error(name, exc))
        clean = model.model_dump(by_alias=True, exclude_none=True)

        started = time.monotonic()
        try:
            out = await self._contexts.run(entry.descriptor, entry.handler, clean)
        except Exception as exc:  # noqa: BLE001
            logger.exception("handler_failed tool=%s", name)
            return ToolResult.error(str(exc) or f"Tool {name} failed: {type(exc).__name__}")
        logger.debug("handler_done tool=%s elapsed_ms=%d", name, int((time.monotonic() - started) * 1000))
        try:
            return normalize_result(out)
        except (TypeError, ValueError) as exc:
            return ToolResult.error(f"Tool {name} returned an unserializable result: {exc}")

    async def dispatch(self, msg: dict[str, Any]) -> dict[str, Any] | None:
        """Handle one call envelope; returns the reply envelope, or None if there is nobody to answer."""
        call_id = protocol.envelope_id(msg)
        if call_id is None:
            logger.warning("dropping call without a usable id")
            return None
        name = msg.get("name")
        if not isinstance(name, str) or not name.strip():
            return protocol.error_envelope(call_id, "Call is missing a tool name")
        args = msg.get("args")
        logger.info("call id=%s tool=%s args=%s", call_id, name, describe_args(args))
        result = await self.execute(name.strip(), args)
        return protocol.result_envelope(call_id, result)
