"""Execution-context routing for browser-side handlers.

A handler runs in the background context directly. Content-script and offscreen
handlers may need a secondary hop into another run environment; the embedder
registers a hop per context. Hops add no deadline of their own: the router's
end-to-end timeout already bounds the whole call.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .types import ExecutionContext, ToolHandler, ToolHandlerDescriptor

logger = logging.getLogger("mcp.bridge.contexts")

# hop(descriptor, handler, args) -> handler outcome, executed inside the target context
ContextHop = Callable[[ToolHandlerDescriptor, ToolHandler, dict[str, Any]], Awaitable[Any]]


async def run_inline(handler: ToolHandler, args: dict[str, Any]) -> Any:
    """Call a sync or async handler in the current context."""
    out = handler(args)
    if inspect.isawaitable(out):
        out = await out
    return out


class ContextRouter:
    def __init__(self, hops: dict[ExecutionContext, ContextHop] | None = None) -> None:
        self._hops: dict[ExecutionContext, ContextHop] = dict(hops or {})

    async def run(self, descriptor: ToolHandlerDescriptor, handler: ToolHandler, args: dict[str, Any]) -> Any:
        hop = self._hops.get(descriptor.execution_context)
        if hop is None:
            return await run_inline(handler, args)
        logger.debug("hop tool=%s context=%s", descriptor.name, descriptor.execution_context.value)
        return await hop(descriptor, handler, args)
