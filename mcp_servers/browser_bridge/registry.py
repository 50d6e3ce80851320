"""
Tool registry: name -> (descriptor, handler) lookup table.

Filled once at startup and frozen; afterwards it is read-only shared state.
The host builds one without handlers (it only needs names and schemas); the
browser endpoint binds a handler to each tool it implements.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .definitions import TOOL_DESCRIPTORS
from .types import ToolHandler, ToolHandlerDescriptor

logger = logging.getLogger("mcp.bridge.registry")


@dataclass(slots=True, frozen=True)
class RegisteredTool:
    descriptor: ToolHandlerDescriptor
    handler: ToolHandler | None = None


class RegistryFrozenError(RuntimeError):
    pass


class ToolRegistry:
    """Registry for tool descriptors and their handlers."""

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}
        self._frozen = False

    def register(self, descriptor: ToolHandlerDescriptor, handler: ToolHandler | None = None) -> None:
        """Register a tool. Each name may be registered once, before freeze()."""
        if self._frozen:
            raise RegistryFrozenError(f"Registry is frozen; cannot register {descriptor.name}")
        if descriptor.name in self._tools:
            raise ValueError(f"Tool already registered: {descriptor.name}")
        self._tools[descriptor.name] = RegisteredTool(descriptor=descriptor, handler=handler)

    def register_many(self, descriptors: Iterable[ToolHandlerDescriptor]) -> None:
        for descriptor in descriptors:
            self.register(descriptor)

    def freeze(self) -> ToolRegistry:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def definitions(self) -> list[dict]:
        return [t.descriptor.to_definition() for t in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)


def create_default_registry() -> ToolRegistry:
    """Host-side registry: every known tool, no handlers."""
    registry = ToolRegistry()
    registry.register_many(TOOL_DESCRIPTORS)
    return registry.freeze()


def create_handler_registry(handlers: Mapping[str, ToolHandler]) -> ToolRegistry:
    """Browser-side registry: known tools bound to the handlers supplied by the embedder.

    Tools without a handler stay registered so callers get a clear "not implemented"
    error instead of "not found".
    """
    known = {d.name for d in TOOL_DESCRIPTORS}
    unknown = sorted(set(handlers) - known)
    if unknown:
        raise ValueError(f"Handlers supplied for unknown tools: {', '.join(unknown)}")

    registry = ToolRegistry()
    for descriptor in TOOL_DESCRIPTORS:
        registry.register(descriptor, handlers.get(descriptor.name))
    missing = [n for n in registry.tool_names if handlers.get(n) is None]
    if missing:
        logger.info("tools without handlers: %s", ",".join(missing))
    return registry.freeze()


__all__ = ["RegisteredTool", "RegistryFrozenError", "ToolRegistry", "create_default_registry", "create_handler_registry"]
