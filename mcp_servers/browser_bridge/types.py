"""
Type definitions shared by the host and the browser side.
"""

from __future__ import annotations

import json as _json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pydantic import BaseModel


class ExecutionContext(str, Enum):
    """Browser run environment a handler executes in."""

    BACKGROUND = "background"
    CONTENT_SCRIPT = "content_script"
    OFFSCREEN = "offscreen"


@dataclass(slots=True)
class ToolContent:
    """Single content item in tool response."""

    type: str  # "text" or "image"
    text: str | None = None
    data: str | None = None  # base64 for images
    mime_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.type == "image":
            return {"type": "image", "data": self.data, "mimeType": self.mime_type}
        return {"type": "text", "text": self.text}

    @classmethod
    def from_dict(cls, raw: Any) -> ToolContent:
        if not isinstance(raw, dict):
            return cls(type="text", text=str(raw))
        if raw.get("type") == "image":
            return cls(type="image", data=str(raw.get("data") or ""), mime_type=str(raw.get("mimeType") or "image/png"))
        text = raw.get("text")
        return cls(type="text", text=text if isinstance(text, str) else _json.dumps(raw, ensure_ascii=False))


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def text(cls, text: str) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=text or "")])

    @classmethod
    def error(cls, message: str) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=message or "Unknown error, please try again")], is_error=True)

    @classmethod
    def json(cls, data: Any) -> ToolResult:
        return cls(content=[ToolContent(type="text", text=_json.dumps(data, ensure_ascii=False, default=str))])

    @classmethod
    def image(cls, data_b64: str, mime_type: str = "image/png") -> ToolResult:
        """Single image block. Falls back to an error if data is empty."""
        if not data_b64:
            return cls.error("Screenshot data is empty")
        return cls(content=[ToolContent(type="image", data=data_b64, mime_type=mime_type)])

    def to_content_list(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.content]

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.to_content_list(), "isError": bool(self.is_error)}

    @classmethod
    def from_dict(cls, raw: Any) -> ToolResult:
        if not isinstance(raw, dict):
            return cls.json(raw)
        content = raw.get("content")
        items = content if isinstance(content, list) else []
        return cls(content=[ToolContent.from_dict(c) for c in items], is_error=bool(raw.get("isError")))


@dataclass(slots=True)
class ToolCall:
    """A client request accepted by the router, alive until its terminal transition."""

    id: int
    name: str
    args: dict[str, Any]
    timeout_ms: int
    issued_at: float = field(default_factory=time.monotonic)

    def to_envelope(self) -> dict[str, Any]:
        return {"id": self.id, "type": "call", "name": self.name, "args": self.args, "timeoutMs": self.timeout_ms}


# Handlers may be sync or async and may return a ToolResult, a result-shaped dict,
# or any JSON-serializable value.
ToolHandler = Callable[[dict[str, Any]], Any]


@dataclass(slots=True, frozen=True)
class ToolHandlerDescriptor:
    """Static description of a registered tool."""

    name: str
    execution_context: ExecutionContext
    argument_shape: type[BaseModel]
    description: str = ""

    def input_schema(self) -> dict[str, Any]:
        return self.argument_shape.model_json_schema(by_alias=True)

    def to_definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
            "executionContext": self.execution_context.value,
        }
