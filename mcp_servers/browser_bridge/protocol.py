"""Envelope shapes exchanged over the framed host <-> browser channel.

call     {id, type:"call", name, args, timeoutMs}
result   {id, type:"result", payload:{content, isError}}
error    {id, type:"error", payload:{message}}
hello    {type:"hello", protocolVersion, peerId}
helloAck {type:"helloAck", protocolVersion, tools}
"""

from __future__ import annotations

from typing import Any

from .types import ToolResult

BRIDGE_PROTOCOL_VERSION = "2026-10-01"

CALL = "call"
RESULT = "result"
ERROR = "error"
HELLO = "hello"
HELLO_ACK = "helloAck"


def result_envelope(call_id: Any, result: ToolResult) -> dict[str, Any]:
    return {"id": call_id, "type": RESULT, "payload": result.to_dict()}


def error_envelope(call_id: Any, message: str) -> dict[str, Any]:
    return {"id": call_id, "type": ERROR, "payload": {"message": str(message)}}


def hello(peer_id: str) -> dict[str, Any]:
    return {"type": HELLO, "protocolVersion": BRIDGE_PROTOCOL_VERSION, "peerId": peer_id}


def hello_ack(tool_names: list[str]) -> dict[str, Any]:
    return {"type": HELLO_ACK, "protocolVersion": BRIDGE_PROTOCOL_VERSION, "tools": list(tool_names)}


def envelope_type(msg: dict[str, Any]) -> str:
    return str(msg.get("type") or "")


def envelope_id(msg: dict[str, Any]) -> int | None:
    """Correlation ids are integers on the wire; tolerate numeric strings from loose peers."""
    raw = msg.get("id")
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        return int(raw.strip())
    return None


def error_message(msg: dict[str, Any]) -> str:
    payload = msg.get("payload")
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return payload["message"]
    if isinstance(msg.get("error"), str):
        return msg["error"]
    return "Browser-side dispatch failed"
