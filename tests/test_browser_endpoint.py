from __future__ import annotations

import asyncio
import struct
import sys
import tempfile
import textwrap
from pathlib import Path
from typing import Any

import pytest


def _endpoint(handlers: dict[str, Any], **cfg: Any):
    from mcp_servers.browser_bridge.browser_endpoint import BrowserEndpoint
    from mcp_servers.browser_bridge.config import BridgeConfig
    from mcp_servers.browser_bridge.dispatcher import BrowserDispatcher
    from mcp_servers.browser_bridge.registry import create_handler_registry

    registry = create_handler_registry(handlers)
    return BrowserEndpoint(BrowserDispatcher(registry), registry, BridgeConfig(**cfg))


async def _read_envelope(reader: asyncio.StreamReader) -> dict[str, Any]:
    from mcp_servers.browser_bridge.framing import decode_envelope

    header = await asyncio.wait_for(reader.readexactly(4), 3.0)
    (length,) = struct.unpack("<I", header)
    return decode_envelope(await asyncio.wait_for(reader.readexactly(length), 3.0))


def test_hello_is_acknowledged_with_the_tool_list_and_calls_are_answered() -> None:
    from mcp_servers.browser_bridge import protocol
    from mcp_servers.browser_bridge.framing import encode_frame

    async def _main(sock: Path) -> None:
        endpoint = _endpoint({"history": lambda args: ["a", "b"]})
        await endpoint.start(sock)
        try:
            reader, writer = await asyncio.open_unix_connection(str(sock))
            writer.write(encode_frame(protocol.hello("peer-x"), max_payload_bytes=1 << 20))
            ack = await _read_envelope(reader)
            assert ack["type"] == "helloAck"
            assert ack["protocolVersion"] == protocol.BRIDGE_PROTOCOL_VERSION
            assert "history" in ack["tools"]

            call = {"id": 11, "type": "call", "name": "history", "args": {"maxResults": 5}, "timeoutMs": 1000}
            writer.write(encode_frame(call, max_payload_bytes=1 << 20))
            reply = await _read_envelope(reader)
            assert reply == {"id": 11, "type": "result", "payload": {"content": [{"type": "text", "text": '["a", "b"]'}], "isError": False}}

            writer.close()
        finally:
            await endpoint.close()
        assert not sock.exists()

    with tempfile.TemporaryDirectory(prefix="bb-") as d:
        asyncio.run(_main(Path(d) / "e.sock"))


def test_oversize_reply_becomes_an_error_result() -> None:
    from mcp_servers.browser_bridge.framing import encode_frame

    async def _main(sock: Path) -> None:
        endpoint = _endpoint({"get_web_content": lambda args: "x" * 5000}, max_payload_bytes=1024, max_buffer_bytes=4096)
        await endpoint.start(sock)
        try:
            reader, writer = await asyncio.open_unix_connection(str(sock))
            writer.write(encode_frame({"id": 1, "type": "call", "name": "get_web_content", "args": {}}, max_payload_bytes=1024))
            reply = await _read_envelope(reader)
            assert reply["id"] == 1
            assert reply["payload"]["isError"] is True
            assert "too large" in reply["payload"]["content"][0]["text"]
            writer.close()
        finally:
            await endpoint.close()

    with tempfile.TemporaryDirectory(prefix="bb-") as d:
        asyncio.run(_main(Path(d) / "e.sock"))


def test_protocol_violation_closes_only_that_connection() -> None:
    from mcp_servers.browser_bridge import protocol
    from mcp_servers.browser_bridge.framing import encode_frame

    async def _main(sock: Path) -> None:
        endpoint = _endpoint({}, max_payload_bytes=1024, max_buffer_bytes=4096)
        await endpoint.start(sock)
        try:
            bad_reader, bad_writer = await asyncio.open_unix_connection(str(sock))
            bad_writer.write(struct.pack("<I", 1_000_000))
            assert await asyncio.wait_for(bad_reader.read(), 3.0) == b""

            reader, writer = await asyncio.open_unix_connection(str(sock))
            writer.write(encode_frame(protocol.hello("ok"), max_payload_bytes=1024))
            assert (await _read_envelope(reader))["type"] == "helloAck"
            writer.close()
        finally:
            await endpoint.close()

    with tempfile.TemporaryDirectory(prefix="bb-") as d:
        asyncio.run(_main(Path(d) / "e.sock"))


def test_running_calls_are_cancelled_when_the_host_disconnects() -> None:
    from mcp_servers.browser_bridge.framing import encode_frame

    started = asyncio.Event()
    cancelled: list[str] = []

    async def get_web_content(args: dict) -> str:
        started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.append("get_web_content")
            raise
        return "never"

    async def _main(sock: Path) -> None:
        endpoint = _endpoint({"get_web_content": get_web_content})
        await endpoint.start(sock)
        try:
            _, writer = await asyncio.open_unix_connection(str(sock))
            writer.write(encode_frame({"id": 5, "type": "call", "name": "get_web_content", "args": {}}, max_payload_bytes=1 << 20))
            await asyncio.wait_for(started.wait(), 3.0)

            writer.close()
            deadline = asyncio.get_running_loop().time() + 3.0
            while not cancelled:
                assert asyncio.get_running_loop().time() < deadline, "handler still running after host left"
                await asyncio.sleep(0.01)
            assert cancelled == ["get_web_content"]
        finally:
            await endpoint.close()

    with tempfile.TemporaryDirectory(prefix="bb-") as d:
        asyncio.run(_main(Path(d) / "e.sock"))


def test_load_handlers_accepts_mapping_or_factory(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    from mcp_servers.browser_bridge.browser_endpoint import load_handlers
    from mcp_servers.browser_bridge.errors import ConfigError

    (tmp_path / "bb_handlers_mod.py").write_text(
        textwrap.dedent(
            """
            HANDLERS = {"navigate": lambda args: "ok"}

            def make():
                return {"history": lambda args: []}

            NOT_A_MAPPING = 3
            """
        ),
        encoding="utf-8",
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.delitem(sys.modules, "bb_handlers_mod", raising=False)

    assert set(load_handlers("bb_handlers_mod:HANDLERS")) == {"navigate"}
    assert set(load_handlers("bb_handlers_mod:make")) == {"history"}
    for bad in ("bb_handlers_mod", "bb_handlers_mod:missing", "no_such_module_xyz:x", "bb_handlers_mod:NOT_A_MAPPING"):
        with pytest.raises(ConfigError):
            load_handlers(bad)
