from __future__ import annotations

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Any


class _Writer:
    def __init__(self) -> None:
        self.data = bytearray()

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        return None

    def lines(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.data.decode("utf-8").splitlines() if line.strip()]


def _config(**overrides: Any):
    from mcp_servers.browser_bridge.config import BackoffConfig, BridgeConfig

    base = {
        "default_timeout_ms": 3000,
        "handshake_timeout": 1.0,
        "backoff": BackoffConfig(initial_delay=0.01, max_delay=0.05, factor=1.6, max_attempts=0),
    }
    base.update(overrides)
    return BridgeConfig(**base)


def _endpoint(handlers: dict[str, Any], dispatched: list[str]):
    from mcp_servers.browser_bridge.browser_endpoint import BrowserEndpoint
    from mcp_servers.browser_bridge.dispatcher import BrowserDispatcher
    from mcp_servers.browser_bridge.registry import create_handler_registry

    class _CountingDispatcher(BrowserDispatcher):
        async def dispatch(self, msg: dict[str, Any]) -> dict[str, Any] | None:
            dispatched.append(str(msg.get("name")))
            return await super().dispatch(msg)

    registry = create_handler_registry(handlers)
    return BrowserEndpoint(_CountingDispatcher(registry), registry, _config())


async def _run_bridge(sock: Path, records: list[dict[str, Any]], handlers: dict[str, Any], dispatched: list[str]):
    from mcp_servers.browser_bridge.bridge import BridgeHost
    from mcp_servers.browser_bridge.connectors import UnixSocketConnector

    endpoint = _endpoint(handlers, dispatched)
    await endpoint.start(sock)
    try:
        host = BridgeHost(_config(), connector=UnixSocketConnector(sock))
        reader = asyncio.StreamReader()
        writer = _Writer()
        run = asyncio.create_task(host.run((reader, writer)))
        assert await host.supervisor.wait_connected(3.0)

        for record in records:
            reader.feed_data(json.dumps(record).encode("utf-8") + b"\n")
        reader.feed_eof()
        await asyncio.wait_for(run, 10.0)
        return writer.lines()
    finally:
        await endpoint.close()


def test_navigate_round_trip_through_the_browser_endpoint() -> None:
    dispatched: list[str] = []

    async def navigate(args: dict) -> dict:
        assert args["url"] == "https://example.com"
        return {"success": True}

    with tempfile.TemporaryDirectory(prefix="bb-") as d:
        responses = asyncio.run(
            _run_bridge(
                Path(d) / "e.sock",
                [{"id": "1", "method": "navigate", "params": {"url": "https://example.com"}}],
                {"navigate": navigate},
                dispatched,
            )
        )

    assert len(responses) == 1
    resp = responses[0]
    assert resp["id"] == "1"
    assert resp["result"]["isError"] is False
    assert json.loads(resp["result"]["content"][0]["text"]) == {"success": True}
    assert dispatched == ["navigate"]


def test_unknown_tool_never_crosses_the_browser_channel() -> None:
    dispatched: list[str] = []

    with tempfile.TemporaryDirectory(prefix="bb-") as d:
        responses = asyncio.run(
            _run_bridge(
                Path(d) / "e.sock",
                [{"id": "2", "method": "nonexistent_tool", "params": {}}],
                {"navigate": lambda args: {"success": True}},
                dispatched,
            )
        )

    assert responses == [
        {
            "id": "2",
            "error": {
                "code": -32601,
                "message": "Unknown tool: nonexistent_tool",
                "isError": True,
                "content": [{"type": "text", "text": "Unknown tool: nonexistent_tool"}],
            },
        }
    ]
    assert dispatched == []


def test_out_of_order_completion_and_failing_handler_share_one_connection() -> None:
    dispatched: list[str] = []

    async def screenshot(args: dict) -> str:
        await asyncio.sleep(0.2)
        return "slow"

    def get_windows_and_tabs(args: dict) -> str:
        return "fast"

    def close_tabs(args: dict) -> None:
        raise RuntimeError("no such tab")

    records = [
        {"id": 1, "method": "screenshot", "params": {}},
        {"id": 2, "method": "get_windows_and_tabs", "params": {}},
        {"id": 3, "method": "close_tabs", "params": {"tabIds": [4]}},
    ]
    handlers = {"screenshot": screenshot, "get_windows_and_tabs": get_windows_and_tabs, "close_tabs": close_tabs}
    with tempfile.TemporaryDirectory(prefix="bb-") as d:
        responses = asyncio.run(_run_bridge(Path(d) / "e.sock", records, handlers, dispatched))

    order = [r["id"] for r in responses]
    assert order.index(2) < order.index(1)
    by_id = {r["id"]: r for r in responses}
    assert by_id[1]["result"]["content"][0]["text"] == "slow"
    assert by_id[2]["result"]["content"][0]["text"] == "fast"
    assert by_id[3]["result"] == {"content": [{"type": "text", "text": "no such tab"}], "isError": True}


def test_endpoint_restart_is_survived_by_reconnecting() -> None:
    from mcp_servers.browser_bridge.bridge import BridgeHost
    from mcp_servers.browser_bridge.connectors import UnixSocketConnector
    from mcp_servers.browser_bridge.errors import ConnectionLostError

    async def _main(sock: Path) -> None:
        first = _endpoint({"navigate": lambda args: "one"}, [])
        await first.start(sock)
        host = BridgeHost(_config(), connector=UnixSocketConnector(sock))
        reader = asyncio.StreamReader()
        run = asyncio.create_task(host.run((reader, _Writer())))
        try:
            assert await host.supervisor.wait_connected(3.0)
            assert (await host.router.invoke("navigate", {})).content[0].text == "one"

            await first.close()
            for _ in range(200):
                if not host.supervisor.is_connected():
                    break
                await asyncio.sleep(0.01)
            try:
                await host.router.invoke("navigate", {})
            except ConnectionLostError:
                pass

            second = _endpoint({"navigate": lambda args: "two"}, [])
            await second.start(sock)
            try:
                assert await host.supervisor.wait_connected(3.0)
                assert (await host.router.invoke("navigate", {})).content[0].text == "two"
            finally:
                await second.close()
        finally:
            reader.feed_eof()
            await asyncio.wait_for(run, 5.0)

    with tempfile.TemporaryDirectory(prefix="bb-") as d:
        asyncio.run(_main(Path(d) / "e.sock"))
