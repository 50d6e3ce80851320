from __future__ import annotations

import asyncio
import time
from typing import Any

import pytest


class _Link:
    def __init__(self, *, connected: bool = True, fail_with: BaseException | None = None) -> None:
        self.connected = connected
        self.fail_with = fail_with
        self.sent: list[dict[str, Any]] = []

    def is_connected(self) -> bool:
        return self.connected

    async def send(self, msg: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(msg)


def _result(call_id: Any, text: str, *, is_error: bool = False) -> dict[str, Any]:
    return {"id": call_id, "type": "result", "payload": {"content": [{"type": "text", "text": text}], "isError": is_error}}


async def _wait_sent(link: _Link, n: int) -> None:
    for _ in range(100):
        if len(link.sent) >= n:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {n} sent envelopes, got {len(link.sent)}")


def test_results_route_by_id_regardless_of_order() -> None:
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        link = _Link()
        router = CallRouter(link, default_timeout_ms=2000)
        tasks = [asyncio.create_task(router.invoke("navigate", {"url": f"https://e/{i}"})) for i in range(5)]
        await _wait_sent(link, 5)

        ids = [m["id"] for m in link.sent]
        assert len(set(ids)) == 5
        assert router.pending_count == 5

        for msg in reversed(link.sent):
            router.handle_envelope(_result(msg["id"], msg["args"]["url"]))

        results = await asyncio.gather(*tasks)
        assert [r.content[0].text for r in results] == [f"https://e/{i}" for i in range(5)]
        assert all(not r.is_error for r in results)
        assert router.pending_count == 0

    asyncio.run(_main())


def test_call_envelope_shape() -> None:
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        link = _Link()
        router = CallRouter(link, default_timeout_ms=1500)
        task = asyncio.create_task(router.invoke("history", {"text": "x"}))
        await _wait_sent(link, 1)
        sent = link.sent[0]
        assert sent == {"id": sent["id"], "type": "call", "name": "history", "args": {"text": "x"}, "timeoutMs": 1500}
        router.handle_envelope(_result(sent["id"], "ok"))
        await task

    asyncio.run(_main())


def test_timeout_rejects_and_late_result_is_discarded() -> None:
    from mcp_servers.browser_bridge.errors import CallTimeoutError
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        link = _Link()
        router = CallRouter(link, default_timeout_ms=10_000)
        started = time.monotonic()
        with pytest.raises(CallTimeoutError) as info:
            await router.invoke("screenshot", {}, timeout_ms=80)
        elapsed = time.monotonic() - started

        assert 0.07 <= elapsed < 2.0
        assert info.value.code == -32001
        assert "timed out after 80ms" in info.value.message
        assert isinstance(info.value, TimeoutError)
        assert router.pending_count == 0

        # Same id arriving late: silently dropped.
        router.handle_envelope(_result(link.sent[0]["id"], "too late"))
        assert router.pending_count == 0

    asyncio.run(_main())


def test_error_envelope_rejects_with_dispatch_error() -> None:
    from mcp_servers.browser_bridge.errors import DispatchError
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        link = _Link()
        router = CallRouter(link, default_timeout_ms=2000)
        task = asyncio.create_task(router.invoke("click_element", {"selector": "#go"}))
        await _wait_sent(link, 1)
        router.handle_envelope({"id": link.sent[0]["id"], "type": "error", "payload": {"message": "boom"}})
        with pytest.raises(DispatchError, match="boom"):
            await task
        assert router.pending_count == 0

    asyncio.run(_main())


def test_unknown_ids_and_foreign_envelopes_do_not_disturb_pending_calls() -> None:
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        link = _Link()
        router = CallRouter(link, default_timeout_ms=2000)
        task = asyncio.create_task(router.invoke("navigate", {"url": "https://a"}))
        await _wait_sent(link, 1)

        router.handle_envelope(_result(999_999, "stray"))
        router.handle_envelope({"type": "helloAck", "tools": []})
        router.handle_envelope({"id": "nope", "type": "result"})
        assert router.pending_count == 1

        # Numeric string ids from loose peers still correlate.
        router.handle_envelope(_result(str(link.sent[0]["id"]), "done"))
        assert (await task).content[0].text == "done"

    asyncio.run(_main())


def test_connection_lost_rejects_every_pending_call_once() -> None:
    from mcp_servers.browser_bridge.errors import ConnectionLostError
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        link = _Link()
        router = CallRouter(link, default_timeout_ms=5000)
        tasks = [asyncio.create_task(router.invoke("navigate", {})) for _ in range(4)]
        await _wait_sent(link, 4)

        router.connection_lost(ConnectionLostError("Browser connection lost: EOF"))
        assert router.pending_count == 0

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(o, ConnectionLostError) for o in outcomes)

        # A result for a rejected id afterwards is a no-op.
        router.handle_envelope(_result(link.sent[0]["id"], "late"))
        assert router.reject_all(ConnectionLostError("again")) == 0

    asyncio.run(_main())


def test_invoke_when_disconnected_fails_fast_without_sending() -> None:
    from mcp_servers.browser_bridge.errors import ConnectionLostError
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        link = _Link(connected=False)
        router = CallRouter(link, default_timeout_ms=2000)
        with pytest.raises(ConnectionLostError):
            await router.invoke("navigate", {"url": "https://a"})
        assert link.sent == []
        assert router.pending_count == 0

    asyncio.run(_main())


def test_send_failure_settles_the_entry() -> None:
    from mcp_servers.browser_bridge.errors import PayloadTooLargeError
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        link = _Link(fail_with=PayloadTooLargeError(10, 5))
        router = CallRouter(link, default_timeout_ms=2000)
        with pytest.raises(PayloadTooLargeError):
            await router.invoke("inject_script", {"jsScript": "x" * 10})
        assert router.pending_count == 0

    asyncio.run(_main())


def test_cancelled_caller_leaves_no_entry_behind() -> None:
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        link = _Link()
        router = CallRouter(link, default_timeout_ms=5000)
        task = asyncio.create_task(router.invoke("history", {}))
        await _wait_sent(link, 1)
        assert router.pending_count == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert router.pending_count == 0

    asyncio.run(_main())


def test_independent_routers_do_not_share_state() -> None:
    from mcp_servers.browser_bridge.router import CallRouter

    async def _main() -> None:
        a_link, b_link = _Link(), _Link()
        a = CallRouter(a_link, default_timeout_ms=2000)
        b = CallRouter(b_link, default_timeout_ms=2000)
        ta = asyncio.create_task(a.invoke("navigate", {}))
        tb = asyncio.create_task(b.invoke("navigate", {}))
        await _wait_sent(a_link, 1)
        await _wait_sent(b_link, 1)
        assert a_link.sent[0]["id"] == b_link.sent[0]["id"] == 1

        a.handle_envelope(_result(1, "from-a"))
        assert b.pending_count == 1
        b.handle_envelope(_result(1, "from-b"))
        assert (await ta).content[0].text == "from-a"
        assert (await tb).content[0].text == "from-b"

    asyncio.run(_main())
