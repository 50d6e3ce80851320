"""Host process entry point.

Exit codes: 0 on SIGINT/SIGTERM, client EOF or a vanished peer (broken pipe);
1 on bad configuration, startup failure or any uncaught exception.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from .bridge import BridgeHost
from .config import BridgeConfig
from .errors import ConfigError, StartupError
from .log import configure_logging

logger = logging.getLogger("mcp.bridge.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="browser-bridge", description="Route tool calls from a client to the browser.")
    parser.add_argument("--browser-transport", help="unix | stdio (env MCP_BRIDGE_BROWSER_TRANSPORT)")
    parser.add_argument("--client-transport", help="stdio | ws (env MCP_BRIDGE_CLIENT_TRANSPORT)")
    parser.add_argument("--timeout-ms", dest="default_timeout_ms", type=int, help="default per-call timeout")
    parser.add_argument("--max-payload", dest="max_payload_bytes", type=int, help="max frame payload in bytes")
    parser.add_argument("--max-buffer", dest="max_buffer_bytes", type=int, help="max reassembly buffer in bytes")
    parser.add_argument("--handshake-timeout", type=float, help="seconds to wait for helloAck")
    parser.add_argument("--reconnect-initial", dest="initial_delay", type=float, help="first reconnect delay (s)")
    parser.add_argument("--reconnect-max", dest="max_delay", type=float, help="reconnect delay cap (s)")
    parser.add_argument("--reconnect-factor", dest="factor", type=float, help="reconnect delay multiplier")
    parser.add_argument("--reconnect-attempts", dest="max_attempts", type=int, help="0 = unlimited")
    parser.add_argument("--ws-host", help="WebSocket listen host")
    parser.add_argument("--ws-port", type=int, help="WebSocket listen port")
    parser.add_argument("--endpoint-id", help="browser endpoint id (socket name)")
    parser.add_argument("--runtime-dir", help="directory holding endpoint sockets")
    parser.add_argument("--log-level", help="DEBUG | INFO | WARNING | ERROR")
    parser.add_argument("--log-file", help="also log to this file")
    return parser


def load_config(argv: list[str] | None = None) -> BridgeConfig:
    args = build_parser().parse_args(argv)
    overrides = vars(args)
    if overrides.get("log_level"):
        overrides["log_level"] = overrides["log_level"].upper()
    return BridgeConfig.from_env().with_overrides(**overrides)


async def _run(config: BridgeConfig) -> None:
    host = BridgeHost(config)
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, task.cancel)
    try:
        await host.run()
    except asyncio.CancelledError:
        logger.info("signal received, shutting down")


def main(argv: list[str] | None = None) -> int:
    try:
        config = load_config(argv)
    except ConfigError as exc:
        print(f"browser-bridge: {exc.message}", file=sys.stderr)
        return 1
    configure_logging(config.log_level, config.log_file)

    try:
        asyncio.run(_run(config))
    except KeyboardInterrupt:
        return 0
    except BrokenPipeError:
        logger.info("peer closed the pipe; exiting")
        return 0
    except StartupError as exc:
        logger.error("startup failed: %s", exc.message)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("uncaught exception, exiting")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
