#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[bridge] browser={os.environ.get('MCP_BRIDGE_BROWSER_TRANSPORT', 'unix')} | "
    f"client={os.environ.get('MCP_BRIDGE_CLIENT_TRANSPORT', 'auto')} | "
    f"endpoint={os.environ.get('MCP_BRIDGE_ENDPOINT_ID', 'default')} | "
    f"timeout_ms={os.environ.get('MCP_BRIDGE_TIMEOUT_MS', '30000')}",
    file=sys.stderr,
)

from mcp_servers.browser_bridge.main import main  # noqa: E402

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
