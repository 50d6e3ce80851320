"""Tool contract snapshot and its markdown rendering.

`tools/list` is the live source of truth; this renders the same data into a
deterministic document so tool changes show up in review diffs.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .protocol import BRIDGE_PROTOCOL_VERSION
from .registry import ToolRegistry, create_default_registry

SERVER_INFO: dict[str, str] = {"name": "browser-bridge", "version": "0.1.0"}


def contract_snapshot(registry: ToolRegistry | None = None) -> dict[str, Any]:
    registry = registry or create_default_registry()
    return {
        "protocolVersion": BRIDGE_PROTOCOL_VERSION,
        "serverInfo": SERVER_INFO,
        "tools": registry.definitions(),
    }


def render_tools_markdown(snapshot: dict[str, Any]) -> str:
    tools = snapshot.get("tools") or []
    server_info = snapshot.get("serverInfo") or {}
    lines: list[str] = [
        "# Browser Bridge Tool Contract",
        "",
        f"- protocolVersion: `{snapshot.get('protocolVersion')}`",
        f"- server: `{server_info.get('name')}` v`{server_info.get('version')}`",
        f"- tools: `{len(tools)}`",
        "",
        "## Tools",
        "",
        "| name | context | required | description |",
        "|---|---|---|---|",
    ]
    for tool in tools:
        if not isinstance(tool, dict):
            continue
        schema = tool.get("inputSchema") or {}
        required = ", ".join(f"`{r}`" for r in schema.get("required") or []) or "-"
        desc = str(tool.get("description") or "").strip().replace("|", "\\|")
        lines.append(f"| `{tool.get('name')}` | {tool.get('executionContext')} | {required} | {desc} |")

    lines += [
        "",
        "## Notes",
        "",
        "- Arguments use camelCase names; unknown keys are rejected before a handler runs.",
        "- Results are `content[]` items (`text` or `image`) plus `isError`.",
        "- Timeouts, lost connections and dispatch failures come back as `error` responses with `isError=true`.",
    ]
    return "\n".join(lines) + "\n"


def contract_files(snapshot: dict[str, Any]) -> dict[str, str]:
    return {
        "bridge_tools.json": json.dumps(snapshot, ensure_ascii=False, indent=2) + "\n",
        "bridge_tools.md": render_tools_markdown(snapshot),
    }


def write_contracts(out_dir: Path, *, check: bool = False, registry: ToolRegistry | None = None) -> list[Path]:
    """Write the contract files into `out_dir`.

    With `check`, nothing is written; the returned list holds the files that are
    missing or differ from the current registry. Otherwise it holds every file written.
    """
    touched: list[Path] = []
    for name, text in contract_files(contract_snapshot(registry)).items():
        path = out_dir / name
        if check:
            if not path.is_file() or path.read_text(encoding="utf-8") != text:
                touched.append(path)
            continue
        out_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        touched.append(path)
    return touched
