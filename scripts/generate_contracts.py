#!/usr/bin/env python3
"""Regenerate contracts/bridge_tools.{json,md}, or with --check fail when they are stale."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from mcp_servers.browser_bridge.contract import write_contracts  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--out", type=Path, default=ROOT / "contracts", help="output directory")
    parser.add_argument("--check", action="store_true", help="only report stale files; exit 1 if any")
    args = parser.parse_args(argv)

    paths = write_contracts(args.out, check=args.check)
    if args.check:
        for path in paths:
            print(f"Stale: {path}", file=sys.stderr)
        return 1 if paths else 0
    for path in paths:
        print(f"Wrote: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
