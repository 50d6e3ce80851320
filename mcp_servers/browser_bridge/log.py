"""Logging setup shared by the host and the browser endpoint.

stdout may carry protocol frames (native messaging) or client records (stdio), so
log output goes to stderr and, optionally, to a file.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    root = logging.getLogger("mcp.bridge")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(formatter)
    root.addHandler(stream)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(formatter)
        root.addHandler(fh)

    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root.propagate = False


def describe_args(args: object) -> str:
    """Short, value-free summary of call arguments for log lines."""
    if not isinstance(args, dict):
        return "-"
    keys = sorted(str(k) for k in args)
    return ",".join(keys) if keys else "-"
