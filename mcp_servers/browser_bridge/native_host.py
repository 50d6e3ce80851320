"""Chrome Native Messaging entry for the bridge host.

Chrome launches this process when the extension calls `connectNative()`; stdin and
stdout then carry length-prefixed frames to and from the browser, so clients reach
the bridge over WebSocket instead. Never write anything else to stdout.
"""

from __future__ import annotations

from .main import main as _main


def main(argv: list[str] | None = None) -> int:
    # Chrome appends the caller origin (and on Windows a window handle) as arguments.
    extra = [a for a in (argv or []) if a.startswith("--") and not a.startswith("--parent-window")]
    return _main(["--browser-transport", "stdio", *extra])


if __name__ == "__main__":
    raise SystemExit(main())
