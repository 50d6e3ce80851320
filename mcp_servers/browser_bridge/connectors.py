"""Ways for the host to open the duplex byte stream to the browser side."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Protocol

from .errors import ConnectionLostError

StreamPair = tuple[asyncio.StreamReader, asyncio.StreamWriter]


async def open_stdio(stdin, stdout) -> StreamPair:  # noqa: ANN001
    """Wrap binary stdin/stdout pipes in asyncio streams."""
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), stdin)

    transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, stdout)
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


class Connector(Protocol):
    # False when the stream cannot be reopened once lost (e.g. inherited stdio).
    reconnectable: bool

    def describe(self) -> str: ...

    async def open(self) -> StreamPair: ...


class UnixSocketConnector:
    """Connect to the socket published by the browser endpoint."""

    reconnectable = True

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def describe(self) -> str:
        return f"unix:{self.path}"

    async def open(self) -> StreamPair:
        return await asyncio.open_unix_connection(str(self.path))


class StdioConnector:
    """Chrome Native Messaging: the browser launched us and owns our stdin/stdout."""

    reconnectable = False

    def __init__(self, stdin=None, stdout=None) -> None:  # noqa: ANN001
        self._stdin = stdin or sys.stdin.buffer
        self._stdout = stdout or sys.stdout.buffer
        self._opened = False

    def describe(self) -> str:
        return "stdio"

    async def open(self) -> StreamPair:
        if self._opened:
            raise ConnectionLostError("Native messaging channel cannot be reopened")
        self._opened = True
        return await open_stdio(self._stdin, self._stdout)
