"""Newline-delimited JSON transport.

One JSON value per line, UTF-8 encoded. The framer never raises on bad
input: an unparseable line is logged and dropped and the stream continues.
"""

import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger("lens.transport")

_READ_CHUNK_SIZE = 65_536


@dataclass(frozen=True, slots=True)
class Frame:
    """One framed line: either a decoded message or the reason it failed."""

    message: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LineFramer:
    """Reassembles newline-delimited JSON messages from arbitrary byte chunks."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.parse_errors = 0

    def feed(self, chunk: bytes) -> list[Frame]:
        """Buffer ``chunk`` and return a frame for every completed line."""
        self._buffer.extend(chunk)
        frames: list[Frame] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            frame = self._parse_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self) -> list[Frame]:
        """Parse whatever remains in the buffer at end of stream."""
        if not self._buffer:
            return []
        line = bytes(self._buffer)
        self._buffer.clear()
        frame = self._parse_line(line)
        return [frame] if frame is not None else []

    def _parse_line(self, line: bytes) -> Frame | None:
        line = line.rstrip(b"\r")
        if not line.strip():
            return None
        try:
            return Frame(message=json.loads(line.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self.parse_errors += 1
            preview = line[:120].decode("utf-8", errors="replace")
            logger.warning("Dropping unparseable message (%s): %s", e, preview)
            return Frame(error=str(e))


def encode_message(message: dict[str, Any]) -> bytes:
    """Serialize a message to a single JSON line."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8") + b"\n"


class ByteReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


class ByteWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class StreamTransport:
    """Bidirectional JSON-RPC message stream over an asyncio reader/writer pair.

    Writes are serialized through a lock so that concurrent producers never
    interleave partial lines.
    """

    def __init__(self, reader: ByteReader, writer: ByteWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._framer = LineFramer()
        self._write_lock = asyncio.Lock()
        self._closed = False

    @property
    def parse_errors(self) -> int:
        return self._framer.parse_errors

    async def messages(self) -> AsyncIterator[Any]:
        """Yield each successfully parsed message until end of stream."""
        while not self._closed:
            chunk = await self._reader.read(_READ_CHUNK_SIZE)
            if not chunk:
                break
            for frame in self._framer.feed(chunk):
                if frame.ok:
                    yield frame.message
        for frame in self._framer.flush():
            if frame.ok:
                yield frame.message

    async def send(self, message: dict[str, Any]) -> None:
        """Write one message as a whole line."""
        data = encode_message(message)
        async with self._write_lock:
            self._writer.write(data)
            await self._writer.drain()

    def close(self) -> None:
        """Stop yielding messages and close the underlying writer if it supports it."""
        self._closed = True
        close = getattr(self._writer, "close", None)
        if close is not None:
            close()


async def open_stdio_transport() -> StreamTransport:
    """Connect stdin/stdout of the current process to a StreamTransport."""
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer
    )

    transport, protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout.buffer
    )
    writer = asyncio.StreamWriter(transport, protocol, None, loop)
    return StreamTransport(reader, writer)
