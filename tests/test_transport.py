"""Tests for newline-delimited JSON framing and the stream transport."""

import asyncio
import json

import pytest

from mongo_lens.transport import LineFramer, StreamTransport, encode_message


class FakeReader:
    """Returns queued chunks, then EOF."""

    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = list(chunks)

    async def read(self, n: int = -1) -> bytes:
        await asyncio.sleep(0)
        return self._chunks.pop(0) if self._chunks else b""


class RecordingWriter:
    def __init__(self) -> None:
        self.writes: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.writes.append(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)


class TestLineFramer:
    """Tests for LineFramer."""

    def test_single_line(self) -> None:
        framer = LineFramer()
        frames = framer.feed(b'{"id": 1}\n')
        assert [f.message for f in frames] == [{"id": 1}]

    def test_split_chunks_reassemble(self) -> None:
        framer = LineFramer()
        assert framer.feed(b'{"jsonrpc": "2.0", ') == []
        assert framer.feed(b'"id": 7, "method"') == []
        frames = framer.feed(b': "ping"}\n')
        assert frames[0].message == {"jsonrpc": "2.0", "id": 7, "method": "ping"}

    def test_multiple_lines_in_one_chunk(self) -> None:
        framer = LineFramer()
        frames = framer.feed(b'{"id": 1}\n{"id": 2}\n{"id"')
        assert [f.message["id"] for f in frames] == [1, 2]
        assert [f.message["id"] for f in framer.feed(b": 3}\n")] == [3]

    def test_malformed_line_skipped_and_later_lines_parsed(self) -> None:
        framer = LineFramer()
        frames = framer.feed(b'{not json\n{"id": 2}\n')
        assert not frames[0].ok
        assert frames[1].ok
        assert frames[1].message == {"id": 2}
        assert framer.parse_errors == 1

    def test_crlf_tolerated(self) -> None:
        framer = LineFramer()
        frames = framer.feed(b'{"id": 1}\r\n')
        assert frames[0].message == {"id": 1}

    def test_blank_lines_ignored(self) -> None:
        framer = LineFramer()
        assert framer.feed(b"\n   \n") == []
        assert framer.parse_errors == 0

    def test_invalid_utf8_is_a_parse_error(self) -> None:
        framer = LineFramer()
        frames = framer.feed(b"\xff\xfe\n")
        assert not frames[0].ok

    def test_flush_parses_trailing_line(self) -> None:
        framer = LineFramer()
        assert framer.feed(b'{"id": 9}') == []
        assert [f.message for f in framer.flush()] == [{"id": 9}]
        assert framer.flush() == []


class TestEncodeMessage:
    """Tests for encode_message."""

    def test_single_line_with_newline(self) -> None:
        data = encode_message({"text": "line one\nline two"})
        assert data.endswith(b"\n")
        assert data.count(b"\n") == 1
        assert json.loads(data) == {"text": "line one\nline two"}

    def test_non_ascii_kept_as_utf8(self) -> None:
        data = encode_message({"name": "Zoë"})
        assert "Zoë".encode() in data


class TestStreamTransport:
    """Tests for StreamTransport."""

    @pytest.mark.asyncio
    async def test_messages_skip_malformed(self) -> None:
        transport = StreamTransport(
            FakeReader([b'{"id": 1}\ngarbage\n{"id"', b': 2}\n{"id": 3}']),
            RecordingWriter(),
        )
        received = [m async for m in transport.messages()]
        assert received == [{"id": 1}, {"id": 2}, {"id": 3}]
        assert transport.parse_errors == 1

    @pytest.mark.asyncio
    async def test_concurrent_sends_write_whole_lines(self) -> None:
        writer = RecordingWriter()
        transport = StreamTransport(FakeReader([]), writer)

        await asyncio.gather(
            *(transport.send({"id": i, "result": {"text": "x" * 100}}) for i in range(20))
        )

        assert len(writer.writes) == 20
        ids = set()
        for data in writer.writes:
            assert data.endswith(b"\n")
            ids.add(json.loads(data)["id"])
        assert ids == set(range(20))
