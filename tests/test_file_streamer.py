"""Unit tests for byte-capped file streaming."""

import io
import os

import pytest

import simple_web_server
from simple_web_server import FileStreamer, ResolvedPath, ServeResult


def test_small_file_served_byte_for_byte(tmp_path, sink) -> None:
    content = bytes(range(256)) * 3
    target = tmp_path / "blob.bin"
    target.write_bytes(content)

    result = FileStreamer(max_bytes=10000).serve(ResolvedPath(str(target)), sink)

    assert result is ServeResult.SERVED
    assert sink.contents() == b"HTTP/1.0 200 OK\n\n" + content


def test_large_file_truncated_at_cap(tmp_path, sink) -> None:
    content = os.urandom(25000)
    target = tmp_path / "big.bin"
    target.write_bytes(content)

    result = FileStreamer(max_bytes=10000).serve(ResolvedPath(str(target)), sink)

    assert result is ServeResult.TRUNCATED
    assert sink.contents() == b"HTTP/1.0 200 OK\n\n" + content[:10000]


def test_file_exactly_at_cap_is_not_truncated(tmp_path, sink) -> None:
    target = tmp_path / "exact.txt"
    target.write_bytes(b"x" * 50)

    result = FileStreamer(max_bytes=50, chunk_size=8).serve(ResolvedPath(str(target)), sink)

    assert result is ServeResult.SERVED
    assert sink.contents() == b"HTTP/1.0 200 OK\n\n" + b"x" * 50


def test_empty_file_served(tmp_path, sink) -> None:
    target = tmp_path / "empty.txt"
    target.write_bytes(b"")

    result = FileStreamer().serve(ResolvedPath(str(target)), sink)

    assert result is ServeResult.SERVED
    assert sink.contents() == b"HTTP/1.0 200 OK\n\n"


def test_missing_file_writes_nothing(tmp_path, sink) -> None:
    result = FileStreamer().serve(ResolvedPath(str(tmp_path / "gone.txt")), sink)

    assert result is ServeResult.NOT_FOUND
    assert sink.contents() == b""


def test_directory_writes_nothing(tmp_path, sink) -> None:
    result = FileStreamer().serve(ResolvedPath(str(tmp_path)), sink)

    assert result is ServeResult.NOT_FOUND
    assert sink.contents() == b""


def test_negative_cap_rejected() -> None:
    with pytest.raises(ValueError):
        FileStreamer(max_bytes=-1)


class _UnreadableFile(io.BytesIO):
    def read(self, size=-1):
        raise OSError("Input/output error")


def test_first_read_failure_writes_nothing(tmp_path, sink, monkeypatch) -> None:
    target = tmp_path / "bad.bin"
    target.write_bytes(b"unreadable")
    opened = []

    def fake_open(path, mode="r"):
        f = _UnreadableFile()
        opened.append(f)
        return f

    monkeypatch.setattr(simple_web_server, "open", fake_open, raising=False)

    result = FileStreamer().serve(ResolvedPath(str(target)), sink)

    assert result is ServeResult.NOT_FOUND
    assert sink.contents() == b""
    assert len(opened) == 1
    assert opened[0].closed


@pytest.mark.parametrize("size, expected", [
    (5, ServeResult.SERVED),
    (100, ServeResult.TRUNCATED),
])
def test_file_handle_released(tmp_path, sink, monkeypatch, size, expected) -> None:
    target = tmp_path / "data.bin"
    target.write_bytes(b"d" * size)
    opened = []

    def recording_open(*args, **kwargs):
        f = open(*args, **kwargs)
        opened.append(f)
        return f

    monkeypatch.setattr(simple_web_server, "open", recording_open, raising=False)

    result = FileStreamer(max_bytes=10).serve(ResolvedPath(str(target)), sink)

    assert result is expected
    assert len(opened) == 1
    assert opened[0].closed
