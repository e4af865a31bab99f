from __future__ import annotations

import io
import os
import struct

import pytest

from oniontransfer.errors import ProtocolError, SizeMismatchError, TransferIOError
from oniontransfer.progress import ProgressCounter
from oniontransfer.protocol import (
    ItemDescriptor,
    decode_descriptor,
    encode_descriptor,
    local_path,
    pack_descriptor,
    read_exact,
    recv_content,
    send_content,
    wire_name,
)


def _roundtrip(descriptor: ItemDescriptor) -> ItemDescriptor:
    buf = io.BytesIO()
    encode_descriptor(buf, descriptor)
    buf.seek(0)
    return decode_descriptor(buf)


@pytest.mark.parametrize(
    "descriptor",
    [
        ItemDescriptor.file("notes.txt", 0),
        ItemDescriptor.file("a/b/c.bin", 2**40 + 7),
        ItemDescriptor.directory("photos"),
        ItemDescriptor(name="", size=0, is_directory=False),
        ItemDescriptor.file("x" * 255, 1),
        ItemDescriptor.directory("é" * 127),
    ],
)
def test_descriptor_roundtrip(descriptor):
    assert _roundtrip(descriptor) == descriptor


def test_wire_layout():
    raw = pack_descriptor(ItemDescriptor.file("a/b", 5))
    assert raw == b"\x00\x00\x00\x03" + b"a/b" + b"\x00" * 7 + b"\x05" + b"\x00"

    raw = pack_descriptor(ItemDescriptor.directory("d"))
    assert raw[-1:] == b"\x01"
    assert len(raw) == 4 + 1 + 8 + 1


def test_oversized_name_rejected_after_length_field():
    buf = io.BytesIO(struct.pack("!I", 256) + b"n" * 256 + struct.pack("!qB", 0, 0))
    with pytest.raises(ProtocolError, match="filename too long"):
        decode_descriptor(buf)
    assert buf.tell() == 4


def test_encode_refuses_oversized_name():
    buf = io.BytesIO()
    with pytest.raises(ProtocolError):
        encode_descriptor(buf, ItemDescriptor.file("y" * 256, 1))
    assert buf.getvalue() == b""


def test_encode_refuses_negative_size():
    with pytest.raises(ProtocolError):
        pack_descriptor(ItemDescriptor.file("neg", -1))


def test_clean_eof_is_not_an_error():
    assert decode_descriptor(io.BytesIO(b"")) is None


@pytest.mark.parametrize(
    "raw",
    [
        b"\x00\x00",                                  # inside the length field
        b"\x00\x00\x00\x05abc",                       # inside the name
        b"\x00\x00\x00\x01a\x00\x00\x00",             # inside the size
        b"\x00\x00\x00\x01a" + b"\x00" * 8,           # missing the flag
    ],
)
def test_truncated_frame_is_io_error(raw):
    with pytest.raises(TransferIOError):
        decode_descriptor(io.BytesIO(raw))


def test_negative_size_rejected():
    raw = struct.pack("!I", 1) + b"f" + struct.pack("!qB", -5, 0)
    with pytest.raises(ProtocolError):
        decode_descriptor(io.BytesIO(raw))


def test_bad_directory_flag_rejected():
    raw = struct.pack("!I", 1) + b"f" + struct.pack("!qB", 0, 7)
    with pytest.raises(ProtocolError):
        decode_descriptor(io.BytesIO(raw))


def test_invalid_utf8_name_rejected():
    raw = struct.pack("!I", 2) + b"\xff\xfe" + struct.pack("!qB", 0, 0)
    with pytest.raises(ProtocolError):
        decode_descriptor(io.BytesIO(raw))


def test_read_exact_zero_bytes():
    assert read_exact(io.BytesIO(b""), 0) == b""


def test_wire_name_uses_forward_slashes():
    assert wire_name("root", "child") == "root/child"
    assert wire_name("root", os.path.join("a", "b", "c")) == "root/a/b/c"


def test_local_path_maps_under_root(tmp_path):
    assert local_path(tmp_path, "a/b/c.txt") == tmp_path / "a" / "b" / "c.txt"
    assert local_path(tmp_path, "./a//b") == tmp_path / "a" / "b"


@pytest.mark.parametrize("name", ["", "/", "/etc/passwd", "../escape", "a/../../b", "."])
def test_local_path_rejects_unsafe_names(tmp_path, name):
    with pytest.raises(ProtocolError):
        local_path(tmp_path, name)


def test_send_content_chunks_and_counts(recorder):
    payload = os.urandom(100_000)
    out = io.BytesIO()
    counter = ProgressCounter(len(payload), "p", recorder)

    sent = send_content(out, io.BytesIO(payload), len(payload), counter, chunk_size=32 * 1024)

    assert sent == len(payload)
    assert out.getvalue() == payload
    # 4 chunks (32K, 32K, 32K, 1696) plus the final observation
    assert recorder.for_label("p") == [32768, 65536, 98304, 100000, 100000]


def test_send_content_caps_grown_source():
    out = io.BytesIO()
    counter = ProgressCounter(4, "g")
    send_content(out, io.BytesIO(b"abcdefgh"), 4, counter)
    assert out.getvalue() == b"abcd"


def test_send_content_shrunk_source_raises():
    counter = ProgressCounter(10, "s")
    with pytest.raises(SizeMismatchError) as info:
        send_content(io.BytesIO(), io.BytesIO(b"abc"), 10, counter, name="s")
    assert info.value.declared == 10
    assert info.value.actual == 3


def test_recv_content_truncated_keeps_partial():
    sink = io.BytesIO()
    counter = ProgressCounter(1000, "t")
    with pytest.raises(TransferIOError):
        recv_content(io.BytesIO(b"z" * 400), sink, 1000, counter)
    assert sink.getvalue() == b"z" * 400
    assert counter.current == 400


def test_recv_content_leaves_following_bytes_unread():
    stream = io.BytesIO(b"0123456789NEXT")
    sink = io.BytesIO()
    recv_content(stream, sink, 10, ProgressCounter(10, "r"), chunk_size=3)
    assert sink.getvalue() == b"0123456789"
    assert stream.read() == b"NEXT"
