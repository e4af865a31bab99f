"""
oniontransfer/protocol.py

Binary wire protocol for oniontransfer.

The stream is a plain repetition of item frames, each optionally followed by
the item's content. There is no outer framing, no magic and no checksum; the
receiver knows it is done when the sender closes the stream exactly at a
frame boundary.

Item frame (all integers big-endian, no padding):
┌──────────────┬──────────────┬──────────────────────────────────────────────┐
│ Field        │ Bytes        │ Description                                  │
├──────────────┼──────────────┼──────────────────────────────────────────────┤
│ name_len     │   4 (u32)    │ Byte length of the UTF-8 name (<= 255)       │
│ name         │   name_len   │ Relative path, "/"-separated                 │
│ size         │   8 (i64)    │ Content length in bytes (0 for directories)  │
│ is_directory │   1 (u8)     │ 0 = file, 1 = directory                      │
└──────────────┴──────────────┴──────────────────────────────────────────────┘
│ content      │ size bytes   │ Raw file bytes (files only)                  │
└──────────────┴──────────────┴──────────────────────────────────────────────┘

Names cross the protocol boundary only through wire_name() and local_path():
host separators never appear on the wire and "/" never reaches the host
filesystem unconverted.
"""

import os
import struct
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from oniontransfer.errors import (
    ProtocolError,
    SizeMismatchError,
    TransferIOError,
)
from oniontransfer.progress import ProgressCounter

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Constants
# ------------------------------------------------------------------
NAME_LEN_FORMAT = "!I"                              # name_len (u32)
NAME_LEN_SIZE   = struct.calcsize(NAME_LEN_FORMAT)  # 4 bytes
TAIL_FORMAT     = "!qB"                             # size (i64), is_directory (u8)
TAIL_SIZE       = struct.calcsize(TAIL_FORMAT)      # 9 bytes

MAX_NAME_LEN    = 255                # receiver rejects longer names
MAX_NAME_FIELD  = 0xFFFFFFFF         # hard limit of the u32 length field
MAX_SIZE        = 0x7FFFFFFFFFFFFFFF # hard limit of the i64 size field

CHUNK_SIZE      = 32 * 1024          # content is moved in 32 KiB chunks

WIRE_SEP        = "/"


@dataclass(frozen=True)
class ItemDescriptor:
    """Metadata frame for one file or directory."""
    name: str
    size: int = 0
    is_directory: bool = False

    @classmethod
    def file(cls, name: str, size: int) -> "ItemDescriptor":
        return cls(name=name, size=size, is_directory=False)

    @classmethod
    def directory(cls, name: str) -> "ItemDescriptor":
        return cls(name=name, size=0, is_directory=True)


# ------------------------------------------------------------------
# Frame encode / decode
# ------------------------------------------------------------------

def pack_descriptor(descriptor: ItemDescriptor) -> bytes:
    """
    Pack a descriptor into its wire bytes.

    Raises:
        ProtocolError: name longer than MAX_NAME_LEN bytes, or size out of range
    """
    name_bytes = descriptor.name.encode("utf-8")
    if len(name_bytes) > MAX_NAME_LEN:
        raise ProtocolError(
            f"filename too long: {len(name_bytes)} bytes (max {MAX_NAME_LEN})",
            path=descriptor.name,
        )
    if not 0 <= descriptor.size <= MAX_SIZE:
        raise ProtocolError(
            f"invalid size {descriptor.size} for {descriptor.name!r}",
            path=descriptor.name,
        )

    return (
        struct.pack(NAME_LEN_FORMAT, len(name_bytes))
        + name_bytes
        + struct.pack(TAIL_FORMAT, descriptor.size, 1 if descriptor.is_directory else 0)
    )


def encode_descriptor(stream, descriptor: ItemDescriptor) -> None:
    """
    Write one item frame to stream.

    Nothing is written if the descriptor is invalid. If the write itself
    fails the frame may be left half-sent; the connection is unusable after.

    Raises:
        ProtocolError:   descriptor cannot be represented on the wire
        TransferIOError: the stream write failed
    """
    frame = pack_descriptor(descriptor)
    _write(stream, frame, "file info write")
    logger.debug(
        "Sent frame: name=%r size=%d dir=%s",
        descriptor.name, descriptor.size, descriptor.is_directory,
    )


def decode_descriptor(stream) -> Optional[ItemDescriptor]:
    """
    Read one item frame from stream.

    Returns:
        ItemDescriptor, or None if the stream ended cleanly before the
        first byte of the frame (the sender has nothing more to send).

    Raises:
        ProtocolError:   oversized name, negative size, bad flag or bad UTF-8
        TransferIOError: the stream failed or ended part-way through the frame
    """
    raw_len = read_exact(stream, NAME_LEN_SIZE, "file info read", allow_eof=True)
    if raw_len is None:
        return None

    (name_len,) = struct.unpack(NAME_LEN_FORMAT, raw_len)
    if name_len > MAX_NAME_LEN:
        raise ProtocolError(f"filename too long: {name_len} bytes")

    raw_name = read_exact(stream, name_len, "file name read")
    size, flag = struct.unpack(TAIL_FORMAT, read_exact(stream, TAIL_SIZE, "file info read"))

    try:
        name = raw_name.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ProtocolError(f"filename is not valid UTF-8: {exc}") from exc

    if size < 0:
        raise ProtocolError(f"negative size {size} for {name!r}", path=name)
    if flag not in (0, 1):
        raise ProtocolError(f"invalid directory flag {flag} for {name!r}", path=name)

    descriptor = ItemDescriptor(name=name, size=size, is_directory=flag == 1)
    logger.debug(
        "Received frame: name=%r size=%d dir=%s",
        descriptor.name, descriptor.size, descriptor.is_directory,
    )
    return descriptor


def read_exact(stream, n: int, what: str = "read", allow_eof: bool = False) -> Optional[bytes]:
    """
    Read exactly n bytes from stream.

    Args:
        allow_eof: return None instead of raising when the stream is already
                   at end-of-stream before any byte is read

    Raises:
        TransferIOError: if the stream fails or closes before n bytes are read
    """
    buf = bytearray()
    while len(buf) < n:
        try:
            chunk = stream.read(n - len(buf))
        except OSError as exc:
            raise TransferIOError(f"{what} failed: {exc}") from exc
        if not chunk:
            if allow_eof and not buf:
                return None
            raise TransferIOError(f"{what} failed: stream closed after {len(buf)}/{n} bytes")
        buf.extend(chunk)
    return bytes(buf)


# ------------------------------------------------------------------
# Content transfer
# ------------------------------------------------------------------

def send_content(
    stream,
    source: BinaryIO,
    size: int,
    counter: ProgressCounter,
    name: str = "",
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """
    Copy exactly size bytes from source to stream in chunk_size pieces.

    The declared size wins: bytes beyond it are not sent (a warning is
    logged), and a source that runs dry early raises SizeMismatchError since
    the receiver would otherwise read the next frame as content.

    Returns:
        Number of content bytes written (always size on success)
    """
    sent = 0
    while sent < size:
        chunk = _read_source(source, min(chunk_size, size - sent), name)
        if not chunk:
            raise SizeMismatchError(name, size, sent)
        _write(stream, chunk, "content write")
        sent += len(chunk)
        counter.advance(len(chunk))

    if _read_source(source, 1, name):
        logger.warning(
            "%s grew while it was being sent; only the declared %d bytes were transferred",
            name, size,
        )

    counter.finish()
    return sent


def recv_content(
    stream,
    sink: BinaryIO,
    size: int,
    counter: ProgressCounter,
    name: str = "",
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """
    Copy exactly size bytes from stream to sink, chunk_size at most per read.

    Raises:
        TransferIOError: stream ended early or a read/write failed; whatever
                         arrived before the failure has already been written
    """
    received = 0
    while received < size:
        try:
            chunk = stream.read(min(chunk_size, size - received))
        except OSError as exc:
            raise TransferIOError(f"content read failed: {exc}", path=name) from exc
        if not chunk:
            raise TransferIOError(
                f"stream closed after {received}/{size} content bytes of {name!r}",
                path=name,
            )
        try:
            sink.write(chunk)
        except OSError as exc:
            raise TransferIOError(f"cannot write {name!r}: {exc}", path=name) from exc
        received += len(chunk)
        counter.advance(len(chunk))

    counter.finish()
    return received


# ------------------------------------------------------------------
# Name mapping (the only place host separators meet wire separators)
# ------------------------------------------------------------------

def wire_name(*components: str) -> str:
    """
    Join name components into a wire name.

    Each component may itself be a host-relative path; its host separators
    are converted to "/".
    """
    parts = []
    for component in components:
        parts.extend(p for p in Path(component).parts if p not in ("", "."))
    return WIRE_SEP.join(parts)


def local_path(root, name: str) -> Path:
    """
    Map a wire name to a host path under root.

    Raises:
        ProtocolError: name is empty, absolute, or would escape root
    """
    if name.startswith(WIRE_SEP):
        raise ProtocolError(f"absolute item name rejected: {name!r}", path=name)

    parts = [p for p in name.split(WIRE_SEP) if p not in ("", ".")]
    if not parts:
        raise ProtocolError(f"empty item name: {name!r}", path=name)

    for part in parts:
        if part == ".." or os.sep in part or (os.altsep and os.altsep in part):
            raise ProtocolError(f"unsafe item name rejected: {name!r}", path=name)

    return Path(root).joinpath(*parts)


# ------------------------------------------------------------------
# Internal
# ------------------------------------------------------------------

def _write(stream, data: bytes, what: str) -> None:
    try:
        stream.write(data)
    except OSError as exc:
        raise TransferIOError(f"{what} failed: {exc}") from exc


def _read_source(source: BinaryIO, n: int, name: str) -> bytes:
    try:
        return source.read(n)
    except OSError as exc:
        raise TransferIOError(f"cannot read {name!r}: {exc}", path=name) from exc
