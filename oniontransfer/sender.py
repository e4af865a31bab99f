"""
oniontransfer/sender.py

oniontransfer SENDER.

Sender works on an already-connected stream:
  1. send_items() walks the given paths in order on one stream
  2. each directory becomes a directory frame followed by its descendants,
     depth-first, children in sorted order
  3. each file becomes a file frame followed by its content in 32 KiB chunks
  4. progress is counted per item through a fresh ProgressCounter

TransferClient wraps that with connection setup and teardown for the CLI.
Glob expansion and de-duplication of input paths happen before either is
called.
"""

import io
import os
import time
import logging
from typing import BinaryIO, Iterable, Optional, Union

from oniontransfer.errors import (
    EmptyInputError,
    NotFoundError,
    ProtocolError,
    TransferError,
    TransferIOError,
)
from oniontransfer.fs import LocalFilesystem
from oniontransfer.progress import ProgressCounter
from oniontransfer.protocol import (
    CHUNK_SIZE,
    ItemDescriptor,
    encode_descriptor,
    send_content,
    wire_name,
)
from oniontransfer.streams import connect

logger = logging.getLogger(__name__)

# Name used for payloads that are not a filesystem entry (piped stdin).
STDIN_NAME = "data.bin"


def item_name(path: str) -> str:
    """Name a top-level path is sent under: its final component."""
    return os.path.basename(os.path.normpath(os.path.abspath(path)))


class Sender:
    """
    Serializes filesystem items onto one stream.

    Args:
        stream:     Connected duplex stream (read/write/close)
        fs:         Filesystem to read from (default: LocalFilesystem)
        progress:   ProgressSink observing every chunk (None = discard)
        chunk_size: Content chunk size in bytes
    """

    def __init__(
        self,
        stream,
        fs: Optional[LocalFilesystem] = None,
        progress=None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._stream     = stream
        self._fs         = fs if fs is not None else LocalFilesystem()
        self._progress   = progress
        self._chunk_size = chunk_size

        self.items_sent = 0
        self.bytes_sent = 0

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def send_items(self, paths: Iterable[str]) -> None:
        """
        Send every path in order. Stops at the first failure.

        Raises:
            TransferError: the first failure, with .path set to the failing
                           top-level path if the error did not name one
        """
        paths = list(paths)
        for idx, path in enumerate(paths, start=1):
            logger.info("[%d/%d] Sending %s", idx, len(paths), path)
            try:
                self.send_item(path)
            except TransferError as exc:
                if exc.path is None:
                    exc.path = path
                logger.error("Failed to send %s: %s", path, exc)
                raise

    def send_item(self, path: str, name: Optional[str] = None) -> None:
        """
        Send one file or directory tree.

        Args:
            path: Source path on the local filesystem
            name: Wire name to send it under (default: final path component)

        Raises:
            NotFoundError: path cannot be statted or is not a file/directory
            ProtocolError: the wire name would be empty (e.g. path "/")
        """
        try:
            st = self._fs.stat(path)
        except OSError as exc:
            raise NotFoundError(f"cannot stat {path}: {exc}", path=path) from exc

        if name is None:
            name = item_name(path)
        if not name:
            raise ProtocolError(f"cannot send {path!r} under an empty name", path=path)

        if st.is_dir:
            self._send_directory(path, name)
        elif st.is_file:
            self._send_file(path, name)
        else:
            raise NotFoundError(f"{path} is not a regular file or directory", path=path)

    def send_stream(
        self,
        source: Union[bytes, bytearray, BinaryIO],
        name: str = STDIN_NAME,
    ) -> None:
        """
        Send an unnamed byte source as a single file.

        The whole source is read first because the frame declares the size
        up front.

        Raises:
            EmptyInputError: source produced no bytes
        """
        if isinstance(source, (bytes, bytearray)):
            data = bytes(source)
        else:
            try:
                data = source.read()
            except OSError as exc:
                raise TransferIOError(f"cannot read input: {exc}", path=name) from exc

        if not data:
            raise EmptyInputError("no data received on input", path=name)

        self._send_content(io.BytesIO(data), name, len(data))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _send_directory(self, path: str, name: str) -> None:
        encode_descriptor(self._stream, ItemDescriptor.directory(name))
        self.items_sent += 1
        logger.info("Sending directory: %s", name)
        self._walk(path, name)

    def _walk(self, dir_path: str, dir_name: str) -> None:
        try:
            children = self._fs.list_children(dir_path)
        except OSError as exc:
            raise TransferIOError(f"cannot list {dir_path}: {exc}", path=dir_path) from exc

        for child in children:
            child_path = os.path.join(dir_path, child)
            child_name = wire_name(dir_name, child)

            try:
                st = self._fs.stat(child_path, follow_symlinks=False)
            except OSError as exc:
                raise NotFoundError(f"cannot stat {child_path}: {exc}", path=child_path) from exc

            if st.is_symlink:
                self._send_symlink(child_path, child_name)
            elif st.is_dir:
                encode_descriptor(self._stream, ItemDescriptor.directory(child_name))
                self.items_sent += 1
                logger.info("Sending subdirectory: %s", child_name)
                self._walk(child_path, child_name)
            elif st.is_file:
                self._send_file(child_path, child_name)
            else:
                logger.warning("Skipping %s: not a regular file or directory", child_path)

    def _send_symlink(self, path: str, name: str) -> None:
        # Links to files are sent as their target's content; links to
        # directories are not followed.
        try:
            target = self._fs.stat(path)
        except OSError:
            logger.warning("Skipping %s: dangling symlink", path)
            return

        if target.is_file:
            self._send_file(path, name)
        else:
            logger.warning("Skipping %s: symlink to a non-regular file", path)

    def _send_file(self, path: str, name: str) -> None:
        try:
            fh = self._fs.open_read(path)
        except FileNotFoundError as exc:
            raise NotFoundError(f"cannot open {path}: {exc}", path=path) from exc
        except OSError as exc:
            raise TransferIOError(f"cannot open {path}: {exc}", path=path) from exc

        with fh:
            try:
                size = self._fs.stat(path).size
            except OSError as exc:
                raise NotFoundError(f"cannot stat {path}: {exc}", path=path) from exc
            self._send_content(fh, name, size)

    def _send_content(self, source: BinaryIO, name: str, size: int) -> None:
        encode_descriptor(self._stream, ItemDescriptor.file(name, size))
        logger.info("Sending %s (%d bytes)", name, size)

        counter = ProgressCounter(size, _label(name), self._progress)
        send_content(
            self._stream, source, size, counter,
            name=name, chunk_size=self._chunk_size,
        )
        self.items_sent += 1
        self.bytes_sent += size


def _label(name: str) -> str:
    return name.rsplit("/", 1)[-1]


class TransferClient:
    """
    Opens one connection per batch and runs a Sender over it.

    Args:
        host:            Receiver hostname / IP
        port:            Receiver port
        connect_timeout: Seconds to wait for the TCP connection
        timeout:         Per-operation stream timeout (None = wait forever)
        progress:        ProgressSink for per-item progress
    """

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: Optional[float] = None,
        timeout: Optional[float] = None,
        progress=None,
        cancel=None,
    ) -> None:
        self.host            = host
        self.port            = port
        self.connect_timeout = connect_timeout
        self.timeout         = timeout
        self.progress        = progress
        self.cancel          = cancel

    def send_paths(self, paths: Iterable[str]) -> dict:
        """Send paths over a fresh connection. Returns a summary dict."""
        return self._run(lambda sender: sender.send_items(paths))

    def send_bytes(self, source, name: str = STDIN_NAME) -> dict:
        """Send a byte source as one file over a fresh connection."""
        return self._run(lambda sender: sender.send_stream(source, name=name))

    def _run(self, action) -> dict:
        start = time.monotonic()
        with connect(
            self.host,
            self.port,
            connect_timeout=self.connect_timeout,
            timeout=self.timeout,
            cancel=self.cancel,
        ) as stream:
            sender = Sender(stream, progress=self.progress)
            action(sender)

        elapsed = time.monotonic() - start
        logger.info(
            "Sent %d item(s), %d bytes to %s:%d in %.2f s",
            sender.items_sent, sender.bytes_sent, self.host, self.port, elapsed,
        )
        return {
            "items":     sender.items_sent,
            "bytes":     sender.bytes_sent,
            "elapsed_s": round(elapsed, 2),
        }
