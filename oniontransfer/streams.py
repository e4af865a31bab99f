"""
oniontransfer/streams.py

Duplex byte streams used by the sender and receiver.

A stream is anything with:
    read(n)     -> bytes   (at most n bytes, b"" on clean end-of-stream)
    write(data)            (writes everything or raises)
    close()

SocketStream implements that over a connected TCP socket and threads an
optional per-operation timeout and an optional CancelToken through every
blocking call. io.BytesIO already satisfies the read/write half and is what
the tests use for in-memory framing checks.
"""

import socket
import threading
import time
import logging
from typing import Optional

from oniontransfer.errors import (
    TransferCancelledError,
    TransferIOError,
    TransferTimeoutError,
)

logger = logging.getLogger(__name__)

# Longest single blocking slice while a CancelToken is attached, so a
# cancel() is noticed without waiting for the peer.
POLL_INTERVAL = 0.5


class CancelToken:
    """Cooperative cancellation flag shared between a controller and a stream."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Deadline:
    """
    Absolute expiry computed from a relative timeout.

    A Deadline built from None never expires.
    """

    def __init__(self, timeout: Optional[float]) -> None:
        self.timeout = timeout
        self._expires = None if timeout is None else time.monotonic() + timeout

    def remaining(self) -> Optional[float]:
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0


class SocketStream:
    """
    Blocking duplex stream over a connected socket.

    Args:
        sock:    Connected stream socket (ownership is taken)
        timeout: Seconds any single read/write may block before raising
                 TransferTimeoutError (None = wait forever)
        cancel:  Optional CancelToken checked before and during every
                 blocking call
    """

    def __init__(
        self,
        sock: socket.socket,
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        self._sock   = sock
        self.timeout = timeout
        self.cancel  = cancel
        self._closed = False

    def __enter__(self) -> "SocketStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Stream interface
    # ------------------------------------------------------------------

    def read(self, n: int) -> bytes:
        return self._blocking(self._sock.recv, n, "read")

    def write(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            sent = self._blocking(self._sock.send, view, "write")
            view = view[sent:]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.close()
        except OSError:
            pass

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _blocking(self, op, arg, what: str):
        deadline = Deadline(self.timeout)
        while True:
            if self.cancel is not None and self.cancel.cancelled:
                raise TransferCancelledError(f"stream {what} cancelled")
            remaining = deadline.remaining()
            if remaining is not None and remaining <= 0.0:
                raise TransferTimeoutError(
                    f"stream {what} timed out after {self.timeout:.1f}s"
                )

            self._sock.settimeout(self._slice(remaining))
            try:
                return op(arg)
            except socket.timeout:
                continue
            except OSError as exc:
                raise TransferIOError(f"stream {what} failed: {exc}") from exc

    def _slice(self, remaining: Optional[float]) -> Optional[float]:
        if self.cancel is None:
            return remaining
        if remaining is None:
            return POLL_INTERVAL
        return min(POLL_INTERVAL, remaining)


def connect(
    host: str,
    port: int,
    connect_timeout: Optional[float] = None,
    timeout: Optional[float] = None,
    cancel: Optional[CancelToken] = None,
) -> SocketStream:
    """
    Open a TCP connection and wrap it in a SocketStream.

    Raises:
        TransferIOError: if the connection cannot be established
    """
    try:
        sock = socket.create_connection((host, port), timeout=connect_timeout)
    except OSError as exc:
        raise TransferIOError(f"cannot connect to {host}:{port}: {exc}") from exc

    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    logger.info("Connected to %s:%d", host, port)
    return SocketStream(sock, timeout=timeout, cancel=cancel)
