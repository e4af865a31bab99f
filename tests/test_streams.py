from __future__ import annotations

import socket
import threading
import time

import pytest

from oniontransfer.errors import (
    TransferCancelledError,
    TransferIOError,
    TransferTimeoutError,
)
from oniontransfer.protocol import ItemDescriptor, pack_descriptor
from oniontransfer.receiver import Receiver
from oniontransfer.streams import CancelToken, Deadline, SocketStream


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    yield a, b
    for s in (a, b):
        try:
            s.close()
        except OSError:
            pass


def test_read_write_over_socketpair(pair):
    a, b = pair
    left, right = SocketStream(a), SocketStream(b)
    left.write(b"hello" * 1000)
    received = bytearray()
    while len(received) < 5000:
        received.extend(right.read(5000 - len(received)))
    assert bytes(received) == b"hello" * 1000


def test_read_returns_empty_after_peer_close(pair):
    a, b = pair
    a.close()
    assert SocketStream(b).read(10) == b""


def test_stalled_read_times_out(pair):
    _a, b = pair
    stream = SocketStream(b, timeout=0.2)
    start = time.monotonic()
    with pytest.raises(TransferTimeoutError):
        stream.read(1)
    assert time.monotonic() - start < 5.0


def test_cancel_interrupts_blocked_read(pair):
    _a, b = pair
    token = CancelToken()
    stream = SocketStream(b, cancel=token)
    timer = threading.Timer(0.1, token.cancel)
    timer.start()
    try:
        with pytest.raises(TransferCancelledError):
            stream.read(1)
    finally:
        timer.cancel()


def test_cancelled_token_stops_write_immediately(pair):
    a, _b = pair
    token = CancelToken()
    token.cancel()
    with pytest.raises(TransferCancelledError):
        SocketStream(a, cancel=token).write(b"x")


def test_write_to_closed_peer_is_io_error(pair):
    a, b = pair
    b.close()
    stream = SocketStream(a)
    with pytest.raises(TransferIOError):
        for _ in range(1000):
            stream.write(b"x" * 65536)


def test_close_is_idempotent(pair):
    a, _b = pair
    stream = SocketStream(a)
    stream.close()
    stream.close()
    assert stream.closed


def test_deadline():
    assert Deadline(None).remaining() is None
    assert not Deadline(None).expired
    assert Deadline(0).expired
    assert 0 < Deadline(10).remaining() <= 10


def test_receiver_times_out_on_stalled_sender(pair, tmp_path):
    a, b = pair
    a.sendall(pack_descriptor(ItemDescriptor.file("slow.bin", 1000)) + b"s" * 10)

    receiver = Receiver(SocketStream(b, timeout=0.3), tmp_path)
    with pytest.raises(TransferTimeoutError):
        receiver.run()
    assert (tmp_path / "slow.bin").stat().st_size == 10
