"""
oniontransfer/server.py

oniontransfer SERVER (receiver side).

Responsibilities:
  - Listen on a TCP port for incoming transfer connections
  - Run one Receiver per accepted connection on its own thread
  - Keep aggregate counters for status reporting

Architecture:
  - One accept-loop thread (the caller of start())
  - One handler thread per accepted connection
  - Handlers share nothing but the output directory; two connections
    writing the same relative path race and the last writer wins
"""

import os
import socket
import threading
import logging
import signal
import sys
from pathlib import Path
from typing import Callable, Optional

from oniontransfer.errors import TransferError, TransferIOError
from oniontransfer.receiver import Receiver
from oniontransfer.streams import CancelToken, SocketStream

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8000

# Directory where received files are saved (overridden by CLI)
DEFAULT_OUTPUT_DIR = "./received"

# accept() wakes up this often so shutdown() is noticed
ACCEPT_POLL_INTERVAL = 1.0


class ServerStats:
    """Thread-safe aggregate counters across all connections."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.connections    = 0
        self.active         = 0
        self.failed         = 0
        self.items_received = 0
        self.bytes_received = 0

    def connection_opened(self) -> None:
        with self._lock:
            self.connections += 1
            self.active += 1

    def connection_closed(self, items: int, nbytes: int, failed: bool) -> None:
        with self._lock:
            self.active -= 1
            self.items_received += items
            self.bytes_received += nbytes
            if failed:
                self.failed += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "connections":    self.connections,
                "active":         self.active,
                "failed":         self.failed,
                "items_received": self.items_received,
                "bytes_received": self.bytes_received,
            }


# ---------------------------------------------------------------------------
# ConnectionHandler — handles one TCP connection
# ---------------------------------------------------------------------------

class ConnectionHandler:
    """
    Runs the receiver state machine for a single accepted connection.
    """

    def __init__(
        self,
        conn: socket.socket,
        addr: tuple,
        output_dir: str,
        stats: ServerStats,
        io_timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
        progress=None,
    ) -> None:
        self._addr     = addr
        self._stats    = stats
        self._stream   = SocketStream(conn, timeout=io_timeout, cancel=cancel)
        self._receiver = Receiver(self._stream, output_dir, progress=progress)
        self.error: Optional[BaseException] = None

    def handle(self) -> None:
        """Main handler for one connection. Never raises."""
        peer = "%s:%s" % self._addr[:2]
        self._stats.connection_opened()
        try:
            summary = self._receiver.run()
            logger.info(
                "Connection %s done: %d item(s), %d bytes",
                peer, len(summary.items), summary.bytes_received,
            )
        except TransferIOError as exc:
            self.error = exc
            cause = exc.__cause__
            if isinstance(cause, ConnectionError):
                logger.info("Connection %s closed: %s", peer, exc)
            else:
                logger.error("Connection %s failed: %s", peer, exc)
        except TransferError as exc:
            self.error = exc
            logger.error("Connection %s aborted: %s", peer, exc)
        except Exception as exc:
            self.error = exc
            logger.error("Connection %s error: %s", peer, exc, exc_info=True)
        finally:
            self._stream.close()
            summary = self._receiver.summary
            self._stats.connection_closed(
                items=len(summary.items),
                nbytes=summary.bytes_received,
                failed=self.error is not None,
            )


# ---------------------------------------------------------------------------
# TransferServer — main server class
# ---------------------------------------------------------------------------

class TransferServer:
    """
    TCP server that receives items into output_dir.

    Each accepted connection gets its own progress sink from
    progress_factory (None = no progress reporting).

    Usage:
        server = TransferServer(host="0.0.0.0", port=8000, output_dir="./received")
        server.start()          # blocks (runs the accept loop)
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        output_dir: str = DEFAULT_OUTPUT_DIR,
        io_timeout: Optional[float] = None,
        backlog: int = 64,
        progress_factory: Optional[Callable[[], object]] = None,
    ) -> None:
        self.host       = host
        self.port       = port
        self.output_dir = output_dir
        self.io_timeout = io_timeout
        self.backlog    = backlog
        self.progress_factory = progress_factory

        self.address: Optional[tuple] = None
        self.stats = ServerStats()

        self._shutdown = threading.Event()
        self._cancel   = CancelToken()
        self._sock: Optional[socket.socket] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, ready_event: Optional[threading.Event] = None) -> None:
        """
        Start listening. Blocks until shutdown() or a termination signal.

        Args:
            ready_event: If provided, set() once the socket is bound and
                         listening (useful for tests / programmatic callers).
        """
        Path(self.output_dir).mkdir(parents=True, exist_ok=True)

        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind((self.host, self.port))
        self._sock.listen(self.backlog)
        self._sock.settimeout(ACCEPT_POLL_INTERVAL)
        self.address = self._sock.getsockname()

        # Install signal handlers only when running on the main thread
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT,  self._on_signal)
            signal.signal(signal.SIGTERM, self._on_signal)

        logger.info(
            "Listening on %s:%d, saving to %s",
            self.address[0], self.address[1], os.path.abspath(self.output_dir),
        )

        if ready_event is not None:
            ready_event.set()

        try:
            self._accept_loop()
        finally:
            self._close_socket()

    def shutdown(self, cancel_active: bool = False) -> None:
        """
        Stop accepting connections.

        Args:
            cancel_active: also cancel in-flight connections at their next
                           blocking read/write
        """
        self._shutdown.set()
        if cancel_active:
            self._cancel.cancel()

    def get_stats(self) -> dict:
        return self.stats.snapshot()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _accept_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                conn, addr = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            logger.info("New connection from %s:%d", *addr[:2])
            handler = ConnectionHandler(
                conn=conn,
                addr=addr,
                output_dir=self.output_dir,
                stats=self.stats,
                io_timeout=self.io_timeout,
                cancel=self._cancel,
                progress=self.progress_factory() if self.progress_factory else None,
            )
            t = threading.Thread(
                target=handler.handle,
                name=f"handler-{addr[0]}-{addr[1]}",
                daemon=True,
            )
            t.start()

        logger.info("Accept loop exited")

    def _close_socket(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass

    def _on_signal(self, signum, frame) -> None:
        logger.info("Received signal %d, shutting down", signum)
        self.shutdown(cancel_active=True)
        self._close_socket()
        sys.exit(0)
