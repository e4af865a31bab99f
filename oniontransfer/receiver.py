"""
oniontransfer/receiver.py

oniontransfer RECEIVER — rebuilds the sender's items under a receive root.

State machine (one Receiver per connection):

    AWAITING_FRAME ──dir frame──▶ mkdir -p ──▶ AWAITING_FRAME
    AWAITING_FRAME ──file frame─▶ RECEIVING_CONTENT ──size bytes──▶ AWAITING_FRAME
    AWAITING_FRAME ──clean EOF──▶ CLOSED (success)
    any state      ──error──────▶ CLOSED (error propagated)

Existing files are truncated and overwritten. A connection that dies in the
middle of a file leaves the partial file on disk.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from oniontransfer.errors import TransferIOError
from oniontransfer.fs import LocalFilesystem
from oniontransfer.progress import ProgressCounter
from oniontransfer.protocol import (
    CHUNK_SIZE,
    ItemDescriptor,
    decode_descriptor,
    local_path,
    recv_content,
)

logger = logging.getLogger(__name__)


class ReceiverState(Enum):
    AWAITING_FRAME    = "awaiting_frame"
    RECEIVING_CONTENT = "receiving_content"
    CLOSED            = "closed"


@dataclass
class ReceivedItem:
    descriptor: ItemDescriptor
    path: Path


@dataclass
class ReceiveSummary:
    items: List[ReceivedItem] = field(default_factory=list)
    bytes_received: int = 0

    @property
    def files(self) -> List[ReceivedItem]:
        return [i for i in self.items if not i.descriptor.is_directory]

    @property
    def directories(self) -> List[ReceivedItem]:
        return [i for i in self.items if i.descriptor.is_directory]


class Receiver:
    """
    Reads item frames from one stream until the sender closes it.

    Args:
        stream:     Connected duplex stream
        root:       Receive root; every item lands underneath it
        fs:         Filesystem to write to (default: LocalFilesystem)
        progress:   ProgressSink observing every chunk (None = discard)
        on_item:    Optional callback invoked with each completed ReceivedItem
        chunk_size: Largest read issued for content
    """

    def __init__(
        self,
        stream,
        root,
        fs: Optional[LocalFilesystem] = None,
        progress=None,
        on_item: Optional[Callable[[ReceivedItem], None]] = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._stream     = stream
        self.root        = Path(root)
        self._fs         = fs if fs is not None else LocalFilesystem()
        self._progress   = progress
        self._on_item    = on_item
        self._chunk_size = chunk_size

        self.state   = ReceiverState.AWAITING_FRAME
        self.summary = ReceiveSummary()

    def run(self) -> ReceiveSummary:
        """
        Receive items until clean end-of-stream.

        Raises:
            ProtocolError / TransferIOError: the connection failed; items
            completed before the failure stay on disk and in self.summary
        """
        try:
            while self.receive_one() is not None:
                pass
        finally:
            self.state = ReceiverState.CLOSED
        return self.summary

    def receive_one(self) -> Optional[ReceivedItem]:
        """
        Receive a single item.

        Returns:
            The completed item, or None once the stream has ended cleanly.
        """
        if self.state is ReceiverState.CLOSED:
            return None

        descriptor = decode_descriptor(self._stream)
        if descriptor is None:
            logger.info("Stream closed by sender after %d item(s)", len(self.summary.items))
            self.state = ReceiverState.CLOSED
            return None

        target = local_path(self.root, descriptor.name)
        if descriptor.is_directory:
            if descriptor.size != 0:
                logger.warning(
                    "Directory %r declared size %d; ignoring",
                    descriptor.name, descriptor.size,
                )
            self._mkdir(target)
            logger.info("Directory created: %s", target)
        else:
            self._receive_file(descriptor, target)

        item = ReceivedItem(descriptor=descriptor, path=target)
        self.summary.items.append(item)
        if self._on_item is not None:
            self._on_item(item)
        return item

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _receive_file(self, descriptor: ItemDescriptor, target: Path) -> None:
        self._mkdir(target.parent)
        try:
            fh = self._fs.create_file(target)
        except OSError as exc:
            raise TransferIOError(f"cannot create {target}: {exc}", path=descriptor.name) from exc

        logger.info("Receiving %s (%d bytes)", descriptor.name, descriptor.size)
        self.state = ReceiverState.RECEIVING_CONTENT
        counter = ProgressCounter(descriptor.size, target.name, self._progress)
        try:
            recv_content(
                self._stream, fh, descriptor.size, counter,
                name=descriptor.name, chunk_size=self._chunk_size,
            )
        finally:
            # Buffered data is flushed here, so a full disk can surface on close.
            try:
                fh.close()
            except OSError as exc:
                raise TransferIOError(f"cannot close {target}: {exc}", path=descriptor.name) from exc

        self.state = ReceiverState.AWAITING_FRAME
        self.summary.bytes_received += descriptor.size
        logger.info("File received: %s", target)

    def _mkdir(self, path: Path) -> None:
        try:
            self._fs.mkdir_all(path)
        except OSError as exc:
            raise TransferIOError(f"cannot create directory {path}: {exc}") from exc
