"""
oniontransfer/errors.py

Exception hierarchy shared by the sender, receiver and codec.

    TransferError
    ├── ProtocolError          malformed / oversized frame (framing is lost)
    ├── TransferIOError        stream or disk read/write failure
    │   ├── TransferTimeoutError
    │   └── TransferCancelledError
    ├── NotFoundError          source path missing at send time
    ├── EmptyInputError        zero-length stream input
    └── SizeMismatchError      source shrank below its declared size

None of these are retried. They unwind to the connection boundary
(server handler or CLI) where the connection is closed and the error logged.
"""

from typing import Optional


class TransferError(Exception):
    """
    Base class for every transfer failure.

    Args:
        message: Human-readable description
        path:    Source path or wire name the failure relates to, if known
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class ProtocolError(TransferError):
    pass


class TransferIOError(TransferError):
    pass


class TransferTimeoutError(TransferIOError):
    pass


class TransferCancelledError(TransferIOError):
    pass


class NotFoundError(TransferError):
    pass


class EmptyInputError(TransferError):
    pass


class SizeMismatchError(TransferError):
    """Raised when a file yields fewer bytes than its descriptor declared."""

    def __init__(self, path: str, declared: int, actual: int) -> None:
        super().__init__(
            f"{path}: declared {declared} bytes but only {actual} could be read",
            path=path,
        )
        self.declared = declared
        self.actual = actual
