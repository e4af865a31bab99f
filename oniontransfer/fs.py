"""
oniontransfer/fs.py

Filesystem access used by the sender (read side) and receiver (write side).

LocalFilesystem is the only implementation; the sender and receiver take it
as a constructor argument so tests can substitute their own.
"""

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List


@dataclass(frozen=True)
class EntryStat:
    """What the sender needs to know about a path before sending it."""
    is_dir: bool
    is_file: bool
    is_symlink: bool
    size: int


class LocalFilesystem:
    """Thin wrapper over os / pathlib for the host filesystem."""

    def stat(self, path: str, follow_symlinks: bool = True) -> EntryStat:
        """
        Raises:
            OSError: if the path cannot be statted
        """
        st = os.stat(path, follow_symlinks=follow_symlinks)
        return EntryStat(
            is_dir=stat.S_ISDIR(st.st_mode),
            is_file=stat.S_ISREG(st.st_mode),
            is_symlink=stat.S_ISLNK(st.st_mode),
            size=st.st_size,
        )

    def open_read(self, path: str) -> BinaryIO:
        return open(path, "rb")

    def list_children(self, path: str) -> List[str]:
        """Names of the entries directly inside path, sorted."""
        return sorted(os.listdir(path))

    def mkdir_all(self, path: Path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def create_file(self, path: Path) -> BinaryIO:
        """Create path for writing, truncating any existing file."""
        return open(path, "wb")
