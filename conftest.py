from __future__ import annotations

import pytest


class RecordingProgress:
    """ProgressSink that keeps every observation."""

    def __init__(self) -> None:
        self.observations: list[tuple[int, int | None, str]] = []

    def observe(self, current, total, label) -> None:
        self.observations.append((current, total, label))

    def for_label(self, label: str) -> list[int]:
        return [cur for cur, _total, lbl in self.observations if lbl == label]


@pytest.fixture
def recorder() -> RecordingProgress:
    return RecordingProgress()


@pytest.fixture
def src_tree(tmp_path):
    """
    tree/
      a.txt
      sub/
        b.bin
        nested/
          c.txt
    """
    root = tmp_path / "src" / "tree"
    (root / "sub" / "nested").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"alpha\n")
    (root / "sub" / "b.bin").write_bytes(bytes(range(256)) * 300)
    (root / "sub" / "nested" / "c.txt").write_bytes(b"")
    return root
