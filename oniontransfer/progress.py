"""
oniontransfer/progress.py

Per-item progress accounting.

ProgressCounter:
    One instance per item being sent or received. The sender/receiver calls
    advance(n) after every chunk and finish() once the item is complete.
    Every call is forwarded to the attached sink; throttling is the sink's
    business, so a sink always sees the final observation.

ProgressSink:
    Any object with observe(current, total, label). total is None when the
    size is unknown.

ConsoleProgress:
    Terminal renderer used by the CLI: one carriage-return line per item,
    redrawn at most every 100 ms, final line always printed.
"""

import sys
import time
import logging
from typing import Optional, TextIO

logger = logging.getLogger(__name__)

# Minimum seconds between two redraws of the same progress line.
RENDER_INTERVAL = 0.1

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(n: float) -> str:
    """1536 -> '1.5 KB'."""
    i = 0
    while n >= 1024 and i < len(_UNITS) - 1:
        n /= 1024
        i += 1
    return f"{n:.1f} {_UNITS[i]}"


def format_duration(seconds: float) -> str:
    """Render as MM:SS, or HH:MM:SS once an hour is reached."""
    total = int(round(seconds))
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    if h > 0:
        return f"{h:02d}:{m:02d}:{s:02d}"
    return f"{m:02d}:{s:02d}"


class NullProgress:
    """Sink that discards every observation."""

    def observe(self, current: int, total: Optional[int], label: str) -> None:
        pass


class ProgressCounter:
    """
    Byte counter for a single in-flight item.

    Args:
        total: Declared size in bytes, or None if unknown
        label: Display name for the item
        sink:  ProgressSink receiving every observation (None = discard)
    """

    def __init__(self, total: Optional[int], label: str, sink=None) -> None:
        if total is not None and total < 0:
            raise ValueError(f"total must be non-negative, got {total}")
        self.total         = total
        self.label         = label
        self.current       = 0
        self.last_reported = 0
        self.start_time    = time.monotonic()
        self._sink         = sink if sink is not None else NullProgress()

    def advance(self, n: int) -> None:
        if n < 0:
            raise ValueError(f"cannot advance by a negative amount ({n})")
        self.current += n
        self._report()

    def finish(self) -> None:
        """Emit the closing observation (current == total when total is known)."""
        if self.total is not None:
            self.current = self.total
        self._report()
        logger.debug(
            "%s: %d bytes in %.3f s", self.label, self.current, self.elapsed
        )

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    @property
    def rate(self) -> float:
        """Average bytes per second since the counter was created."""
        elapsed = self.elapsed
        return self.current / elapsed if elapsed > 0 else 0.0

    @property
    def percent(self) -> Optional[float]:
        if self.total is None:
            return None
        if self.total == 0:
            return 100.0
        return min(100.0, self.current / self.total * 100.0)

    def _report(self) -> None:
        self.last_reported = self.current
        self._sink.observe(self.current, self.total, self.label)


class ConsoleProgress:
    """
    Render observations as a single updating terminal line per item.

    Args:
        out:      Text stream to draw on (default: stderr)
        interval: Minimum seconds between redraws
    """

    def __init__(self, out: Optional[TextIO] = None, interval: float = RENDER_INTERVAL) -> None:
        self.out      = out if out is not None else sys.stderr
        self.interval = interval

        self._label: Optional[str] = None
        self._started    = 0.0
        self._last_draw  = 0.0
        self._last_value = 0
        self._closed     = False
        self._closing: Optional[tuple] = None

    def observe(self, current: int, total: Optional[int], label: str) -> None:
        now = time.monotonic()
        if self._closed:
            # ProgressCounter.finish() repeats the last observation; swallow
            # that once, then treat whatever comes next as a new item.
            self._closed = False
            self._label  = None
            if (label, current, total) == self._closing:
                return

        first = label != self._label or current < self._last_value
        if first:
            self._label   = label
            self._started = now

        self._last_value = current
        final = total is not None and current >= total
        if not (first or final) and now - self._last_draw < self.interval:
            return
        self._last_draw = now

        elapsed = max(now - self._started, 1e-9)
        speed = format_bytes(current / elapsed) + "/s"

        if total is None:
            self.out.write(f"\r{label}: {format_bytes(current)} | Speed: {speed}")
        elif final:
            self.out.write(
                f"\r{label}: {format_bytes(total)} transferred in "
                f"{format_duration(elapsed)} ({speed})        \n"
            )
            self._closed  = True
            self._closing = (label, current, total)
        else:
            pct = current / total * 100.0
            self.out.write(
                f"\r{label}: {format_bytes(current)}/{format_bytes(total)} "
                f"({pct:.1f}%) | Speed: {speed}"
            )
        self.out.flush()
