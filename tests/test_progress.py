from __future__ import annotations

import io

import pytest

from oniontransfer.progress import (
    ConsoleProgress,
    ProgressCounter,
    format_bytes,
    format_duration,
)


def test_format_bytes():
    assert format_bytes(0) == "0.0 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * 1024 ** 3) == "5.0 GB"
    assert format_bytes(3 * 1024 ** 5) == "3072.0 TB"


def test_format_duration():
    assert format_duration(0) == "00:00"
    assert format_duration(75) == "01:15"
    assert format_duration(3725) == "01:02:05"


def test_counter_reports_every_advance_and_final(recorder):
    counter = ProgressCounter(10, "f", recorder)
    counter.advance(4)
    counter.advance(6)
    counter.finish()
    assert recorder.observations == [(4, 10, "f"), (10, 10, "f"), (10, 10, "f")]
    assert counter.last_reported == 10
    assert counter.percent == 100.0


def test_counter_with_unknown_total(recorder):
    counter = ProgressCounter(None, "pipe", recorder)
    counter.advance(7)
    counter.finish()
    assert counter.percent is None
    assert recorder.observations[-1] == (7, None, "pipe")


def test_counter_zero_total_is_complete():
    assert ProgressCounter(0, "empty").percent == 100.0


def test_counter_rejects_bad_values():
    with pytest.raises(ValueError):
        ProgressCounter(-1, "x")
    with pytest.raises(ValueError):
        ProgressCounter(1, "x").advance(-1)


def test_console_progress_throttles_but_always_draws_final():
    out = io.StringIO()
    console = ConsoleProgress(out=out, interval=3600)
    console.observe(100, 1000, "f")
    console.observe(200, 1000, "f")
    console.observe(300, 1000, "f")
    console.observe(1000, 1000, "f")

    text = out.getvalue()
    assert text.count("\r") == 2
    assert "(10.0%)" in text
    assert text.endswith("\n")
    assert "1000.0 B transferred in" in text


def test_console_progress_restarts_for_next_item_with_same_label():
    out = io.StringIO()
    console = ConsoleProgress(out=out, interval=3600)
    first = ProgressCounter(1000, "x.txt", console)
    first.advance(1000)
    first.finish()

    second = ProgressCounter(4000, "x.txt", console)
    second.advance(1500)
    second.advance(2500)
    second.finish()

    text = out.getvalue()
    assert text.count("\n") == 2
    assert "1000.0 B transferred in" in text
    assert "3.9 KB transferred in" in text
    assert "1.5 KB/3.9 KB (37.5%)" in text


def test_console_progress_unknown_total():
    out = io.StringIO()
    ConsoleProgress(out=out, interval=0).observe(2048, None, "stdin")
    assert out.getvalue().startswith("\rstdin: 2.0 KB | Speed:")
