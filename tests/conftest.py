"""
Test Configuration
==================

Pytest fixtures and test configuration for rtsp-ffmpeg.

Supervisor and controller tests spawn the running Python interpreter as a
stand-in decoder, so they need no ffmpeg installation.
"""

import asyncio
import sys
import time
from typing import Iterable, List, Optional

import pytest


def decoder_command(
    chunks: Iterable[bytes] = (),
    exit_code: int = 0,
    stderr: Optional[str] = None,
    linger: float = 0.0,
    term_delay: Optional[float] = None,
) -> List[str]:
    """
    Build argv for a fake decoder.

    The child writes ``chunks`` to stdout (flushing after each), then
    optionally ``stderr``, sleeps ``linger`` seconds and exits with
    ``exit_code``. With ``term_delay`` set, SIGTERM is honoured only after
    that many seconds, like a decoder slow to shut down.
    """
    lines = ["import signal, sys, time"]
    if term_delay is not None:
        lines += [
            "def on_term(signum, frame):",
            f"    time.sleep({term_delay!r})",
            "    sys.exit(0)",
            "signal.signal(signal.SIGTERM, on_term)",
        ]
    lines += [
        "out = sys.stdout.buffer",
        f"for chunk in {list(chunks)!r}:",
        "    out.write(chunk)",
        "    out.flush()",
        "    time.sleep(0.01)",
    ]
    if stderr is not None:
        lines += [
            f"sys.stderr.write({stderr!r})",
            "sys.stderr.flush()",
        ]
    lines += [
        f"time.sleep({linger!r})",
        f"sys.exit({exit_code!r})",
    ]
    return [sys.executable, "-c", "\n".join(lines)]


class EventLog:
    """Records emit(event, *payload) calls."""

    def __init__(self) -> None:
        self.events = []

    def __call__(self, event, *args) -> None:
        self.events.append((str(getattr(event, "value", event)), args))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def count(self, name: str) -> int:
        return self.names().count(name)

    def payloads(self, name: str) -> list:
        return [args[0] for event, args in self.events if event == name and args]

    def attach(self, controller) -> "EventLog":
        """Subscribe to every event of a StreamController."""
        for name in ("start", "stop", "data", "exit", "error"):
            controller.on(name, lambda *args, _name=name: self(_name, *args))
        return self


async def _wait_until(predicate, timeout: float = 10.0, interval: float = 0.01) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def sample_jpeg() -> bytes:
    """Minimal byte sequence framed by SOI and EOI markers."""
    return b"\xff\xd8" + bytes(range(16)) + b"\xff\xd9"


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture
def wait_until():
    """Async poller: await wait_until(lambda: cond, timeout=...)."""
    return _wait_until


@pytest.fixture
def make_decoder_command():
    return decoder_command
