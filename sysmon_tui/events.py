"""Event source: merges a sampling clock with keyboard input.

A daemon thread blocks on stdin for up to ``tick_rate`` seconds. A key
press is forwarded as soon as it arrives; a timeout becomes a Tick. Both
go into a single Queue that the dashboard loop consumes, so ticks and
keys reach the engine in arrival order.
"""

from __future__ import annotations

import codecs
import os
import select
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass
from queue import Queue
from typing import Protocol

import structlog

log = structlog.get_logger()

ESC = "\x1b"
DEFAULT_TICK_RATE = 0.25
# How long to wait for the rest of an escape sequence split across reads.
ESC_WAIT = 0.05


@dataclass(slots=True, frozen=True)
class Tick:
    """The sampling clock fired."""


@dataclass(slots=True, frozen=True)
class Key:
    """A key press. ``code`` is the character or raw escape sequence."""

    code: str
    alt: bool = False


@dataclass(slots=True, frozen=True)
class Closed:
    """The producer stopped; no further events will arrive."""


Event = Tick | Key | Closed


# ── Key decoding ───────────────────────────────────────────────────────────


def decode_keys(text: str) -> list[Key]:
    """Split raw terminal input into key presses.

    ``ESC x`` is Alt+x. CSI (``ESC [ ... final``) and SS3 (``ESC O x``)
    sequences come back whole as a single Key so that an arrow key is not
    mistaken for Alt+[.
    """
    keys: list[Key] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch != ESC:
            keys.append(Key(ch))
            i += 1
            continue
        if i + 1 >= n or text[i + 1] == ESC:
            keys.append(Key(ESC))
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "[":
            j = i + 2
            while j < n and not ("\x40" <= text[j] <= "\x7e"):
                j += 1
            end = min(j + 1, n)
            keys.append(Key(text[i:end]))
            i = end
        elif nxt == "O" and i + 2 < n:
            keys.append(Key(text[i : i + 3]))
            i += 3
        else:
            keys.append(Key(nxt, alt=True))
            i += 2
    return keys


def incomplete_escape_start(text: str) -> int:
    """Index of an unfinished escape sequence at the end of *text*.

    Returns ``len(text)`` when the input ends on a complete key.
    """
    start = text.rfind(ESC)
    if start < 0:
        return len(text)
    tail = text[start + 1 :]
    if tail in ("", "O"):
        return start
    if tail[0] == "[" and not any("\x40" <= ch <= "\x7e" for ch in tail[1:]):
        return start
    return len(text)


class KeyReader(Protocol):
    def poll(self, timeout: float) -> bool:
        """Wait up to *timeout* seconds; True if input is ready."""
        ...

    def read(self) -> list[Key]:
        """Read whatever input is ready."""
        ...


class StdinKeyReader:
    """Reads raw key presses from a terminal file descriptor.

    The terminal is expected to already be in cbreak mode (curses does
    this). An escape sequence cut off at the end of a read is completed
    from input arriving within ``ESC_WAIT`` seconds before it is decoded.
    Once the descriptor reaches EOF the reader reports no input
    and just sleeps out each timeout, so ticks keep flowing.
    """

    def __init__(self, fd: int | None = None, chunk_size: int = 64) -> None:
        self._fd = sys.stdin.fileno() if fd is None else fd
        self._chunk_size = chunk_size
        self._closed = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def closed(self) -> bool:
        return self._closed

    def poll(self, timeout: float) -> bool:
        if self._closed:
            time.sleep(timeout)
            return False
        ready, _, _ = select.select([self._fd], [], [], timeout)
        return bool(ready)

    def read(self) -> list[Key]:
        data = os.read(self._fd, self._chunk_size)
        if not data:
            self._closed = True
            log.info("input_closed", fd=self._fd)
            return []
        text = self._decoder.decode(data)
        while incomplete_escape_start(text) < len(text) and self.poll(ESC_WAIT):
            more = os.read(self._fd, self._chunk_size)
            if not more:
                break
            text += self._decoder.decode(more)
        return decode_keys(text)


# ── Producer thread ────────────────────────────────────────────────────────


class EventSource:
    """
    Background producer of Tick and Key events.

    Runs in a daemon thread and pushes exactly one event per iteration to
    a thread-safe Queue. Input errors never reach the consumer: a failed
    poll counts as a timeout, a failed read produces no event.
    """

    def __init__(
        self,
        events: Queue[Event],
        reader: KeyReader,
        tick_rate: float = DEFAULT_TICK_RATE,
    ) -> None:
        """
        Initialize the EventSource.

        Args:
            events: Queue the events are pushed to.
            reader: Source of key presses.
            tick_rate: Longest wait for input before a Tick is emitted (seconds).
        """
        self._events = events
        self._reader = reader
        self._tick_rate = tick_rate
        self._pending: deque[Key] = deque()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def tick_rate(self) -> float:
        return self._tick_rate

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="EventSource",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 2.0) -> None:
        """Stop the producer thread and wait for it to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                self.step()
        finally:
            self._events.put(Closed())

    def step(self) -> None:
        """Run one iteration: emit at most one event."""
        if self._pending:
            self._events.put(self._pending.popleft())
            return

        try:
            ready = self._reader.poll(self._tick_rate)
        except (OSError, ValueError) as exc:
            log.debug("input_poll_failed", error=str(exc))
            # Treated as a timeout; still wait so a dead descriptor
            # does not turn into a flood of ticks.
            self._stop_event.wait(self._tick_rate)
            ready = False

        if not ready:
            self._events.put(Tick())
            return

        try:
            keys = self._reader.read()
        except (OSError, ValueError) as exc:
            log.debug("input_read_failed", error=str(exc))
            return

        if keys:
            self._pending.extend(keys)
            self._events.put(self._pending.popleft())
