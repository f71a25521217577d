"""Rolling throughput history feeding the network and disk sparklines.

Holds four parallel series (net rx/tx, disk read/write) of cumulative
counters. The series always have the same length and never grow past the
configured capacity; once full, each push drops the oldest sample from
all four before appending.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

DEFAULT_CAPACITY = 120


@dataclass(frozen=True)
class HistorySnapshot:
    """Immutable copy of the buffer, oldest sample first."""

    net_rx: tuple[int, ...]
    net_tx: tuple[int, ...]
    disk_read: tuple[int, ...]
    disk_write: tuple[int, ...]


class HistoryBuffer:
    """Fixed-capacity FIFO of ``(rx, tx, read, write)`` samples."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"history capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._net_rx: deque[int] = deque()
        self._net_tx: deque[int] = deque()
        self._disk_read: deque[int] = deque()
        self._disk_write: deque[int] = deque()

    def __len__(self) -> int:
        return len(self._net_rx)

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, rx: int, tx: int, read: int, write: int) -> None:
        """Append one sample to every series, evicting the oldest when full.

        Counter resets are stored as-is; no monotonicity check is made.
        """
        if len(self._net_rx) >= self._capacity:
            self._net_rx.popleft()
            self._net_tx.popleft()
            self._disk_read.popleft()
            self._disk_write.popleft()
        self._net_rx.append(rx)
        self._net_tx.append(tx)
        self._disk_read.append(read)
        self._disk_write.append(write)

    @property
    def net_rx(self) -> list[int]:
        return list(self._net_rx)

    @property
    def net_tx(self) -> list[int]:
        return list(self._net_tx)

    @property
    def disk_read(self) -> list[int]:
        return list(self._disk_read)

    @property
    def disk_write(self) -> list[int]:
        return list(self._disk_write)

    def snapshot(self) -> HistorySnapshot:
        return HistorySnapshot(
            net_rx=tuple(self._net_rx),
            net_tx=tuple(self._net_tx),
            disk_read=tuple(self._disk_read),
            disk_write=tuple(self._disk_write),
        )
