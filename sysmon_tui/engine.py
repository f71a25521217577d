"""Application state machine for the dashboard.

The engine consumes one event at a time from the event queue, mutates
its state, and exposes a plain-data view for the renderer. It owns the
collector, the sparkline history, the sort order, and the snapshot and
continuous-log files.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import IO

import structlog

from sysmon_tui.collector import MetricsCollector
from sysmon_tui.events import Event, Key, Tick
from sysmon_tui.history import DEFAULT_CAPACITY, HistoryBuffer, HistorySnapshot
from sysmon_tui.types import (
    CpuCoreUsage,
    ProcessInfo,
    RamSwapUsage,
    SortOrder,
    SystemMetrics,
    ThermalInfo,
)

log = structlog.get_logger()

# Ticks between expensive refreshes. With the 250 ms tick:
# 1 = 4/s, 2 = 2/s, 4 = 1/s, 8 = every 2 s, 20 = every 5 s.
SCAN_PRESETS: tuple[int, ...] = (1, 2, 4, 8, 20)

# How many ticks the last snapshot path stays on the status bar.
SNAPSHOT_DISPLAY_TICKS = 12

CSV_HEADER = ("timestamp", "pid", "name", "cpu_percent", "mem_bytes")
_FILENAME_TS = "%Y-%m-%d_%H-%M-%S"


def format_timestamp(ts: datetime) -> str:
    """ISO-8601 local time with milliseconds, e.g. 2026-10-19T12:34:56.789."""
    return ts.isoformat(timespec="milliseconds")


def process_rows(ts: datetime, processes: Iterable[ProcessInfo]) -> list[list[str]]:
    stamp = format_timestamp(ts)
    return [
        [stamp, str(p.pid), p.name, f"{p.cpu_percent:.1f}", str(p.mem_bytes)]
        for p in processes
    ]


def sort_processes(
    processes: Iterable[ProcessInfo], order: SortOrder
) -> list[ProcessInfo]:
    if order is SortOrder.MEM:
        return sorted(processes, key=lambda p: p.mem_bytes, reverse=True)
    return sorted(processes, key=lambda p: p.cpu_percent, reverse=True)


def next_faster(current: int) -> int:
    """Largest preset below *current*, or *current* at the bottom."""
    for preset in reversed(SCAN_PRESETS):
        if preset < current:
            return preset
    return current


def next_slower(current: int) -> int:
    """Smallest preset above *current*, or *current* at the top."""
    for preset in SCAN_PRESETS:
        if preset > current:
            return preset
    return current


@dataclass(frozen=True)
class DashboardView:
    """Everything the renderer needs for one frame."""

    cpu: tuple[CpuCoreUsage, ...]
    ram: RamSwapUsage
    swap: RamSwapUsage
    thermals: tuple[ThermalInfo, ...]
    processes: list[ProcessInfo]
    history: HistorySnapshot
    sort_order: SortOrder
    process_every: int
    scan_interval_ms: int
    log_path: str | None
    snapshot_path: str | None


class InteractionEngine:
    """Sequential state machine driven by Tick and Key events."""

    def __init__(
        self,
        collector: MetricsCollector,
        log_dir: Path,
        history_size: int = DEFAULT_CAPACITY,
        tick_ms: int = 250,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._collector = collector
        self._log_dir = Path(log_dir)
        self._tick_ms = tick_ms
        self._clock = clock
        self.metrics = SystemMetrics.empty()
        self.history = HistoryBuffer(history_size)
        self.sort_order = SortOrder.CPU
        self.running = True
        self._snapshot_path: str | None = None
        self._snapshot_ttl = 0
        self._log_file: IO[str] | None = None
        self._log_path: str | None = None
        # A failed write may have left a partial row behind.
        self._log_row_open = False

    # ── Properties ─────────────────────────────────────────────────────

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    @property
    def process_every(self) -> int:
        return self._collector.process_every

    @property
    def snapshot_path(self) -> str | None:
        return self._snapshot_path

    @property
    def snapshot_ttl(self) -> int:
        return self._snapshot_ttl

    @property
    def log_path(self) -> str | None:
        return self._log_path

    @property
    def logging_active(self) -> bool:
        return self._log_file is not None

    # ── Event dispatch ─────────────────────────────────────────────────

    def handle(self, event: Event) -> bool:
        """Apply one event. Returns False once the engine has quit."""
        if not self.running:
            return False
        if isinstance(event, Tick):
            self.on_tick()
        elif isinstance(event, Key):
            self.handle_key(event)
        return self.running

    def on_tick(self) -> None:
        self.metrics = self._collector.collect()
        self.history.push(
            self.metrics.network.received_bytes,
            self.metrics.network.transmitted_bytes,
            self.metrics.disk_io.read_bytes,
            self.metrics.disk_io.write_bytes,
        )
        if self._snapshot_ttl > 0:
            self._snapshot_ttl -= 1
            if self._snapshot_ttl == 0:
                self._snapshot_path = None
        self._write_log()

    def handle_key(self, key: Key) -> None:
        code = key.code
        if code == "l" and key.alt:
            self.toggle_log()
        elif code in ("c", "C"):
            self.sort_order = SortOrder.CPU
        elif code in ("m", "M"):
            self.sort_order = SortOrder.MEM
        elif code in ("l", "L"):
            self.snapshot()
        elif code == "[":
            self.scan_faster()
        elif code == "]":
            self.scan_slower()
        elif code == "q":
            log.info("quit")
            self.running = False

    # ── Scan rate ──────────────────────────────────────────────────────

    def scan_faster(self) -> None:
        self._collector.process_every = next_faster(self._collector.process_every)

    def scan_slower(self) -> None:
        self._collector.process_every = next_slower(self._collector.process_every)

    # ── Snapshot / continuous log ──────────────────────────────────────

    def _new_csv_path(self, prefix: str, now: datetime) -> Path:
        self._log_dir.mkdir(parents=True, exist_ok=True)
        return self._log_dir / f"{prefix}-{now.strftime(_FILENAME_TS)}.csv"

    def snapshot(self) -> None:
        """Dump the current process table to a one-shot CSV file."""
        now = self._clock()
        try:
            path = self._new_csv_path("snap", now)
            with open(path, "w", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                writer.writerow(CSV_HEADER)
                writer.writerows(process_rows(now, self.metrics.processes))
        except OSError as exc:
            log.debug("snapshot_failed", log_dir=str(self._log_dir), error=str(exc))
            return
        self._snapshot_path = str(path)
        self._snapshot_ttl = SNAPSHOT_DISPLAY_TICKS
        log.info("snapshot_written", path=str(path), rows=len(self.metrics.processes))

    def toggle_log(self) -> None:
        if self._log_file is not None:
            self._close_log()
            return

        now = self._clock()
        try:
            path = self._new_csv_path("sysmon", now)
            f = open(path, "w", newline="", encoding="utf-8")
        except OSError as exc:
            log.debug("log_start_failed", log_dir=str(self._log_dir), error=str(exc))
            return
        try:
            csv.writer(f).writerow(CSV_HEADER)
            f.flush()
        except OSError as exc:
            f.close()
            log.debug("log_start_failed", path=str(path), error=str(exc))
            return
        self._log_file = f
        self._log_path = str(path)
        self._log_row_open = False
        log.info("log_started", path=str(path))

    def _write_log(self) -> None:
        if self._log_file is None:
            return
        buf = io.StringIO()
        writer = csv.writer(buf)
        if self._log_row_open:
            writer.writerow([])
        writer.writerows(process_rows(self._clock(), self.metrics.processes))
        try:
            self._log_file.write(buf.getvalue())
            self._log_file.flush()
        except OSError as exc:
            self._log_row_open = True
            log.debug("log_write_failed", path=self._log_path, error=str(exc))
            return
        self._log_row_open = False

    def _close_log(self) -> None:
        f = self._log_file
        path = self._log_path
        self._log_file = None
        self._log_path = None
        if f is None:
            return
        try:
            f.close()
        except OSError as exc:
            log.debug("log_close_failed", path=path, error=str(exc))
        log.info("log_stopped", path=path)

    def close(self) -> None:
        """Flush and close any open continuous log."""
        self._close_log()

    def __enter__(self) -> InteractionEngine:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ── Render view ────────────────────────────────────────────────────

    def sorted_processes(self) -> list[ProcessInfo]:
        return sort_processes(self.metrics.processes, self.sort_order)

    def view(self) -> DashboardView:
        return DashboardView(
            cpu=self.metrics.cpu,
            ram=self.metrics.ram,
            swap=self.metrics.swap,
            thermals=self.metrics.thermals,
            processes=self.sorted_processes(),
            history=self.history.snapshot(),
            sort_order=self.sort_order,
            process_every=self.process_every,
            scan_interval_ms=self.process_every * self._tick_ms,
            log_path=self._log_path,
            snapshot_path=self._snapshot_path,
        )
