"""Interactive terminal dashboard for sysmon-tui.

Displays per-core CPU, RAM/swap, thermal sensors, network and disk I/O
sparklines and a sortable process table using curses. A background
EventSource feeds ticks and key presses to the InteractionEngine; every
processed event is followed by a redraw of ``engine.view()``.

Usage:
    sysmon-tui
    sysmon-tui --tick-ms 500 --scan-every 8 --log-dir ~/sysmon-logs

Keys: c/m sort by CPU/memory, l snapshot, Alt+l toggle CSV log,
[ / ] scan faster/slower, q quit.
"""

from __future__ import annotations

import argparse
import curses
import logging
import shutil
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from queue import Queue
from typing import IO, Any, NamedTuple

import structlog

from sysmon_tui.collector import MetricsCollector
from sysmon_tui.config import (
    DEFAULT_CONFIG,
    LOG_LEVELS,
    dump_default_config,
    load_config,
    resolve_log_dir,
)
from sysmon_tui.engine import SCAN_PRESETS, DashboardView, InteractionEngine
from sysmon_tui.events import Closed, Event, EventSource, StdinKeyReader
from sysmon_tui.types import SortOrder

log = structlog.get_logger()

# ── Constants ──────────────────────────────────────────────────────────────

SPARK = " ▁▂▃▄▅▆▇█"
BAR_FILL = "█"
BAR_EMPTY = "░"
MIN_ROWS = 10
MIN_COLS = 40
LOG_FILENAME = "sysmon-tui.log"
KEY_HINTS = "[/] scan rate  l:snap  Alt+l:log  c/m:sort  q:quit"

# Curses colour-pair IDs
C_NORMAL = 1
C_WARNING = 2
C_CRITICAL = 3
C_TITLE = 4
C_DIM = 5
C_BLUE = 6
C_MAGENTA = 7


# ── Colour helpers ─────────────────────────────────────────────────────────


def _init_colors() -> None:
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(C_NORMAL, curses.COLOR_GREEN, -1)
    curses.init_pair(C_WARNING, curses.COLOR_YELLOW, -1)
    curses.init_pair(C_CRITICAL, curses.COLOR_RED, -1)
    curses.init_pair(C_TITLE, curses.COLOR_CYAN, -1)
    curses.init_pair(C_DIM, curses.COLOR_WHITE, -1)
    curses.init_pair(C_BLUE, curses.COLOR_BLUE, -1)
    curses.init_pair(C_MAGENTA, curses.COLOR_MAGENTA, -1)


def _severity_color(value: float, warn: float, crit: float) -> int:
    if value >= crit:
        return C_CRITICAL
    if value >= warn:
        return C_WARNING
    return C_NORMAL


def _levels(thresh: dict[str, Any], metric: str) -> tuple[float, float]:
    defaults = DEFAULT_CONFIG["thresholds"][metric]
    levels = thresh.get(metric, defaults)
    return (
        float(levels.get("warning", defaults["warning"])),
        float(levels.get("critical", defaults["critical"])),
    )


# ── Formatting helpers ─────────────────────────────────────────────────────


def fmt_bytes(n: int | float) -> str:
    """Human-readable byte count (binary prefixes)."""
    v = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(v) < 1024:
            return f"{v:.1f} {unit}"
        v /= 1024
    return f"{v:.1f} TiB"


def fmt_interval(ms: int) -> str:
    """Scan interval for the status bar: ``500ms`` or ``1.0s``."""
    if ms >= 1000:
        return f"{ms / 1000:.1f}s"
    return f"{ms}ms"


def deltas(values: Sequence[int]) -> list[int]:
    """Per-sample increase of a cumulative counter.

    A counter reset shows up as a drop to 0 rather than a negative value.
    """
    return [max(0, b - a) for a, b in zip(values, values[1:])]


# ── Layout ─────────────────────────────────────────────────────────────────


class Rect(NamedTuple):
    y: int
    x: int
    h: int
    w: int


class Layout(NamedTuple):
    cpu: Rect
    ram: Rect
    thermal: Rect
    net: Rect
    disk: Rect
    proc: Rect
    status: Rect


def compute_layout(rows: int, cols: int) -> Layout:
    """Split the screen into panels.

    Top 35%:   [CPU 40% | RAM 25% | Thermals 35%]
    Middle:    [Network 20% | Disk 20% | Processes 60%]
    Bottom 1:  [Status bar]
    """
    top_h = rows * 35 // 100
    mid_h = rows - 1 - top_h

    cpu_w = cols * 40 // 100
    ram_w = cols * 25 // 100
    net_w = cols * 20 // 100
    disk_w = cols * 20 // 100

    return Layout(
        cpu=Rect(0, 0, top_h, cpu_w),
        ram=Rect(0, cpu_w, top_h, ram_w),
        thermal=Rect(0, cpu_w + ram_w, top_h, cols - cpu_w - ram_w),
        net=Rect(top_h, 0, mid_h, net_w),
        disk=Rect(top_h, net_w, mid_h, disk_w),
        proc=Rect(top_h, net_w + disk_w, mid_h, cols - net_w - disk_w),
        status=Rect(rows - 1, 0, 1, cols),
    )


# ── Curses drawing primitives ──────────────────────────────────────────────


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


def _draw_box(win: curses.window, rect: Rect, title: str = "") -> curses.window | None:
    """Draw a bordered box and return the inner sub-window."""
    max_y, max_x = win.getmaxyx()
    h = min(rect.h, max_y - rect.y)
    w = min(rect.w, max_x - rect.x)
    if h < 3 or w < 4:
        return None
    try:
        sub = win.subwin(h, w, rect.y, rect.x)
        sub.box()
        if title:
            title = title[: w - 4]
            sub.addstr(0, 1, f" {title} "[: w - 2], curses.color_pair(C_TITLE) | curses.A_BOLD)
        return sub
    except curses.error:
        return None


def _draw_bar(
    win: curses.window,
    y: int,
    x: int,
    width: int,
    pct: float,
    label: str = "",
    color: int = C_NORMAL,
    suffix: str | None = None,
) -> None:
    """Render ``label ████░░░░ suffix`` on one line."""
    max_y, max_x = win.getmaxyx()
    if y >= max_y - 1 or x >= max_x - 1:
        return

    cx = x
    if label:
        _safe(win, y, cx, f"{label:>5s} ", curses.color_pair(C_DIM))
        cx += 6

    if suffix is None:
        suffix = f" {pct:5.1f}%"

    bar_w = min(width - (cx - x) - len(suffix), max_x - cx - len(suffix) - 1)
    if bar_w < 3:
        return

    filled = int(bar_w * max(0.0, min(pct, 100.0)) / 100.0)
    empty = bar_w - filled

    _safe(win, y, cx, BAR_FILL * filled, curses.color_pair(color) | curses.A_BOLD)
    _safe(win, BAR_EMPTY * empty, curses.color_pair(C_DIM))
    _safe(win, suffix, curses.color_pair(color) | curses.A_BOLD)


def _draw_sparkline(
    win: curses.window,
    y: int,
    x: int,
    width: int,
    values: Sequence[int],
    color: int = C_BLUE,
) -> None:
    """Render a sparkline of the most recent *width* values, scaled to their max."""
    max_y, max_x = win.getmaxyx()
    if y >= max_y - 1 or x >= max_x - 1:
        return
    w = min(width, max_x - x - 1, len(values))
    if w < 1:
        return
    shown = list(values)[-w:]
    top = max(shown) or 1
    chars: list[str] = []
    for v in shown:
        idx = int(min(v / top, 1.0) * (len(SPARK) - 1))
        chars.append(SPARK[max(0, min(idx, len(SPARK) - 1))])
    _safe(win, y, x, "".join(chars), curses.color_pair(color))


# ── Panel renderers ────────────────────────────────────────────────────────


def draw_cpu_panel(
    win: curses.window, rect: Rect, view: DashboardView, thresh: dict[str, Any]
) -> None:
    cores = view.cpu
    avg = sum(c.usage_percent for c in cores) / len(cores) if cores else 0.0
    box = _draw_box(win, rect, f"CPU ({len(cores)} cores) avg {avg:.0f}%")
    if not box:
        return
    warn, crit = _levels(thresh, "cpu_percent")
    _draw_bar(box, 1, 1, rect.w - 3, avg, "avg", _severity_color(avg, warn, crit))

    row = 2
    for start in range(0, len(cores), 4):
        if row >= rect.h - 1:
            break
        col = 1
        for core in cores[start : start + 4]:
            cell = f"{core.core_id:>2}:{core.usage_percent:>3.0f}%"
            color = _severity_color(core.usage_percent, warn, crit)
            _safe(box, row, col, cell, curses.color_pair(color))
            col += len(cell) + 3
        row += 1


def draw_mem_panel(
    win: curses.window, rect: Rect, view: DashboardView, thresh: dict[str, Any]
) -> None:
    gib = 1024**3
    box = _draw_box(win, rect, f"RAM {view.ram.used / gib:.1f}/{view.ram.total / gib:.1f} GiB")
    if not box:
        return
    warn, crit = _levels(thresh, "ram_percent")
    row = 1

    pct = view.ram.percent
    _draw_bar(box, row, 1, rect.w - 3, pct, "RAM", _severity_color(pct, warn, crit))
    row += 2

    pct = view.swap.percent
    _draw_bar(box, row, 1, rect.w - 3, pct, "Swap", _severity_color(pct, warn, crit))
    row += 1
    detail = f"{fmt_bytes(view.swap.used)} / {fmt_bytes(view.swap.total)}"
    _safe(box, row, 2, detail[: rect.w - 4], curses.color_pair(C_DIM))


def draw_thermal_panel(
    win: curses.window, rect: Rect, view: DashboardView, thresh: dict[str, Any]
) -> None:
    box = _draw_box(win, rect, "Thermals")
    if not box:
        return
    if not view.thermals:
        _safe(box, 1, 2, "No sensors found", curses.color_pair(C_DIM))
        return

    warn, crit = _levels(thresh, "temp")
    value_w = 16
    label_w = max(1, rect.w - value_w - 4)
    for row, t in enumerate(view.thermals[: rect.h - 2], start=1):
        crit_str = f"/{t.critical_celsius:.0f}°C" if t.critical_celsius is not None else ""
        _safe(box, row, 2, t.label[:label_w], curses.color_pair(C_DIM))
        _safe(
            box,
            row,
            2 + label_w,
            f"{t.temp_celsius:.1f}°C{crit_str}",
            curses.color_pair(_severity_color(t.temp_celsius, warn, crit)),
        )


def draw_io_panel(
    win: curses.window,
    rect: Rect,
    title: str,
    series: Sequence[tuple[str, Sequence[int], int]],
) -> None:
    """Two stacked sparklines of per-tick counter deltas."""
    box = _draw_box(win, rect, title)
    if not box:
        return
    inner_h = rect.h - 2
    block = max(2, inner_h // len(series))
    for i, (label, values, color) in enumerate(series):
        row = 1 + i * block
        if row >= rect.h - 1:
            break
        steps = deltas(values)
        latest = steps[-1] if steps else 0
        _safe(box, row, 2, f"{label} {fmt_bytes(latest)}/tick"[: rect.w - 4], curses.color_pair(C_DIM))
        _draw_sparkline(box, row + 1, 2, rect.w - 4, steps, color)


def draw_proc_panel(win: curses.window, rect: Rect, view: DashboardView) -> None:
    sort = "CPU" if view.sort_order is SortOrder.CPU else "MEM"
    box = _draw_box(win, rect, f"Processes ({len(view.processes)}, by {sort})")
    if not box:
        return

    name_w = max(4, rect.w - 34)
    hdr = f" {'PID':>7s}  {'Name':<{name_w}s} {'CPU%':>6s} {'MEM':>10s}"
    _safe(box, 1, 1, hdr[: rect.w - 3], curses.color_pair(C_TITLE) | curses.A_BOLD)

    for row, p in enumerate(view.processes[: max(0, rect.h - 3)], start=2):
        line = (
            f" {p.pid:>7d}  {p.name[:name_w]:<{name_w}s} {p.cpu_percent:>5.1f}%"
            f" {p.mem_bytes // (1024 * 1024):>6d} MiB"
        )
        color = C_NORMAL
        if p.cpu_percent >= 50:
            color = C_CRITICAL
        elif p.cpu_percent >= 20:
            color = C_WARNING
        _safe(box, row, 1, line[: rect.w - 3], curses.color_pair(color))


def status_segments(view: DashboardView) -> list[tuple[str, int]]:
    """Status bar text as ``(text, colour pair)`` pieces."""
    segments = [
        (" Proc scan: ", C_DIM),
        (fmt_interval(view.scan_interval_ms), C_TITLE),
    ]
    if view.log_path is not None:
        segments += [(" | ", C_DIM), (f"REC: {view.log_path}", C_CRITICAL)]
    if view.snapshot_path is not None:
        segments += [(" | ", C_DIM), (f"SNAP: {view.snapshot_path}", C_NORMAL)]
    segments += [(" | ", C_DIM), (KEY_HINTS, C_DIM)]
    return segments


def draw_status_bar(win: curses.window, rect: Rect, view: DashboardView) -> None:
    x = 0
    for text, color in status_segments(view):
        room = rect.w - x - 1
        if room <= 0:
            break
        _safe(win, rect.y, x, text[:room], curses.color_pair(color))
        x += len(text)


def draw_dashboard(stdscr: curses.window, view: DashboardView, thresh: dict[str, Any]) -> None:
    """Redraw the whole screen from *view*."""
    max_y, max_x = stdscr.getmaxyx()
    stdscr.erase()

    if max_y < MIN_ROWS or max_x < MIN_COLS:
        _safe(stdscr, 0, 0, f"Terminal too small (need {MIN_COLS}x{MIN_ROWS}+)")
        stdscr.refresh()
        return

    layout = compute_layout(max_y, max_x)
    history = view.history
    draw_cpu_panel(stdscr, layout.cpu, view, thresh)
    draw_mem_panel(stdscr, layout.ram, view, thresh)
    draw_thermal_panel(stdscr, layout.thermal, view, thresh)
    draw_io_panel(
        stdscr,
        layout.net,
        "Network",
        [("RX", history.net_rx, C_NORMAL), ("TX", history.net_tx, C_WARNING)],
    )
    draw_io_panel(
        stdscr,
        layout.disk,
        "Disk I/O",
        [("Read", history.disk_read, C_BLUE), ("Write", history.disk_write, C_MAGENTA)],
    )
    draw_proc_panel(stdscr, layout.proc, view)
    draw_status_bar(stdscr, layout.status, view)
    stdscr.refresh()


def _sync_size(stdscr: curses.window) -> None:
    """Pick up terminal resizes; curses only sees them through getch()."""
    size = shutil.get_terminal_size()
    if (size.lines, size.columns) != stdscr.getmaxyx():
        try:
            curses.resizeterm(size.lines, size.columns)
        except curses.error:
            pass


# ── Logging ────────────────────────────────────────────────────────────────


def configure_logging(path: Path, level: str = "warning") -> IO[str] | None:
    """Send structlog output to *path*; curses owns the terminal.

    Returns the open log file, or None when it could not be opened, in
    which case log output is dropped.
    """
    level_no = logging.getLevelName(level.upper())
    if not isinstance(level_no, int):
        level_no = logging.WARNING

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        log_file: IO[str] | None = open(path, "a", encoding="utf-8")
    except OSError:
        log_file = None

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        logger_factory=(
            structlog.WriteLoggerFactory(file=log_file)
            if log_file is not None
            else structlog.ReturnLoggerFactory()
        ),
        cache_logger_on_first_use=False,
    )
    return log_file


# ── Main loop ──────────────────────────────────────────────────────────────


def _dashboard_loop(stdscr: curses.window, config: dict[str, Any], log_dir: Path) -> None:
    _init_colors()
    try:
        curses.curs_set(0)
    except curses.error:
        pass

    thresh: dict[str, Any] = config.get("thresholds", DEFAULT_CONFIG["thresholds"])
    tick_ms = int(config["tick_ms"])

    collector = MetricsCollector(
        process_every=int(config["scan_every"]),
        thermal_dir=Path(str(config["thermal_dir"])),
    )
    engine = InteractionEngine(
        collector,
        log_dir,
        history_size=int(config["history_size"]),
        tick_ms=tick_ms,
    )
    events: Queue[Event] = Queue()
    source = EventSource(events, StdinKeyReader(), tick_rate=tick_ms / 1000)
    log.info("dashboard_started", tick_ms=tick_ms, log_dir=str(log_dir))

    source.start()
    try:
        with engine:
            run_loop(engine, events, lambda view: _render(stdscr, view, thresh))
    finally:
        source.stop()


def _render(stdscr: curses.window, view: DashboardView, thresh: dict[str, Any]) -> None:
    _sync_size(stdscr)
    draw_dashboard(stdscr, view, thresh)


def run_loop(
    engine: InteractionEngine,
    events: Queue[Event],
    render: Callable[[DashboardView], None],
) -> None:
    """Draw, wait for an event, handle it; until quit or the producer stops."""
    while True:
        render(engine.view())
        event = events.get()
        if isinstance(event, Closed):
            log.info("event_source_closed")
            return
        if not engine.handle(event):
            return


# ── CLI entry point ────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Interactive resource monitor with process snapshots and CSV logging.",
    )
    parser.add_argument(
        "--tick-ms",
        type=int,
        default=None,
        help=f"Milliseconds between refreshes (default: {DEFAULT_CONFIG['tick_ms']})",
    )
    parser.add_argument(
        "--scan-every",
        type=int,
        choices=SCAN_PRESETS,
        default=None,
        help="Ticks between process/sensor scans (default: "
        f"{DEFAULT_CONFIG['scan_every']})",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        metavar="PATH",
        help="Directory for snapshot and log CSV files "
        f"(default: $SYSMON_LOG_DIR or {DEFAULT_CONFIG['log_dir']})",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=None,
        help="Diagnostic log level (written to <log-dir>/sysmon-tui.log)",
    )
    parser.add_argument(
        "--dump-config",
        action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.dump_config:
        sys.stdout.write(dump_default_config())
        return

    config = load_config(args.config)
    if args.tick_ms is not None:
        if args.tick_ms < 1:
            print("sysmon-tui: --tick-ms must be positive", file=sys.stderr)
            raise SystemExit(2)
        config["tick_ms"] = args.tick_ms
    if args.scan_every is not None:
        config["scan_every"] = args.scan_every
    if args.log_level is not None:
        config["log_level"] = args.log_level
    log_dir = args.log_dir.expanduser() if args.log_dir is not None else resolve_log_dir(config)

    log_file = configure_logging(log_dir / LOG_FILENAME, str(config["log_level"]))
    try:
        curses.wrapper(_dashboard_loop, config, log_dir)
    except KeyboardInterrupt:
        pass
    finally:
        structlog.reset_defaults()
        if log_file is not None:
            log_file.close()


if __name__ == "__main__":
    main()
