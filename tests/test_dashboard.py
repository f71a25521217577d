"""Tests for the dashboard module helpers, event loop and CLI."""

from __future__ import annotations

import tomllib
from collections.abc import Iterator
from pathlib import Path
from queue import Queue
from unittest.mock import MagicMock, patch

import pytest
import structlog

from sysmon_tui.collector import MetricsCollector
from sysmon_tui.dashboard import (
    C_CRITICAL,
    C_NORMAL,
    C_WARNING,
    KEY_HINTS,
    LOG_FILENAME,
    _severity_color,
    build_parser,
    compute_layout,
    configure_logging,
    deltas,
    fmt_bytes,
    fmt_interval,
    main,
    run_loop,
    status_segments,
)
from sysmon_tui.engine import DashboardView, InteractionEngine
from sysmon_tui.events import Closed, Event, Key, Tick
from sysmon_tui.history import HistorySnapshot
from sysmon_tui.types import RamSwapUsage, SortOrder

from conftest import FIXED_NOW


@pytest.fixture(autouse=True)
def reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


# ── fmt_bytes ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0, "0.0 B"),
        (512, "512.0 B"),
        (1024, "1.0 KiB"),
        (1024 * 1024, "1.0 MiB"),
        (1024**3, "1.0 GiB"),
        (1024**4, "1.0 TiB"),
        (1536, "1.5 KiB"),
        (2.5 * 1024**2, "2.5 MiB"),
    ],
)
def test_fmt_bytes(value: int | float, expected: str) -> None:
    assert fmt_bytes(value) == expected


# ── fmt_interval ───────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("ms", "expected"),
    [(250, "250ms"), (500, "500ms"), (1000, "1.0s"), (2000, "2.0s"), (5000, "5.0s")],
)
def test_fmt_interval(ms: int, expected: str) -> None:
    assert fmt_interval(ms) == expected


# ── deltas ─────────────────────────────────────────────────────────────────


def test_deltas() -> None:
    assert deltas([100, 250, 250, 400]) == [150, 0, 150]


def test_deltas_counter_reset_clamped() -> None:
    assert deltas([1000, 50, 80]) == [0, 30]


def test_deltas_short_input() -> None:
    assert deltas([]) == []
    assert deltas([5]) == []


# ── _severity_color ────────────────────────────────────────────────────────


def test_severity_normal() -> None:
    assert _severity_color(30.0, 40.0, 80.0) == C_NORMAL


def test_severity_warning() -> None:
    assert _severity_color(70.0, 65.0, 85.0) == C_WARNING


def test_severity_critical() -> None:
    assert _severity_color(96.0, 40.0, 80.0) == C_CRITICAL


def test_severity_at_boundary() -> None:
    assert _severity_color(40.0, 40.0, 80.0) == C_WARNING
    assert _severity_color(80.0, 40.0, 80.0) == C_CRITICAL


# ── Layout ─────────────────────────────────────────────────────────────────


@pytest.mark.parametrize(("rows", "cols"), [(24, 80), (50, 200), (10, 40), (37, 123)])
def test_layout_tiles_screen(rows: int, cols: int) -> None:
    lay = compute_layout(rows, cols)
    assert lay.cpu.w + lay.ram.w + lay.thermal.w == cols
    assert lay.net.w + lay.disk.w + lay.proc.w == cols
    assert lay.cpu.h + lay.net.h + lay.status.h == rows
    assert lay.status.y == rows - 1 and lay.status.h == 1
    assert lay.net.y == lay.cpu.h


def test_layout_proportions() -> None:
    lay = compute_layout(100, 100)
    assert (lay.cpu.h, lay.cpu.w, lay.ram.w, lay.thermal.w) == (35, 40, 25, 35)
    assert (lay.net.w, lay.disk.w, lay.proc.w) == (20, 20, 60)


# ── Status bar ─────────────────────────────────────────────────────────────


def _view(**overrides: object) -> DashboardView:
    fields: dict[str, object] = dict(
        cpu=(),
        ram=RamSwapUsage(0, 0),
        swap=RamSwapUsage(0, 0),
        thermals=(),
        processes=[],
        history=HistorySnapshot((), (), (), ()),
        sort_order=SortOrder.CPU,
        process_every=4,
        scan_interval_ms=1000,
        log_path=None,
        snapshot_path=None,
    )
    fields.update(overrides)
    return DashboardView(**fields)  # type: ignore[arg-type]


def _status_text(view: DashboardView) -> str:
    return "".join(text for text, _ in status_segments(view))


def test_status_bar_idle() -> None:
    text = _status_text(_view())
    assert "Proc scan: 1.0s" in text
    assert "REC:" not in text
    assert "SNAP:" not in text
    assert text.endswith(KEY_HINTS)


def test_status_bar_recording_and_snapshot() -> None:
    view = _view(
        scan_interval_ms=500,
        log_path="/tmp/sysmon-tui/sysmon-a.csv",
        snapshot_path="/tmp/sysmon-tui/snap-b.csv",
    )
    segments = status_segments(view)
    text = "".join(t for t, _ in segments)
    assert "Proc scan: 500ms" in text
    assert text.index("REC: /tmp/sysmon-tui/sysmon-a.csv") < text.index("SNAP: /tmp/sysmon-tui/snap-b.csv")
    assert ("REC: /tmp/sysmon-tui/sysmon-a.csv", C_CRITICAL) in segments


# ── run_loop ───────────────────────────────────────────────────────────────


@pytest.fixture
def engine(collector: MetricsCollector, tmp_path: Path) -> InteractionEngine:
    return InteractionEngine(collector, tmp_path / "logs", clock=lambda: FIXED_NOW)


def _queue(*events: Event) -> Queue[Event]:
    q: Queue[Event] = Queue()
    for e in events:
        q.put(e)
    return q


def test_run_loop_redraws_after_each_event(engine: InteractionEngine) -> None:
    render = MagicMock()
    run_loop(engine, _queue(Tick(), Key("m"), Closed()), render)
    assert render.call_count == 3
    last_view = render.call_args.args[0]
    assert last_view.sort_order is SortOrder.MEM
    assert len(last_view.cpu) == 4


def test_run_loop_stops_on_quit(engine: InteractionEngine) -> None:
    render = MagicMock()
    events = _queue(Tick(), Key("q"), Tick(), Tick())
    run_loop(engine, events, render)
    assert render.call_count == 2
    assert engine.running is False
    assert events.qsize() == 2


def test_run_loop_stops_on_closed(engine: InteractionEngine) -> None:
    render = MagicMock()
    run_loop(engine, _queue(Closed(), Tick()), render)
    assert render.call_count == 1
    assert engine.running is True


# ── Logging ────────────────────────────────────────────────────────────────


def test_configure_logging_writes_file(tmp_path: Path) -> None:
    path = tmp_path / "logs" / LOG_FILENAME
    log_file = configure_logging(path, "info")
    assert log_file is not None
    try:
        structlog.get_logger().info("snapshot_written", rows=3)
        structlog.get_logger().debug("filtered_out")
    finally:
        log_file.close()
    text = path.read_text()
    assert "event='snapshot_written'" in text
    assert "rows=3" in text
    assert "level='info'" in text
    assert "filtered_out" not in text


def test_configure_logging_unwritable(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    assert configure_logging(blocker / LOG_FILENAME) is None
    structlog.get_logger().warning("dropped")


# ── CLI ────────────────────────────────────────────────────────────────────


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.tick_ms is None
    assert args.scan_every is None
    assert args.log_dir is None
    assert args.dump_config is False


def test_parser_rejects_unknown_scan_rate() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--scan-every", "3"])


def test_main_dump_config(capsys: pytest.CaptureFixture[str]) -> None:
    main(["--dump-config"])
    parsed = tomllib.loads(capsys.readouterr().out)
    assert parsed["scan_every"] == 4


@patch("sysmon_tui.dashboard.load_config")
@patch("sysmon_tui.dashboard.curses")
def test_main_applies_overrides(
    mock_curses: MagicMock, mock_load: MagicMock, tmp_path: Path
) -> None:
    mock_load.return_value = {
        "tick_ms": 250,
        "scan_every": 4,
        "history_size": 120,
        "log_dir": "/unused",
        "thermal_dir": "/sys/devices/virtual/thermal",
        "log_level": "warning",
    }
    main(["--tick-ms", "500", "--scan-every", "8", "--log-dir", str(tmp_path)])

    _, config, log_dir = mock_curses.wrapper.call_args.args
    assert config["tick_ms"] == 500
    assert config["scan_every"] == 8
    assert log_dir == tmp_path
    assert (tmp_path / LOG_FILENAME).exists()


@patch("sysmon_tui.dashboard.curses")
def test_main_rejects_non_positive_tick(mock_curses: MagicMock) -> None:
    with pytest.raises(SystemExit):
        main(["--tick-ms", "0"])
    mock_curses.wrapper.assert_not_called()


@patch("sysmon_tui.dashboard.curses")
def test_main_swallows_ctrl_c(mock_curses: MagicMock, tmp_path: Path) -> None:
    mock_curses.wrapper.side_effect = KeyboardInterrupt
    main(["--log-dir", str(tmp_path)])
