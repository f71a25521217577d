"""Metric collection with a cheap/expensive refresh split.

CPU, memory and network counters are cheap and are re-read on every
call. Process enumeration, per-process disk counters and thermal sensors
are expensive and only refreshed every ``process_every`` calls; the
calls in between reuse the cached values.

A failed read never reaches the caller: each field falls back to the
last value that was read successfully.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TypeVar

import psutil
import structlog

from sysmon_tui.types import (
    CpuCoreUsage,
    DiskIOStats,
    NetworkStats,
    ProcessInfo,
    RamSwapUsage,
    SystemMetrics,
    ThermalInfo,
)

log = structlog.get_logger()

T = TypeVar("T")

DEFAULT_THERMAL_DIR = Path("/sys/devices/virtual/thermal")
DEFAULT_PROCESS_EVERY = 4
_TICK_MODULUS = 2**32

# Errors a stats read may raise. Anything else is a bug and propagates.
_READ_ERRORS: tuple[type[Exception], ...] = (OSError, psutil.Error, ValueError)


# ── OS stats source ────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """One process as reported by the stats source, disk counters included."""

    pid: int
    name: str
    cpu_percent: float
    mem_bytes: int
    read_bytes: int = 0
    write_bytes: int = 0


class StatsSource(Protocol):
    """Where the collector gets raw OS numbers from."""

    def cpu_percents(self) -> list[float]: ...

    def memory(self) -> RamSwapUsage: ...

    def swap(self) -> RamSwapUsage: ...

    def network_totals(self) -> NetworkStats: ...

    def processes(self) -> list[ProcessSample]: ...

    def hwmon_sensors(self) -> list[ThermalInfo]: ...


_PROC_ATTRS = ["pid", "name", "cpu_percent", "memory_info"]
if hasattr(psutil.Process, "io_counters"):  # not available on macOS
    _PROC_ATTRS.append("io_counters")


class PsutilStatsSource:
    """StatsSource backed by psutil."""

    def __init__(self) -> None:
        # First call returns 0.0 for every core; later calls measure
        # against the previous one.
        psutil.cpu_percent(interval=None, percpu=True)

    def cpu_percents(self) -> list[float]:
        return psutil.cpu_percent(interval=None, percpu=True)

    def memory(self) -> RamSwapUsage:
        vm = psutil.virtual_memory()
        return RamSwapUsage(used=vm.used, total=vm.total)

    def swap(self) -> RamSwapUsage:
        sw = psutil.swap_memory()
        return RamSwapUsage(used=sw.used, total=sw.total)

    def network_totals(self) -> NetworkStats:
        recv = 0
        sent = 0
        for counters in psutil.net_io_counters(pernic=True).values():
            recv += counters.bytes_recv
            sent += counters.bytes_sent
        return NetworkStats(received_bytes=recv, transmitted_bytes=sent)

    def processes(self) -> list[ProcessSample]:
        samples: list[ProcessSample] = []
        for proc in psutil.process_iter(attrs=_PROC_ATTRS, ad_value=None):
            try:
                info = proc.info
                mem_info = info.get("memory_info")
                io = info.get("io_counters")
                samples.append(
                    ProcessSample(
                        pid=info["pid"],
                        name=info.get("name") or "",
                        cpu_percent=info.get("cpu_percent") or 0.0,
                        mem_bytes=mem_info.rss if mem_info else 0,
                        read_bytes=io.read_bytes if io else 0,
                        write_bytes=io.write_bytes if io else 0,
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return samples

    def hwmon_sensors(self) -> list[ThermalInfo]:
        sensors: list[ThermalInfo] = []
        for chip, entries in psutil.sensors_temperatures().items():
            for entry in entries:
                if entry.current is None:
                    continue
                sensors.append(
                    ThermalInfo(
                        label=entry.label or chip,
                        temp_celsius=float(entry.current),
                        critical_celsius=(
                            float(entry.critical) if entry.critical is not None else None
                        ),
                    )
                )
        return sensors


# ── sysfs thermal zones ────────────────────────────────────────────────────


def _zone_index(path: Path) -> tuple[int, int, str]:
    # Numbered zones in numeric order, anything else after them by name.
    suffix = path.name[len("thermal_zone") :]
    if suffix.isdigit():
        return (0, int(suffix), path.name)
    return (1, 0, path.name)


def read_thermal_zones(root: Path = DEFAULT_THERMAL_DIR) -> list[ThermalInfo]:
    """Read every ``thermal_zone*/{type,temp}`` pair under *root*.

    ``temp`` is in millidegrees Celsius. Zones whose temp file is missing
    or not numeric are skipped; a missing ``type`` gives an empty label.
    """
    try:
        zones = [p for p in root.iterdir() if p.name.startswith("thermal_zone")]
    except OSError as exc:
        log.debug("thermal_dir_unreadable", path=str(root), error=str(exc))
        return []

    thermals: list[ThermalInfo] = []
    for zone in sorted(zones, key=_zone_index):
        try:
            label = (zone / "type").read_text(encoding="utf-8").strip()
        except OSError:
            label = ""
        try:
            millidegrees = float((zone / "temp").read_text(encoding="utf-8").strip())
        except (OSError, ValueError) as exc:
            log.debug("thermal_zone_skipped", zone=zone.name, error=str(exc))
            continue
        thermals.append(ThermalInfo(label=label, temp_celsius=millidegrees / 1000.0))
    return thermals


# ── Collector ──────────────────────────────────────────────────────────────


class MetricsCollector:
    """Produces one self-consistent SystemMetrics per call."""

    def __init__(
        self,
        source: StatsSource | None = None,
        process_every: int = DEFAULT_PROCESS_EVERY,
        thermal_dir: Path = DEFAULT_THERMAL_DIR,
    ) -> None:
        self._source: StatsSource = source if source is not None else PsutilStatsSource()
        self._thermal_dir = Path(thermal_dir)
        self._tick = 0
        self._process_every = DEFAULT_PROCESS_EVERY
        self.process_every = process_every
        self._last = SystemMetrics.empty()
        self._last_hwmon: list[ThermalInfo] = []

    @property
    def process_every(self) -> int:
        """Ticks between expensive refreshes."""
        return self._process_every

    @process_every.setter
    def process_every(self, value: int) -> None:
        if value < 1:
            raise ValueError(f"process_every must be >= 1, got {value}")
        self._process_every = value

    @property
    def tick(self) -> int:
        return self._tick

    @property
    def last(self) -> SystemMetrics:
        """The most recent snapshot returned by collect()."""
        return self._last

    def collect(self) -> SystemMetrics:
        prev = self._last

        cpu = self._read("cpu", self._read_cpu, prev.cpu)
        ram = self._read("ram", self._source.memory, prev.ram)
        swap = self._read("swap", self._source.swap, prev.swap)
        network = self._read("network", self._source.network_totals, prev.network)

        full = self._tick % self._process_every == 0
        self._tick = (self._tick + 1) % _TICK_MODULUS

        if full:
            processes, disk_io = self._read(
                "processes", self._read_processes, (prev.processes, prev.disk_io)
            )
            thermals = self._read_thermals()
        else:
            processes, disk_io, thermals = prev.processes, prev.disk_io, prev.thermals

        self._last = SystemMetrics(
            cpu=cpu,
            ram=ram,
            swap=swap,
            network=network,
            disk_io=disk_io,
            processes=processes,
            thermals=thermals,
        )
        return self._last

    def _read(self, field: str, reader: Callable[[], T], fallback: T) -> T:
        try:
            return reader()
        except _READ_ERRORS as exc:
            log.debug("stats_read_failed", field=field, error=str(exc))
            return fallback

    def _read_cpu(self) -> tuple[CpuCoreUsage, ...]:
        return tuple(
            CpuCoreUsage(core_id=i, usage_percent=float(pct))
            for i, pct in enumerate(self._source.cpu_percents())
        )

    def _read_processes(self) -> tuple[tuple[ProcessInfo, ...], DiskIOStats]:
        samples: Iterable[ProcessSample] = self._source.processes()
        read_total = 0
        write_total = 0
        processes: list[ProcessInfo] = []
        for s in samples:
            read_total += s.read_bytes
            write_total += s.write_bytes
            processes.append(
                ProcessInfo(
                    pid=s.pid,
                    name=s.name,
                    cpu_percent=max(0.0, s.cpu_percent),
                    mem_bytes=s.mem_bytes,
                )
            )
        processes.sort(key=lambda p: p.cpu_percent, reverse=True)
        return tuple(processes), DiskIOStats(read_bytes=read_total, write_bytes=write_total)

    def _read_thermals(self) -> tuple[ThermalInfo, ...]:
        zones = read_thermal_zones(self._thermal_dir)
        try:
            self._last_hwmon = self._source.hwmon_sensors()
        except (*_READ_ERRORS, AttributeError) as exc:
            # AttributeError: psutil has no sensors_temperatures() on this platform
            log.debug("stats_read_failed", field="hwmon", error=str(exc))
        return (*zones, *self._last_hwmon)
