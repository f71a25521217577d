"""Value types shared by the collector, the engine and the renderer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(slots=True, frozen=True)
class CpuCoreUsage:
    core_id: int
    usage_percent: float


@dataclass(slots=True, frozen=True)
class RamSwapUsage:
    """A ``(used, total)`` byte pair for RAM or swap."""

    used: int
    total: int

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.used / self.total * 100.0


@dataclass(slots=True, frozen=True)
class NetworkStats:
    """Cumulative byte counters summed over every interface."""

    received_bytes: int
    transmitted_bytes: int


@dataclass(slots=True, frozen=True)
class DiskIOStats:
    """Cumulative read/write bytes summed over every process."""

    read_bytes: int
    write_bytes: int


@dataclass(slots=True, frozen=True)
class ProcessInfo:
    pid: int
    name: str
    cpu_percent: float
    mem_bytes: int


@dataclass(slots=True, frozen=True)
class ThermalInfo:
    label: str
    temp_celsius: float
    critical_celsius: float | None = None


class SortOrder(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"


@dataclass(slots=True, frozen=True)
class SystemMetrics:
    """Snapshot of all metrics for one collection tick.

    Every field belongs to the same tick. Fields that were not refreshed
    on this tick hold the last value that was read successfully.
    """

    cpu: tuple[CpuCoreUsage, ...]
    ram: RamSwapUsage
    swap: RamSwapUsage
    network: NetworkStats
    disk_io: DiskIOStats
    processes: tuple[ProcessInfo, ...]
    thermals: tuple[ThermalInfo, ...]

    @classmethod
    def empty(cls) -> SystemMetrics:
        """Zeroed snapshot used before the first tick."""
        return cls(
            cpu=(),
            ram=RamSwapUsage(0, 0),
            swap=RamSwapUsage(0, 0),
            network=NetworkStats(0, 0),
            disk_io=DiskIOStats(0, 0),
            processes=(),
            thermals=(),
        )
