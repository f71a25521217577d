"""Shared fixtures: a scripted StatsSource that counts its calls."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from pathlib import Path

import pytest

from sysmon_tui.collector import MetricsCollector, ProcessSample
from sysmon_tui.types import NetworkStats, RamSwapUsage, ThermalInfo

GIB = 1024**3
MIB = 1024**2

FIXED_NOW = datetime(2026, 10, 19, 12, 34, 56, 789000)


class FakeStatsSource:
    """In-memory StatsSource. Put a method name in ``failing`` to make it raise."""

    def __init__(self) -> None:
        self.cores = [10.0, 20.0, 30.0, 40.0]
        self.ram = RamSwapUsage(used=4 * GIB, total=16 * GIB)
        self.swap_usage = RamSwapUsage(used=0, total=2 * GIB)
        self.net = NetworkStats(received_bytes=1000, transmitted_bytes=100)
        self.samples = [
            ProcessSample(pid=1, name="init", cpu_percent=0.5, mem_bytes=10 * MIB,
                          read_bytes=100, write_bytes=50),
            ProcessSample(pid=42, name="worker", cpu_percent=12.0, mem_bytes=200 * MIB,
                          read_bytes=400, write_bytes=150),
        ]
        self.sensors = [ThermalInfo("Package id 0", 52.0, 100.0)]
        self.calls: Counter[str] = Counter()
        self.failing: set[str] = set()

    def _call(self, name: str) -> None:
        self.calls[name] += 1
        if name in self.failing:
            raise OSError(f"{name} unavailable")

    def cpu_percents(self) -> list[float]:
        self._call("cpu_percents")
        return list(self.cores)

    def memory(self) -> RamSwapUsage:
        self._call("memory")
        return self.ram

    def swap(self) -> RamSwapUsage:
        self._call("swap")
        return self.swap_usage

    def network_totals(self) -> NetworkStats:
        self._call("network_totals")
        return self.net

    def processes(self) -> list[ProcessSample]:
        self._call("processes")
        return list(self.samples)

    def hwmon_sensors(self) -> list[ThermalInfo]:
        self._call("hwmon_sensors")
        return list(self.sensors)


@pytest.fixture
def fake_source() -> FakeStatsSource:
    return FakeStatsSource()


@pytest.fixture
def no_thermal_dir(tmp_path: Path) -> Path:
    return tmp_path / "no-thermal"


@pytest.fixture
def collector(fake_source: FakeStatsSource, no_thermal_dir: Path) -> MetricsCollector:
    return MetricsCollector(fake_source, process_every=4, thermal_dir=no_thermal_dir)
