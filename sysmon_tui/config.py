"""Configuration loading for sysmon-tui.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/sysmon-tui/config.toml → defaults only.
The SYSMON_LOG_DIR environment variable overrides ``log_dir``.
"""

from __future__ import annotations

import os
import sys
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from sysmon_tui.engine import SCAN_PRESETS

LOG_DIR_ENV = "SYSMON_LOG_DIR"
LOG_LEVELS = ("debug", "info", "warning", "error")

DEFAULT_CONFIG: dict[str, Any] = {
    "tick_ms": 250,
    "scan_every": 4,
    "history_size": 120,
    "log_dir": "/tmp/sysmon-tui",
    "thermal_dir": "/sys/devices/virtual/thermal",
    "log_level": "warning",
    "thresholds": {
        "cpu_percent": {"warning": 40.0, "critical": 80.0},
        "ram_percent": {"warning": 70.0, "critical": 90.0},
        "temp": {"warning": 65.0, "critical": 85.0},
    },
}

_DEFAULT_PATH = Path.home() / ".config" / "sysmon-tui" / "config.toml"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            # Merge one level: overlay sub-keys into base sub-keys
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _validate(config: dict[str, Any]) -> dict[str, Any]:
    """Replace out-of-range values with their defaults, warning on stderr."""
    if config.get("scan_every") not in SCAN_PRESETS:
        print(
            f"sysmon-tui: warning: scan_every must be one of {list(SCAN_PRESETS)}, "
            f"got {config.get('scan_every')!r}; using {DEFAULT_CONFIG['scan_every']}",
            file=sys.stderr,
        )
        config["scan_every"] = DEFAULT_CONFIG["scan_every"]
    for key in ("tick_ms", "history_size"):
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            print(
                f"sysmon-tui: warning: {key} must be a positive integer, "
                f"got {value!r}; using {DEFAULT_CONFIG[key]}",
                file=sys.stderr,
            )
            config[key] = DEFAULT_CONFIG[key]
    if str(config.get("log_level", "")).lower() not in LOG_LEVELS:
        print(
            f"sysmon-tui: warning: log_level must be one of {list(LOG_LEVELS)}, "
            f"got {config.get('log_level')!r}; using {DEFAULT_CONFIG['log_level']}",
            file=sys.stderr,
        )
        config["log_level"] = DEFAULT_CONFIG["log_level"]

    thresholds = config.get("thresholds")
    if not isinstance(thresholds, dict):
        print(
            f"sysmon-tui: warning: thresholds must be a table, got {thresholds!r}; "
            "using defaults",
            file=sys.stderr,
        )
        thresholds = {}
    checked = dict(thresholds)
    for metric, defaults in DEFAULT_CONFIG["thresholds"].items():
        levels = checked.get(metric, defaults)
        if not _valid_levels(levels):
            print(
                f"sysmon-tui: warning: thresholds.{metric} needs numeric warning/critical "
                f"values, got {levels!r}; using {defaults}",
                file=sys.stderr,
            )
            levels = defaults
        checked[metric] = dict(levels)
    config["thresholds"] = checked
    return config


def _valid_levels(levels: Any) -> bool:
    if not isinstance(levels, dict):
        return False
    for key in ("warning", "critical"):
        if key not in levels:
            continue  # falls back to the default level when drawn
        value = levels[key]
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return False
    return True


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/sysmon-tui/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed.
    """
    if path is not None:
        if not path.is_file():
            print(f"sysmon-tui: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            print(f"sysmon-tui: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        return _validate(_deep_merge(DEFAULT_CONFIG, user_config))

    # Try default location silently
    if _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
            return _validate(_deep_merge(DEFAULT_CONFIG, user_config))
        except tomllib.TOMLDecodeError:
            print(
                f"sysmon-tui: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )

    return dict(DEFAULT_CONFIG)


def resolve_log_dir(
    config: Mapping[str, Any], environ: Mapping[str, str] | None = None
) -> Path:
    """Directory for snapshot/log CSVs: $SYSMON_LOG_DIR, else the config value."""
    env = os.environ if environ is None else environ
    override = env.get(LOG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(str(config.get("log_dir") or DEFAULT_CONFIG["log_dir"])).expanduser()


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# sysmon-tui configuration",
        "# Place this file at ~/.config/sysmon-tui/config.toml",
        "",
        f"tick_ms = {DEFAULT_CONFIG['tick_ms']}",
        f"scan_every = {DEFAULT_CONFIG['scan_every']}  # one of {list(SCAN_PRESETS)}",
        f"history_size = {DEFAULT_CONFIG['history_size']}",
        f'log_dir = "{DEFAULT_CONFIG["log_dir"]}"  # overridden by ${LOG_DIR_ENV}',
        f'thermal_dir = "{DEFAULT_CONFIG["thermal_dir"]}"',
        f'log_level = "{DEFAULT_CONFIG["log_level"]}"',
        "",
    ]

    # Colour thresholds
    for metric, levels in DEFAULT_CONFIG["thresholds"].items():
        lines.append(f"[thresholds.{metric}]")
        lines.append(f"warning = {levels['warning']}")
        lines.append(f"critical = {levels['critical']}")
        lines.append("")

    return "\n".join(lines) + "\n"
