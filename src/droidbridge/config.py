"""Configuration loading helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_ADB_PATH = "adb"


@dataclass(slots=True, frozen=True)
class Settings:
    adb_path: str
    adb_command_timeout: float
    jdwp_scan_timeout: float


def load_settings(path: Path) -> Settings:
    """Load configuration from a YAML document."""

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    settings_raw = raw.get("settings") or {}

    adb_path = settings_raw.get("adb_path", DEFAULT_ADB_PATH)
    if not isinstance(adb_path, str) or not adb_path.strip():
        raise ValueError("Field 'adb_path' must be a non-empty string")

    return Settings(
        adb_path=adb_path.strip(),
        adb_command_timeout=_positive_float(settings_raw, "adb_command_timeout_seconds", 15),
        jdwp_scan_timeout=_positive_float(settings_raw, "jdwp_scan_timeout_seconds", 5),
    )


def _positive_float(source: dict[str, Any], key: str, default: float) -> float:
    value = source.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"settings.{key} must be numeric") from exc
    if number <= 0:
        raise ValueError(f"settings.{key} must be > 0")
    return number
