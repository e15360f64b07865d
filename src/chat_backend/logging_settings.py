"""Helpers for parsing the simple logging settings file."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

_LEVEL_MAP: dict[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": None,
}

_LEVEL_KEYS = ("terminal", "conversations")
_DEFAULT_LEVEL = "info"
_DEFAULT_RETENTION_HOURS = 48


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None
    conversations_level: int | None
    retention_hours: int


def _resolve_level(value: str) -> int | None:
    normalized = value.strip().lower()
    if normalized not in _LEVEL_MAP:
        return _LEVEL_MAP[_DEFAULT_LEVEL]
    return _LEVEL_MAP[normalized]


def parse_logging_settings(path: Path) -> LoggingSettings:
    """Parse ``key = value`` lines; unknown keys and comments are ignored."""

    levels: dict[str, int | None] = {
        key: _LEVEL_MAP[_DEFAULT_LEVEL] for key in _LEVEL_KEYS
    }
    retention_hours = _DEFAULT_RETENTION_HOURS

    if path.exists():
        for raw_line in path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = (part.strip() for part in line.split("=", 1))
            key = key.lower()
            if key == "retention_hours":
                try:
                    retention_hours = max(0, int(value))
                except ValueError:
                    retention_hours = _DEFAULT_RETENTION_HOURS
            elif key in _LEVEL_KEYS:
                levels[key] = _resolve_level(value)

    return LoggingSettings(
        terminal_level=levels["terminal"],
        conversations_level=levels["conversations"],
        retention_hours=retention_hours,
    )


__all__ = ["LoggingSettings", "parse_logging_settings"]
