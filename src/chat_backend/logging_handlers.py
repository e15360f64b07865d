"""File logging helpers: date-foldered handlers and retention cleanup."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path


def dated_log_path(
    base_dir: Path,
    prefix: str,
    *,
    moment: datetime | None = None,
    suffix: str = "",
) -> Path:
    """Return ``base_dir/YYYY-MM-DD/<prefix>_<time>[_suffix].log`` for ``moment``."""

    stamp = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    name = f"{prefix}_{stamp.strftime('%Y-%m-%d_%H-%M-%S')}"
    if suffix:
        name = f"{name}_{suffix}"
    return base_dir.resolve() / stamp.strftime("%Y-%m-%d") / f"{name}.log"


class DateStampedFileHandler(logging.FileHandler):
    """File handler writing to a fresh file inside a per-day directory."""

    def __init__(
        self,
        directory: str | Path,
        *,
        prefix: str = "app",
        encoding: str | None = "utf-8",
        current_time: datetime | None = None,
    ) -> None:
        log_path = dated_log_path(Path(directory), prefix, moment=current_time)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(log_path, mode="a", encoding=encoding)


def cleanup_old_logs(
    log_directories: list[str | Path],
    retention_hours: int,
    logger: logging.Logger | None = None,
) -> tuple[int, int]:
    """
    Delete ``*.log`` files older than ``retention_hours``.

    A retention of zero disables cleanup. Empty day folders are removed
    afterwards. Returns ``(files_deleted, errors_encountered)``.
    """
    if retention_hours <= 0:
        return (0, 0)

    cutoff = datetime.now(timezone.utc) - timedelta(hours=retention_hours)
    deleted = 0
    errors = 0

    for directory in log_directories:
        root = Path(directory).resolve()
        if not root.is_dir():
            continue

        for log_file in root.rglob("*.log"):
            try:
                modified = datetime.fromtimestamp(
                    log_file.stat().st_mtime, tz=timezone.utc
                )
                if modified < cutoff:
                    log_file.unlink()
                    deleted += 1
            except OSError as exc:
                errors += 1
                if logger:
                    logger.warning("Failed to delete %s: %s", log_file, exc)

        for day_dir in root.iterdir():
            if day_dir.is_dir() and not any(day_dir.iterdir()):
                try:
                    day_dir.rmdir()
                except OSError:
                    errors += 1

    if logger and deleted:
        logger.info(
            "Log cleanup removed %d file(s) with %d error(s)", deleted, errors
        )
    return (deleted, errors)


__all__ = ["DateStampedFileHandler", "cleanup_old_logs", "dated_log_path"]
