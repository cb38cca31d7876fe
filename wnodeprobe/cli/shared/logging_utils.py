"""Loguru helpers for consistent file logging in CLI commands."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

_SINK_IDS: dict[str, int] = {}


def get_log_dir() -> Path:
    return Path.home() / ".wnodeprobe" / "logs"


def ensure_rotating_log_file(name: str, level: str = "INFO", log_dir: Path | None = None) -> Path:
    """(Re)attach a rotating log sink for the given command name."""
    directory = log_dir or get_log_dir()
    log_path = directory / f"{name}.log"
    previous = _SINK_IDS.pop(name, None)
    if previous is not None:
        try:
            logger.remove(previous)
        except ValueError:
            # Already dropped by a blanket logger.remove().
            logger.debug("log sink {} for {} was already removed", previous, name)
    directory.mkdir(parents=True, exist_ok=True)
    sink_id = logger.add(
        str(log_path),
        level=level,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        encoding="utf-8",
        backtrace=False,
        diagnose=False,
    )
    _SINK_IDS[name] = sink_id
    return log_path
