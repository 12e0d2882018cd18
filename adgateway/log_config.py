"""Логирование шлюза.

Консоль (stderr) всегда; файл adgateway.log в log_dir, если он задан,
с ежедневной ротацией и хранением retention_days архивов.
"""
from __future__ import annotations

from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import logging
import time

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "adgateway.log"

_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}
_NOISY_LOGGERS = ("uvicorn.access", "ldap3")

# handlers, добавленные нами в root; при повторной настройке снимаются
_installed: list[logging.Handler] = []


def parse_level(level: str | None, default: int = logging.INFO) -> int:
    name = (level or "").strip().upper()
    name = _LEVEL_ALIASES.get(name, name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else default


def _file_handler(log_dir: str, retention_days: int) -> logging.Handler:
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    _prune(path, retention_days)

    fh = TimedRotatingFileHandler(
        path / LOG_FILE_NAME,
        when="midnight",
        backupCount=retention_days,
        encoding="utf-8",
        utc=True,
    )
    fh.suffix = "%Y-%m-%d"
    return fh


def _prune(path: Path, retention_days: int) -> None:
    """Удаляет архивы старше retention_days (например, после смены настройки)."""
    cutoff = time.time() - retention_days * 86400
    for old in path.glob(LOG_FILE_NAME + ".*"):
        try:
            if old.stat().st_mtime < cutoff:
                old.unlink()
        except OSError as e:
            logging.getLogger(__name__).debug("cannot prune %s: %s", old, e)


def setup_logging(level: str = "INFO", log_dir: str = "", retention_days: int = 30) -> None:
    """Configure the root logger. Calling it again replaces the previous handlers."""
    log_level = parse_level(level)
    retention_days = min(max(int(retention_days or 30), 1), 365)

    root = logging.getLogger()
    while _installed:
        h = _installed.pop()
        root.removeHandler(h)
        h.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir:
        handlers.append(_file_handler(log_dir, retention_days))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    for h in handlers:
        h.setLevel(log_level)
        h.setFormatter(formatter)
        root.addHandler(h)
        _installed.append(h)
    root.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logging.getLogger("adgateway").debug(
        "logging configured: level=%s dir=%s retention=%dd",
        logging.getLevelName(log_level), log_dir or "-", retention_days,
    )
