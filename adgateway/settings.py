"""Process-wide server settings.

Values come from `config.yaml` (first found in /etc/adgateway/, the working directory,
~/.adgateway/, or the path in ADGW_CONFIG_FILE); ADGW_* environment variables override
the file. Loaded once and cached until the file changes or `invalidate()` is called.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional
import logging
import os
import threading

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.yaml"
CONFIG_FILE_ENV = "ADGW_CONFIG_FILE"


class SettingsError(Exception):
    """Settings could not be read or are invalid."""


class GatewaySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ADGW_", extra="ignore")

    secret_key: str = Field(..., min_length=1)
    listen_host: str = "0.0.0.0"
    listen_port: int = 8000
    token_ttl_seconds: int = 8 * 60 * 60  # 8 часов
    log_level: str = "INFO"
    log_dir: str = ""
    log_retention_days: int = 30

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Переменные окружения важнее значений из файла (файл передаётся как init kwargs).
        return env_settings, init_settings, file_secret_settings


def default_search_paths() -> list[Path]:
    return [
        Path("/etc/adgateway"),
        Path.cwd(),
        Path.home() / ".adgateway",
    ]


def find_config_file(search_paths: list[Path] | None = None) -> Optional[Path]:
    explicit = os.environ.get(CONFIG_FILE_ENV, "").strip()
    if explicit:
        return Path(explicit)
    for d in search_paths if search_paths is not None else default_search_paths():
        p = d / CONFIG_FILE_NAME
        if p.is_file():
            return p
    return None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise SettingsError(f"cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise SettingsError(f"{path}: expected a mapping at top level")
    return data


def _mtime(path: Optional[Path]) -> Optional[float]:
    if path is None:
        return None
    try:
        return path.stat().st_mtime
    except OSError:
        return None


class SettingsStore:
    """Cached settings with explicit load / invalidate.

    Reads of a populated cache take no lock; the lock only serializes reloads so
    that exactly one reader rebuilds the settings after an invalidation.
    """

    def __init__(self, search_paths: list[Path] | None = None) -> None:
        self._search_paths = search_paths
        self._lock = threading.Lock()
        self._settings: Optional[GatewaySettings] = None
        self._path: Optional[Path] = None
        self._mtime: Optional[float] = None

    def load(self) -> GatewaySettings:
        settings = self._settings
        if settings is not None:
            return settings

        with self._lock:
            if self._settings is not None:
                return self._settings

            path = find_config_file(self._search_paths)
            data = _read_yaml(path) if path is not None else {}
            try:
                settings = GatewaySettings(**data)
            except ValidationError as e:
                raise SettingsError(f"invalid settings: {e}") from e

            self._path = path
            self._mtime = _mtime(path)
            self._settings = settings
            logger.info("settings loaded from %s", path or "environment")
            return settings

    def set(self, settings: GatewaySettings) -> None:
        """Install settings directly (tests, embedding). Replaced on the next invalidation."""
        with self._lock:
            self._settings = settings
            self._path = None
            self._mtime = None

    def invalidate(self) -> None:
        with self._lock:
            self._settings = None

    def check_for_changes(self) -> bool:
        """Invalidate the cache if the config file was modified since it was loaded."""
        path = self._path
        if path is None or self._settings is None:
            return False
        if _mtime(path) == self._mtime:
            return False
        logger.info("config file %s changed, settings cache invalidated", path)
        self.invalidate()
        return True


_store = SettingsStore()


def get_store() -> SettingsStore:
    return _store
