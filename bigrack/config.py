"""
Configuration for the bigrack daemon.

Values are merged as defaults < ``~/.bigrack/config.json`` < ``BIG_RACK_*``
environment variables. The JSON file uses camelCase keys and may carry
sections this package does not read; those are ignored.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
)

logger = logging.getLogger(__name__)

ENV_DAEMON_PORT = "BIG_RACK_DAEMON_PORT"
ENV_DAEMON_HOST = "BIG_RACK_DAEMON_HOST"
ENV_LOG_LEVEL = "BIG_RACK_LOG_LEVEL"
ENV_DB_PATH = "BIG_RACK_DB_PATH"
ENV_DATABASE_URL = "DATABASE_URL"

LogLevel = Literal["trace", "debug", "info", "warn", "error", "fatal"]

__all__ = [
    "Config",
    "ConfigError",
    "DaemonSettings",
    "LoggingSettings",
    "PreferenceSettings",
    "StorageSettings",
    "database_path_from_url",
    "env_overrides",
    "expand_path",
    "get_config_dir",
    "get_config_path",
    "load_config",
    "save_config",
]


class ConfigError(ValueError):
    """Raised when configuration values fail validation."""


def get_config_dir() -> Path:
    return Path.home() / ".bigrack"


def get_config_path() -> Path:
    return get_config_dir() / "config.json"


def expand_path(path: str) -> Path:
    """Expand a leading ``~/`` to the user's home directory."""
    if path.startswith("~/"):
        return Path.home() / path[2:]
    return Path(path)


def database_path_from_url(url: str, cwd: Path | None = None) -> Path:
    """Turn a ``file:`` style DATABASE_URL into an absolute path."""
    if url.startswith("file://"):
        raw = url[len("file://") :]
    elif url.startswith("file:"):
        raw = url[len("file:") :]
    else:
        raw = url
    path = Path(raw)
    if not path.is_absolute():
        path = (cwd or Path.cwd()) / path
    return path


class _Section(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DaemonSettings(_Section):
    host: StrictStr = Field(default="127.0.0.1", description="Interface the daemon binds to.")
    port: StrictInt = Field(default=3123, ge=1024, le=65535, description="Daemon port.")


class StorageSettings(_Section):
    database_path: StrictStr = Field(
        default="~/.bigrack/bigrack.db",
        alias="databasePath",
        description="SQLite database file; a leading ~/ is expanded.",
    )


class LoggingSettings(_Section):
    level: LogLevel = "info"
    log_dir: StrictStr = Field(default="~/.bigrack/logs/", alias="logDir")
    max_files: StrictInt = Field(
        default=10, ge=1, le=100, alias="maxFiles", description="Rotated log files kept."
    )


class PreferenceSettings(_Section):
    color_output: StrictBool = Field(default=True, alias="colorOutput")


class Config(_Section):
    daemon: DaemonSettings = Field(default_factory=DaemonSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    preferences: PreferenceSettings = Field(default_factory=PreferenceSettings)
    version: StrictStr = "1.0.0"

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        """Validate camelCase file data, raising ``ConfigError`` on bad values."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(_describe(e)) from e

    def check(self) -> None:
        """Re-validate after in-place edits; field assignment is not validated."""
        type(self).from_dict(self.model_dump(by_alias=True, warnings=False))

    @property
    def database_path(self) -> Path:
        return expand_path(self.storage.database_path)

    @property
    def log_dir(self) -> Path:
        return expand_path(self.logging.log_dir)


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc']) or 'config'}: {item['msg']}"
        for item in error.errors()
    )


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Nested camelCase overrides from ``BIG_RACK_*`` variables and DATABASE_URL."""
    overrides: dict[str, Any] = {}
    if environ.get(ENV_DAEMON_PORT):
        try:
            port = int(environ[ENV_DAEMON_PORT])
        except ValueError:
            raise ConfigError(f"{ENV_DAEMON_PORT} must be an integer") from None
        overrides.setdefault("daemon", {})["port"] = port
    if environ.get(ENV_DAEMON_HOST):
        overrides.setdefault("daemon", {})["host"] = environ[ENV_DAEMON_HOST]
    if environ.get(ENV_LOG_LEVEL):
        overrides.setdefault("logging", {})["level"] = environ[ENV_LOG_LEVEL]
    if environ.get(ENV_DB_PATH):
        overrides.setdefault("storage", {})["databasePath"] = environ[ENV_DB_PATH]
    if environ.get(ENV_DATABASE_URL):
        overrides.setdefault("storage", {})["databasePath"] = str(
            database_path_from_url(environ[ENV_DATABASE_URL])
        )
    return overrides


def _merge(base: Any, overrides: dict[str, Any]) -> Any:
    # A malformed base is passed through untouched so validation reports it.
    if not isinstance(base, dict):
        return base
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict):
            merged[key] = _merge(merged.get(key, {}), value)
        else:
            merged[key] = value
    return merged


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Validate *config* and write it with owner-only permissions."""
    config.check()
    config_path = config_path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(config.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    config_path.chmod(0o600)
    logger.debug("Configuration saved to %s", config_path)
    return config_path


def load_config(
    config_path: Path | None = None, environ: Mapping[str, str] | None = None
) -> Config:
    """Load configuration from file, env vars, and defaults.

    A missing file is created from the defaults. An unreadable file or an
    invalid value is logged and the defaults are returned instead.
    """
    config_path = config_path or get_config_path()
    environ = os.environ if environ is None else environ

    data: Any = {}
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Failed to load config file %s, using defaults: %s", config_path, e)
            data = {}
    else:
        try:
            save_config(Config(), config_path)
        except OSError as e:
            logger.warning("Could not write default config to %s: %s", config_path, e)

    try:
        return Config.from_dict(_merge(data, env_overrides(environ)))
    except ConfigError as e:
        logger.error("Invalid configuration, using defaults: %s", e)
        return Config()
