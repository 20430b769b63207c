"""medtrack configuration loading and validation.

Reads ``medtrack.toml``, resolves ``${VAR}`` environment references, and
returns a validated MedtrackConfig dataclass.

Example::

    [medtrack]
    db_name = "medtrack"

    [medtrack.logging]
    level = "INFO"
    format = "json"

    [medtrack.schedule]
    upcoming_horizon_hours = 24
    default_missed_dose_threshold_minutes = 60

    [medtrack.cache]
    backend = "postgres"
"""

from __future__ import annotations

import enum
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_FILENAME = "medtrack.toml"

# Pattern matching ${VAR_NAME} (alphanumeric and underscore names).
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_DB_SCHEMA_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_LOG_FORMATS = ("text", "json")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


class CacheBackend(enum.StrEnum):
    POSTGRES = "postgres"
    MEMORY = "memory"


@dataclass
class LoggingConfig:
    """Logging configuration from [medtrack.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class ScheduleSettings:
    """Schedule engine settings from [medtrack.schedule] section."""

    upcoming_horizon_hours: int = 24
    default_missed_dose_threshold_minutes: int = 60
    overdue_lookback_days: int = 1


@dataclass
class CacheConfig:
    """Schedule cache settings from [medtrack.cache] section."""

    backend: CacheBackend = CacheBackend.POSTGRES


@dataclass
class MedtrackConfig:
    """Parsed and validated medtrack configuration."""

    db_name: str = "medtrack"
    db_schema: str | None = None
    host: str = "127.0.0.1"
    port: int = 40300
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    cache: CacheConfig = field(default_factory=CacheConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _positive_int(section: dict, key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be an integer.") from exc
    if value <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {value!r}. Must be a positive integer.")
    return value


def _parse_logging(section: dict) -> LoggingConfig:
    raw = section.get("logging", {})
    if not isinstance(raw, dict):
        raise ConfigError("medtrack.logging must be a TOML table")
    fmt = str(raw.get("format", "text")).lower()
    if fmt not in _LOG_FORMATS:
        raise ConfigError(f"Invalid medtrack.logging.format: {fmt!r}. Expected 'text' or 'json'.")
    log_root = raw.get("log_root")
    return LoggingConfig(
        level=str(raw.get("level", "INFO")).upper(),
        format=fmt,
        log_root=str(log_root) if log_root else None,
    )


def _parse_schedule(section: dict) -> ScheduleSettings:
    raw = section.get("schedule", {})
    if not isinstance(raw, dict):
        raise ConfigError("medtrack.schedule must be a TOML table")
    path = "medtrack.schedule"
    lookback = raw.get("overdue_lookback_days", 1)
    if not isinstance(lookback, int) or lookback < 0:
        raise ConfigError(
            f"Invalid {path}.overdue_lookback_days: {lookback!r}. Must be a non-negative integer."
        )
    return ScheduleSettings(
        upcoming_horizon_hours=_positive_int(raw, "upcoming_horizon_hours", 24, path),
        default_missed_dose_threshold_minutes=_positive_int(
            raw, "default_missed_dose_threshold_minutes", 60, path
        ),
        overdue_lookback_days=lookback,
    )


def _parse_cache(section: dict) -> CacheConfig:
    raw = section.get("cache", {})
    if not isinstance(raw, dict):
        raise ConfigError("medtrack.cache must be a TOML table")
    backend = str(raw.get("backend", CacheBackend.POSTGRES.value)).strip().lower()
    try:
        return CacheConfig(backend=CacheBackend(backend))
    except ValueError as exc:
        raise ConfigError(
            f"Invalid medtrack.cache.backend: {backend!r}. Expected 'postgres' or 'memory'."
        ) from exc


def parse_config(data: dict[str, Any]) -> MedtrackConfig:
    """Validate a parsed TOML document."""
    data = resolve_env_vars(data)
    section = data.get("medtrack", {})
    if not isinstance(section, dict):
        raise ConfigError("[medtrack] must be a TOML table")

    db_name = section.get("db_name", "medtrack")
    if not isinstance(db_name, str) or not db_name.strip():
        raise ConfigError("medtrack.db_name must be a non-empty string")

    db_schema = section.get("db_schema")
    if db_schema is not None:
        if not isinstance(db_schema, str) or _DB_SCHEMA_PATTERN.fullmatch(db_schema) is None:
            raise ConfigError(f"Invalid medtrack.db_schema: {db_schema!r}")

    return MedtrackConfig(
        db_name=db_name.strip(),
        db_schema=db_schema,
        host=str(section.get("host", "127.0.0.1")),
        port=_positive_int(section, "port", 40300, "medtrack"),
        logging=_parse_logging(section),
        schedule=_parse_schedule(section),
        cache=_parse_cache(section),
    )


def load_config(path: Path | str | None = None) -> MedtrackConfig:
    """Load configuration from *path* (a file or a directory holding medtrack.toml).

    A missing default file yields the built-in defaults; an explicitly given
    path that does not exist is an error.
    """
    if path is None:
        candidate = Path(CONFIG_FILENAME)
        if not candidate.is_file():
            return MedtrackConfig()
    else:
        candidate = Path(path)
        if candidate.is_dir():
            candidate = candidate / CONFIG_FILENAME
        if not candidate.is_file():
            raise ConfigError(f"Config file not found: {candidate}")

    try:
        with candidate.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {candidate}: {exc}") from exc
    return parse_config(data)
