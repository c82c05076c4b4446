"""Application configuration.

Values come from (lowest to highest precedence): model defaults, a TOML file,
then ``AUDIOMERGER_<FIELD>`` environment variables. The deployment variables
``FFMPEG_PATH``, ``FFPROBE_PATH``, ``CLEANUP_DIRECTORY`` and ``CLEANUP_INTERVAL_HOURS``
are honoured too.

Example config.toml::

    storage_root = "/var/lib/telegram-bot-api"
    sessions_file = "/var/lib/audiomerger/user-sessions.json"
    merge_threads = 2
    merge_timeout_s = 480
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from audiomerger.domain.constants import DEFAULT_QUEUE_CAPACITY, MIN_MERGE_ITEMS
from audiomerger.domain.exceptions import ConfigurationError

__all__ = [
    "AppConfig",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "audiomerger" / "config.toml"
ENV_PREFIX = "AUDIOMERGER_"

# Variable names used by the original container deployment
_LEGACY_ENV: dict[str, str] = {
    "FFMPEG_PATH": "ffmpeg_path",
    "FFPROBE_PATH": "ffprobe_path",
    "CLEANUP_DIRECTORY": "storage_root",
    "CLEANUP_INTERVAL_HOURS": "sweep_interval_hours",
}


class AppConfig(BaseModel):
    """Validated runtime settings."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    storage_root: Path = Path("/var/lib/telegram-bot-api")
    local_endpoints: list[str] = Field(
        default_factory=lambda: ["127.0.0.1:8081", "localhost:8081", "telegram-bot-api:8081"]
    )
    work_dir: Path | None = None
    sessions_file: Path = Path("./user-sessions.json")

    session_ttl_hours: float = Field(default=24.0, gt=0)
    snapshot_interval_s: float = Field(default=30.0, gt=0)
    eviction_interval_s: float = Field(default=3600.0, gt=0)
    remote_timeout_s: float = Field(default=300.0, gt=0)
    queue_capacity: int = Field(default=DEFAULT_QUEUE_CAPACITY, ge=MIN_MERGE_ITEMS)
    merge_threads: int = Field(default=1, ge=1, le=16)
    merge_timeout_s: float | None = Field(default=None, gt=0)
    probe_timeout_s: float = Field(default=30.0, gt=0)

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    sweep_max_age_hours: float = Field(default=24.0, gt=0)
    sweep_interval_hours: float = Field(default=24.0, gt=0)
    log_level: str = "INFO"

    @field_validator("storage_root", mode="before")
    @classmethod
    def _require_storage_root(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("storage_root must be set")
        return value

    @field_validator("storage_root", "sessions_file", "work_dir")
    @classmethod
    def _expand_path(cls, value: Path | None) -> Path | None:
        if value is None:
            return None
        return value.expanduser().resolve()

    @field_validator("local_endpoints")
    @classmethod
    def _normalize_endpoints(cls, value: list[str]) -> list[str]:
        return [endpoint.strip().lower() for endpoint in value if endpoint.strip()]

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {value}")
        return level

    @property
    def session_ttl_s(self) -> float:
        return self.session_ttl_hours * 3600


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_name, field_name in _LEGACY_ENV.items():
        if environ.get(env_name):
            overrides[field_name] = environ[env_name]

    for name in AppConfig.model_fields:
        raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        if name == "local_endpoints":
            overrides[name] = [part for part in raw.split(",") if part.strip()]
        else:
            overrides[name] = raw
    return overrides


def load_config(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load configuration from TOML plus environment overrides.

    Args:
        path: Explicit config file. Defaults to ``$AUDIOMERGER_CONFIG`` or
            ``~/.config/audiomerger/config.toml``.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Validated AppConfig; defaults when no config file exists.

    Raises:
        ConfigurationError: If the file is unreadable or a value is invalid.
    """
    env = os.environ if environ is None else environ
    if path is None:
        path = Path(env[f"{ENV_PREFIX}CONFIG"]) if env.get(f"{ENV_PREFIX}CONFIG") else DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigurationError(
                f"Could not read config file: {path}",
                cause=exc,
                context={"path": str(path)},
                suggestions=["Check the file is valid TOML"],
            ) from exc
        logger.debug("Loaded config from %s", path)

    data.update(_env_overrides(env))

    try:
        return AppConfig(**data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "config"
        raise ConfigurationError.invalid_value(field, first.get("input"), first.get("msg", "invalid")) from exc
