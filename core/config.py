"""Project discovery and the monitor configuration object."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "llmwatch.yaml"
PROJECT_MARKERS = (DEFAULT_CONFIG_NAME, "pyproject.toml", ".git")

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

# Environment variable -> settings field
ENV_OVERRIDES = {
    "LLMWATCH_PROVIDER": "provider",
    "LLMWATCH_MODEL": "model_id",
    "LLMWATCH_BASE_URL": "base_url",
    "LLMWATCH_REGION": "region",
    "LLMWATCH_TEMPERATURE": "temperature",
    "LLMWATCH_TOP_P": "top_p",
    "LLMWATCH_MAX_TOKENS": "max_tokens",
    "LLMWATCH_CACHE_BUSTING": "cache_busting",
    "LLMWATCH_STORE_RAW_OUTPUTS": "store_raw_outputs",
    "LLMWATCH_SCHEDULE_TIMES": "schedule_times",
    "LLMWATCH_TIMEZONE": "timezone",
    "LLMWATCH_RUN_ON_START": "run_on_start",
    "LLMWATCH_DB_PATH": "database_path",
    "LLMWATCH_DATABASE_URL": "database_url",
    "LLMWATCH_PUBLIC_BASE_URL": "public_base_url",
}

# Operator-tunable settings persisted in the store's key-value config table.
# store key -> (settings field, API name)
OPERATOR_KEYS = {
    "cache_busting": ("cache_busting", "cacheBusting"),
    "store_raw_outputs": ("store_raw_outputs", "storeRawOutputs"),
    "schedule_times": ("schedule_times", "scheduleTimes"),
    "timezone": ("timezone", "timezone"),
    "temperature": ("temperature", "temperature"),
    "top_p": ("top_p", "topP"),
    "max_tokens": ("max_tokens", "maxTokens"),
}


class MonitorSettings(BaseModel):
    """Configuration constructed once at process start and passed explicitly."""

    provider: str = "anthropic"
    model_id: str = "claude-3-5-sonnet-20241022"
    api_key_env: str = "ANTHROPIC_API_KEY"
    base_url: Optional[str] = None
    region: Optional[str] = None
    request_timeout: float = Field(default=120.0, gt=0)

    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=0.3, gt=0.0, le=1.0)
    max_tokens: int = Field(default=1200, ge=1)

    cache_busting: bool = False
    store_raw_outputs: bool = False
    pacing_delay: float = Field(default=1.0, ge=0.0)

    schedule_times: List[str] = Field(default_factory=lambda: ["09:00", "21:00"])
    timezone: str = "America/Chicago"
    run_on_start: bool = False

    database_path: str = "llmwatch.duckdb"
    database_url: Optional[str] = None
    public_base_url: str = "http://localhost:8000"

    @field_validator("schedule_times", mode="before")
    @classmethod
    def _split_schedule_times(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("schedule_times")
    @classmethod
    def _check_schedule_times(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one schedule time is required")
        for entry in value:
            if not _TIME_RE.match(entry):
                raise ValueError(f"invalid schedule time {entry!r}, expected HH:MM")
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv(self.api_key_env) if self.api_key_env else None

    @property
    def schedule_times_text(self) -> str:
        return ",".join(self.schedule_times)


def find_project_root(start_dir: Optional[Path] = None) -> Path:
    """Find project root by scanning upward for known project markers."""
    current = (start_dir or Path.cwd()).resolve()

    for candidate in (current, *current.parents):
        if any((candidate / marker).exists() for marker in PROJECT_MARKERS):
            return candidate

    return current


def resolve_config_path(config_path: Optional[str] = None, start_dir: Optional[Path] = None) -> Optional[Path]:
    """Resolve a config path from explicit input or project root discovery.

    An explicit path that does not exist is an error; a missing discovered
    file is not, the monitor then runs on defaults and environment variables.
    """
    if config_path:
        provided = Path(config_path).expanduser()
        if not provided.is_absolute():
            provided = (start_dir or Path.cwd()) / provided
        provided = provided.resolve()
        if not provided.exists():
            raise ConfigError(f"Config file not found: {provided}")
        return provided

    project_root = find_project_root(start_dir)
    config_file = project_root / DEFAULT_CONFIG_NAME
    if not config_file.exists():
        return None
    return config_file


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing configuration file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def _build(values: Dict[str, Any]) -> MonitorSettings:
    try:
        return MonitorSettings.model_validate(values)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ConfigError(f"Invalid configuration ({fields}): {e}") from e


def load_settings(
    config_path: Optional[str] = None,
    start_dir: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> MonitorSettings:
    """Build settings from llmwatch.yaml, .env and LLMWATCH_* variables."""
    load_dotenv()
    env = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    path = resolve_config_path(config_path, start_dir)
    if path is not None:
        values.update(_read_yaml(path))
        logger.info(f"Loaded configuration from {path}")
    else:
        logger.info(f"No {DEFAULT_CONFIG_NAME} found, using defaults and environment")

    for env_name, field_name in ENV_OVERRIDES.items():
        if env.get(env_name):
            values[field_name] = env[env_name]

    return _build(values)


def apply_overrides(settings: MonitorSettings, stored: Dict[str, str]) -> MonitorSettings:
    """Layer operator overrides from the store's config table over settings."""
    updates: Dict[str, Any] = {}
    for key, raw in stored.items():
        if key not in OPERATOR_KEYS or raw is None:
            continue
        field_name = OPERATOR_KEYS[key][0]
        if field_name == "top_p" and raw.strip().lower() in ("", "none", "null"):
            updates[field_name] = None
        else:
            updates[field_name] = raw
    if not updates:
        return settings
    return _build({**settings.model_dump(), **updates})
