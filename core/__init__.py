"""Core shared utilities for llmwatch."""

from core.config import (
    DEFAULT_CONFIG_NAME,
    MonitorSettings,
    apply_overrides,
    find_project_root,
    load_settings,
    resolve_config_path,
)
from core.errors import ConfigError, EndpointError, LLMWatchError, SuiteError

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "MonitorSettings",
    "apply_overrides",
    "find_project_root",
    "load_settings",
    "resolve_config_path",
    "LLMWatchError",
    "ConfigError",
    "EndpointError",
    "SuiteError",
]
