"""Prompt catalog, scoring, statistics and regression detection."""

from .prompts import DEFAULT_CATALOG, SUITE_VERSION, PromptCatalog, PromptDefinition, PromptType
from .regression import (
    CurrentMetrics,
    FlagCode,
    RunStatus,
    alert_message,
    calculate_status,
    detect_regressions,
)
from .stats import PerformanceSummary, median, percentile

__all__ = [
    "DEFAULT_CATALOG",
    "SUITE_VERSION",
    "PromptCatalog",
    "PromptDefinition",
    "PromptType",
    "CurrentMetrics",
    "FlagCode",
    "RunStatus",
    "alert_message",
    "calculate_status",
    "detect_regressions",
    "PerformanceSummary",
    "median",
    "percentile",
]
