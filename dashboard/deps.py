"""Process-wide singletons shared by the HTTP routes (lazy)."""

import logging
import os
from typing import Optional

from core.config import MonitorSettings, load_settings
from evals.runner import SuiteRunner
from llm.base import EndpointClient
from llm.factory import create_client
from scheduler import SuiteScheduler
from storage import RunStore, create_store

logger = logging.getLogger(__name__)

_settings: Optional[MonitorSettings] = None
_store: Optional[RunStore] = None
_client: Optional[EndpointClient] = None
_runner: Optional[SuiteRunner] = None
_scheduler: Optional[SuiteScheduler] = None


def configure(settings: MonitorSettings) -> None:
    """Install settings before the first request, e.g. from the CLI."""
    global _settings
    _settings = settings


def get_settings() -> MonitorSettings:
    global _settings
    if _settings is None:
        _settings = load_settings(os.getenv("LLMWATCH_CONFIG"))
    return _settings


def get_store() -> RunStore:
    global _store
    if _store is None:
        _store = create_store(get_settings())
    return _store


def get_runner() -> SuiteRunner:
    global _client, _runner
    if _runner is None:
        settings = get_settings()
        _client = create_client(settings)
        _runner = SuiteRunner(_client, get_store(), settings)
    return _runner


def get_scheduler() -> SuiteScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = SuiteScheduler(get_runner(), get_settings())
    return _scheduler


async def shutdown() -> None:
    global _store, _client, _runner, _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
    if _client is not None:
        await _client.aclose()
    if _store is not None:
        _store.close()
    _store = _client = _runner = _scheduler = None
    logger.info("Dashboard resources released")
