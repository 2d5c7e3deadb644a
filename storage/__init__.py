"""Storage layer for suite runs, operator config and submissions."""

import logging

from .base import RunStore
from .database import Database
from .models import (
    RollingBaseline,
    SubmissionDetailRecord,
    SubmissionRecord,
    SuiteRun,
    TestCaseRecord,
    utcnow,
)
from .repository import RunRepository

logger = logging.getLogger(__name__)


def create_store(settings) -> RunStore:
    """Hosted store when a database URL is configured, the DuckDB file otherwise."""
    if settings.database_url:
        from .sql_repository import SQLRunRepository

        return SQLRunRepository(settings.database_url)
    logger.info(f"Using DuckDB store at {settings.database_path}")
    return RunRepository(Database(settings.database_path))


__all__ = [
    "Database",
    "RollingBaseline",
    "RunRepository",
    "RunStore",
    "SubmissionDetailRecord",
    "SubmissionRecord",
    "SuiteRun",
    "TestCaseRecord",
    "create_store",
    "utcnow",
]
