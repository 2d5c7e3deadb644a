"""Shared fixtures."""

import uuid

import pytest

from core.config import MonitorSettings
from storage.database import Database
from storage.models import SuiteRun, utcnow
from storage.repository import RunRepository


@pytest.fixture
def settings(tmp_path):
    return MonitorSettings(
        database_path=str(tmp_path / "test.duckdb"),
        api_key_env="LLMWATCH_TEST_API_KEY",
        pacing_delay=0,
    )


@pytest.fixture
def db(tmp_path):
    """Create a temporary database for testing."""
    database = Database(str(tmp_path / "test.duckdb"))
    yield database
    database.close()


@pytest.fixture
def repo(db):
    return RunRepository(db)


@pytest.fixture
def make_run():
    def _make(**overrides) -> SuiteRun:
        values = dict(
            id=str(uuid.uuid4()),
            timestamp=utcnow(),
            model_id="claude-test",
            provider="anthropic",
            temperature=0.1,
            top_p=0.3,
            max_tokens=1200,
            suite_version="1.0.0",
            correctness_score=4,
            error_rate=0.0,
            refusal_rate=0.0,
            ttft_median=0.5,
            ttft_p95=0.8,
            latency_median=10.0,
            latency_p95=12.0,
            tokens_per_sec_median=60.0,
            tokens_per_sec_p95=70.0,
            output_tokens_median=900.0,
        )
        values.update(overrides)
        return SuiteRun(**values)

    return _make
