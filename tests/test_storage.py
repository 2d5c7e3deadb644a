"""Tests for the storage layer, run against both store backends."""

import uuid
from datetime import timedelta

import duckdb
import pytest

from storage import RunStore, create_store
from storage.database import Database
from storage.models import (
    RollingBaseline,
    SubmissionDetailRecord,
    SubmissionRecord,
    TestCaseRecord,
    utcnow,
)
from storage.repository import RunRepository
from storage.sql_repository import SQLRunRepository


@pytest.fixture(params=["duckdb", "sqlalchemy"])
def store(request, tmp_path):
    if request.param == "duckdb":
        backend = RunRepository(Database(str(tmp_path / "test.duckdb")))
    else:
        backend = SQLRunRepository(f"sqlite:///{tmp_path / 'test.sqlite'}")
    yield backend
    backend.close()


def _case(run_id, prompt_id="P1", replicate=1, **overrides) -> TestCaseRecord:
    values = dict(
        id=str(uuid.uuid4()),
        run_id=run_id,
        prompt_id=prompt_id,
        prompt_version="1.0.0",
        replicate_number=replicate,
        request_id=f"req_{replicate}",
        success=True,
        score=1,
        ttft=0.4,
        total_latency=3.0,
        output_tokens=120,
        tokens_per_sec=40.0,
        finish_reason="end_turn",
        output_hash="ab" * 32,
    )
    values.update(overrides)
    return TestCaseRecord(**values)


def _submission(score=3, total=5, continuous=None, region=None, age_days=0, details=()) -> SubmissionRecord:
    submission_id = str(uuid.uuid4())
    return SubmissionRecord(
        id=submission_id,
        anonymous_user_id="anon",
        model_version="claude-test",
        test_score=score,
        total_tests=total,
        continuous_score=continuous,
        region=region,
        timestamp=utcnow() - timedelta(days=age_days),
        details=[
            SubmissionDetailRecord(id=str(uuid.uuid4()), submission_id=submission_id, **d) for d in details
        ],
    )


class TestDatabase:
    def test_schema_creation(self, db):
        tables = {t["name"] for t in db.fetchall("SHOW TABLES")}
        assert {"runs", "test_cases", "config", "submissions", "submission_details"} <= tables

    def test_status_check_constraint(self, db):
        with pytest.raises(duckdb.ConstraintException):
            db.execute(
                """INSERT INTO runs (id, "timestamp", model_id, provider, temperature, max_tokens,
                   suite_version, correctness_score, error_rate, refusal_rate, status)
                   VALUES ('x', TIMESTAMP '2024-01-01 00:00:00', 'm', 'p', 0.1, 10, '1', 0, 0, 0, 'PURPLE')"""
            )


class TestRuns:
    def test_implements_protocol(self, store):
        assert isinstance(store, RunStore)

    def test_round_trip(self, store, make_run):
        run = make_run(flags=["quality_regression", "error_rate_increase"], region="us-east")
        store.insert_run(run)

        fetched = store.get_run_by_id(run.id)
        assert fetched == run
        assert set(fetched.flags) == set(run.flags)
        assert fetched.status.value == "RED"

    def test_missing_run(self, store):
        assert store.get_run_by_id("nope") is None

    def test_recent_runs_newest_first(self, store, make_run):
        now = utcnow()
        ids = []
        for hours in (3, 1, 2):
            run = make_run(timestamp=now - timedelta(hours=hours))
            store.insert_run(run)
            ids.append((hours, run.id))

        recent = store.get_recent_runs(limit=2)
        assert [r.id for r in recent] == [dict(ids)[1], dict(ids)[2]]

    def test_optional_metrics_round_trip_as_none(self, store, make_run):
        run = make_run(ttft_median=None, ttft_p95=None, latency_p95=None, top_p=None)
        store.insert_run(run)
        fetched = store.get_run_by_id(run.id)
        assert fetched.ttft_median is None
        assert fetched.top_p is None

    def test_delete_run_removes_test_cases(self, store, make_run):
        run = make_run()
        store.insert_run(run)
        store.insert_test_case(_case(run.id))
        store.insert_test_case(_case(run.id, replicate=2))

        assert store.delete_run(run.id) is True
        assert store.get_run_by_id(run.id) is None
        assert store.get_test_cases_by_run_id(run.id) == []
        assert store.delete_run(run.id) is False


class TestTestCases:
    def test_round_trip_ordered(self, store, make_run):
        run = make_run()
        store.insert_run(run)
        second = _case(run.id, prompt_id="P2", replicate=1, success=False, score=0, error_message="HTTP 500")
        first = _case(run.id, prompt_id="P1", replicate=2, raw_output="out")
        store.insert_test_case(second)
        store.insert_test_case(first)

        cases = store.get_test_cases_by_run_id(run.id)
        assert cases == [first, second]


class TestRollingBaseline:
    def test_empty_window_is_zero_filled(self, store):
        baseline = store.get_rolling_baseline()
        assert baseline == RollingBaseline(window_days=7)

    def test_mean_over_window_only(self, store, make_run):
        now = utcnow()
        store.insert_run(make_run(timestamp=now - timedelta(days=1), correctness_score=4, tokens_per_sec_median=60.0))
        store.insert_run(make_run(timestamp=now - timedelta(days=2), correctness_score=2, tokens_per_sec_median=None))
        store.insert_run(make_run(timestamp=now - timedelta(days=10), correctness_score=0))

        baseline = store.get_rolling_baseline(window_days=7, now=now)
        assert baseline.run_count == 2
        assert baseline.correctness_score == 3.0
        assert baseline.tokens_per_sec_median == 60.0


class TestConfig:
    def test_set_get_and_overwrite(self, store):
        assert store.get_config("cache_busting") is None
        store.set_config("cache_busting", "true")
        store.set_config("cache_busting", "false")
        store.set_config("timezone", "UTC")

        assert store.get_config("cache_busting") == "false"
        assert store.get_config_values() == {"cache_busting": "false", "timezone": "UTC"}


class TestSubmissions:
    def test_round_trip_with_details(self, store):
        submission = _submission(details=[
            {"test_id": "b", "test_name": "Second", "passed": False, "error_message": "wrong"},
            {"test_id": "a", "test_name": "First", "passed": True, "score": 90.0, "metrics": {"correctness": 1.0}},
        ])
        store.insert_submission(submission)

        fetched = store.get_submission(submission.id)
        assert fetched.model_version == "claude-test"
        assert [d.test_id for d in fetched.details] == ["a", "b"]
        assert fetched.details[0].metrics == {"correctness": 1.0}
        assert fetched.details[1].passed is False

    def test_missing_submission(self, store):
        assert store.get_submission("nope") is None

    def test_scores_normalized_and_windowed(self, store):
        store.insert_submission(_submission(score=3, total=5))
        store.insert_submission(_submission(continuous=72.5, region="eu"))
        store.insert_submission(_submission(score=5, total=5, age_days=30))

        since = utcnow() - timedelta(days=7)
        assert sorted(store.get_submission_scores(since)) == [60.0, 72.5]
        assert store.get_submission_scores(since, region="eu") == [72.5]

    def test_submissions_in_half_open_range_oldest_first(self, store):
        older = _submission(score=1, age_days=2)
        newer = _submission(score=2, age_days=1)
        today = _submission(score=4, region="eu")
        for submission in (today, older, newer):
            store.insert_submission(submission)

        now = utcnow()
        rows = store.get_submissions(now - timedelta(days=3), until=today.timestamp)
        assert [r.id for r in rows] == [older.id, newer.id]
        assert rows[0].details == []
        assert rows[0].timestamp == older.timestamp
        assert [r.id for r in store.get_submissions(now - timedelta(days=3), region="eu")] == [today.id]


def test_create_store_picks_backend(settings, tmp_path):
    duck = create_store(settings)
    assert isinstance(duck, RunRepository)
    duck.close()

    hosted = create_store(settings.model_copy(update={"database_url": f"sqlite:///{tmp_path / 'h.sqlite'}"}))
    assert isinstance(hosted, SQLRunRepository)
    hosted.close()
