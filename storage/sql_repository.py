"""SQLAlchemy implementation of the run store for hosted relational databases."""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine

from .models import (
    RollingBaseline,
    SubmissionDetailRecord,
    SubmissionRecord,
    SuiteRun,
    TestCaseRecord,
    utcnow,
)
from .repository import RUN_COLUMNS, TEST_CASE_COLUMNS, run_values

logger = logging.getLogger(__name__)

metadata = MetaData()

runs = Table(
    "runs",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("timestamp", DateTime, nullable=False),
    Column("model_id", String(255), nullable=False),
    Column("provider", String(64), nullable=False),
    Column("region", String(64)),
    Column("temperature", Float, nullable=False),
    Column("top_p", Float),
    Column("max_tokens", Integer, nullable=False),
    Column("suite_version", String(32), nullable=False),
    Column("correctness_score", Integer, nullable=False),
    Column("ttft_median", Float),
    Column("ttft_p95", Float),
    Column("latency_median", Float),
    Column("latency_p95", Float),
    Column("tokens_per_sec_median", Float),
    Column("tokens_per_sec_p95", Float),
    Column("output_tokens_median", Float),
    Column("error_rate", Float, nullable=False),
    Column("refusal_rate", Float, nullable=False),
    Column("status", String(8), nullable=False),
    Column("flags", Text, nullable=False, default="[]"),
    Column("created_at", DateTime, default=utcnow),
    CheckConstraint("status IN ('GREEN', 'YELLOW', 'RED')", name="ck_runs_status"),
)

test_cases = Table(
    "test_cases",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("run_id", String(64), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False),
    Column("prompt_id", String(32), nullable=False),
    Column("prompt_version", String(32), nullable=False),
    Column("replicate_number", Integer, nullable=False),
    Column("request_id", String(255), nullable=False),
    Column("success", Boolean, nullable=False),
    Column("score", Integer, nullable=False),
    Column("ttft", Float),
    Column("total_latency", Float),
    Column("output_tokens", Integer),
    Column("tokens_per_sec", Float),
    Column("finish_reason", String(64)),
    Column("output_hash", String(64)),
    Column("raw_output", Text),
    Column("error_message", Text),
    Column("created_at", DateTime, default=utcnow),
)

config = Table(
    "config",
    metadata,
    Column("key", String(64), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", DateTime, default=utcnow),
)

submissions = Table(
    "submissions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("anonymous_user_id", String(255), nullable=False),
    Column("model_version", String(255), nullable=False),
    Column("test_score", Integer, nullable=False),
    Column("continuous_score", Float),
    Column("total_tests", Integer, nullable=False),
    Column("ttft_ms", Float),
    Column("tokens_per_second", Float),
    Column("avg_output_length", Float),
    Column("error_rate", Float),
    Column("region", String(64)),
    Column("timestamp", DateTime, nullable=False),
)

submission_details = Table(
    "submission_details",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("submission_id", String(64), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False),
    Column("test_id", String(64), nullable=False),
    Column("test_name", String(255), nullable=False),
    Column("passed", Boolean, nullable=False),
    Column("score", Float),
    Column("response_time_ms", Float),
    Column("output_quality", Float),
    Column("metrics", JSON),
    Column("error_message", Text),
)

Index("idx_runs_timestamp", runs.c.timestamp.desc())
Index("idx_test_cases_run_id", test_cases.c.run_id)
Index("idx_submissions_timestamp", submissions.c.timestamp.desc())


class SQLRunRepository:
    """Same contract as the DuckDB repository, over any SQLAlchemy database URL."""

    def __init__(self, database_url: str, engine: Optional[Engine] = None):
        self.database_url = database_url
        self.engine = engine or create_engine(database_url, pool_pre_ping=True)
        metadata.create_all(self.engine)
        logger.info(f"Database schema initialized at {self.engine.url.render_as_string(hide_password=True)}")

    # ── Runs ──────────────────────────────────────────────────────────

    def insert_run(self, run: SuiteRun) -> str:
        values = run_values(run)
        with self.engine.begin() as conn:
            conn.execute(insert(runs).values({c: values[c] for c in RUN_COLUMNS}))
        return run.id

    def get_recent_runs(self, limit: int = 100) -> List[SuiteRun]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(runs).order_by(runs.c.timestamp.desc()).limit(limit))
            return [SuiteRun.from_row(dict(row._mapping)) for row in rows]

    def get_run_by_id(self, run_id: str) -> Optional[SuiteRun]:
        with self.engine.connect() as conn:
            row = conn.execute(select(runs).where(runs.c.id == run_id)).first()
        return SuiteRun.from_row(dict(row._mapping)) if row else None

    def delete_run(self, run_id: str) -> bool:
        with self.engine.begin() as conn:
            conn.execute(delete(test_cases).where(test_cases.c.run_id == run_id))
            result = conn.execute(delete(runs).where(runs.c.id == run_id))
        return result.rowcount > 0

    def get_rolling_baseline(self, window_days: int = 7, now: Optional[datetime] = None) -> RollingBaseline:
        cutoff = (now or utcnow()) - timedelta(days=window_days)
        columns = [func.avg(runs.c[name]).label(name) for name in RollingBaseline.AVERAGED_FIELDS]
        query = select(*columns, func.count().label("run_count")).where(runs.c.timestamp >= cutoff)
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        return RollingBaseline.from_averages(dict(row._mapping) if row else None, window_days)

    # ── Test cases ────────────────────────────────────────────────────

    def insert_test_case(self, case: TestCaseRecord) -> str:
        values = case.to_dict()
        with self.engine.begin() as conn:
            conn.execute(insert(test_cases).values({c: values[c] for c in TEST_CASE_COLUMNS}))
        return case.id

    def get_test_cases_by_run_id(self, run_id: str) -> List[TestCaseRecord]:
        query = (
            select(test_cases)
            .where(test_cases.c.run_id == run_id)
            .order_by(test_cases.c.prompt_id, test_cases.c.replicate_number)
        )
        with self.engine.connect() as conn:
            return [TestCaseRecord.from_row(dict(row._mapping)) for row in conn.execute(query)]

    # ── Config ────────────────────────────────────────────────────────

    def get_config(self, key: str) -> Optional[str]:
        with self.engine.connect() as conn:
            return conn.execute(select(config.c.value).where(config.c.key == key)).scalar()

    def set_config(self, key: str, value: str) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(config).where(config.c.key == key).values(value=str(value), updated_at=utcnow())
            )
            if result.rowcount == 0:
                conn.execute(insert(config).values(key=key, value=str(value), updated_at=utcnow()))

    def get_config_values(self) -> Dict[str, str]:
        with self.engine.connect() as conn:
            return {row.key: row.value for row in conn.execute(select(config.c.key, config.c.value))}

    # ── Submissions ───────────────────────────────────────────────────

    def insert_submission(self, submission: SubmissionRecord) -> str:
        with self.engine.begin() as conn:
            conn.execute(insert(submissions).values(
                id=submission.id,
                anonymous_user_id=submission.anonymous_user_id,
                model_version=submission.model_version,
                test_score=submission.test_score,
                continuous_score=submission.continuous_score,
                total_tests=submission.total_tests,
                ttft_ms=submission.ttft_ms,
                tokens_per_second=submission.tokens_per_second,
                avg_output_length=submission.avg_output_length,
                error_rate=submission.error_rate,
                region=submission.region,
                timestamp=submission.timestamp,
            ))
            if submission.details:
                conn.execute(insert(submission_details), [
                    {
                        "id": d.id,
                        "submission_id": submission.id,
                        "test_id": d.test_id,
                        "test_name": d.test_name,
                        "passed": d.passed,
                        "score": d.score,
                        "response_time_ms": d.response_time_ms,
                        "output_quality": d.output_quality,
                        "metrics": d.metrics,
                        "error_message": d.error_message,
                    }
                    for d in submission.details
                ])
        return submission.id

    def get_submission(self, submission_id: str) -> Optional[SubmissionRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(select(submissions).where(submissions.c.id == submission_id)).first()
            if row is None:
                return None
            details = conn.execute(
                select(submission_details)
                .where(submission_details.c.submission_id == submission_id)
                .order_by(submission_details.c.test_id)
            )
            return SubmissionRecord.from_row(
                dict(row._mapping),
                [SubmissionDetailRecord.from_row(dict(d._mapping)) for d in details],
            )

    def get_submissions(
        self, since: datetime, until: Optional[datetime] = None, region: Optional[str] = None
    ) -> List[SubmissionRecord]:
        query = select(submissions).where(submissions.c.timestamp >= since)
        if until is not None:
            query = query.where(submissions.c.timestamp < until)
        if region:
            query = query.where(submissions.c.region == region)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(submissions.c.timestamp))
            return [SubmissionRecord.from_row(dict(r._mapping)) for r in rows]

    def get_submission_scores(self, since: datetime, region: Optional[str] = None) -> List[float]:
        return [s.normalized_score for s in self.get_submissions(since, region=region)]

    def close(self) -> None:
        self.engine.dispose()
