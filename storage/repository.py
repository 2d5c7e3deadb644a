"""DuckDB implementation of the run store."""

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .database import Database
from .models import (
    RollingBaseline,
    SubmissionDetailRecord,
    SubmissionRecord,
    SuiteRun,
    TestCaseRecord,
    utcnow,
)

logger = logging.getLogger(__name__)

RUN_COLUMNS = (
    "id", "timestamp", "model_id", "provider", "region", "temperature", "top_p",
    "max_tokens", "suite_version", "correctness_score", "ttft_median", "ttft_p95",
    "latency_median", "latency_p95", "tokens_per_sec_median", "tokens_per_sec_p95",
    "output_tokens_median", "error_rate", "refusal_rate", "status", "flags",
)

TEST_CASE_COLUMNS = (
    "id", "run_id", "prompt_id", "prompt_version", "replicate_number", "request_id",
    "success", "score", "ttft", "total_latency", "output_tokens", "tokens_per_sec",
    "finish_reason", "output_hash", "raw_output", "error_message",
)

BASELINE_SELECT = ", ".join(
    f"AVG({name}) AS {name}" for name in RollingBaseline.AVERAGED_FIELDS
) + ", COUNT(*) AS run_count"


def _column_list(columns) -> str:
    return ", ".join(f'"{c}"' for c in columns)


def _placeholders(columns) -> str:
    return ",".join("?" for _ in columns)


def run_values(run: SuiteRun) -> Dict[str, object]:
    """Column values for a runs row; status is derived from flags here."""
    values = run.to_dict()
    values["timestamp"] = run.timestamp
    values["status"] = run.status.value
    values["flags"] = json.dumps([str(getattr(f, "value", f)) for f in run.flags])
    return values


class RunRepository:
    """Append-only run history, rolling aggregates and operator config over DuckDB."""

    def __init__(self, db: Database):
        self.db = db

    # ── Runs ──────────────────────────────────────────────────────────

    def insert_run(self, run: SuiteRun) -> str:
        values = run_values(run)
        self.db.execute(
            f"INSERT INTO runs ({_column_list(RUN_COLUMNS)}) VALUES ({_placeholders(RUN_COLUMNS)})",
            [values[c] for c in RUN_COLUMNS],
        )
        return run.id

    def get_recent_runs(self, limit: int = 100) -> List[SuiteRun]:
        rows = self.db.fetchall('SELECT * FROM runs ORDER BY "timestamp" DESC LIMIT ?', [limit])
        return [SuiteRun.from_row(row) for row in rows]

    def get_run_by_id(self, run_id: str) -> Optional[SuiteRun]:
        row = self.db.fetchone("SELECT * FROM runs WHERE id = ?", [run_id])
        return SuiteRun.from_row(row) if row else None

    def delete_run(self, run_id: str) -> bool:
        if self.get_run_by_id(run_id) is None:
            return False
        self.db.execute("DELETE FROM test_cases WHERE run_id = ?", [run_id])
        self.db.execute("DELETE FROM runs WHERE id = ?", [run_id])
        logger.info(f"Deleted run {run_id} and its test cases")
        return True

    def get_rolling_baseline(self, window_days: int = 7, now: Optional[datetime] = None) -> RollingBaseline:
        cutoff = (now or utcnow()) - timedelta(days=window_days)
        row = self.db.fetchone(
            f'SELECT {BASELINE_SELECT} FROM runs WHERE "timestamp" >= ?', [cutoff]
        )
        return RollingBaseline.from_averages(row, window_days)

    # ── Test cases ────────────────────────────────────────────────────

    def insert_test_case(self, case: TestCaseRecord) -> str:
        values = case.to_dict()
        self.db.execute(
            f"INSERT INTO test_cases ({_column_list(TEST_CASE_COLUMNS)}) "
            f"VALUES ({_placeholders(TEST_CASE_COLUMNS)})",
            [values[c] for c in TEST_CASE_COLUMNS],
        )
        return case.id

    def get_test_cases_by_run_id(self, run_id: str) -> List[TestCaseRecord]:
        rows = self.db.fetchall(
            "SELECT * FROM test_cases WHERE run_id = ? ORDER BY prompt_id, replicate_number",
            [run_id],
        )
        return [TestCaseRecord.from_row(row) for row in rows]

    # ── Config ────────────────────────────────────────────────────────

    def get_config(self, key: str) -> Optional[str]:
        row = self.db.fetchone("SELECT value FROM config WHERE key = ?", [key])
        return row["value"] if row else None

    def set_config(self, key: str, value: str) -> None:
        self.db.execute(
            """INSERT INTO config (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT (key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
            [key, str(value), utcnow()],
        )

    def get_config_values(self) -> Dict[str, str]:
        rows = self.db.fetchall("SELECT key, value FROM config")
        return {row["key"]: row["value"] for row in rows}

    # ── Submissions ───────────────────────────────────────────────────

    def insert_submission(self, submission: SubmissionRecord) -> str:
        self.db.execute("BEGIN TRANSACTION")
        try:
            self.db.execute(
                """INSERT INTO submissions (
                    id, anonymous_user_id, model_version, test_score, continuous_score,
                    total_tests, ttft_ms, tokens_per_second, avg_output_length,
                    error_rate, region, "timestamp"
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)""",
                [
                    submission.id, submission.anonymous_user_id, submission.model_version,
                    submission.test_score, submission.continuous_score, submission.total_tests,
                    submission.ttft_ms, submission.tokens_per_second, submission.avg_output_length,
                    submission.error_rate, submission.region, submission.timestamp,
                ],
            )
            for d in submission.details:
                self.db.execute(
                    """INSERT INTO submission_details (
                        id, submission_id, test_id, test_name, passed, score,
                        response_time_ms, output_quality, metrics, error_message
                    ) VALUES (?,?,?,?,?,?,?,?,?,?)""",
                    [
                        d.id or str(uuid.uuid4()), submission.id, d.test_id, d.test_name,
                        d.passed, d.score, d.response_time_ms, d.output_quality,
                        json.dumps(d.metrics) if d.metrics is not None else None,
                        d.error_message,
                    ],
                )
            self.db.execute("COMMIT")
        except Exception:
            self.db.execute("ROLLBACK")
            raise
        return submission.id

    def get_submission(self, submission_id: str) -> Optional[SubmissionRecord]:
        row = self.db.fetchone("SELECT * FROM submissions WHERE id = ?", [submission_id])
        if not row:
            return None
        details = self.db.fetchall(
            "SELECT * FROM submission_details WHERE submission_id = ? ORDER BY test_id",
            [submission_id],
        )
        return SubmissionRecord.from_row(row, [SubmissionDetailRecord.from_row(d) for d in details])

    def get_submissions(
        self, since: datetime, until: Optional[datetime] = None, region: Optional[str] = None
    ) -> List[SubmissionRecord]:
        query = 'SELECT * FROM submissions WHERE "timestamp" >= ?'
        params: list = [since]
        if until is not None:
            query += ' AND "timestamp" < ?'
            params.append(until)
        if region:
            query += " AND region = ?"
            params.append(region)
        rows = self.db.fetchall(query + ' ORDER BY "timestamp"', params)
        return [SubmissionRecord.from_row(row) for row in rows]

    def get_submission_scores(self, since: datetime, region: Optional[str] = None) -> List[float]:
        return [s.normalized_score for s in self.get_submissions(since, region=region)]

    def close(self) -> None:
        self.db.close()
