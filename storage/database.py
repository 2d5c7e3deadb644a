"""DuckDB database setup and connection management."""

import duckdb
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# DuckDB has no ON DELETE CASCADE, so delete_run removes a run's test cases first.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS runs (
    id                    VARCHAR PRIMARY KEY,
    "timestamp"           TIMESTAMP NOT NULL,
    model_id              VARCHAR NOT NULL,
    provider              VARCHAR NOT NULL,
    region                VARCHAR,
    temperature           DOUBLE NOT NULL,
    top_p                 DOUBLE,
    max_tokens            INTEGER NOT NULL,
    suite_version         VARCHAR NOT NULL,
    correctness_score     INTEGER NOT NULL,
    ttft_median           DOUBLE,
    ttft_p95              DOUBLE,
    latency_median        DOUBLE,
    latency_p95           DOUBLE,
    tokens_per_sec_median DOUBLE,
    tokens_per_sec_p95    DOUBLE,
    output_tokens_median  DOUBLE,
    error_rate            DOUBLE NOT NULL,
    refusal_rate          DOUBLE NOT NULL,
    status                VARCHAR NOT NULL CHECK (status IN ('GREEN', 'YELLOW', 'RED')),
    flags                 VARCHAR NOT NULL DEFAULT '[]',
    created_at            TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS test_cases (
    id               VARCHAR PRIMARY KEY,
    run_id           VARCHAR NOT NULL REFERENCES runs(id),
    prompt_id        VARCHAR NOT NULL,
    prompt_version   VARCHAR NOT NULL,
    replicate_number INTEGER NOT NULL,
    request_id       VARCHAR NOT NULL,
    success          BOOLEAN NOT NULL,
    score            INTEGER NOT NULL,
    ttft             DOUBLE,
    total_latency    DOUBLE,
    output_tokens    INTEGER,
    tokens_per_sec   DOUBLE,
    finish_reason    VARCHAR,
    output_hash      VARCHAR,
    raw_output       VARCHAR,
    error_message    VARCHAR,
    created_at       TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS config (
    key        VARCHAR PRIMARY KEY,
    value      VARCHAR NOT NULL,
    updated_at TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS submissions (
    id                VARCHAR PRIMARY KEY,
    anonymous_user_id VARCHAR NOT NULL,
    model_version     VARCHAR NOT NULL,
    test_score        INTEGER NOT NULL,
    continuous_score  DOUBLE,
    total_tests       INTEGER NOT NULL,
    ttft_ms           DOUBLE,
    tokens_per_second DOUBLE,
    avg_output_length DOUBLE,
    error_rate        DOUBLE,
    region            VARCHAR,
    "timestamp"       TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS submission_details (
    id               VARCHAR PRIMARY KEY,
    submission_id    VARCHAR NOT NULL REFERENCES submissions(id),
    test_id          VARCHAR NOT NULL,
    test_name        VARCHAR NOT NULL,
    passed           BOOLEAN NOT NULL,
    score            DOUBLE,
    response_time_ms DOUBLE,
    output_quality   DOUBLE,
    metrics          JSON,
    error_message    VARCHAR
);

-- DuckDB ART indexes take no sort order
CREATE INDEX IF NOT EXISTS idx_runs_timestamp ON runs("timestamp");
CREATE INDEX IF NOT EXISTS idx_test_cases_run_id ON test_cases(run_id);
CREATE INDEX IF NOT EXISTS idx_submissions_timestamp ON submissions("timestamp");
"""


class Database:
    """DuckDB database manager, the single-file store for laptop deployments."""

    def __init__(self, db_path: str = "llmwatch.duckdb"):
        self.db_path = db_path
        self._conn: Optional[duckdb.DuckDBPyConnection] = None

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            self._conn = duckdb.connect(self.db_path)
            self._init_schema()
        return self._conn

    def _init_schema(self) -> None:
        self.conn.execute(SCHEMA_SQL)
        logger.info(f"Database schema initialized at {self.db_path}")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def execute(self, query: str, params=None):
        if params:
            return self.conn.execute(query, params)
        return self.conn.execute(query)

    def fetchall(self, query: str, params=None):
        result = self.execute(query, params)
        columns = [desc[0] for desc in result.description]
        rows = result.fetchall()
        return [dict(zip(columns, row)) for row in rows]

    def fetchone(self, query: str, params=None):
        result = self.execute(query, params)
        columns = [desc[0] for desc in result.description]
        row = result.fetchone()
        if row:
            return dict(zip(columns, row))
        return None
