"""Data models for the storage layer."""

import json
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from evals.regression import RunStatus, calculate_status


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation every store persists."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _pick(cls, row: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in row.items() if k in names}


def decode_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value) if value else default
    return value


@dataclass
class SuiteRun:
    """One execution of the full prompt catalog. Immutable once inserted."""
    id: str
    timestamp: datetime
    model_id: str
    provider: str
    temperature: float
    max_tokens: int
    suite_version: str
    correctness_score: int
    error_rate: float
    refusal_rate: float
    top_p: Optional[float] = None
    region: Optional[str] = None
    ttft_median: Optional[float] = None
    ttft_p95: Optional[float] = None
    latency_median: Optional[float] = None
    latency_p95: Optional[float] = None
    tokens_per_sec_median: Optional[float] = None
    tokens_per_sec_p95: Optional[float] = None
    output_tokens_median: Optional[float] = None
    flags: List[str] = field(default_factory=list)

    @property
    def status(self) -> RunStatus:
        return calculate_status(self.flags)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["status"] = self.status.value
        return data

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SuiteRun":
        # the stored status column is ignored, status always follows flags
        data = _pick(cls, row)
        data["flags"] = list(decode_json(row.get("flags"), []))
        if data.get("correctness_score") is not None:
            data["correctness_score"] = int(data["correctness_score"])
        return cls(**data)


@dataclass
class TestCaseRecord:
    """One prompt x replicate row belonging to a SuiteRun."""
    __test__ = False

    id: str
    run_id: str
    prompt_id: str
    prompt_version: str
    replicate_number: int
    request_id: str
    success: bool
    score: int
    total_latency: float = 0.0
    output_tokens: int = 0
    tokens_per_sec: float = 0.0
    ttft: Optional[float] = None
    finish_reason: Optional[str] = None
    output_hash: Optional[str] = None
    raw_output: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TestCaseRecord":
        data = _pick(cls, row)
        data["success"] = bool(data.get("success"))
        return cls(**data)


@dataclass
class RollingBaseline:
    """Mean of each numeric SuiteRun field over a trailing window, zero-filled."""
    correctness_score: float = 0.0
    ttft_median: float = 0.0
    ttft_p95: float = 0.0
    latency_median: float = 0.0
    latency_p95: float = 0.0
    tokens_per_sec_median: float = 0.0
    tokens_per_sec_p95: float = 0.0
    output_tokens_median: float = 0.0
    error_rate: float = 0.0
    refusal_rate: float = 0.0
    run_count: int = 0
    window_days: int = 7

    AVERAGED_FIELDS = (
        "correctness_score",
        "ttft_median",
        "ttft_p95",
        "latency_median",
        "latency_p95",
        "tokens_per_sec_median",
        "tokens_per_sec_p95",
        "output_tokens_median",
        "error_rate",
        "refusal_rate",
    )

    @classmethod
    def from_averages(cls, row: Optional[Dict[str, Any]], window_days: int) -> "RollingBaseline":
        row = row or {}
        values = {name: float(row.get(name) or 0.0) for name in cls.AVERAGED_FIELDS}
        return cls(**values, run_count=int(row.get("run_count") or 0), window_days=window_days)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalized_score(continuous_score: Optional[float], test_score: int, total_tests: int) -> float:
    """Submission score on a 0-100 scale."""
    if continuous_score is not None:
        return float(continuous_score)
    return test_score / max(total_tests, 1) * 100


@dataclass
class SubmissionDetailRecord:
    id: str
    submission_id: str
    test_id: str
    test_name: str
    passed: bool
    score: Optional[float] = None
    response_time_ms: Optional[float] = None
    output_quality: Optional[float] = None
    metrics: Optional[Dict[str, float]] = None
    error_message: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SubmissionDetailRecord":
        data = _pick(cls, row)
        data["passed"] = bool(data.get("passed"))
        data["metrics"] = decode_json(row.get("metrics"), None)
        return cls(**data)


@dataclass
class SubmissionRecord:
    """A run posted by a remote client through the submission endpoint."""
    id: str
    anonymous_user_id: str
    model_version: str
    test_score: int
    total_tests: int
    timestamp: datetime = field(default_factory=utcnow)
    continuous_score: Optional[float] = None
    ttft_ms: Optional[float] = None
    tokens_per_second: Optional[float] = None
    avg_output_length: Optional[float] = None
    error_rate: Optional[float] = None
    region: Optional[str] = None
    details: List[SubmissionDetailRecord] = field(default_factory=list)

    @property
    def normalized_score(self) -> float:
        return normalized_score(self.continuous_score, self.test_score, self.total_tests)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_row(cls, row: Dict[str, Any], details: Optional[List[SubmissionDetailRecord]] = None) -> "SubmissionRecord":
        data = _pick(cls, row)
        data["details"] = details or []
        return cls(**data)
