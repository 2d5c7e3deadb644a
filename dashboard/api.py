"""Community submission API: remote clients post their own run results."""

from __future__ import annotations

import logging
import uuid
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

from core.config import MonitorSettings
from dashboard import deps
from storage import RunStore, SubmissionDetailRecord, SubmissionRecord, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["api-v1"])

COMPARISON_WINDOW_DAYS = 7


class TestDetail(BaseModel):
    __test__ = False

    test_id: str
    test_name: str
    passed: bool
    score: Optional[float] = Field(default=None, ge=0, le=100)
    response_time_ms: Optional[float] = Field(default=None, ge=0)
    output_quality: Optional[float] = Field(default=None, ge=0, le=100)
    metrics: Optional[Dict[str, float]] = None
    error_message: Optional[str] = None


class Submission(BaseModel):
    anonymous_user_id: str = Field(min_length=1)
    model_version: str = Field(
        min_length=1, validation_alias=AliasChoices("model_version", "claude_version")
    )
    test_score: int = Field(ge=0)
    continuous_score: Optional[float] = Field(default=None, ge=0, le=100)
    total_tests: int = Field(default=5, ge=1)
    ttft_ms: Optional[float] = Field(default=None, ge=0)
    tokens_per_second: Optional[float] = Field(default=None, ge=0)
    avg_output_length: Optional[float] = Field(default=None, ge=0)
    error_rate: Optional[float] = Field(default=None, ge=0, le=1)
    region: Optional[str] = None
    test_details: List[TestDetail] = Field(default_factory=list)

    @model_validator(mode="after")
    def _score_within_total(self) -> "Submission":
        if self.test_score > self.total_tests:
            raise ValueError("test_score cannot exceed total_tests")
        return self

    def to_record(self) -> SubmissionRecord:
        submission_id = str(uuid.uuid4())
        return SubmissionRecord(
            id=submission_id,
            anonymous_user_id=self.anonymous_user_id,
            model_version=self.model_version,
            test_score=self.test_score,
            total_tests=self.total_tests,
            continuous_score=self.continuous_score,
            ttft_ms=self.ttft_ms,
            tokens_per_second=self.tokens_per_second,
            avg_output_length=self.avg_output_length,
            error_rate=self.error_rate,
            region=self.region,
            details=[
                SubmissionDetailRecord(id=str(uuid.uuid4()), submission_id=submission_id, **d.model_dump())
                for d in self.test_details
            ],
        )


def _invalid(details: List[Dict[str, str]]) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid input", "details": details})


def _field_errors(exc: ValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(p) for p in err["loc"]) or "body", "message": err["msg"]}
        for err in exc.errors()
    ]


def _mean(values: List[float]) -> float:
    return sum(values) / len(values)


def comparison_stats(store: RunStore, score: float, region: Optional[str]) -> Optional[Dict[str, Any]]:
    """Standing of ``score`` among the trailing week's submissions, or None without history."""
    since = utcnow() - timedelta(days=COMPARISON_WINDOW_DAYS)
    scores = store.get_submission_scores(since)
    if not scores:
        return None

    below = sum(1 for s in scores if s < score)
    region_avg = None
    if region:
        region_scores = store.get_submission_scores(since, region=region)
        if region_scores:
            region_avg = round(_mean(region_scores), 2)

    return {
        "percentile": round(below / len(scores) * 100),
        "globalAvg": round(_mean(scores), 2),
        "regionAvg": region_avg,
        "totalUsers": len(scores),
    }


STATS_PERIODS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_STATS_PERIOD = "7d"
TOP_REGIONS = 10
TRENDING_THRESHOLD = 2.0


def _avg(values: List[Optional[float]]) -> float:
    present = [v for v in values if v is not None]
    return round(_mean(present), 2) if present else 0.0


def _summary(rows: List[SubmissionRecord]) -> Dict[str, Any]:
    return {
        "totalRuns": len(rows),
        "uniqueUsers": len({r.anonymous_user_id for r in rows}),
        "avgScore": _avg([r.normalized_score for r in rows]),
        "avgTtft": _avg([r.ttft_ms for r in rows]),
    }


def _trends(rows: List[SubmissionRecord], hourly: bool) -> List[Dict[str, Any]]:
    buckets: Dict[str, List[SubmissionRecord]] = defaultdict(list)
    for r in rows:
        key = r.timestamp.strftime("%Y-%m-%dT%H:00") if hourly else r.timestamp.strftime("%Y-%m-%d")
        buckets[key].append(r)
    return [{"timestamp": key, **_summary(buckets[key])} for key in sorted(buckets)]


def _regional_distribution(rows: List[SubmissionRecord]) -> List[Dict[str, Any]]:
    counts = Counter(r.region for r in rows if r.region)
    return [
        {"region": region, "count": count, "percentage": round(count / len(rows) * 100, 2)}
        for region, count in counts.most_common(TOP_REGIONS)
    ]


def global_stats(store: RunStore, period: str = DEFAULT_STATS_PERIOD, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Aggregate view of community submissions over a trailing period.

    Unknown periods fall back to the 7 day window. Trends are bucketed by hour
    for ``24h`` and by UTC day otherwise.
    """
    if period not in STATS_PERIODS:
        period = DEFAULT_STATS_PERIOD
    now = now or utcnow()
    rows = store.get_submissions(now - STATS_PERIODS[period])

    return {
        "period": period,
        **_summary(rows),
        "avgTokensPerSecond": _avg([r.tokens_per_second for r in rows]),
        "avgErrorRate": _avg([r.error_rate for r in rows]),
        "trends": _trends(rows, hourly=period == "24h"),
        "regionalDistribution": _regional_distribution(rows),
        "lastUpdated": now.isoformat(),
    }


def performance_insights(store: RunStore, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Today's submission volume and whether scores are up on yesterday (UTC days)."""
    now = now or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    today = store.get_submissions(midnight)
    yesterday = store.get_submissions(midnight - timedelta(days=1), until=midnight)

    trending = "stable"
    if today and yesterday:
        diff = _mean([r.normalized_score for r in today]) - _mean([r.normalized_score for r in yesterday])
        if diff > TRENDING_THRESHOLD:
            trending = "better"
        elif diff < -TRENDING_THRESHOLD:
            trending = "worse"

    return {
        "testCount": len(today),
        "uniqueUsers": len({r.anonymous_user_id for r in today}),
        "trending": trending,
    }


@router.post("/submit")
async def submit(
    request: Request,
    settings: MonitorSettings = Depends(deps.get_settings),
    store: RunStore = Depends(deps.get_store),
):
    try:
        body = await request.json()
    except ValueError:
        return _invalid([{"field": "body", "message": "Request body must be valid JSON"}])

    try:
        submission = Submission.model_validate(body)
    except ValidationError as exc:
        return _invalid(_field_errors(exc))

    record = submission.to_record()
    comparison = comparison_stats(store, record.normalized_score, record.region)
    store.insert_submission(record)
    logger.info(f"Stored submission {record.id} ({len(record.details)} test details)")
    insights = performance_insights(store)

    return {
        "success": True,
        "run_id": record.id,
        "comparison": comparison,
        "insights": insights,
        "share_url": f"{settings.public_base_url.rstrip('/')}/run/{record.id}",
    }


@router.get("/run/{submission_id}")
async def get_submission(submission_id: str, store: RunStore = Depends(deps.get_store)):
    submission = store.get_submission(submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Test run not found")
    data = submission.to_dict()
    data["test_details"] = data.pop("details")
    return data


@router.get("/stats/global")
async def get_global_stats(
    period: str = DEFAULT_STATS_PERIOD,
    store: RunStore = Depends(deps.get_store),
):
    return global_stats(store, period)
