"""FastAPI backend for the llmwatch dashboard."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import OPERATOR_KEYS, MonitorSettings, apply_overrides
from core.errors import ConfigError
from evals.regression import alert_message
from scheduler import SuiteScheduler
from storage import RunStore
from dashboard import deps
from dashboard.api import router as api_v1_router

logger = logging.getLogger(__name__)

API_NAME_TO_KEY = {api_name: key for key, (_, api_name) in OPERATOR_KEYS.items()}
SCHEDULE_KEYS = {"schedule_times", "timezone"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "start_scheduler", False):
        deps.get_scheduler().start()
    yield
    await deps.shutdown()


app = FastAPI(title="llmwatch", version="0.1.0", lifespan=lifespan)

app.include_router(api_v1_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _to_stored(value: Any) -> str:
    if value is None:
        return "none"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def _config_view(settings: MonitorSettings) -> Dict[str, Any]:
    return {
        "cacheBusting": settings.cache_busting,
        "storeRawOutputs": settings.store_raw_outputs,
        "scheduleTimes": settings.schedule_times_text,
        "timezone": settings.timezone,
        "temperature": settings.temperature,
        "topP": settings.top_p,
        "maxTokens": settings.max_tokens,
    }


# ── API endpoints ─────────────────────────────────────────────────────

@app.get("/api/status")
async def status(store: RunStore = Depends(deps.get_store)):
    runs = store.get_recent_runs(limit=1)
    if not runs:
        return {
            "status": "UNKNOWN",
            "lastRun": None,
            "correctnessScore": None,
            "flags": [],
            "runId": None,
            "message": "No runs recorded yet",
        }
    run = runs[0]
    return {
        "status": run.status.value,
        "lastRun": run.timestamp.isoformat(),
        "correctnessScore": run.correctness_score,
        "flags": run.flags,
        "runId": run.id,
        "message": alert_message(run.flags) or "All checks passing",
    }


@app.get("/api/runs")
async def list_runs(
    limit: int = Query(100, ge=1, le=500),
    store: RunStore = Depends(deps.get_store),
):
    runs = [run.to_dict() for run in store.get_recent_runs(limit=limit)]
    return {"runs": runs, "total": len(runs)}


@app.get("/api/runs/{run_id}")
async def get_run(run_id: str, store: RunStore = Depends(deps.get_store)):
    run = store.get_run_by_id(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    test_cases = [case.to_dict() for case in store.get_test_cases_by_run_id(run_id)]
    return {"run": run.to_dict(), "test_cases": test_cases}


@app.get("/api/stats/seven-day")
async def seven_day_stats(store: RunStore = Depends(deps.get_store)):
    return store.get_rolling_baseline(window_days=7).to_dict()


@app.get("/api/config")
async def get_config(
    settings: MonitorSettings = Depends(deps.get_settings),
    store: RunStore = Depends(deps.get_store),
):
    return _config_view(apply_overrides(settings, store.get_config_values()))


@app.put("/api/config")
async def update_config(
    payload: Dict[str, Any],
    settings: MonitorSettings = Depends(deps.get_settings),
    store: RunStore = Depends(deps.get_store),
    scheduler: SuiteScheduler = Depends(deps.get_scheduler),
):
    updates: Dict[str, str] = {}
    for api_name, value in payload.items():
        key = API_NAME_TO_KEY.get(api_name)
        if key is None:
            raise HTTPException(status_code=400, detail=f"Unknown config key: {api_name}")
        updates[key] = _to_stored(value)

    current = store.get_config_values()
    try:
        effective = apply_overrides(settings, {**current, **updates})
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    for key, value in updates.items():
        store.set_config(key, value)
    logger.info(f"Operator config updated: {', '.join(sorted(updates))}")

    if SCHEDULE_KEYS & updates.keys():
        await scheduler.reschedule()
    return _config_view(effective)


@app.post("/api/run", status_code=202)
async def trigger_run(scheduler: SuiteScheduler = Depends(deps.get_scheduler)):
    if not scheduler.run_in_background():
        return JSONResponse(status_code=409, content={"detail": "A suite run is already in progress"})
    return {"status": "started"}
