"""Tests for daily scheduling."""

import asyncio
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from core.config import MonitorSettings
from core.errors import ConfigError
from evals.prompts import PromptCatalog, PromptDefinition, PromptType
from evals.runner import SuiteRunner
from llm.base import ExecutionResult, hash_output
from scheduler import SuiteScheduler, next_fire_time, parse_schedule_times, seconds_until

CHICAGO = ZoneInfo("America/Chicago")


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestParseScheduleTimes:
    def test_list_and_string(self):
        assert parse_schedule_times("21:00, 09:00") == [(9, 0), (21, 0)]
        assert parse_schedule_times(["9:30"]) == [(9, 30)]

    @pytest.mark.parametrize("bad", ["25:00", "12:61", "noon", "12"])
    def test_rejects_bad_entries(self, bad):
        with pytest.raises(ConfigError):
            parse_schedule_times(bad)


class TestSecondsUntil:
    def test_later_today(self):
        # 14:00 UTC is 09:00 CDT in July
        now = _utc(2024, 7, 1, 13, 0)
        assert seconds_until((9, 0), CHICAGO, now) == 3600

    def test_already_passed_rolls_to_tomorrow(self):
        now = _utc(2024, 7, 1, 15, 0)
        assert seconds_until((9, 0), CHICAGO, now) == 23 * 3600

    def test_exact_slot_is_next_day(self):
        now = _utc(2024, 7, 1, 14, 0)
        assert seconds_until((9, 0), CHICAGO, now) == 24 * 3600

    def test_dst_spring_forward(self):
        # 2024-03-10: clocks jump 02:00 -> 03:00, so 09:00 CST -> 09:00 CDT is 23h
        now = _utc(2024, 3, 9, 15, 0)  # 09:00 CST on the 9th
        assert seconds_until((9, 0), CHICAGO, now) == 23 * 3600

    def test_dst_fall_back(self):
        # 2024-11-03: clocks fall back, 09:00 CDT -> 09:00 CST is 25h
        now = _utc(2024, 11, 2, 14, 0)  # 09:00 CDT on the 2nd
        assert seconds_until((9, 0), CHICAGO, now) == 25 * 3600

    def test_next_fire_time_is_utc(self):
        fire = next_fire_time((21, 0), CHICAGO, _utc(2024, 1, 15, 12, 0))
        assert fire == _utc(2024, 1, 16, 3, 0)


def _runner(store_values=None):
    runner = MagicMock()
    runner.store.get_config_values.return_value = store_values or {}
    runner.is_running = False
    return runner


class TestSuiteScheduler:
    @pytest.mark.asyncio
    async def test_run_now_uses_runner(self):
        runner = _runner()
        runner.run_suite = AsyncMock(return_value="run")
        scheduler = SuiteScheduler(runner, MonitorSettings())

        assert await scheduler.run_now() == "run"
        runner.run_suite.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_run_is_logged_and_timer_survives(self, caplog):
        runner = _runner()
        runner.run_suite = AsyncMock(side_effect=[RuntimeError("db down"), MagicMock()])
        fired = asyncio.Event()
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) > 2:
                fired.set()
                await asyncio.Event().wait()

        scheduler = SuiteScheduler(
            runner,
            MonitorSettings(schedule_times=["09:00"], timezone="UTC"),
            now=lambda: _utc(2024, 7, 1, 8, 0),
            sleep=fake_sleep,
        )
        with caplog.at_level(logging.ERROR):
            scheduler.start()
            await asyncio.wait_for(fired.wait(), timeout=5)
            await scheduler.stop()

        assert sleeps[:2] == [3600, 25 * 3600]
        assert runner.run_suite.await_count == 2
        assert "Scheduled run (09:00) failed" in caplog.text
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_schedule_overrides_from_store(self):
        runner = _runner({"schedule_times": "06:00,18:00,12:00"})
        scheduler = SuiteScheduler(
            runner, MonitorSettings(), sleep=lambda s: asyncio.Event().wait()
        )
        scheduler.start()
        assert len(scheduler._timers) == 3
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_reschedule_only_rearms_running_scheduler(self):
        runner = _runner()
        scheduler = SuiteScheduler(runner, MonitorSettings(), sleep=lambda s: asyncio.Event().wait())

        await scheduler.reschedule()
        assert not scheduler.running

        scheduler.start()
        runner.store.get_config_values.return_value = {"schedule_times": "07:00"}
        await scheduler.reschedule()
        assert len(scheduler._timers) == 1
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_background_run_refused_while_running(self):
        runner = _runner()
        runner.is_running = True
        scheduler = SuiteScheduler(runner, MonitorSettings())
        assert scheduler.run_in_background() is False

    @pytest.mark.asyncio
    async def test_early_wakeup_does_not_refire_same_slot(self):
        runner = _runner()
        runner.run_suite = AsyncMock(side_effect=RuntimeError("endpoint down"))
        clock = iter([_utc(2024, 7, 1, 8, 0), _utc(2024, 7, 1, 8, 59, 59)])
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) > 1:
                await asyncio.Event().wait()

        scheduler = SuiteScheduler(
            runner,
            MonitorSettings(schedule_times=["09:00"], timezone="UTC"),
            now=lambda: next(clock),
            sleep=fake_sleep,
        )
        scheduler.start()
        for _ in range(50):
            if len(sleeps) > 1:
                break
            await asyncio.sleep(0)
        await scheduler.stop()

        assert sleeps == [3600, 24 * 3600 + 1]
        assert runner.run_suite.await_count == 1


class SlowClient:
    """Endpoint stand-in that takes a little while per call."""

    def __init__(self, delay=0.05):
        self.delay = delay
        self.started = asyncio.Event()

    async def execute(self, prompt_text, max_tokens, cache_busting=False, settings=None):
        self.started.set()
        await asyncio.sleep(self.delay)
        return ExecutionResult(
            output="yes", ttft=0.1, total_latency=1.0, output_tokens=10,
            tokens_per_sec=10.0, request_id="req_1", output_hash=hash_output("yes"),
        )


@pytest.mark.asyncio
async def test_reschedule_lets_in_flight_run_finish(repo, settings):
    catalog = PromptCatalog(
        suite_version="t",
        prompts=(PromptDefinition(
            id="C1", name="Answer", prompt_text="answer?", version="1",
            type=PromptType.CORRECTNESS, replicate_count=3,
            scoring_fn=lambda output: int(output == "yes"),
        ),),
    )
    client = SlowClient()
    runner = SuiteRunner(client, repo, settings, catalog=catalog, sleep=lambda s: asyncio.sleep(0))
    timer_sleeps = []

    async def timer_sleep(seconds):
        timer_sleeps.append(seconds)
        if len(timer_sleeps) > 1:
            await asyncio.Event().wait()

    scheduler = SuiteScheduler(
        runner,
        settings.model_copy(update={"schedule_times": ["09:00"], "timezone": "UTC"}),
        now=lambda: _utc(2024, 7, 1, 8, 0),
        sleep=timer_sleep,
    )
    scheduler.start()
    await asyncio.wait_for(client.started.wait(), timeout=5)

    repo.set_config("schedule_times", "10:00")
    in_flight = list(scheduler._background)
    await scheduler.reschedule()

    assert len(in_flight) == 1
    await asyncio.wait_for(asyncio.gather(*in_flight), timeout=5)
    await scheduler.stop()

    runs = repo.get_recent_runs()
    assert len(runs) == 1
    assert runs[0].correctness_score == 1
    assert len(repo.get_test_cases_by_run_id(runs[0].id)) == 3
