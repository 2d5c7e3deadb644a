"""Daily wall-clock scheduling of suite runs."""

import asyncio
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from core.config import MonitorSettings, apply_overrides
from core.errors import ConfigError
from storage.models import SuiteRun

logger = logging.getLogger(__name__)

Slot = Tuple[int, int]


def parse_schedule_times(times) -> List[Slot]:
    """Parse ``"HH:MM"`` entries (list or comma-separated string) into sorted slots."""
    if isinstance(times, str):
        times = times.split(",")
    slots = set()
    for raw in times:
        text = raw.strip()
        if not text:
            continue
        try:
            hour_text, minute_text = text.split(":")
            hour, minute = int(hour_text), int(minute_text)
        except ValueError as e:
            raise ConfigError(f"Invalid schedule time {raw!r}, expected HH:MM") from e
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ConfigError(f"Invalid schedule time {raw!r}, expected HH:MM")
        slots.add((hour, minute))
    return sorted(slots)


def next_fire_time(slot: Slot, tz: ZoneInfo, now: datetime) -> datetime:
    """Next UTC instant at which the wall clock in ``tz`` reads ``slot``."""
    now_utc = now.astimezone(timezone.utc)
    local_date = now_utc.astimezone(tz).date()
    for offset in range(3):
        candidate = datetime.combine(local_date + timedelta(days=offset), time(*slot), tzinfo=tz)
        candidate_utc = candidate.astimezone(timezone.utc)
        if candidate_utc > now_utc:
            return candidate_utc
    raise RuntimeError(f"No fire time found for {slot} in {tz}")


def seconds_until(slot: Slot, tz: ZoneInfo, now: datetime) -> float:
    now_utc = now.astimezone(timezone.utc)
    return (next_fire_time(slot, tz, now_utc) - now_utc).total_seconds()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SuiteScheduler:
    """Fires the suite runner at each configured local time, every day.

    A failed run is logged and the timer re-arms for the next slot; runs are
    never retried. Manual triggers share the runner's lock with timed runs.
    Runs execute as their own tasks, so ``stop()`` and ``reschedule()`` cancel
    only the timers and never a suite that is already in progress.
    """

    def __init__(
        self,
        runner,
        settings: MonitorSettings,
        now: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.runner = runner
        self.settings = settings
        self._now = now
        self._sleep = sleep
        self._timers: List[asyncio.Task] = []
        self._background: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._timers)

    def _schedule_settings(self) -> MonitorSettings:
        return apply_overrides(self.settings, self.runner.store.get_config_values())

    def start(self) -> None:
        if self._timers:
            return
        settings = self._schedule_settings()
        tz = ZoneInfo(settings.timezone)
        slots = parse_schedule_times(settings.schedule_times)
        for slot in slots:
            self._timers.append(asyncio.create_task(self._timer(slot, tz)))
        logger.info(
            f"Scheduled daily runs at {', '.join(f'{h:02d}:{m:02d}' for h, m in slots)} ({settings.timezone})"
        )

    async def stop(self) -> None:
        timers, self._timers = self._timers, []
        for task in timers:
            task.cancel()
        for task in timers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if timers:
            logger.info("Scheduler stopped")

    async def reschedule(self, settings: Optional[MonitorSettings] = None) -> None:
        """Re-arm running timers, picking up schedule changes from settings or the store."""
        if settings is not None:
            self.settings = settings
        was_running = self.running
        await self.stop()
        if was_running:
            self.start()

    async def run_now(self) -> SuiteRun:
        logger.info("Manual suite run requested")
        return await self.runner.run_suite()

    def run_in_background(self) -> bool:
        """Start a manual run without waiting for it. False if a run is in progress."""
        if self.runner.is_running:
            return False
        self._spawn("manual")
        return True

    def _spawn(self, label: str) -> asyncio.Task:
        task = asyncio.create_task(self._fire(label))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _timer(self, slot: Slot, tz: ZoneInfo) -> None:
        label = f"{slot[0]:02d}:{slot[1]:02d}"
        last_target: Optional[datetime] = None
        while True:
            now = self._now().astimezone(timezone.utc)
            # an early wake-up must not land on the slot that just fired
            target = next_fire_time(slot, tz, max(now, last_target) if last_target else now)
            delay = max((target - now).total_seconds(), 0.0)
            logger.debug(f"Next {label} run in {delay:.0f}s")
            await self._sleep(delay)
            last_target = target
            # stopping the timer leaves an in-flight run to finish
            await asyncio.shield(self._spawn(label))

    async def _fire(self, label: str) -> Optional[SuiteRun]:
        try:
            run = await self.runner.run_suite()
        except Exception:
            logger.exception(f"Scheduled run ({label}) failed")
            return None
        logger.info(f"Scheduled run ({label}) finished with status {run.status.value}")
        return run
