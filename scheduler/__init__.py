"""Daily scheduling of suite runs."""

from .scheduler import SuiteScheduler, next_fire_time, parse_schedule_times, seconds_until

__all__ = ["SuiteScheduler", "next_fire_time", "parse_schedule_times", "seconds_until"]
