"""Regression detection against the rolling baseline.

``detect_regressions`` is a pure function of (current metrics, baseline):
every rule is evaluated independently and the result carries no hidden
state. ``calculate_status`` is the only way a run's status is derived.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

if TYPE_CHECKING:
    from storage.models import RollingBaseline


class FlagCode(str, Enum):
    QUALITY_REGRESSION = "quality_regression"
    PERFORMANCE_REGRESSION_TPS = "performance_regression_tps"
    PERFORMANCE_REGRESSION_LATENCY = "performance_regression_latency"
    OUTPUT_CAP_DETECTED = "output_cap_detected"
    ERROR_RATE_INCREASE = "error_rate_increase"


class RunStatus(str, Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


QUALITY_DROP_POINTS = 2
TPS_DROP_FACTOR = 0.5
LATENCY_RISE_FACTOR = 2.0
OUTPUT_CAP_FACTOR = 0.75
ERROR_RATE_JUMP = 0.10

ALERT_MESSAGES = {
    FlagCode.QUALITY_REGRESSION: "Quality regression detected: correctness score dropped significantly",
    FlagCode.PERFORMANCE_REGRESSION_TPS: "Performance regression: tokens per second halved",
    FlagCode.PERFORMANCE_REGRESSION_LATENCY: "Performance regression: p95 latency doubled",
    FlagCode.OUTPUT_CAP_DETECTED: "Possible output capping: median output tokens dropped 25%+",
    FlagCode.ERROR_RATE_INCREASE: "Error rate increased significantly",
}


@dataclass(frozen=True)
class CurrentMetrics:
    correctness_score: float
    error_rate: float
    ttft_p95: Optional[float] = None
    latency_p95: Optional[float] = None
    tokens_per_sec_median: Optional[float] = None
    output_tokens_median: Optional[float] = None


def detect_regressions(current: CurrentMetrics, baseline: "RollingBaseline") -> List[FlagCode]:
    """Return the flags raised by ``current`` against ``baseline``, in vocabulary order.

    A zero baseline value disables the rule that depends on it, and the
    error-rate rule needs at least one prior run, so a store with no history
    always yields GREEN.
    """
    flags: List[FlagCode] = []

    if (baseline.correctness_score > 0
            and current.correctness_score <= baseline.correctness_score - QUALITY_DROP_POINTS):
        flags.append(FlagCode.QUALITY_REGRESSION)

    if (current.tokens_per_sec_median is not None
            and baseline.tokens_per_sec_median > 0
            and current.tokens_per_sec_median < baseline.tokens_per_sec_median * TPS_DROP_FACTOR):
        flags.append(FlagCode.PERFORMANCE_REGRESSION_TPS)

    if (current.latency_p95 is not None
            and baseline.latency_p95 > 0
            and current.latency_p95 > baseline.latency_p95 * LATENCY_RISE_FACTOR):
        flags.append(FlagCode.PERFORMANCE_REGRESSION_LATENCY)

    if (current.output_tokens_median is not None
            and baseline.output_tokens_median > 0
            and current.output_tokens_median < baseline.output_tokens_median * OUTPUT_CAP_FACTOR):
        flags.append(FlagCode.OUTPUT_CAP_DETECTED)

    if baseline.run_count > 0 and current.error_rate > baseline.error_rate + ERROR_RATE_JUMP:
        flags.append(FlagCode.ERROR_RATE_INCREASE)

    return flags


def calculate_status(flags: Sequence) -> RunStatus:
    if len(flags) >= 2:
        return RunStatus.RED
    if len(flags) == 1:
        return RunStatus.YELLOW
    return RunStatus.GREEN


def alert_message(flags: Iterable) -> str:
    messages = []
    for flag in flags:
        try:
            messages.append(ALERT_MESSAGES[FlagCode(flag)])
        except ValueError:
            messages.append(str(flag))
    return "; ".join(messages)
