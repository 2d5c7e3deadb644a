"""Order statistics over replicate samples."""

import math
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Optional


def median(values: Iterable[float]) -> Optional[float]:
    """Middle element for odd length, mean of the two middle elements for even."""
    arr = sorted(values)
    if not arr:
        return None
    mid = len(arr) // 2
    if len(arr) % 2:
        return arr[mid]
    return (arr[mid - 1] + arr[mid]) / 2


def percentile(values: Iterable[float], p: float) -> Optional[float]:
    """Nearest-rank percentile: index ``ceil(p/100 * n) - 1``, clamped to the array."""
    arr = sorted(values)
    if not arr:
        return None
    index = math.ceil((p / 100) * len(arr)) - 1
    return arr[min(max(index, 0), len(arr) - 1)]


@dataclass
class PerformanceSummary:
    ttft_median: Optional[float] = None
    ttft_p95: Optional[float] = None
    latency_median: Optional[float] = None
    latency_p95: Optional[float] = None
    tokens_per_sec_median: Optional[float] = None
    tokens_per_sec_p95: Optional[float] = None
    output_tokens_median: Optional[float] = None

    @classmethod
    def from_samples(
        cls,
        ttfts: List[float],
        latencies: List[float],
        tokens_per_sec: List[float],
        output_tokens: List[float],
    ) -> "PerformanceSummary":
        return cls(
            ttft_median=median(ttfts),
            ttft_p95=percentile(ttfts, 95),
            latency_median=median(latencies),
            latency_p95=percentile(latencies, 95),
            tokens_per_sec_median=median(tokens_per_sec),
            tokens_per_sec_p95=percentile(tokens_per_sec, 95),
            output_tokens_median=median(output_tokens),
        )

    def to_dict(self) -> Dict[str, Optional[float]]:
        return asdict(self)
