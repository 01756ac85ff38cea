"""
Round-trip latency aggregation for a measuring relay loop
Samples are raw nanosecond durations; mean and sample variance (n-1) are
computed on demand for the shutdown report.
"""

import statistics
from dataclasses import dataclass
from typing import List, Optional

from .errors import StatisticsUnavailable


@dataclass
class LatencySummary:
    """Aggregate view of the collected round trips"""
    count: int
    mean_ns: Optional[float]
    variance_ns2: Optional[float]


class LatencyRecorder:
    """Ordered, never-cleared list of round-trip durations"""

    def __init__(self):
        self.samples: List[int] = []

    @property
    def count(self) -> int:
        return len(self.samples)

    def record(self, elapsed_ns: int):
        self.samples.append(int(elapsed_ns))

    def mean(self) -> float:
        if not self.samples:
            raise StatisticsUnavailable("mean requires at least 1 sample")
        return statistics.fmean(self.samples)

    def variance(self) -> float:
        """Sample variance with denominator n-1"""
        if len(self.samples) < 2:
            raise StatisticsUnavailable(
                f"variance requires at least 2 samples, have {len(self.samples)}")
        return float(statistics.variance(self.samples))

    def summary(self) -> LatencySummary:
        try:
            mean = self.mean()
        except StatisticsUnavailable:
            mean = None
        try:
            variance = self.variance()
        except StatisticsUnavailable:
            variance = None
        return LatencySummary(count=self.count, mean_ns=mean, variance_ns2=variance)

    def report_lines(self) -> List[str]:
        """Human-readable shutdown report"""
        summary = self.summary()
        lines = [f"Number of times collected: {summary.count}"]

        if summary.mean_ns is None:
            lines.append("average: undefined (no samples)")
        else:
            lines.append(f"average: {summary.mean_ns}")

        if summary.variance_ns2 is None:
            lines.append(f"variance: undefined (need at least 2 samples, have {summary.count})")
        else:
            lines.append(f"variance: {summary.variance_ns2}")

        return lines
