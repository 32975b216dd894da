"""
Iteration Records, Throttle Detection and Run Aggregation

Each scheduled iteration produces an IterationRecord. A record is a throttle
event when its wall time materially exceeds what was expected:

- without a baseline: wall_time_ms > quantum_ms * overrun_factor
- with a baseline:    wall_time_ms / baseline_wall_ms > baseline_ratio_threshold

An overrun is the phenomenon being measured, not an error; the run
continues and the event is counted in the summary.

Author: Mridankan Mandal
"""

from dataclasses import dataclass
from typing import List, Optional, Dict, Any, Sequence
import statistics

from throttlescope.config import DetectorConfig


@dataclass(frozen=True)
class IterationRecord:
    """
    Measurements for one executed workload unit.

    Attributes:
        index: Zero-based position in the run.
        start_offset_ms: Start time relative to the run start.
        wall_time_ms: Elapsed wall time of the workload.
        cpu_time_ms: Process CPU time consumed by the workload.
        size_units: Workload size executed.
    """
    index: int
    start_offset_ms: float
    wall_time_ms: float
    cpu_time_ms: float
    size_units: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the iterationResults document shape."""
        return {
            "iteration": self.index + 1,
            "wallClockTimeMs": self.wall_time_ms,
            "cpuTimeMs": self.cpu_time_ms,
            "dataSizeKB": self.size_units,
            "startTime": self.start_offset_ms,
        }


class ThrottleDetector:
    """
    Classifies iteration records as on schedule or throttled.

    Example:
        detector = ThrottleDetector(quantum_ms=20.0)
        detector.is_throttled(record)  # True when wall time > 30ms
    """

    def __init__(
        self,
        quantum_ms: float,
        config: Optional[DetectorConfig] = None,
        baseline_wall_ms: Optional[float] = None,
        baseline_cpu_ms: Optional[float] = None,
    ):
        """
        Initialize the detector.

        Args:
            quantum_ms: Scheduling quantum length.
            config: Detection thresholds. Uses defaults if None.
            baseline_wall_ms: Expected wall time per iteration, if known.
            baseline_cpu_ms: Expected CPU time per iteration, if known.
                Only used to report deviation on events.
        """
        if quantum_ms <= 0:
            raise ValueError("quantum_ms must be positive")
        self.quantum_ms = quantum_ms
        self.config = config or DetectorConfig()
        self.baseline_wall_ms = baseline_wall_ms if baseline_wall_ms and baseline_wall_ms > 0 else None
        self.baseline_cpu_ms = baseline_cpu_ms if baseline_cpu_ms and baseline_cpu_ms > 0 else None

    @property
    def has_baseline(self) -> bool:
        return self.baseline_wall_ms is not None

    @property
    def overrun_threshold_ms(self) -> float:
        """Wall time above which an iteration counts as throttled without a baseline."""
        return self.quantum_ms * self.config.overrun_factor

    def is_throttled(self, record: IterationRecord) -> bool:
        if self.baseline_wall_ms is not None:
            return record.wall_time_ms / self.baseline_wall_ms > self.config.baseline_ratio_threshold
        return record.wall_time_ms > self.overrun_threshold_ms

    def throttle_events(self, records: Sequence[IterationRecord]) -> List[IterationRecord]:
        """Return the throttled records, in execution order."""
        return [r for r in records if self.is_throttled(r)]

    def describe_event(self, record: IterationRecord) -> Dict[str, Any]:
        """Build the throttlingEvents entry for a throttled record."""
        event = {
            "iteration": record.index + 1,
            "wallClockTimeMs": record.wall_time_ms,
            "cpuTimeMs": record.cpu_time_ms,
            "timeFromStart": record.start_offset_ms,
        }
        if self.baseline_wall_ms is not None:
            event["deviationRatio"] = record.wall_time_ms / self.baseline_wall_ms
        else:
            event["detectedDelayMs"] = record.wall_time_ms - self.quantum_ms
        if self.baseline_cpu_ms is not None:
            event["cpuDeviationRatio"] = record.cpu_time_ms / self.baseline_cpu_ms
        return event


@dataclass(frozen=True)
class RunSummary:
    """
    Aggregate statistics over one run's iteration records.

    All statistics are zero when iteration_count is 0; check it before
    interpreting the rest.
    """
    iteration_count: int
    total_wall_ms: float
    total_cpu_ms: float
    avg_cpu_ms: float
    min_cpu_ms: float
    max_cpu_ms: float
    avg_wall_ms: float
    min_wall_ms: float
    max_wall_ms: float
    throttle_event_count: int
    utilization_percent: float
    allowed_cpu_ms_per_quantum: float
    calibrated_size_units: int

    def to_stats_dict(self) -> Dict[str, Any]:
        """Convert to the stats document shape."""
        return {
            "avgCpuTime": self.avg_cpu_ms,
            "minCpuTime": self.min_cpu_ms,
            "maxCpuTime": self.max_cpu_ms,
            "avgWallClockTime": self.avg_wall_ms,
            "minWallClockTime": self.min_wall_ms,
            "maxWallClockTime": self.max_wall_ms,
            "potentialThrottlingEvents": self.throttle_event_count,
            "cpuUtilizationPercent": self.utilization_percent,
            "calibratedDataSizeKB": self.calibrated_size_units,
            "allowedCpuMsPerQuantum": self.allowed_cpu_ms_per_quantum,
            "sumCpuTime": self.total_cpu_ms,
            "sumWallClockTime": self.total_wall_ms,
        }

    @classmethod
    def from_stats_dict(cls, stats: Dict[str, Any], iteration_count: int) -> "RunSummary":
        """
        Rebuild a summary from a stats document.

        Args:
            stats: The stats object of a run result body.
            iteration_count: The body's totalIterations.
        """
        return cls(
            iteration_count=iteration_count,
            total_wall_ms=stats.get("sumWallClockTime", 0.0),
            total_cpu_ms=stats.get("sumCpuTime", 0.0),
            avg_cpu_ms=stats["avgCpuTime"],
            min_cpu_ms=stats["minCpuTime"],
            max_cpu_ms=stats["maxCpuTime"],
            avg_wall_ms=stats["avgWallClockTime"],
            min_wall_ms=stats["minWallClockTime"],
            max_wall_ms=stats["maxWallClockTime"],
            throttle_event_count=stats["potentialThrottlingEvents"],
            utilization_percent=stats.get("cpuUtilizationPercent", 0.0),
            allowed_cpu_ms_per_quantum=stats.get("allowedCpuMsPerQuantum", 0.0),
            calibrated_size_units=stats.get("calibratedDataSizeKB", 0),
        )


class ResultAggregator:
    """
    Reduces a run's iteration records to a RunSummary.

    Aggregation is pure: the records are read, never modified.

    Example:
        aggregator = ResultAggregator(detector)
        summary = aggregator.summarize(records, allowed_cpu_ms=17.0, size_units=472)
    """

    def __init__(self, detector: ThrottleDetector):
        self.detector = detector

    def summarize(
        self,
        records: Sequence[IterationRecord],
        allowed_cpu_ms: float,
        size_units: int = 0,
    ) -> RunSummary:
        """
        Compute summary statistics.

        Args:
            records: Iteration records in execution order.
            allowed_cpu_ms: CPU budget per quantum from the adaptive plan.
            size_units: Workload size in effect at the end of the run.

        Returns:
            RunSummary; zero statistics if records is empty.
        """
        if not records:
            return RunSummary(
                iteration_count=0,
                total_wall_ms=0.0,
                total_cpu_ms=0.0,
                avg_cpu_ms=0.0,
                min_cpu_ms=0.0,
                max_cpu_ms=0.0,
                avg_wall_ms=0.0,
                min_wall_ms=0.0,
                max_wall_ms=0.0,
                throttle_event_count=0,
                utilization_percent=0.0,
                allowed_cpu_ms_per_quantum=allowed_cpu_ms,
                calibrated_size_units=size_units,
            )

        cpu_times = [r.cpu_time_ms for r in records]
        wall_times = [r.wall_time_ms for r in records]
        avg_cpu = statistics.mean(cpu_times)
        utilization = avg_cpu / allowed_cpu_ms * 100 if allowed_cpu_ms > 0 else 0.0

        return RunSummary(
            iteration_count=len(records),
            total_wall_ms=sum(wall_times),
            total_cpu_ms=sum(cpu_times),
            avg_cpu_ms=avg_cpu,
            min_cpu_ms=min(cpu_times),
            max_cpu_ms=max(cpu_times),
            avg_wall_ms=statistics.mean(wall_times),
            min_wall_ms=min(wall_times),
            max_wall_ms=max(wall_times),
            throttle_event_count=len(self.detector.throttle_events(records)),
            utilization_percent=utilization,
            allowed_cpu_ms_per_quantum=allowed_cpu_ms,
            calibrated_size_units=size_units,
        )
