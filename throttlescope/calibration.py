"""
Calibration Engine

Establishes an unthrottled CPU-time baseline for one reference-size unit of
work. A calibration run executes untimed warmup iterations (to purge one-time
initialization and cache population costs), then back-to-back measured
iterations with no suspension in between, and averages the CPU time.

The measurement is only meaningful on an environment granted at least one
full core. On a smaller share, or with no samples, the baseline is still
returned but flagged unreliable and callers substitute the fallback constant.

Author: Mridankan Mandal
"""

from dataclasses import dataclass
from typing import List, Optional, Dict, Any
import statistics
import logging

from throttlescope.clock import ClockSource
from throttlescope.config import CalibrationConfig, PlatformConfig
from throttlescope.workloads import Workload


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationSample:
    """One measured execution of the workload at the reference size."""
    wall_time_ms: float
    cpu_time_ms: float


@dataclass(frozen=True)
class CalibrationBaseline:
    """
    Average cost of one reference-size workload on an unthrottled core.

    Attributes:
        reference_size_units: Workload size (in units) that was measured.
        cpu_ms_per_reference: Mean CPU time per execution.
        wall_ms_per_reference: Mean wall time per execution.
        min_cpu_ms: Smallest CPU time observed.
        max_cpu_ms: Largest CPU time observed.
        sample_count: Number of measured executions.
        cpu_share: CPU share of the environment that ran the calibration.
        reliable: False when the baseline must not be trusted.
        is_fallback: True when this is the documented default, not a measurement.
    """
    reference_size_units: int
    cpu_ms_per_reference: float
    wall_ms_per_reference: float
    min_cpu_ms: float = 0.0
    max_cpu_ms: float = 0.0
    sample_count: int = 0
    cpu_share: float = 1.0
    reliable: bool = True
    is_fallback: bool = False

    @classmethod
    def fallback(cls, config: Optional[CalibrationConfig] = None) -> "CalibrationBaseline":
        """Build the documented default baseline (3.6ms per 100KB)."""
        config = config or CalibrationConfig()
        cpu_ms = config.fallback_cpu_ms_per_reference
        return cls(
            reference_size_units=config.fallback_reference_size_units,
            cpu_ms_per_reference=cpu_ms,
            wall_ms_per_reference=cpu_ms,
            min_cpu_ms=cpu_ms,
            max_cpu_ms=cpu_ms,
            is_fallback=True,
        )

    @classmethod
    def from_external(
        cls,
        cpu_ms_per_reference: float,
        reference_size_units: int,
    ) -> "CalibrationBaseline":
        """Wrap a baseline measured elsewhere and passed in with a request."""
        return cls(
            reference_size_units=reference_size_units,
            cpu_ms_per_reference=cpu_ms_per_reference,
            wall_ms_per_reference=cpu_ms_per_reference,
            min_cpu_ms=cpu_ms_per_reference,
            max_cpu_ms=cpu_ms_per_reference,
            reliable=cpu_ms_per_reference > 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the calibrationResults document shape."""
        return {
            "averageIterationTimeMs": self.wall_ms_per_reference,
            "averageCpuTimePerIterationMs": self.cpu_ms_per_reference,
            "minCpuTimeMs": self.min_cpu_ms,
            "maxCpuTimeMs": self.max_cpu_ms,
            "iterations": self.sample_count,
            "dataSizeKB": self.reference_size_units,
            "reliable": self.reliable,
        }


def resolve_baseline(
    baseline: Optional[CalibrationBaseline],
    config: Optional[CalibrationConfig] = None,
) -> CalibrationBaseline:
    """
    Return baseline if it is usable, otherwise the fallback constant.

    Args:
        baseline: Result of a calibration, or None if none was run.
        config: Calibration config holding the fallback constant.
    """
    if baseline is not None and baseline.reliable and baseline.cpu_ms_per_reference > 0:
        return baseline

    fallback = CalibrationBaseline.fallback(config)
    logger.warning(
        f"Calibration baseline unusable, falling back to "
        f"{fallback.cpu_ms_per_reference:.2f}ms per {fallback.reference_size_units} units"
    )
    return fallback


class CalibrationEngine:
    """
    Measures the CPU cost of the reference workload.

    Example:
        engine = CalibrationEngine(WorkloadGenerator.hash_compress_task())
        baseline = engine.run(cpu_share=3000 / 1769)
    """

    def __init__(
        self,
        workload: Workload,
        clock: Optional[ClockSource] = None,
        config: Optional[CalibrationConfig] = None,
        platform: Optional[PlatformConfig] = None,
    ):
        self.workload = workload
        self.clock = clock or ClockSource()
        self.config = config or CalibrationConfig()
        self.platform = platform or PlatformConfig()
        self.samples: List[CalibrationSample] = []

    @property
    def reference_size_bytes(self) -> int:
        return self.config.reference_size_units * self.platform.unit_bytes

    def warmup(self) -> None:
        """Execute the workload warmup_iterations times, discarding timings."""
        size = self.reference_size_bytes
        for _ in range(self.config.warmup_iterations):
            self.workload(size)

    def measure(self) -> List[CalibrationSample]:
        """
        Execute and time the workload measurement_iterations times.

        Iterations run back to back with no suspension. Without CPU
        accounting the wall time stands in for the CPU time.
        """
        size = self.reference_size_bytes
        has_cpu = self.clock.supports_cpu_time
        samples = []

        for _ in range(self.config.measurement_iterations):
            start = self.clock.mark()
            self.workload(size)
            wall_ms = self.clock.elapsed_since(start)
            cpu_ms = self.clock.cpu_time_since(start) if has_cpu else wall_ms
            samples.append(CalibrationSample(wall_time_ms=wall_ms, cpu_time_ms=cpu_ms))

        self.samples = samples
        return samples

    def run(self, cpu_share: float) -> CalibrationBaseline:
        """
        Run warmup and measurement and compute the baseline.

        Args:
            cpu_share: CPU share of the environment running the calibration.

        Returns:
            CalibrationBaseline, flagged unreliable when cpu_share is below
            config.min_cpu_share, no samples were taken, or the host has no
            CPU accounting.
        """
        logger.info(
            f"Calibrating: {self.config.warmup_iterations} warmup + "
            f"{self.config.measurement_iterations} measured iterations at "
            f"{self.config.reference_size_units} units (cpu share {cpu_share:.3f})"
        )

        self.warmup()
        samples = self.measure()
        return self.summarize(samples, cpu_share)

    def summarize(self, samples: List[CalibrationSample], cpu_share: float) -> CalibrationBaseline:
        """Reduce measured samples to a CalibrationBaseline."""
        reliable = (
            len(samples) > 0
            and cpu_share >= self.config.min_cpu_share
            and self.clock.supports_cpu_time
        )

        if not samples:
            baseline = CalibrationBaseline(
                reference_size_units=self.config.reference_size_units,
                cpu_ms_per_reference=0.0,
                wall_ms_per_reference=0.0,
                cpu_share=cpu_share,
                reliable=False,
            )
        else:
            cpu_times = [s.cpu_time_ms for s in samples]
            baseline = CalibrationBaseline(
                reference_size_units=self.config.reference_size_units,
                cpu_ms_per_reference=statistics.mean(cpu_times),
                wall_ms_per_reference=statistics.mean(s.wall_time_ms for s in samples),
                min_cpu_ms=min(cpu_times),
                max_cpu_ms=max(cpu_times),
                sample_count=len(samples),
                cpu_share=cpu_share,
                reliable=reliable,
            )

        if reliable:
            logger.info(
                f"Calibration baseline: {baseline.cpu_ms_per_reference:.3f}ms CPU per "
                f"{baseline.reference_size_units} units (min={baseline.min_cpu_ms:.3f}, "
                f"max={baseline.max_cpu_ms:.3f}, n={baseline.sample_count})"
            )
        else:
            logger.warning(
                f"Calibration unreliable: samples={len(samples)}, cpu share={cpu_share:.3f}, "
                f"cpu accounting={self.clock.supports_cpu_time}"
            )

        return baseline
