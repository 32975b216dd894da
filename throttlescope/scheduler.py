"""
Interval-Aligned Scheduler

Runs one workload unit per scheduling quantum and sleeps out the rest of the
quantum. The sleep targets the next quantum boundary rather than a fixed
delay: an iteration that overruns its quantum (itself a throttling symptom)
waits only until the next multiple of the quantum, so later iterations stay
in phase with the platform's real scheduling boundaries.

    remaining = quantum - (elapsed mod quantum), and 0 on an exact multiple

The sleep is a true blocking wait, so the CPU is handed back for the
throttled part of the quantum.

Author: Mridankan Mandal
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import math
import logging

from throttlescope.clock import ClockSource
from throttlescope.config import PlatformConfig, SizerConfig
from throttlescope.metrics import (
    IterationRecord,
    ResultAggregator,
    RunSummary,
    ThrottleDetector,
)
from throttlescope.sizer import AdaptivePlan
from throttlescope.workloads import Workload


logger = logging.getLogger(__name__)

BOUNDARY_TOLERANCE_MS = 1e-6


class SchedulerState(Enum):
    """Lifecycle of a scheduler run."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


def remaining_in_quantum(elapsed_ms: float, quantum_ms: float) -> float:
    """
    Time left until the next quantum boundary.

    An iteration that finished inside its quantum waits out the rest of it.
    One that overran waits for the next boundary, and an elapsed time that
    is an exact multiple of the quantum yields 0, not a full quantum.

    Args:
        elapsed_ms: Time since the iteration started.
        quantum_ms: Scheduling quantum length.

    Returns:
        Milliseconds to sleep, at most quantum_ms.
    """
    if quantum_ms <= 0:
        raise ValueError("quantum_ms must be positive")
    if elapsed_ms < quantum_ms:
        return quantum_ms - max(0.0, elapsed_ms)
    remainder = elapsed_ms % quantum_ms
    # Float timers rarely land exactly on a multiple.
    if remainder < BOUNDARY_TOLERANCE_MS or quantum_ms - remainder < BOUNDARY_TOLERANCE_MS:
        return 0.0
    return quantum_ms - remainder


def iterations_for_duration(total_duration_ms: float, quantum_ms: float) -> int:
    """Number of whole quanta in total_duration_ms."""
    return max(0, math.floor(total_duration_ms / quantum_ms))


@dataclass
class RunResult:
    """
    Outcome of one scheduler run.

    Attributes:
        records: One IterationRecord per executed iteration, in order.
        initial_plan: Plan the run started with.
        final_plan: Plan in effect at the end (refined or not).
        summary: Aggregated statistics.
        throttle_events: Records classified as throttled.
        start_epoch_ms: Unix time at run start.
        end_epoch_ms: Unix time at run end.
        total_wall_ms: Wall time of the whole run including sleeps.
        total_cpu_ms: Process CPU time of the whole run, 0 if unsupported.
    """
    records: List[IterationRecord]
    initial_plan: AdaptivePlan
    final_plan: AdaptivePlan
    summary: RunSummary
    throttle_events: List[IterationRecord] = field(default_factory=list)
    start_epoch_ms: int = 0
    end_epoch_ms: int = 0
    total_wall_ms: float = 0.0
    total_cpu_ms: float = 0.0


class IntervalScheduler:
    """
    Executes workload units aligned to scheduling quantum boundaries.

    A scheduler instance performs a single run: IDLE -> RUNNING -> COMPLETED.

    Example:
        scheduler = IntervalScheduler(WorkloadGenerator.hash_compress_task())
        result = scheduler.run(plan, total_duration_ms=5000)
        result.summary.throttle_event_count
    """

    def __init__(
        self,
        workload: Workload,
        clock: Optional[ClockSource] = None,
        platform: Optional[PlatformConfig] = None,
        detector: Optional[ThrottleDetector] = None,
        sizer_config: Optional[SizerConfig] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            workload: Callable taking a size in bytes.
            clock: Clock source. Uses the process clocks if None.
            platform: Platform constants. Uses defaults if None.
            detector: Throttle detector for live classification. Uses a
                quantum-based detector if None.
            sizer_config: Refinement settings. Uses defaults if None.
        """
        self.workload = workload
        self.clock = clock or ClockSource()
        self.platform = platform or PlatformConfig()
        self.detector = detector or ThrottleDetector(self.platform.quantum_ms)
        self.sizer_config = sizer_config or SizerConfig()
        self.state = SchedulerState.IDLE

    def run(
        self,
        plan: AdaptivePlan,
        iteration_count: Optional[int] = None,
        total_duration_ms: Optional[float] = None,
    ) -> RunResult:
        """
        Execute the run.

        Args:
            plan: Adaptive plan giving the workload size and CPU budget.
            iteration_count: Number of iterations. Derived from
                total_duration_ms when None.
            total_duration_ms: Run length used to derive iteration_count.

        Returns:
            RunResult with records, plans and summary.

        Raises:
            RuntimeError: If this scheduler already ran.
            ValueError: If neither iteration_count nor total_duration_ms is
                given, or iteration_count is negative.
        """
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(f"scheduler already {self.state.value}")

        quantum_ms = self.platform.quantum_ms
        if iteration_count is None:
            if total_duration_ms is None:
                raise ValueError("either iteration_count or total_duration_ms is required")
            iteration_count = iterations_for_duration(total_duration_ms, quantum_ms)
        if iteration_count < 0:
            raise ValueError("iteration_count must not be negative")

        self.state = SchedulerState.RUNNING
        has_cpu = self.clock.supports_cpu_time
        if not has_cpu:
            logger.warning("No CPU accounting, throttle detection uses wall time only")

        logger.info(
            f"Starting run: {iteration_count} iterations, one every {quantum_ms:g}ms, "
            f"{plan.calibrated_size_units} units"
        )

        current_plan = plan
        records: List[IterationRecord] = []
        throttled: List[IterationRecord] = []
        start_epoch_ms = self.clock.epoch_ms()
        run_start = self.clock.mark()

        for i in range(iteration_count):
            iteration_start = self.clock.mark()
            size_units = current_plan.calibrated_size_units

            self.workload(size_units * self.platform.unit_bytes)

            wall_ms = self.clock.elapsed_since(iteration_start)
            cpu_ms = self.clock.cpu_time_since(iteration_start) if has_cpu else 0.0
            record = IterationRecord(
                index=i,
                start_offset_ms=(iteration_start.wall - run_start.wall) * 1000.0,
                wall_time_ms=wall_ms,
                cpu_time_ms=cpu_ms,
                size_units=size_units,
            )
            records.append(record)

            if self.detector.is_throttled(record):
                throttled.append(record)
                logger.warning(
                    f"Throttling detected at iteration {i + 1}: wall {wall_ms:.2f}ms, "
                    f"CPU {cpu_ms:.2f}ms"
                )
            else:
                logger.debug(
                    f"Iteration {i + 1}: wall {wall_ms:.2f}ms, CPU {cpu_ms:.2f}ms, "
                    f"{size_units} units"
                )

            if i == 0 and has_cpu and self.sizer_config.refine_after_first and current_plan.is_refinable:
                current_plan = current_plan.refine(cpu_ms, self.sizer_config)

            remaining = remaining_in_quantum(self.clock.elapsed_since(iteration_start), quantum_ms)
            if i < iteration_count - 1 and remaining > 0:
                self.clock.sleep_ms(remaining)

        total_wall_ms = self.clock.elapsed_since(run_start)
        total_cpu_ms = self.clock.cpu_time_since(run_start) if has_cpu else 0.0
        end_epoch_ms = self.clock.epoch_ms()

        summary = ResultAggregator(self.detector).summarize(
            records,
            allowed_cpu_ms=current_plan.allowed_cpu_ms_per_quantum,
            size_units=current_plan.calibrated_size_units,
        )
        self.state = SchedulerState.COMPLETED

        if summary.throttle_event_count > 0:
            logger.warning(f"Detected {summary.throttle_event_count} potential throttling events")
        else:
            logger.info("No throttling detected, workload fits the quantum budget")

        return RunResult(
            records=records,
            initial_plan=plan,
            final_plan=current_plan,
            summary=summary,
            throttle_events=throttled,
            start_epoch_ms=start_epoch_ms,
            end_epoch_ms=end_epoch_ms,
            total_wall_ms=total_wall_ms,
            total_cpu_ms=total_cpu_ms,
        )
