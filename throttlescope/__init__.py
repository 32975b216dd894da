"""
ThrottleScope: Calibration and Quantum-Aligned Scheduling for Metered CPUs

A Python library for measuring and compensating for the CPU time-slicing of
function-as-a-service platforms, where CPU is granted in proportion to the
memory allocation and enforced in fixed scheduling quanta (20ms by default,
with 1769MB granting one full core).

The workflow:
- CalibrationEngine measures the CPU cost of a reference workload on a
  full-core environment.
- AdaptiveSizer scales that workload to the CPU budget of one quantum for a
  given CPU share.
- IntervalScheduler runs one workload unit per quantum, sleeping to the next
  quantum boundary, and records wall and CPU time per iteration.
- ThrottleDetector and ResultAggregator classify throttled iterations and
  summarise the run.

Example:
    from throttlescope import (
        AdaptiveSizer, CalibrationBaseline, IntervalScheduler, WorkloadGenerator,
    )

    plan = AdaptiveSizer().plan(cpu_share=128 / 1769, baseline=CalibrationBaseline.fallback())
    result = IntervalScheduler(WorkloadGenerator.hash_compress_task()).run(plan, total_duration_ms=5000)
    print(result.summary.throttle_event_count)

Author: Mridankan Mandal
License: MIT
"""

from __future__ import annotations

from throttlescope.calibration import (
    CalibrationBaseline,
    CalibrationEngine,
    CalibrationSample,
    resolve_baseline,
)
from throttlescope.clock import ClockSource, Instant
from throttlescope.config import (
    CalibrationConfig,
    DetectorConfig,
    PlatformConfig,
    SizerConfig,
    cpu_share_for_memory,
)
from throttlescope.errors import (
    PlanRefinementError,
    ThrottleScopeError,
    UnsupportedCapability,
)
from throttlescope.handler import InvocationHandler, InvocationRequest, handler
from throttlescope.metrics import (
    IterationRecord,
    ResultAggregator,
    RunSummary,
    ThrottleDetector,
)
from throttlescope.scheduler import (
    IntervalScheduler,
    RunResult,
    SchedulerState,
    remaining_in_quantum,
)
from throttlescope.sizer import AdaptivePlan, AdaptiveSizer, PlanState
from throttlescope.suite import LocalInvoker, TierSuite
from throttlescope.workloads import WorkloadGenerator

__version__ = "1.0.0"
__author__ = "Mridankan Mandal"
__license__ = "MIT"

__all__ = [
    # Calibration
    "CalibrationBaseline",
    "CalibrationEngine",
    "CalibrationSample",
    "resolve_baseline",
    # Clock
    "ClockSource",
    "Instant",
    # Configuration
    "CalibrationConfig",
    "DetectorConfig",
    "PlatformConfig",
    "SizerConfig",
    "cpu_share_for_memory",
    # Errors
    "PlanRefinementError",
    "ThrottleScopeError",
    "UnsupportedCapability",
    # Invocation boundary
    "InvocationHandler",
    "InvocationRequest",
    "handler",
    # Measurement and aggregation
    "IterationRecord",
    "ResultAggregator",
    "RunSummary",
    "ThrottleDetector",
    # Scheduling
    "IntervalScheduler",
    "RunResult",
    "SchedulerState",
    "remaining_in_quantum",
    "AdaptivePlan",
    "AdaptiveSizer",
    "PlanState",
    # Suites
    "LocalInvoker",
    "TierSuite",
    # Workloads
    "WorkloadGenerator",
]
