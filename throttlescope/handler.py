"""
Invocation Handler

Entry point used by the function runtime. An invocation is either a
calibration run (measure the reference workload on a full-core environment)
or an adaptive run (size the workload to this environment's quantum budget
and execute it interval-aligned).

Request fields:
    isCalibration, testDurationMs, iterations, warmupIterations,
    calibrationIterations, dataSize, baselineIterationTimeMs,
    baselineCpuTimePerIterationMs, calibrationCpuTimeFor100KBMs,
    calibrationDataSizeKB

Author: Mridankan Mandal
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import json
import logging

from throttlescope.calibration import CalibrationBaseline, CalibrationEngine, resolve_baseline
from throttlescope.clock import ClockSource
from throttlescope.config import (
    CalibrationConfig,
    DetectorConfig,
    PlatformConfig,
    SizerConfig,
    cpu_share_for_memory,
    detect_memory_size,
)
from throttlescope.metrics import ThrottleDetector
from throttlescope.results import build_response, calibration_body, run_body
from throttlescope.scheduler import IntervalScheduler, iterations_for_duration
from throttlescope.sizer import AdaptiveSizer
from throttlescope.workloads import Workload, WorkloadGenerator


logger = logging.getLogger(__name__)

DEFAULT_TEST_DURATION_MS = 5000
DEFAULT_CALIBRATION_DURATION_MS = 10000
DEFAULT_DATA_SIZE_BYTES = 100 * 1024


def _optional_float(event: Dict[str, Any], key: str) -> Optional[float]:
    value = event.get(key)
    return None if value is None else float(value)


def _int_or_default(event: Dict[str, Any], key: str, default: int) -> int:
    """Read an integer field, treating a missing or null value as default. Zero is kept."""
    value = event.get(key)
    return default if value is None else int(value)


def _flag(event: Dict[str, Any], key: str) -> bool:
    """Read a boolean field that may arrive as a JSON bool or a string."""
    value = event.get(key, False)
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


@dataclass(frozen=True)
class InvocationRequest:
    """Parsed invocation event with defaults applied."""
    is_calibration: bool = False
    test_duration_ms: float = DEFAULT_TEST_DURATION_MS
    iterations: Optional[int] = None
    warmup_iterations: int = 50
    calibration_iterations: int = 500
    data_size_bytes: int = DEFAULT_DATA_SIZE_BYTES
    baseline_iteration_time_ms: Optional[float] = None
    baseline_cpu_time_per_iteration_ms: Optional[float] = None
    calibration_cpu_time_ms: Optional[float] = None
    calibration_data_size_kb: int = 100

    @classmethod
    def from_event(cls, event: Optional[Dict[str, Any]]) -> "InvocationRequest":
        """
        Parse an invocation event.

        Unknown fields are ignored. A missing testDurationMs defaults to
        10000ms for calibration and 5000ms otherwise.
        """
        event = event or {}
        is_calibration = _flag(event, "isCalibration")
        default_duration = DEFAULT_CALIBRATION_DURATION_MS if is_calibration else DEFAULT_TEST_DURATION_MS
        iterations = event.get("iterations")

        return cls(
            is_calibration=is_calibration,
            test_duration_ms=float(event.get("testDurationMs") or default_duration),
            iterations=None if iterations is None else int(iterations),
            warmup_iterations=_int_or_default(event, "warmupIterations", 50),
            calibration_iterations=_int_or_default(event, "calibrationIterations", 500),
            data_size_bytes=int(event.get("dataSize") or DEFAULT_DATA_SIZE_BYTES),
            baseline_iteration_time_ms=_optional_float(event, "baselineIterationTimeMs"),
            baseline_cpu_time_per_iteration_ms=_optional_float(event, "baselineCpuTimePerIterationMs"),
            calibration_cpu_time_ms=_optional_float(event, "calibrationCpuTimeFor100KBMs"),
            calibration_data_size_kb=int(event.get("calibrationDataSizeKB") or 100),
        )


class InvocationHandler:
    """
    Runs calibration or adaptive invocations in the current process.

    Example:
        handler = InvocationHandler(memory_mb=128)
        response = handler.handle({"testDurationMs": 1000})
        body = json.loads(response["body"])
    """

    def __init__(
        self,
        memory_mb: Optional[int] = None,
        workload: Optional[Workload] = None,
        clock: Optional[ClockSource] = None,
        platform: Optional[PlatformConfig] = None,
        sizer_config: Optional[SizerConfig] = None,
        detector_config: Optional[DetectorConfig] = None,
    ):
        """
        Initialize the handler.

        Args:
            memory_mb: Memory allocation of this environment. Detected when None.
            workload: Workload unit. Defaults to hash + compress.
            clock: Clock source shared by calibration and scheduling.
            platform: Platform constants.
            sizer_config: Adaptive sizer settings.
            detector_config: Throttle detection thresholds.
        """
        self.memory_mb = memory_mb or detect_memory_size()
        self.workload = workload or WorkloadGenerator.hash_compress_task()
        self.clock = clock or ClockSource()
        self.platform = platform or PlatformConfig()
        self.sizer_config = sizer_config or SizerConfig()
        self.detector_config = detector_config or DetectorConfig()

    @property
    def cpu_share(self) -> float:
        return cpu_share_for_memory(self.memory_mb, self.platform)

    def handle(self, event: Optional[Dict[str, Any]], context: Any = None) -> Dict[str, Any]:
        """Dispatch an invocation event and return the response document."""
        logger.info(f"Invoked with event: {json.dumps(event)}")
        request = InvocationRequest.from_event(event)
        if request.is_calibration:
            return build_response(self.calibrate(request))
        return build_response(self.adaptive_run(request))

    def _calibration_config(self, request: InvocationRequest) -> CalibrationConfig:
        return CalibrationConfig(
            reference_size_units=max(1, request.data_size_bytes // self.platform.unit_bytes),
            warmup_iterations=request.warmup_iterations,
            measurement_iterations=request.calibration_iterations,
        )

    def calibrate(self, request: InvocationRequest) -> Dict[str, Any]:
        """Run a calibration and build its result body."""
        config = self._calibration_config(request)
        engine = CalibrationEngine(self.workload, self.clock, config, self.platform)

        start_epoch_ms = self.clock.epoch_ms()
        start = self.clock.mark()
        baseline = engine.run(self.cpu_share)
        total_wall_ms = self.clock.elapsed_since(start)
        total_cpu_ms = self.clock.cpu_time_since(start) if self.clock.supports_cpu_time else 0.0

        return calibration_body(
            baseline,
            memory_mb=self.memory_mb,
            start_epoch_ms=start_epoch_ms,
            end_epoch_ms=self.clock.epoch_ms(),
            total_wall_ms=total_wall_ms,
            total_cpu_ms=total_cpu_ms,
        )

    def resolve_baseline(self, request: InvocationRequest) -> CalibrationBaseline:
        """
        Pick the baseline for an adaptive run.

        A baseline passed with the request wins. Otherwise this environment
        calibrates itself when it has at least a full core; on a smaller
        share the result would be unreliable, so the fallback is used
        directly.
        """
        config = self._calibration_config(request)

        if request.calibration_cpu_time_ms is not None:
            baseline = CalibrationBaseline.from_external(
                request.calibration_cpu_time_ms,
                request.calibration_data_size_kb,
            )
            return resolve_baseline(baseline, config)

        if self.cpu_share < config.min_cpu_share:
            logger.info(
                f"CPU share {self.cpu_share:.3f} too small to self-calibrate, using default baseline"
            )
            return resolve_baseline(None, config)

        engine = CalibrationEngine(self.workload, self.clock, config, self.platform)
        return resolve_baseline(engine.run(self.cpu_share), config)

    def adaptive_run(self, request: InvocationRequest) -> Dict[str, Any]:
        """Size the workload to this environment and run it interval-aligned."""
        baseline = self.resolve_baseline(request)
        plan = AdaptiveSizer(self.platform, self.sizer_config).plan(self.cpu_share, baseline)

        detector = ThrottleDetector(
            self.platform.quantum_ms,
            self.detector_config,
            baseline_wall_ms=request.baseline_iteration_time_ms,
            baseline_cpu_ms=request.baseline_cpu_time_per_iteration_ms,
        )
        scheduler = IntervalScheduler(
            self.workload,
            clock=self.clock,
            platform=self.platform,
            detector=detector,
            sizer_config=self.sizer_config,
        )

        iteration_count = request.iterations
        if iteration_count is None:
            iteration_count = iterations_for_duration(request.test_duration_ms, self.platform.quantum_ms)

        result = scheduler.run(plan, iteration_count=iteration_count)
        body = run_body(result, self.memory_mb, self.cpu_share, detector)
        body["calibration"] = {
            "cpuTimeMs": baseline.cpu_ms_per_reference,
            "dataSizeKB": baseline.reference_size_units,
            "isFallback": baseline.is_fallback,
        }
        return body


def handler(event: Optional[Dict[str, Any]], context: Any = None) -> Dict[str, Any]:
    """Function runtime entry point using the detected environment."""
    return InvocationHandler().handle(event, context)
