"""
Memory Tier Suite

Drives a complete experiment: one calibration on a full-core environment,
then an adaptive run on every memory tier. Tiers run strictly one after
another, separated by a settling delay, so that runs never share the
underlying resource pool at the same time.

The transport that reaches each environment is an invoker callable
`invoker(memory_mb, payload) -> response`. LocalInvoker runs the handler in
this process.

Author: Mridankan Mandal
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import time
import logging

from throttlescope.calibration import CalibrationBaseline
from throttlescope.clock import ClockSource
from throttlescope.config import CalibrationConfig, PlatformConfig, SizerConfig
from throttlescope.handler import InvocationHandler
from throttlescope.results import parse_body, save_result
from throttlescope.workloads import Workload


logger = logging.getLogger(__name__)

Invoker = Callable[[int, Dict[str, Any]], Dict[str, Any]]

CALIBRATION_KIND = "throttling-calibration"
ADAPTIVE_KIND = "adaptive-throttling"


class LocalInvoker:
    """Runs invocations in-process with the requested memory allocation."""

    def __init__(
        self,
        workload: Optional[Workload] = None,
        clock: Optional[ClockSource] = None,
        platform: Optional[PlatformConfig] = None,
        sizer_config: Optional[SizerConfig] = None,
    ):
        self.workload = workload
        self.clock = clock
        self.platform = platform
        self.sizer_config = sizer_config

    def __call__(self, memory_mb: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        handler = InvocationHandler(
            memory_mb=memory_mb,
            workload=self.workload,
            clock=self.clock,
            platform=self.platform,
            sizer_config=self.sizer_config,
        )
        return handler.handle(payload)


@dataclass
class SuiteReport:
    """Baseline used and responses collected by a tier suite."""
    baseline: CalibrationBaseline
    responses: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    files: Dict[int, str] = field(default_factory=dict)


class TierSuite:
    """
    Calibrates once, then runs every memory tier sequentially.

    Example:
        suite = TierSuite(LocalInvoker(), results_dir="results")
        report = suite.run(test_duration_ms=10000)
    """

    def __init__(
        self,
        invoker: Invoker,
        platform: Optional[PlatformConfig] = None,
        calibration: Optional[CalibrationConfig] = None,
        results_dir: Optional[str] = None,
        sleeper: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the suite.

        Args:
            invoker: Transport used to run one invocation on a memory tier.
            platform: Platform constants, including the tiers to test.
            calibration: Calibration parameters and fallback constant.
            results_dir: Directory for result files. Nothing is saved if None.
            sleeper: Blocking sleep used for the settling delay.
        """
        self.invoker = invoker
        self.platform = platform or PlatformConfig()
        self.calibration = calibration or CalibrationConfig()
        self.results_dir = results_dir
        self._sleeper = sleeper
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def calibrate(self) -> CalibrationBaseline:
        """
        Run calibration on the calibration tier.

        Any failure, including a response that cannot be decoded or lacks
        calibrationResults, falls back to the default baseline instead of
        aborting the suite.
        """
        payload = {
            "isCalibration": True,
            "warmupIterations": self.calibration.warmup_iterations,
            "calibrationIterations": self.calibration.measurement_iterations,
            "dataSize": self.calibration.reference_size_units * self.platform.unit_bytes,
        }
        memory_mb = self.platform.calibration_memory_mb
        logger.info(f"Running calibration on {memory_mb}MB tier")

        try:
            response = self.invoker(memory_mb, payload)
        except Exception as e:
            logger.error(f"Calibration error: {e}, using default calibration values")
            return CalibrationBaseline.fallback(self.calibration)

        self._save(response, CALIBRATION_KIND, memory_mb)
        try:
            results = parse_body(response).get("calibrationResults")
            if not results or not results.get("reliable", True):
                logger.warning("Calibration returned no usable results, using default calibration values")
                return CalibrationBaseline.fallback(self.calibration)
            cpu_ms = float(results["averageCpuTimePerIterationMs"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Malformed calibration response: {e!r}, using default calibration values")
            return CalibrationBaseline.fallback(self.calibration)

        if cpu_ms <= 0:
            logger.warning(f"Calibration reported {cpu_ms}ms, using default calibration values")
            return CalibrationBaseline.fallback(self.calibration)

        logger.info(
            f"Calibration results: CPU time for {self.calibration.reference_size_units}KB "
            f"workload: {cpu_ms:.2f}ms"
        )
        return CalibrationBaseline.from_external(cpu_ms, self.calibration.reference_size_units)

    def run_tier(
        self,
        memory_mb: int,
        baseline: CalibrationBaseline,
        test_duration_ms: float,
    ) -> Dict[str, Any]:
        """Run one adaptive invocation on a memory tier and save its response."""
        payload = {
            "testDurationMs": test_duration_ms,
            "iterations": int(test_duration_ms // self.platform.quantum_ms),
            "calibrationCpuTimeFor100KBMs": baseline.cpu_ms_per_reference,
            "calibrationDataSizeKB": baseline.reference_size_units,
        }
        logger.info(f"Testing {memory_mb}MB tier")
        response = self.invoker(memory_mb, payload)

        stats = parse_body(response).get("stats")
        if stats:
            logger.info(
                f"Summary for {memory_mb}MB: size={stats['calibratedDataSizeKB']}KB, "
                f"avg CPU={stats['avgCpuTime']:.2f}ms, "
                f"avg wall={stats['avgWallClockTime']:.2f}ms, "
                f"throttling events={stats['potentialThrottlingEvents']}"
            )
        return response

    def run(self, test_duration_ms: float = 10000) -> SuiteReport:
        """
        Calibrate, then run every tier in order with a settling delay between.

        Tier failures propagate to the caller.
        """
        baseline = self.calibrate()
        report = SuiteReport(baseline=baseline)

        for position, memory_mb in enumerate(self.platform.memory_tiers_mb):
            if position > 0 and self.platform.settling_delay_sec > 0:
                self._sleeper(self.platform.settling_delay_sec)
            response = self.run_tier(memory_mb, baseline, test_duration_ms)
            report.responses[memory_mb] = response
            path = self._save(response, ADAPTIVE_KIND, memory_mb)
            if path:
                report.files[memory_mb] = path

        logger.info("All tiers completed")
        return report

    def _save(self, response: Dict[str, Any], kind: str, memory_mb: int) -> Optional[str]:
        if self.results_dir is None:
            return None
        return save_result(response, self.results_dir, kind, memory_mb, self.timestamp)
