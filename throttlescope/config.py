"""
Configuration for calibration, sizing, scheduling and throttle detection.

All platform constants (quantum length, memory per core, memory tiers) are
explicit values passed into each component. The thresholds are empirically
tuned defaults and can be overridden per run.

Author: Mridankan Mandal
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import os
import logging

import psutil


logger = logging.getLogger(__name__)

MEMORY_SIZE_ENV = "AWS_LAMBDA_FUNCTION_MEMORY_SIZE"


@dataclass(frozen=True)
class PlatformConfig:
    """
    Constants of the metered execution environment.

    Attributes:
        quantum_ms: Length of one CPU scheduling quantum in milliseconds.
        memory_for_full_core_mb: Memory allocation that grants one full core.
        memory_tiers_mb: Memory allocations exercised by a tier suite.
        calibration_memory_mb: Memory allocation used for calibration runs.
        settling_delay_sec: Pause between consecutive tier runs.
        unit_bytes: Bytes per workload size unit (1 KB).
    """
    quantum_ms: float = 20.0
    memory_for_full_core_mb: float = 1769.0
    memory_tiers_mb: Tuple[int, ...] = (128, 256, 512, 1024, 1769)
    calibration_memory_mb: int = 3000
    settling_delay_sec: float = 2.0
    unit_bytes: int = 1024

    def __post_init__(self):
        if self.quantum_ms <= 0:
            raise ValueError("quantum_ms must be positive")
        if self.memory_for_full_core_mb <= 0:
            raise ValueError("memory_for_full_core_mb must be positive")
        if self.unit_bytes < 1:
            raise ValueError("unit_bytes must be at least 1")


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Parameters of a calibration run.

    Attributes:
        reference_size_units: Workload size measured during calibration.
        warmup_iterations: Untimed executions before measuring.
        measurement_iterations: Timed executions averaged into the baseline.
        min_cpu_share: Smallest CPU share that yields a reliable baseline.
        fallback_cpu_ms_per_reference: Baseline used when calibration is
            unreliable (CPU ms for fallback_reference_size_units of work).
        fallback_reference_size_units: Workload size the fallback baseline
            refers to. Independent of reference_size_units.
    """
    reference_size_units: int = 100
    warmup_iterations: int = 50
    measurement_iterations: int = 500
    min_cpu_share: float = 1.0
    fallback_cpu_ms_per_reference: float = 3.6
    fallback_reference_size_units: int = 100

    def __post_init__(self):
        if self.reference_size_units < 1:
            raise ValueError("reference_size_units must be at least 1")
        if self.fallback_reference_size_units < 1:
            raise ValueError("fallback_reference_size_units must be at least 1")
        if self.warmup_iterations < 0 or self.measurement_iterations < 0:
            raise ValueError("iteration counts must not be negative")


@dataclass(frozen=True)
class SizerConfig:
    """
    Parameters of the adaptive sizer.

    Attributes:
        low_share_cutoff: CPU share below which the larger margin applies.
        low_share_safety_factor: Safety factor for low-share environments.
        safety_factor: Safety factor for every other environment.
        target_utilization: Fraction of the allowed CPU budget the one-shot
            refinement aims for.
        tolerance_low: Lower bound of the accepted target/observed ratio.
        tolerance_high: Upper bound of the accepted target/observed ratio.
        refine_after_first: Refine the plan after the first live iteration.
    """
    low_share_cutoff: float = 0.3
    low_share_safety_factor: float = 0.55
    safety_factor: float = 0.85
    target_utilization: float = 0.8
    tolerance_low: float = 0.7
    tolerance_high: float = 1.3
    refine_after_first: bool = True

    def __post_init__(self):
        for name in ("low_share_safety_factor", "safety_factor", "target_utilization"):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ValueError(f"{name} must be in (0, 1]")
        if self.tolerance_low > self.tolerance_high:
            raise ValueError("tolerance_low must not exceed tolerance_high")

    def safety_factor_for(self, cpu_share: float) -> float:
        """Pick the safety factor for a CPU share."""
        if cpu_share < self.low_share_cutoff:
            return self.low_share_safety_factor
        return self.safety_factor


@dataclass(frozen=True)
class DetectorConfig:
    """
    Thresholds for throttle classification.

    Attributes:
        overrun_factor: Without a baseline, an iteration is throttled when its
            wall time exceeds quantum_ms * overrun_factor.
        baseline_ratio_threshold: With a baseline, an iteration is throttled
            when wall time / baseline wall time exceeds this ratio.
    """
    overrun_factor: float = 1.5
    baseline_ratio_threshold: float = 1.5


def cpu_share_for_memory(memory_mb: float, platform: Optional[PlatformConfig] = None) -> float:
    """
    Derive the CPU share granted to a memory allocation.

    Args:
        memory_mb: Allocated memory in MB.
        platform: Platform constants. Uses defaults if None.

    Returns:
        Fraction of one full core (may exceed 1.0).

    Raises:
        ValueError: If memory_mb is not positive.
    """
    platform = platform or PlatformConfig()
    if memory_mb <= 0:
        raise ValueError("memory_mb must be positive")
    return memory_mb / platform.memory_for_full_core_mb


def detect_memory_size() -> int:
    """
    Determine the memory allocation of the current environment in MB.

    Reads the function runtime variable first and falls back to the total
    memory of the host.
    """
    value = os.environ.get(MEMORY_SIZE_ENV)
    if value:
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring non-numeric {MEMORY_SIZE_ENV}={value!r}")
    return int(psutil.virtual_memory().total // (1024 * 1024))
