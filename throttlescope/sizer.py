"""
Adaptive Sizer

Scales the calibrated reference workload to the CPU budget an environment
gets inside one scheduling quantum:

    allowed_cpu_ms = cpu_share * quantum_ms * safety_factor
    size_units     = max(1, floor(allowed_cpu_ms / baseline_cpu_ms * reference_units))

Low-share environments show more timing jitter, so they get a larger margin
(a smaller safety factor).

A plan can be refined exactly once, after the first live iteration, when the
observed CPU time is far from the target. The Initial -> Refined transition
is carried by the plan itself, so a refined plan cannot be refined again.

Author: Mridankan Mandal
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Dict, Any
import math
import logging

from throttlescope.calibration import CalibrationBaseline
from throttlescope.config import PlatformConfig, SizerConfig
from throttlescope.errors import PlanRefinementError


logger = logging.getLogger(__name__)


class PlanState(Enum):
    """Lifecycle of an adaptive plan."""
    INITIAL = "initial"
    REFINED = "refined"


@dataclass(frozen=True)
class AdaptivePlan:
    """
    Workload size chosen to fit one quantum's CPU budget.

    Attributes:
        cpu_share: Fraction of a core granted to the environment.
        allowed_cpu_ms_per_quantum: CPU time the workload may use per quantum.
        calibrated_size_units: Workload size to execute each iteration.
        safety_factor: Fraction of the theoretical budget that is targeted.
        state: INITIAL, or REFINED after the one-shot correction.
    """
    cpu_share: float
    allowed_cpu_ms_per_quantum: float
    calibrated_size_units: int
    safety_factor: float
    state: PlanState = PlanState.INITIAL

    @property
    def is_refinable(self) -> bool:
        return self.state is PlanState.INITIAL

    def refine(self, observed_cpu_ms: float, config: Optional[SizerConfig] = None) -> "AdaptivePlan":
        """
        Apply the one-shot correction from the first live iteration.

        The size is rescaled by target / observed when that ratio falls
        outside [tolerance_low, tolerance_high]; otherwise it is kept. Either
        way the returned plan is REFINED.

        Args:
            observed_cpu_ms: CPU time of the first iteration.
            config: Sizer config holding the target and tolerance band.

        Returns:
            A new plan in state REFINED.

        Raises:
            PlanRefinementError: If this plan was already refined.
        """
        if not self.is_refinable:
            raise PlanRefinementError("adaptive plan can only be refined once")

        config = config or SizerConfig()
        target_cpu_ms = self.allowed_cpu_ms_per_quantum * config.target_utilization
        new_size = self.calibrated_size_units

        if observed_cpu_ms > 0:
            ratio = target_cpu_ms / observed_cpu_ms
            if ratio < config.tolerance_low or ratio > config.tolerance_high:
                new_size = max(1, math.floor(self.calibrated_size_units * ratio))
                logger.info(
                    f"Refining workload size {self.calibrated_size_units} -> {new_size} units "
                    f"(CPU time: {observed_cpu_ms:.2f}ms, target: {target_cpu_ms:.2f}ms)"
                )
            else:
                logger.info(
                    f"First iteration CPU time {observed_cpu_ms:.2f}ms is close to target "
                    f"{target_cpu_ms:.2f}ms, keeping {new_size} units"
                )

        return replace(self, calibrated_size_units=new_size, state=PlanState.REFINED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpuShare": self.cpu_share,
            "allowedCpuMsPerQuantum": self.allowed_cpu_ms_per_quantum,
            "calibratedSizeUnits": self.calibrated_size_units,
            "safetyFactor": self.safety_factor,
            "state": self.state.value,
        }


class AdaptiveSizer:
    """
    Derives an AdaptivePlan from a CPU share and a calibration baseline.

    Example:
        sizer = AdaptiveSizer()
        plan = sizer.plan(cpu_share=128 / 1769, baseline=baseline)
        plan.calibrated_size_units  # ~22 for a 3.6ms/100KB baseline
    """

    def __init__(
        self,
        platform: Optional[PlatformConfig] = None,
        config: Optional[SizerConfig] = None,
    ):
        self.platform = platform or PlatformConfig()
        self.config = config or SizerConfig()

    def allowed_cpu_ms(self, cpu_share: float, safety_factor: Optional[float] = None) -> float:
        """CPU milliseconds the workload may use per quantum."""
        if safety_factor is None:
            safety_factor = self.config.safety_factor_for(cpu_share)
        return cpu_share * self.platform.quantum_ms * safety_factor

    def plan(
        self,
        cpu_share: float,
        baseline: CalibrationBaseline,
        safety_factor: Optional[float] = None,
    ) -> AdaptivePlan:
        """
        Compute the workload size that fits one quantum.

        Args:
            cpu_share: Fraction of a core granted to the target environment.
            baseline: Calibration baseline for the reference size.
            safety_factor: Override for the share-dependent default.

        Returns:
            AdaptivePlan in state INITIAL, with calibrated_size_units >= 1.

        Raises:
            ValueError: If cpu_share or the baseline CPU time is not positive.
        """
        if cpu_share <= 0:
            raise ValueError("cpu_share must be positive")
        if baseline.cpu_ms_per_reference <= 0:
            raise ValueError("baseline CPU time must be positive")
        if safety_factor is None:
            safety_factor = self.config.safety_factor_for(cpu_share)

        allowed = self.allowed_cpu_ms(cpu_share, safety_factor)
        scaled = allowed / baseline.cpu_ms_per_reference * baseline.reference_size_units
        size = max(1, math.floor(scaled))

        logger.info(
            f"CPU allocation: {cpu_share * 100:.2f}% of a core, allowed "
            f"{allowed:.3f}ms CPU per {self.platform.quantum_ms:g}ms quantum, "
            f"workload size {size} units"
        )

        return AdaptivePlan(
            cpu_share=cpu_share,
            allowed_cpu_ms_per_quantum=allowed,
            calibrated_size_units=size,
            safety_factor=safety_factor,
        )
