"""
Unit Tests for the Adaptive Sizer

Author: Mridankan Mandal
"""

import unittest

from throttlescope import (
    AdaptivePlan,
    AdaptiveSizer,
    CalibrationBaseline,
    PlanRefinementError,
    PlanState,
    SizerConfig,
    cpu_share_for_memory,
)


def baseline(cpu_ms: float = 3.6, units: int = 100) -> CalibrationBaseline:
    return CalibrationBaseline.from_external(cpu_ms, units)


class TestAdaptiveSizer(unittest.TestCase):
    """Tests for AdaptiveSizer.plan()."""

    def test_full_core_scenario(self):
        """1.0 share, 0.85 factor, 3.6ms/100KB -> 17ms budget, 472 units."""
        plan = AdaptiveSizer().plan(1.0, baseline())

        self.assertEqual(plan.safety_factor, 0.85)
        self.assertAlmostEqual(plan.allowed_cpu_ms_per_quantum, 17.0)
        self.assertEqual(plan.calibrated_size_units, 472)
        self.assertEqual(plan.state, PlanState.INITIAL)

    def test_low_share_scenario(self):
        """128MB share uses the 0.55 margin -> ~0.795ms budget, 22 units."""
        share = cpu_share_for_memory(128)
        plan = AdaptiveSizer().plan(share, baseline())

        self.assertAlmostEqual(share, 0.0723, places=3)
        self.assertEqual(plan.safety_factor, 0.55)
        self.assertAlmostEqual(plan.allowed_cpu_ms_per_quantum, 0.7959, places=3)
        self.assertEqual(plan.calibrated_size_units, 22)

    def test_share_cutoff(self):
        """The larger margin applies strictly below the cutoff."""
        config = SizerConfig()
        self.assertEqual(config.safety_factor_for(0.29), 0.55)
        self.assertEqual(config.safety_factor_for(0.3), 0.85)

    def test_size_never_below_one(self):
        """Tiny shares and expensive baselines still yield one unit."""
        sizer = AdaptiveSizer()
        for share in (1e-9, 0.001, 0.01, 0.1, 0.5, 1.0):
            plan = sizer.plan(share, baseline(cpu_ms=1000.0))
            self.assertGreaterEqual(plan.calibrated_size_units, 1)

    def test_proportionality(self):
        """Halving the share halves the size within floor rounding."""
        sizer = AdaptiveSizer()
        full = sizer.plan(1.0, baseline(), safety_factor=0.85)
        half = sizer.plan(0.5, baseline(), safety_factor=0.85)

        self.assertLessEqual(abs(full.calibrated_size_units / 2 - half.calibrated_size_units), 1)

    def test_invalid_inputs(self):
        """Non-positive shares and baselines are rejected."""
        sizer = AdaptiveSizer()
        with self.assertRaises(ValueError):
            sizer.plan(0.0, baseline())
        with self.assertRaises(ValueError):
            sizer.plan(1.0, baseline(cpu_ms=0.0))

    def test_invalid_safety_factor(self):
        with self.assertRaises(ValueError):
            SizerConfig(safety_factor=1.5)


class TestPlanRefinement(unittest.TestCase):
    """Tests for the one-shot AdaptivePlan.refine()."""

    def setUp(self):
        self.plan = AdaptivePlan(
            cpu_share=1.0,
            allowed_cpu_ms_per_quantum=17.0,
            calibrated_size_units=472,
            safety_factor=0.85,
        )

    def test_rescale_when_outside_band(self):
        """Observed 34ms vs 13.6ms target scales the size by 0.4."""
        refined = self.plan.refine(34.0)

        self.assertEqual(refined.state, PlanState.REFINED)
        self.assertEqual(refined.calibrated_size_units, 188)
        self.assertEqual(self.plan.calibrated_size_units, 472)

    def test_keep_size_inside_band(self):
        """Observed time close to target keeps the size but still refines."""
        refined = self.plan.refine(13.0)

        self.assertEqual(refined.calibrated_size_units, 472)
        self.assertEqual(refined.state, PlanState.REFINED)

    def test_refine_only_once(self):
        """A refined plan cannot be refined again."""
        refined = self.plan.refine(50.0)

        self.assertFalse(refined.is_refinable)
        with self.assertRaises(PlanRefinementError):
            refined.refine(1.0)

    def test_zero_observation_keeps_size(self):
        refined = self.plan.refine(0.0)
        self.assertEqual(refined.calibrated_size_units, 472)
        self.assertEqual(refined.state, PlanState.REFINED)

    def test_refined_size_at_least_one(self):
        refined = self.plan.refine(1e9)
        self.assertEqual(refined.calibrated_size_units, 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
