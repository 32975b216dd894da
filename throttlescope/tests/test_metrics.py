"""
Unit Tests for Throttle Detection, Aggregation and Result Documents

Author: Mridankan Mandal
"""

import json
import os
import tempfile
import unittest

from throttlescope import (
    DetectorConfig,
    IterationRecord,
    ResultAggregator,
    RunSummary,
    ThrottleDetector,
)
from throttlescope.results import (
    build_response,
    load_result_file,
    parse_body,
    result_file_name,
    save_result,
    summary_from_body,
)


def records(walls, cpus=None):
    cpus = cpus or [2.0] * len(walls)
    return [
        IterationRecord(
            index=i,
            start_offset_ms=i * 20.0,
            wall_time_ms=wall,
            cpu_time_ms=cpu,
            size_units=22,
        )
        for i, (wall, cpu) in enumerate(zip(walls, cpus))
    ]


class TestIterationRecord(unittest.TestCase):

    def test_to_dict(self):
        d = records([12.0])[0].to_dict()

        self.assertEqual(d["iteration"], 1)
        self.assertEqual(d["wallClockTimeMs"], 12.0)
        self.assertEqual(d["dataSizeKB"], 22)


class TestThrottleDetector(unittest.TestCase):
    """Tests for ThrottleDetector classification."""

    def test_quantum_threshold(self):
        """Without a baseline the threshold is 1.5 quanta."""
        detector = ThrottleDetector(20.0)
        recs = records([10.0, 30.0, 30.5, 35.0])

        self.assertFalse(detector.has_baseline)
        self.assertEqual(detector.overrun_threshold_ms, 30.0)
        self.assertEqual([r.index for r in detector.throttle_events(recs)], [2, 3])

    def test_custom_overrun_factor(self):
        detector = ThrottleDetector(20.0, DetectorConfig(overrun_factor=2.0))
        self.assertFalse(detector.is_throttled(records([35.0])[0]))

    def test_baseline_ratio(self):
        detector = ThrottleDetector(20.0, baseline_wall_ms=10.0)
        recs = records([14.0, 15.0, 16.0])

        self.assertTrue(detector.has_baseline)
        self.assertEqual([r.index for r in detector.throttle_events(recs)], [2])

    def test_non_positive_baseline_ignored(self):
        self.assertFalse(ThrottleDetector(20.0, baseline_wall_ms=0.0).has_baseline)

    def test_describe_event(self):
        detector = ThrottleDetector(20.0, baseline_wall_ms=10.0, baseline_cpu_ms=2.0)
        event = detector.describe_event(records([16.0], [3.0])[0])

        self.assertEqual(event["iteration"], 1)
        self.assertAlmostEqual(event["deviationRatio"], 1.6)
        self.assertAlmostEqual(event["cpuDeviationRatio"], 1.5)

    def test_invalid_quantum(self):
        with self.assertRaises(ValueError):
            ThrottleDetector(0.0)


class TestResultAggregator(unittest.TestCase):
    """Tests for ResultAggregator.summarize()."""

    def setUp(self):
        self.aggregator = ResultAggregator(ThrottleDetector(20.0))

    def test_statistics(self):
        recs = records([10.0, 12.0, 35.0, 11.0], [0.6, 0.8, 0.7, 0.9])
        summary = self.aggregator.summarize(recs, allowed_cpu_ms=0.795, size_units=22)

        self.assertEqual(summary.iteration_count, 4)
        self.assertAlmostEqual(summary.avg_wall_ms, 17.0)
        self.assertEqual(summary.min_wall_ms, 10.0)
        self.assertEqual(summary.max_wall_ms, 35.0)
        self.assertAlmostEqual(summary.avg_cpu_ms, 0.75)
        self.assertEqual(summary.min_cpu_ms, 0.6)
        self.assertEqual(summary.max_cpu_ms, 0.9)
        self.assertAlmostEqual(summary.total_cpu_ms, 3.0)
        self.assertEqual(summary.throttle_event_count, 1)
        self.assertEqual(summary.calibrated_size_units, 22)

    def test_utilization(self):
        recs = records([10.0, 10.0], [8.0, 9.0])
        summary = self.aggregator.summarize(recs, allowed_cpu_ms=17.0)

        self.assertAlmostEqual(summary.utilization_percent, 100 * 8.5 / 17.0)
        self.assertAlmostEqual(summary.utilization_percent, 50.0)

    def test_empty_records(self):
        summary = self.aggregator.summarize([], allowed_cpu_ms=17.0)

        self.assertEqual(summary.iteration_count, 0)
        self.assertEqual(summary.avg_cpu_ms, 0.0)
        self.assertEqual(summary.max_wall_ms, 0.0)
        self.assertEqual(summary.throttle_event_count, 0)
        self.assertEqual(summary.utilization_percent, 0.0)

    def test_records_not_modified(self):
        recs = records([10.0, 40.0])
        before = list(recs)
        self.aggregator.summarize(recs, allowed_cpu_ms=17.0)
        self.assertEqual(recs, before)


class TestResultDocuments(unittest.TestCase):
    """Tests for the JSON response shape and persistence."""

    def make_summary(self) -> RunSummary:
        recs = records([10.25, 12.5, 35.125], [0.5, 0.75, 0.625])
        return ResultAggregator(ThrottleDetector(20.0)).summarize(recs, allowed_cpu_ms=0.795, size_units=22)

    def test_stats_keys(self):
        stats = self.make_summary().to_stats_dict()
        for key in (
            "avgCpuTime", "minCpuTime", "maxCpuTime",
            "avgWallClockTime", "minWallClockTime", "maxWallClockTime",
            "potentialThrottlingEvents", "cpuUtilizationPercent", "calibratedDataSizeKB",
        ):
            self.assertIn(key, stats)

    def test_summary_round_trip(self):
        """Serializing and parsing a run body reproduces the summary."""
        summary = self.make_summary()
        body = {"totalIterations": summary.iteration_count, "stats": summary.to_stats_dict()}

        response = build_response(body)
        self.assertIsInstance(response["body"], str)
        self.assertEqual(response["statusCode"], 200)

        self.assertEqual(summary_from_body(parse_body(response)), summary)

    def test_calibration_body_has_no_summary(self):
        self.assertIsNone(summary_from_body({"calibrationResults": {}}))

    def test_parse_decoded_body(self):
        self.assertEqual(parse_body({"body": {"a": 1}}), {"a": 1})

    def test_save_and_load(self):
        response = build_response({"memorySize": 128, "stats": self.make_summary().to_stats_dict()})

        with tempfile.TemporaryDirectory() as tmp:
            path = save_result(response, tmp, "adaptive-throttling", 128, "2024-01-01T00-00-00")

            self.assertEqual(os.path.basename(path), "adaptive-throttling-128MB-2024-01-01T00-00-00.json")
            with open(path) as f:
                self.assertIsInstance(json.load(f)["body"], str)
            self.assertEqual(load_result_file(path)["memorySize"], 128)

    def test_file_name(self):
        self.assertEqual(result_file_name("x", 256, "t"), "x-256MB-t.json")


if __name__ == "__main__":
    unittest.main(verbosity=2)
