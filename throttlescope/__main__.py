"""
Command line entry point.

    python -m throttlescope calibrate --memory 3000
    python -m throttlescope run --memory 128 --duration 5000
    python -m throttlescope suite --duration 10000 --results-dir results
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from throttlescope.config import CalibrationConfig, PlatformConfig
from throttlescope.handler import InvocationHandler
from throttlescope.results import parse_body, save_result
from throttlescope.suite import ADAPTIVE_KIND, CALIBRATION_KIND, LocalInvoker, TierSuite


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="throttlescope",
        description="Measure and adapt to quantum-based CPU throttling",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log every iteration")
    parser.add_argument("--quantum-ms", type=float, default=20.0, help="scheduling quantum (default 20ms)")
    parser.add_argument(
        "--full-core-mb",
        type=float,
        default=1769.0,
        help="memory allocation granting one full core (default 1769)",
    )
    parser.add_argument("--results-dir", help="directory to store result documents")
    sub = parser.add_subparsers(dest="command", required=True)

    cal = sub.add_parser("calibrate", help="measure the reference workload baseline")
    cal.add_argument("--memory", type=int, help="memory allocation in MB (default: detect)")
    cal.add_argument("--warmup", type=int, default=50)
    cal.add_argument("--iterations", type=int, default=500)
    cal.add_argument("--data-size", type=int, default=100 * 1024, help="reference size in bytes")

    run = sub.add_parser("run", help="run an adaptive, interval-aligned workload")
    run.add_argument("--memory", type=int, help="memory allocation in MB (default: detect)")
    run.add_argument("--duration", type=float, default=5000, help="test duration in ms")
    run.add_argument("--calibration-cpu-ms", type=float, help="CPU ms per 100KB from a prior calibration")
    run.add_argument("--baseline-iteration-ms", type=float, help="expected wall ms per iteration")

    suite = sub.add_parser("suite", help="calibrate, then run every memory tier sequentially")
    suite.add_argument("--duration", type=float, default=10000, help="test duration per tier in ms")
    suite.add_argument("--tiers", type=int, nargs="+", help="memory tiers in MB")
    suite.add_argument("--settle", type=float, default=2.0, help="seconds between tiers")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )

    platform_kwargs = {
        "quantum_ms": args.quantum_ms,
        "memory_for_full_core_mb": args.full_core_mb,
    }
    if args.command == "suite":
        platform_kwargs["settling_delay_sec"] = args.settle
        if args.tiers:
            platform_kwargs["memory_tiers_mb"] = tuple(args.tiers)
    platform = PlatformConfig(**platform_kwargs)

    if args.command == "suite":
        suite = TierSuite(LocalInvoker(platform=platform), platform, CalibrationConfig(), args.results_dir)
        report = suite.run(test_duration_ms=args.duration)
        summary = {
            memory: parse_body(response)["stats"]
            for memory, response in report.responses.items()
        }
        print(json.dumps(summary, indent=2))
        return 0

    handler = InvocationHandler(memory_mb=args.memory, platform=platform)
    if args.command == "calibrate":
        event = {
            "isCalibration": True,
            "warmupIterations": args.warmup,
            "calibrationIterations": args.iterations,
            "dataSize": args.data_size,
        }
        kind = CALIBRATION_KIND
    else:
        event = {"testDurationMs": args.duration}
        if args.calibration_cpu_ms is not None:
            event["calibrationCpuTimeFor100KBMs"] = args.calibration_cpu_ms
        if args.baseline_iteration_ms is not None:
            event["baselineIterationTimeMs"] = args.baseline_iteration_ms
        kind = ADAPTIVE_KIND

    response = handler.handle(event)
    if args.results_dir:
        save_result(response, args.results_dir, kind, handler.memory_mb)

    body = parse_body(response)
    print(json.dumps(body.get("stats") or body.get("calibrationResults"), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
