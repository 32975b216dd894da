"""
Result Documents

Builds and parses the JSON result documents exchanged at the invocation
boundary and stored on disk. A response is `{"statusCode": 200, "body": ...}`
where `body` is the JSON-encoded run result; stored files keep that nesting
so existing report generators can read them.

Author: Mridankan Mandal
"""

from datetime import datetime, timezone
from typing import Dict, Any, Optional, Union
import json
import os
import logging

from throttlescope.calibration import CalibrationBaseline
from throttlescope.metrics import RunSummary, ThrottleDetector
from throttlescope.scheduler import RunResult


logger = logging.getLogger(__name__)


def build_response(body: Dict[str, Any], status_code: int = 200) -> Dict[str, Any]:
    """Wrap a result body the way the function runtime returns it."""
    return {
        "statusCode": status_code,
        "body": json.dumps(body, indent=2),
    }


def parse_body(response: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract the result body from a response.

    Accepts both a JSON-encoded string body and an already decoded one.
    """
    body = response.get("body", response)
    if isinstance(body, str):
        return json.loads(body)
    return body


def run_body(
    result: RunResult,
    memory_mb: int,
    cpu_share: float,
    detector: ThrottleDetector,
) -> Dict[str, Any]:
    """
    Build the body of an adaptive run result.

    Args:
        result: Completed scheduler run.
        memory_mb: Memory allocation of the environment.
        cpu_share: CPU share of the environment.
        detector: Detector used to describe throttle events.
    """
    return {
        "startTime": result.start_epoch_ms,
        "endTime": result.end_epoch_ms,
        "totalWallClockTime": result.total_wall_ms,
        "totalCpuTime": result.total_cpu_ms,
        "totalIterations": result.summary.iteration_count,
        "memorySize": memory_mb,
        "cpuAllocation": cpu_share,
        "initialDataSizeKB": result.initial_plan.calibrated_size_units,
        "finalDataSizeKB": result.final_plan.calibrated_size_units,
        "plan": result.final_plan.to_dict(),
        "throttlingEvents": [detector.describe_event(r) for r in result.throttle_events],
        "iterationResults": [r.to_dict() for r in result.records],
        "stats": result.summary.to_stats_dict(),
    }


def calibration_body(
    baseline: CalibrationBaseline,
    memory_mb: int,
    start_epoch_ms: int,
    end_epoch_ms: int,
    total_wall_ms: float,
    total_cpu_ms: float,
) -> Dict[str, Any]:
    """Build the body of a calibration result."""
    return {
        "startTime": start_epoch_ms,
        "endTime": end_epoch_ms,
        "totalWallClockTime": total_wall_ms,
        "totalCpuTime": total_cpu_ms,
        "totalIterations": baseline.sample_count,
        "memorySize": memory_mb,
        "cpuAllocation": baseline.cpu_share,
        "calibrationResults": baseline.to_dict(),
    }


def summary_from_body(body: Dict[str, Any]) -> Optional[RunSummary]:
    """Rebuild the RunSummary of a run body, or None for calibration bodies."""
    stats = body.get("stats")
    if stats is None:
        return None
    return RunSummary.from_stats_dict(stats, body.get("totalIterations", 0))


def result_file_name(kind: str, memory_mb: int, timestamp: Optional[str] = None) -> str:
    """File name for a stored result, e.g. adaptive-throttling-128MB-<ts>.json."""
    timestamp = timestamp or datetime.now(timezone.utc).isoformat()
    return f"{kind}-{memory_mb}MB-{timestamp}.json"


def save_result(
    response: Dict[str, Any],
    results_dir: str,
    kind: str,
    memory_mb: int,
    timestamp: Optional[str] = None,
) -> str:
    """
    Write a response document to results_dir.

    Returns:
        Path of the written file.
    """
    os.makedirs(results_dir, exist_ok=True)
    path = os.path.join(results_dir, result_file_name(kind, memory_mb, timestamp))
    with open(path, "w") as f:
        json.dump(response, f, indent=2)
    logger.info(f"Results saved to {path}")
    return path


def load_result_file(path: Union[str, os.PathLike]) -> Dict[str, Any]:
    """Read a stored response and return its decoded body."""
    with open(path, "r") as f:
        return parse_body(json.load(f))
