"""
Workload Units for Calibration and Scheduling

Provides CPU-bound workloads parameterised by a single size argument.
The scheduler and calibration engine treat a workload as any callable
taking a size and returning a value; the return value is discarded.

Author: Mridankan Mandal
"""

import hashlib
import math
import os
import zlib
from typing import Any, Callable

import numpy as np


Workload = Callable[[int], Any]


class WorkloadGenerator:
    """
    Factory for sized CPU-bound workloads.

    Example:
        work = WorkloadGenerator.hash_compress_task()
        work(100 * 1024)  # Hash and compress 100KB of random data
    """

    @staticmethod
    def hash_compress_task(compression_level: int = 6) -> Workload:
        """
        Create the default workload: hash and compress a random buffer.

        Each call generates `size` random bytes, takes their SHA-256 digest,
        deflates them and takes the SHA-512 digest of the compressed output.
        CPU cost grows linearly with size.

        Args:
            compression_level: zlib compression level.

        Returns:
            Callable accepting a size in bytes and returning the final digest.
        """
        def task(size: int) -> str:
            data = os.urandom(size)
            hashlib.sha256(data).hexdigest()
            compressed = zlib.compress(data, compression_level)
            return hashlib.sha512(compressed).hexdigest()

        return task

    @staticmethod
    def cpu_task_python() -> Workload:
        """
        Create a pure Python arithmetic workload.

        Returns:
            Callable accepting a number of loop iterations.
        """
        def task(size: int) -> float:
            result = 0.0
            for i in range(size):
                result += math.sin(i) * math.cos(i)
            return result

        return task

    @staticmethod
    def cpu_task_numpy(seed: int = 17) -> Workload:
        """
        Create a vectorised NumPy workload.

        Sorts a random vector and reduces its FFT magnitude, so cost grows
        roughly linearly with the vector length.

        Args:
            seed: Seed for the random generator.

        Returns:
            Callable accepting a vector length.
        """
        rng = np.random.default_rng(seed)

        def task(size: int) -> float:
            values = rng.random(max(1, size))
            values.sort()
            return float(np.abs(np.fft.rfft(values)).sum())

        return task
