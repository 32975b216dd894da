"""
Clock Source

Wraps a monotonic high-resolution wall timer and a process CPU-time counter.
A mark captures both; elapsed wall time and consumed CPU time are measured
against it in milliseconds.

Process CPU time covers user and system time of every thread and does not
advance while the process is suspended, which is what makes the difference
between the two readings a throttling signal.

Author: Mridankan Mandal
"""

from dataclasses import dataclass
from typing import Callable, Optional
import time
import logging

from throttlescope.errors import UnsupportedCapability


logger = logging.getLogger(__name__)

Timer = Callable[[], float]


@dataclass(frozen=True)
class Instant:
    """
    A point in time captured by ClockSource.mark().

    Attributes:
        wall: Monotonic wall clock reading in seconds.
        cpu: Process CPU time in seconds, or None if unsupported.
    """
    wall: float
    cpu: Optional[float]


class ClockSource:
    """
    Monotonic wall clock plus process CPU-time accounting.

    Timers and the sleep function are injectable so that tests can drive
    the scheduler with a deterministic clock.

    Example:
        clock = ClockSource()
        start = clock.mark()
        work()
        wall_ms = clock.elapsed_since(start)
        cpu_ms = clock.cpu_time_since(start)
    """

    def __init__(
        self,
        wall_timer: Timer = time.perf_counter,
        cpu_timer: Optional[Timer] = time.process_time,
        sleeper: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the clock source.

        Args:
            wall_timer: Monotonic timer returning seconds.
            cpu_timer: Process CPU timer returning seconds, or None when the
                host offers no CPU accounting.
            sleeper: Blocking sleep taking seconds.
        """
        self._wall_timer = wall_timer
        self._sleeper = sleeper
        self._cpu_timer = self._probe(cpu_timer)

    @staticmethod
    def _probe(cpu_timer: Optional[Timer]) -> Optional[Timer]:
        """Return the CPU timer if it can actually be read."""
        if cpu_timer is None:
            return None
        try:
            cpu_timer()
        except OSError as e:
            logger.warning(f"CPU time accounting unavailable: {e}")
            return None
        return cpu_timer

    @property
    def supports_cpu_time(self) -> bool:
        """Whether cpu_time_since() can be used."""
        return self._cpu_timer is not None

    def mark(self) -> Instant:
        """Capture the current wall and CPU readings."""
        cpu = self._cpu_timer() if self._cpu_timer is not None else None
        return Instant(wall=self._wall_timer(), cpu=cpu)

    def elapsed_since(self, mark: Instant) -> float:
        """Wall time in milliseconds since mark."""
        return (self._wall_timer() - mark.wall) * 1000.0

    def cpu_time_since(self, mark: Instant) -> float:
        """
        Process CPU time (user + system) in milliseconds since mark.

        Raises:
            UnsupportedCapability: If the host provides no CPU accounting.
        """
        if self._cpu_timer is None or mark.cpu is None:
            raise UnsupportedCapability("process CPU time is not available on this host")
        return (self._cpu_timer() - mark.cpu) * 1000.0

    def sleep_ms(self, duration_ms: float) -> None:
        """Block without consuming CPU for duration_ms milliseconds."""
        if duration_ms > 0:
            self._sleeper(duration_ms / 1000.0)

    @staticmethod
    def epoch_ms() -> int:
        """Current Unix time in milliseconds, for result timestamps."""
        return int(time.time() * 1000)
