import logging
import time

logger = logging.getLogger("profiler")


class Stopwatch:
    """Logs the time spent in each named stage of one request."""

    def __init__(self, name: str):
        self.name = name
        self.laps: list[tuple[str, float]] = []
        self._started = self._last = time.perf_counter()

    def lap(self, stage: str) -> float:
        t = time.perf_counter()
        elapsed = (t - self._last) * 1000
        self._last = t
        self.laps.append((stage, elapsed))
        logger.debug(f"[PROFILER] {self.name} {stage}: {elapsed:.2f} ms")
        return elapsed

    @property
    def total_ms(self) -> float:
        return (self._last - self._started) * 1000
