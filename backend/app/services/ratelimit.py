import time
from typing import Callable, Dict


class MinIntervalGate:
    """
    Lets an emission through only if enough time has passed since the last
    one of the same kind. Each key keeps its own timestamp.
    """

    def __init__(self, intervals: Dict[str, float], clock: Callable[[], float] = time.time):
        self.intervals = dict(intervals)
        self._clock = clock
        self._last: Dict[str, float] = {}

    def allow(self, key: str) -> bool:
        interval = self.intervals.get(key, 0.0)
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last <= interval:
            return False
        self._last[key] = now
        return True

    def mark(self, key: str):
        """Record an emission that bypassed the gate (e.g. forced broadcasts)."""
        self._last[key] = self._clock()

    def reset(self, key: str = None):
        if key is None:
            self._last.clear()
        else:
            self._last.pop(key, None)
