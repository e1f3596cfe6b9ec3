import itertools
import time
from enum import Enum
from typing import Callable, Dict, Optional

PROBE_INTERVAL = 10.0
PROBE_TIMEOUT = 5.0
GOOD_LATENCY_MS = 150
FAIR_LATENCY_MS = 500


class ConnectionQuality(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


def classify_latency(latency_ms: float) -> ConnectionQuality:
    if latency_ms < GOOD_LATENCY_MS:
        return ConnectionQuality.GOOD
    if latency_ms < FAIR_LATENCY_MS:
        return ConnectionQuality.FAIR
    return ConnectionQuality.POOR


class ConnectionProbe:
    """Round-trip latency sampling. Advisory only; playback never depends on it."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, timeout: float = PROBE_TIMEOUT):
        self._clock = clock
        self.timeout = timeout
        self.quality = ConnectionQuality.GOOD
        self.last_latency_ms: Optional[float] = None
        self._tokens = itertools.count(1)
        self._outstanding: Dict[int, float] = {}

    def start(self) -> int:
        token = next(self._tokens)
        self._outstanding[token] = self._clock()
        return token

    def on_reply(self, token) -> Optional[ConnectionQuality]:
        sent_at = self._outstanding.pop(token, None)
        if sent_at is None:
            return None
        self.last_latency_ms = (self._clock() - sent_at) * 1000
        self.quality = classify_latency(self.last_latency_ms)
        return self.quality

    def check_timeouts(self) -> ConnectionQuality:
        now = self._clock()
        expired = [t for t, sent_at in self._outstanding.items() if now - sent_at >= self.timeout]
        for token in expired:
            del self._outstanding[token]
        if expired:
            self.quality = ConnectionQuality.POOR
        return self.quality
