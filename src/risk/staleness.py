"""
Staleness Monitor - forces UNSUPPORTED when no cycle has succeeded recently
"""
from typing import Optional

from config import settings


class StalenessMonitor:
    """
    Tracks the last cycle that completed without error.
    Before the first success the monitor's start time is the baseline, so a
    monitor that never succeeds also goes stale.
    """

    def __init__(self, stale_after_s: float = settings.STALE_AFTER_S, started_at_ms: int = 0):
        self.stale_after_s = stale_after_s
        self._started_at_ms = started_at_ms
        self._last_success_ms: Optional[int] = None

    @property
    def last_success_ms(self) -> Optional[int]:
        return self._last_success_ms

    def start(self, now_ms: int) -> None:
        self._started_at_ms = now_ms

    def record_success(self, now_ms: int) -> None:
        self._last_success_ms = now_ms

    def age_s(self, now_ms: int) -> float:
        """Seconds since the last success (or since start)"""
        baseline = self._last_success_ms if self._last_success_ms is not None else self._started_at_ms
        return max(0.0, (now_ms - baseline) / 1000.0)

    def is_stale(self, now_ms: int) -> bool:
        return self.age_s(now_ms) > self.stale_after_s

    def get_status(self, now_ms: int) -> dict:
        return {
            "last_success_ms": self._last_success_ms,
            "age_s": round(self.age_s(now_ms), 1),
            "stale_after_s": self.stale_after_s,
            "stale": self.is_stale(now_ms),
        }
