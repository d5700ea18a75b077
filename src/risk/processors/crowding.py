"""
Crowding Detector - funding z-score vs trailing history plus OI cap membership
"""
from typing import Optional, Sequence, Tuple
import numpy as np

from config import settings
from src.risk.models import CrowdingDirection, CrowdingResult


def mean_stdev(values: Sequence[float]) -> Optional[Tuple[float, float]]:
    """
    Sample mean and unbiased (n-1) standard deviation.
    None with fewer than 2 samples, zero variance or non-finite output.
    """
    if len(values) < 2:
        return None
    arr = np.asarray(values, dtype=np.float64)
    mean = float(np.mean(arr))
    std = float(np.std(arr, ddof=1))
    if not np.isfinite(mean) or not np.isfinite(std) or std == 0.0:
        return None
    return mean, std


def funding_zscore(current: float, history: Sequence[float]) -> Optional[float]:
    stats = mean_stdev(history)
    if stats is None:
        return None
    mean, std = stats
    return (current - mean) / std


class CrowdingDetector:
    """
    crowding_raw = z defined and |z| >= threshold and coin is at OI cap
    Direction from the sign of z: positive = longs paying = LONG_CROWDED
    """

    def __init__(self, z_threshold: float = settings.FUNDING_Z_THRESHOLD):
        self.z_threshold = z_threshold

    def evaluate(
        self,
        funding_rate: Optional[float],
        history: Optional[Sequence[float]],
        at_oi_cap: Optional[bool],
        failure_reason: Optional[str] = None,
    ) -> CrowdingResult:
        """
        Never raises. `history` / `at_oi_cap` of None mean the upstream fetch
        failed; `failure_reason` carries why.
        """
        result = CrowdingResult(
            evaluated=True,
            funding_rate=funding_rate,
            z_threshold=self.z_threshold,
            at_oi_cap=at_oi_cap,
        )

        if funding_rate is None:
            result.reason = "funding rate unavailable"
            return result
        if history is None:
            result.reason = failure_reason or "funding history unavailable"
            return result

        result.history_count = len(history)
        stats = mean_stdev(history)
        if stats is None:
            result.reason = (
                "insufficient funding history" if len(history) < 2
                else "funding history has zero variance"
            )
            return result

        result.history_mean, result.history_stdev = stats
        z = (funding_rate - result.history_mean) / result.history_stdev
        result.z_score = z

        if z > 0:
            result.direction = CrowdingDirection.LONG_CROWDED
        elif z < 0:
            result.direction = CrowdingDirection.SHORT_CROWDED

        if at_oi_cap is None:
            result.reason = failure_reason or "open interest cap unavailable"
            return result

        extreme = abs(z) >= self.z_threshold
        result.raw = extreme and at_oi_cap
        if result.raw:
            result.reason = f"|z| {abs(z):.2f} >= {self.z_threshold} and at open interest cap"
        elif not extreme:
            result.reason = f"|z| {abs(z):.2f} below {self.z_threshold}"
        else:
            result.reason = "funding extreme but not at open interest cap"
        return result
