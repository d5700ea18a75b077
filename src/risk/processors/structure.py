"""
Structure Evaluator - short-horizon continuation / breakdown vs the crowded side

Inputs are close-to-close returns of the two most recent 15m and 1h candles.
Branch order is a tie-break and must stay:
    1. continuation intact  2. broken  3. weakening  4. default intact
"""
from typing import Optional, Sequence

from config import settings
from src.core.models import Candle
from src.risk.models import CandleReturns, CrowdingDirection, StructureResult, StructureState


def close_to_close_return(candles: Optional[Sequence[Candle]]) -> Optional[float]:
    """(closeLast - closePrev) / closePrev over the two most recent candles"""
    if not candles or len(candles) < 2:
        return None
    prev_close = candles[-2].close
    last_close = candles[-1].close
    if prev_close == 0:
        return None
    return (last_close - prev_close) / prev_close


def candle_returns(
    candles_15m: Optional[Sequence[Candle]],
    candles_1h: Optional[Sequence[Candle]],
    failure_reason: str = "",
) -> CandleReturns:
    returns = CandleReturns(
        r15=close_to_close_return(candles_15m),
        r1h=close_to_close_return(candles_1h),
    )
    if failure_reason:
        returns.reason = failure_reason
    elif returns.r15 is None or returns.r1h is None:
        returns.reason = "not enough candles"
    return returns


class StructureEvaluator:
    """Classifies structure as INTACT / WEAKENING / BROKEN, or None when unevaluable"""

    def __init__(
        self,
        broken_r15: float = settings.STRUCTURE_BROKEN_R15,
        broken_r1h: float = settings.STRUCTURE_BROKEN_R1H,
        weakening_r15: float = settings.STRUCTURE_WEAKENING_R15,
    ):
        self.broken_r15 = broken_r15
        self.broken_r1h = broken_r1h
        self.weakening_r15 = weakening_r15

    def classify(
        self, direction: CrowdingDirection, r15: float, r1h: float
    ) -> Optional[StructureState]:
        if direction == CrowdingDirection.LONG_CROWDED:
            if r15 > 0 and r1h > 0:
                return StructureState.INTACT
            if r15 <= -self.broken_r15 or r1h <= -self.broken_r1h:
                return StructureState.BROKEN
            if r15 <= -self.weakening_r15:
                return StructureState.WEAKENING
            return StructureState.INTACT

        if direction == CrowdingDirection.SHORT_CROWDED:
            if r15 < 0 and r1h < 0:
                return StructureState.INTACT
            if r15 >= self.broken_r15 or r1h >= self.broken_r1h:
                return StructureState.BROKEN
            if r15 >= self.weakening_r15:
                return StructureState.WEAKENING
            return StructureState.INTACT

        return None

    def evaluate(
        self,
        crowding_confirmed: bool,
        direction: CrowdingDirection,
        returns: Optional[CandleReturns],
    ) -> StructureResult:
        result = StructureResult(
            direction=direction,
            broken_r15=self.broken_r15,
            broken_r1h=self.broken_r1h,
            weakening_r15=self.weakening_r15,
        )

        if not crowding_confirmed:
            result.reason = "skipped: crowding not confirmed"
            return result
        if direction == CrowdingDirection.NEUTRAL:
            result.reason = "skipped: no crowding direction"
            return result

        result.evaluated = True
        if returns is not None:
            result.r15 = returns.r15
            result.r1h = returns.r1h
        if result.r15 is None or result.r1h is None:
            result.reason = (returns.reason if returns and returns.reason else "returns unavailable")
            return result

        result.state = self.classify(direction, result.r15, result.r1h)
        result.reason = f"{direction.value}: r15={result.r15:+.4%} r1h={result.r1h:+.4%}"
        return result
