"""
Liquidity Stress Detector - thin books via impact cost, falling back to spread + depth
"""
from typing import Optional

from config import settings
from src.core.models import OrderBookSnapshot
from src.risk.models import LiquidityResult, LiquiditySource


class LiquidityStressDetector:
    """
    Primary:  impact cost bps >= threshold
    Fallback: spread bps >= threshold AND depth near mid < minimum
              (only consulted when impact prices are absent)
    """

    def __init__(
        self,
        impact_cost_threshold_bps: float = settings.IMPACT_COST_BPS_THRESHOLD,
        spread_threshold_bps: float = settings.SPREAD_BPS_THRESHOLD,
        depth_min_notional: float = settings.DEPTH_NOTIONAL_MIN,
        depth_band_pct: float = settings.DEPTH_BAND_PCT,
    ):
        self.impact_cost_threshold_bps = impact_cost_threshold_bps
        self.spread_threshold_bps = spread_threshold_bps
        self.depth_min_notional = depth_min_notional
        self.depth_band_pct = depth_band_pct

    def _result(self) -> LiquidityResult:
        return LiquidityResult(
            evaluated=True,
            impact_cost_threshold_bps=self.impact_cost_threshold_bps,
            spread_threshold_bps=self.spread_threshold_bps,
            depth_min_notional=self.depth_min_notional,
            depth_band_pct=self.depth_band_pct,
        )

    def evaluate_impact(self, impact_cost_bps: float) -> LiquidityResult:
        result = self._result()
        result.source = LiquiditySource.IMPACT
        result.impact_cost_bps = impact_cost_bps
        result.raw = impact_cost_bps >= self.impact_cost_threshold_bps
        comparison = ">=" if result.raw else "<"
        result.reason = f"impact cost {impact_cost_bps:.1f}bps {comparison} {self.impact_cost_threshold_bps:g}bps"
        return result

    def evaluate_book(
        self, book: Optional[OrderBookSnapshot], failure_reason: str = ""
    ) -> LiquidityResult:
        result = self._result()
        if book is None:
            result.reason = failure_reason or "order book unavailable"
            return result

        result.source = LiquiditySource.ORDERBOOK
        result.spread_bps = book.spread_bps
        result.depth_notional = book.depth_near_mid(self.depth_band_pct)
        if result.spread_bps is None or result.depth_notional is None:
            result.reason = "order book has no two-sided quote"
            return result

        wide = result.spread_bps >= self.spread_threshold_bps
        thin = result.depth_notional < self.depth_min_notional
        result.raw = wide and thin
        result.reason = (
            f"spread {result.spread_bps:.1f}bps ({'wide' if wide else 'ok'}), "
            f"depth ${result.depth_notional:,.0f} ({'thin' if thin else 'ok'})"
        )
        return result

    def evaluate(
        self,
        impact_cost_bps: Optional[float],
        book: Optional[OrderBookSnapshot] = None,
        book_failure_reason: str = "",
    ) -> LiquidityResult:
        if impact_cost_bps is not None:
            return self.evaluate_impact(impact_cost_bps)
        return self.evaluate_book(book, book_failure_reason)
