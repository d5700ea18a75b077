"""
Market snapshot models consumed by the crash risk engine
All models are read-only inputs, rebuilt from exchange payloads every cycle
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional
import math


def to_finite(value: Any) -> Optional[float]:
    """
    Parse a numeric payload field.
    Returns None for missing values, NaN/inf and anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


@dataclass(slots=True)
class ImpactPrices:
    """Quoted impact bid/ask prices for a reference notional"""
    bid_px: float
    ask_px: float

    @classmethod
    def parse(cls, raw: Any) -> Optional["ImpactPrices"]:
        """
        Accepts [bid, ask], {bidPx, askPx}, {bid, ask} or {b, a}.
        Returns None when either side is missing or not a finite number.
        """
        bid = ask = None
        if isinstance(raw, (list, tuple)) and len(raw) >= 2:
            bid, ask = to_finite(raw[0]), to_finite(raw[1])
        elif isinstance(raw, dict):
            bid = to_finite(_first_present(raw, "bidPx", "bid", "b"))
            ask = to_finite(_first_present(raw, "askPx", "ask", "a"))
        if bid is None or ask is None:
            return None
        return cls(bid_px=bid, ask_px=ask)


def _first_present(raw: dict, *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


@dataclass(slots=True)
class AssetContext:
    """
    Per-symbol perpetual context for one settlement venue
    open_interest_usd is USD notional (token units x mark price)
    """
    coin: str
    venue: str
    mark_price: Optional[float]
    funding: Optional[float]
    open_interest_usd: Optional[float]
    day_notional_volume: Optional[float]
    impact: Optional[ImpactPrices] = None

    @property
    def impact_cost_bps(self) -> Optional[float]:
        """|askImpactPx - bidImpactPx| / markPrice in basis points"""
        if self.impact is None or self.mark_price is None or self.mark_price <= 0:
            return None
        cost = abs(self.impact.ask_px - self.impact.bid_px) / self.mark_price * 10000
        return cost if math.isfinite(cost) else None


@dataclass(slots=True)
class FundingSample:
    """Historical funding rate sample"""
    coin: str
    timestamp_ms: int
    funding_rate: float        # Positive = longs pay shorts


@dataclass(slots=True)
class Candle:
    """OHLCV candle from the exchange (open time)"""
    timestamp_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(slots=True)
class OrderBookLevel:
    """Single price level in order book"""
    price: float
    quantity: float


@dataclass(slots=True)
class OrderBookSnapshot:
    """
    Order book snapshot (top N levels)
    Used as the liquidity fallback when impact prices are missing
    """
    symbol: str
    timestamp_ms: int
    bids: List[OrderBookLevel] = field(default_factory=list)  # Best bid first
    asks: List[OrderBookLevel] = field(default_factory=list)  # Best ask first

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[float]:
        if self.best_bid is not None and self.best_ask is not None:
            return (self.best_bid + self.best_ask) / 2
        return None

    @property
    def spread(self) -> Optional[float]:
        if self.best_bid is not None and self.best_ask is not None:
            return self.best_ask - self.best_bid
        return None

    @property
    def spread_bps(self) -> Optional[float]:
        """Spread in basis points of mid"""
        mid = self.mid_price
        if mid is None or mid <= 0:
            return None
        return (self.spread / mid) * 10000

    def depth_near_mid(self, band_pct: float) -> Optional[float]:
        """
        USD notional resting within +/- band_pct of mid.
        Each side is walked best-to-worst and stops at the first level
        outside the band.
        """
        mid = self.mid_price
        if mid is None:
            return None

        bid_floor = mid * (1 - band_pct)
        ask_cap = mid * (1 + band_pct)

        depth_bid = 0.0
        for lvl in self.bids:
            if lvl.price < bid_floor:
                break
            depth_bid += lvl.price * lvl.quantity

        depth_ask = 0.0
        for lvl in self.asks:
            if lvl.price > ask_cap:
                break
            depth_ask += lvl.price * lvl.quantity

        return depth_bid + depth_ask
