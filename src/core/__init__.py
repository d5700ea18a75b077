"""Core market data models"""
from .models import (
    AssetContext,
    Candle,
    FundingSample,
    ImpactPrices,
    OrderBookLevel,
    OrderBookSnapshot,
)

__all__ = [
    "AssetContext",
    "Candle",
    "FundingSample",
    "ImpactPrices",
    "OrderBookLevel",
    "OrderBookSnapshot",
]
