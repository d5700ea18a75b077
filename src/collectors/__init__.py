"""Market data collectors"""
from .hyperliquid import HyperliquidInfoClient, HyperliquidInfoError

__all__ = [
    "HyperliquidInfoClient",
    "HyperliquidInfoError",
]
