"""
Crash Risk Monitor Configuration
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List
from pathlib import Path


class Settings(BaseSettings):
    # Project paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent

    # Hyperliquid info endpoint
    HYPERLIQUID_REST_BASE: str = "https://api.hyperliquid.xyz"
    HTTP_TIMEOUT_S: float = 10.0
    HTTP_CONNECT_TIMEOUT_S: float = 5.0

    # Settlement venues ("" = main perp dex, others are builder dexes)
    SETTLEMENT_VENUES: List[str] = [""]

    # Coins evaluated when none are given on the command line
    COINS: List[str] = ["BTC", "ETH", "SOL"]

    # Cycle scheduling (seconds)
    TICK_INTERVAL_S: float = 15.0
    STALE_AFTER_S: float = 60.0
    STALE_CHECK_INTERVAL_S: float = 10.0

    # Universe filter (USD notional)
    MIN_DAY_NOTIONAL_VOLUME: float = 25_000_000
    MIN_OPEN_INTEREST_USD: float = 10_000_000

    # Pillar 1 - crowding
    FUNDING_LOOKBACK_S: int = 24 * 60 * 60
    FUNDING_Z_THRESHOLD: float = 1.5

    # Confirmation (consecutive raw samples)
    CONFIRMATION_REQUIRED: int = 2

    # Pillar 2 - structure (fractions, not percent)
    STRUCTURE_BROKEN_R15: float = 0.006
    STRUCTURE_BROKEN_R1H: float = 0.012
    STRUCTURE_WEAKENING_R15: float = 0.002

    # Pillar 3 - liquidity
    IMPACT_COST_BPS_THRESHOLD: float = 25.0
    SPREAD_BPS_THRESHOLD: float = 8.0
    DEPTH_BAND_PCT: float = 0.002
    DEPTH_NOTIONAL_MIN: float = 500_000
    ORDERBOOK_CACHE_TTL_S: float = 30.0

    # Hysteresis (minimum hold before a downgrade, seconds)
    COOLDOWN_RED_S: float = 30 * 60
    COOLDOWN_ORANGE_S: float = 15 * 60

    # Dashboard API
    DASHBOARD_HOST: str = "0.0.0.0"
    DASHBOARD_PORT: int = Field(default=8890)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
