"""
Universe Filter - minimum liquidity / open interest gate
"""
from typing import Optional

from config import settings
from src.risk.models import UniverseResult


class UniverseFilter:
    """
    eligible <=> asset found and day volume > min and open interest > min.
    A missing input is "data unavailable", reported apart from "ineligible".
    """

    def __init__(
        self,
        min_day_notional_volume: float = settings.MIN_DAY_NOTIONAL_VOLUME,
        min_open_interest_usd: float = settings.MIN_OPEN_INTEREST_USD,
    ):
        self.min_day_notional_volume = min_day_notional_volume
        self.min_open_interest_usd = min_open_interest_usd

    def evaluate(
        self,
        asset_found: bool,
        day_notional_volume: Optional[float],
        open_interest_usd: Optional[float],
    ) -> UniverseResult:
        result = UniverseResult(
            asset_found=asset_found,
            day_notional_volume=day_notional_volume,
            open_interest_usd=open_interest_usd,
            min_day_notional_volume=self.min_day_notional_volume,
            min_open_interest_usd=self.min_open_interest_usd,
        )

        if not asset_found:
            result.failed_checks.append("asset not found")
        if day_notional_volume is None:
            result.failed_checks.append("day volume unavailable")
        elif day_notional_volume <= self.min_day_notional_volume:
            result.failed_checks.append("day volume below minimum")
        if open_interest_usd is None:
            result.failed_checks.append("open interest unavailable")
        elif open_interest_usd <= self.min_open_interest_usd:
            result.failed_checks.append("open interest below minimum")

        result.data_unavailable = (
            not asset_found or day_notional_volume is None or open_interest_usd is None
        )
        result.eligible = not result.failed_checks
        return result
