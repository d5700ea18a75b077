"""
HYPERLIQUID INFO COLLECTOR
REST client for the /info endpoint: asset contexts, open interest caps,
funding history, candles and L2 book snapshots

Payloads are parsed leniently; malformed entries are dropped rather
than raising. Transport and HTTP errors surface as HyperliquidInfoError.
"""
import time
from typing import Any, Dict, List, Optional, Set
import httpx
import structlog

from config import settings
from src.core.models import (
    AssetContext, Candle, FundingSample, ImpactPrices,
    OrderBookLevel, OrderBookSnapshot, to_finite,
)

logger = structlog.get_logger(__name__)


class HyperliquidInfoError(Exception):
    """Raised when an /info request fails or returns a non-2xx status"""


# ========== PAYLOAD PARSERS ==========

def extract_symbol(universe_entry: Any) -> Optional[str]:
    """Universe entries are either plain names or objects carrying one"""
    if isinstance(universe_entry, str):
        return universe_entry
    if isinstance(universe_entry, dict):
        for key in ("name", "coin", "token", "symbol"):
            value = universe_entry.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def parse_asset_contexts(data: Any, venue: str = "") -> Dict[str, AssetContext]:
    """
    Parse a metaAndAssetCtxs response: [meta, assetCtxs].
    Keyed by symbol and by upper-cased symbol.
    """
    if not isinstance(data, list) or len(data) < 2:
        return {}

    meta = data[0] if isinstance(data[0], dict) else {}
    universe = meta.get("universe") if isinstance(meta.get("universe"), list) else []
    ctxs = data[1] if isinstance(data[1], list) else []

    by_coin: Dict[str, AssetContext] = {}
    for entry, ctx in zip(universe, ctxs):
        coin = extract_symbol(entry)
        if not coin:
            continue
        ctx = ctx if isinstance(ctx, dict) else {}

        mark_price = to_finite(ctx.get("markPx"))
        oi_tokens = to_finite(ctx.get("openInterest"))
        oi_usd = oi_tokens * mark_price if oi_tokens is not None and mark_price is not None else None

        asset = AssetContext(
            coin=coin,
            venue=venue,
            mark_price=mark_price,
            funding=to_finite(ctx.get("funding")),
            open_interest_usd=oi_usd,
            day_notional_volume=to_finite(ctx.get("dayNtlVlm")),
            impact=ImpactPrices.parse(ctx.get("impactPxs")),
        )
        by_coin[coin] = asset
        by_coin[coin.upper()] = asset

    return by_coin


def parse_oi_cap(data: Any) -> Set[str]:
    """perpsAtOpenInterestCap: list of names or objects with a coin field"""
    if not isinstance(data, list):
        return set()
    coins: Set[str] = set()
    for item in data:
        if isinstance(item, str):
            coins.add(item)
        elif isinstance(item, dict):
            coin = item.get("coin") or item.get("name") or item.get("symbol")
            if isinstance(coin, str):
                coins.add(coin)
    return coins


def parse_funding_history(data: Any, coin: str) -> List[FundingSample]:
    """fundingHistory records sorted by time ascending"""
    if not isinstance(data, list):
        return []
    samples = []
    for record in data:
        if not isinstance(record, dict):
            continue
        rate = to_finite(record.get("fundingRate"))
        ts = to_finite(record.get("time"))
        if rate is None or ts is None:
            continue
        samples.append(FundingSample(
            coin=record["coin"] if isinstance(record.get("coin"), str) else coin,
            timestamp_ms=int(ts),
            funding_rate=rate,
        ))
    samples.sort(key=lambda s: s.timestamp_ms)
    return samples


def parse_candles(data: Any) -> List[Candle]:
    """
    candleSnapshot rows, either arrays
    [openTime, open, high, low, close, volume, ...] or {t, o, h, l, c, v}
    """
    if not isinstance(data, list):
        return []
    candles = []
    for row in data:
        if isinstance(row, (list, tuple)):
            values = [to_finite(v) for v in list(row[:6]) + [None] * (6 - len(row[:6]))]
            ts, open_, high, low, close, volume = values
        elif isinstance(row, dict):
            ts = to_finite(_first(row, "t", "time", "openTime"))
            open_ = to_finite(_first(row, "o", "open"))
            high = to_finite(_first(row, "h", "high"))
            low = to_finite(_first(row, "l", "low"))
            close = to_finite(_first(row, "c", "close"))
            volume = to_finite(_first(row, "v", "volume"))
        else:
            continue
        if ts is None or close is None:
            continue
        candles.append(Candle(
            timestamp_ms=int(ts),
            open=open_ if open_ is not None else close,
            high=high if high is not None else close,
            low=low if low is not None else close,
            close=close,
            volume=volume or 0.0,
        ))
    candles.sort(key=lambda c: c.timestamp_ms)
    return candles


def parse_l2_book(data: Any, coin: str, timestamp_ms: Optional[int] = None) -> OrderBookSnapshot:
    """l2Book: {levels: [bids, asks]} or [bids, asks]; malformed levels are skipped"""
    bids_raw: List[Any] = []
    asks_raw: List[Any] = []
    if isinstance(data, dict) and isinstance(data.get("levels"), list) and len(data["levels"]) >= 2:
        bids_raw = data["levels"][0] if isinstance(data["levels"][0], list) else []
        asks_raw = data["levels"][1] if isinstance(data["levels"][1], list) else []
    elif isinstance(data, list) and len(data) >= 2 and isinstance(data[0], list) and isinstance(data[1], list):
        bids_raw, asks_raw = data[0], data[1]

    if timestamp_ms is None:
        ts = to_finite(data.get("time")) if isinstance(data, dict) else None
        timestamp_ms = int(ts) if ts is not None else int(time.time() * 1000)

    return OrderBookSnapshot(
        symbol=coin,
        timestamp_ms=timestamp_ms,
        bids=_parse_levels(bids_raw),
        asks=_parse_levels(asks_raw),
    )


def _parse_levels(raw_levels: List[Any]) -> List[OrderBookLevel]:
    levels = []
    for level in raw_levels:
        if isinstance(level, (list, tuple)) and len(level) >= 2:
            px, sz = to_finite(level[0]), to_finite(level[1])
        elif isinstance(level, dict):
            px = to_finite(_first(level, "px", "price"))
            sz = to_finite(_first(level, "sz", "size"))
        else:
            continue
        if px is None or sz is None:
            continue
        levels.append(OrderBookLevel(price=px, quantity=sz))
    return levels


def _first(raw: dict, *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


# ========== CLIENT ==========

class HyperliquidInfoClient:
    """
    Thin async wrapper over POST /info

    Raw fetch methods raise HyperliquidInfoError; callers decide how a
    failure degrades their signal.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.HYPERLIQUID_REST_BASE
        self.timeout_s = timeout_s or settings.HTTP_TIMEOUT_S
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_count = 0
        self._error_count = 0

    async def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_s, connect=settings.HTTP_CONNECT_TIMEOUT_S),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                headers={"Content-Type": "application/json", "User-Agent": "crash-risk-monitor/1.0"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None

    async def _post_info(self, body: Dict[str, Any]) -> Any:
        client = await self._ensure_http_client()
        self._request_count += 1
        try:
            resp = await client.post("/info", json=body)
            resp.raise_for_status()
            return resp.json()
        except httpx.TimeoutException as e:
            self._error_count += 1
            raise HyperliquidInfoError(f"{body['type']} timed out") from e
        except httpx.HTTPStatusError as e:
            self._error_count += 1
            raise HyperliquidInfoError(
                f"{body['type']} returned HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            self._error_count += 1
            raise HyperliquidInfoError(f"{body['type']} failed: {type(e).__name__}: {e}") from e

    async def fetch_asset_contexts(self, venue: str = "") -> Dict[str, AssetContext]:
        body: Dict[str, Any] = {"type": "metaAndAssetCtxs"}
        if venue:
            body["dex"] = venue
        return parse_asset_contexts(await self._post_info(body), venue)

    async def fetch_oi_cap(self, venue: str = "") -> Set[str]:
        body: Dict[str, Any] = {"type": "perpsAtOpenInterestCap"}
        if venue:
            body["dex"] = venue
        return parse_oi_cap(await self._post_info(body))

    async def fetch_funding_history(
        self, coin: str, start_ms: int, end_ms: Optional[int] = None
    ) -> List[FundingSample]:
        body: Dict[str, Any] = {"type": "fundingHistory", "coin": coin, "startTime": start_ms}
        if end_ms is not None:
            body["endTime"] = end_ms
        return parse_funding_history(await self._post_info(body), coin)

    async def fetch_candles(
        self, coin: str, interval: str, start_ms: int, end_ms: Optional[int] = None
    ) -> List[Candle]:
        req: Dict[str, Any] = {"coin": coin, "interval": interval, "startTime": start_ms}
        if end_ms is not None:
            req["endTime"] = end_ms
        return parse_candles(await self._post_info({"type": "candleSnapshot", "req": req}))

    async def fetch_order_book(self, coin: str) -> OrderBookSnapshot:
        return parse_l2_book(await self._post_info({"type": "l2Book", "coin": coin}), coin)

    def get_health_metrics(self) -> Dict[str, Any]:
        return {
            "request_count": self._request_count,
            "error_count": self._error_count,
            "connected": self._client is not None,
        }
