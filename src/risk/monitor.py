"""
Crash Risk Monitor - async driver for the crash risk engine

- Tick loop: one evaluation cycle every TICK_INTERVAL_S
- Staleness loop: every STALE_CHECK_INTERVAL_S, forces UNSUPPORTED when no
  cycle has succeeded within STALE_AFTER_S
- Coin-set change cancels the in-flight cycle and starts a fresh one

Cycles never overlap. A tick waits for the in-flight cycle; a coin-set
change cancels it. All fetching happens before the first memory write, so a
cancelled cycle leaves CoinMemoryState untouched.
"""
import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
import structlog

from config import settings
from src.collectors.hyperliquid import HyperliquidInfoClient, HyperliquidInfoError
from src.core.models import AssetContext, OrderBookSnapshot
from src.risk.engine import CoinObservation, CrashRiskEngine
from src.risk.models import RiskPerCoin
from src.risk.staleness import StalenessMonitor

logger = structlog.get_logger(__name__)

CANDLE_15M_MS = 15 * 60 * 1000
CANDLE_1H_MS = 60 * 60 * 1000


class RiskCycleError(Exception):
    """A cycle produced nothing usable (every venue's asset contexts failed)"""


def normalize_coins(coins: Iterable[str]) -> List[str]:
    """Strip, drop empties and duplicates; order preserved"""
    seen: Set[str] = set()
    result = []
    for coin in coins:
        name = coin.strip() if isinstance(coin, str) else ""
        if not name or name.upper() in seen:
            continue
        seen.add(name.upper())
        result.append(name)
    return result


def lookup_asset(contexts: Dict[str, AssetContext], coin: str) -> Optional[AssetContext]:
    return contexts.get(coin) or contexts.get(coin.upper())


def at_open_interest_cap(capped: Set[str], coin: str, venue: str) -> bool:
    candidates = {coin, coin.upper()}
    if venue:
        candidates |= {f"{venue}:{coin}", f"{venue}:{coin.upper()}"}
    return bool(candidates & capped)


class VenueSnapshot:
    """Asset contexts and OI-cap list fetched from one settlement venue"""

    __slots__ = ("venue", "contexts", "oi_capped", "contexts_error", "oi_cap_error")

    def __init__(self, venue: str):
        self.venue = venue
        self.contexts: Optional[Dict[str, AssetContext]] = None
        self.oi_capped: Optional[Set[str]] = None
        self.contexts_error = ""
        self.oi_cap_error = ""


def resolve_asset(
    snapshots: List[VenueSnapshot], coin: str, known_venue: Optional[str] = None
) -> Tuple[Optional[VenueSnapshot], Optional[AssetContext]]:
    """
    Find the venue a coin trades on this cycle.

    The venue remembered from earlier cycles is asked first. If its fetch
    failed, the coin is not found this cycle (snapshot returned, asset None)
    rather than moved elsewhere. Only when that venue answered without the
    coin does the first other venue listing it win.
    """
    for snapshot in snapshots:
        if known_venue is None or snapshot.venue != known_venue:
            continue
        if snapshot.contexts is None:
            return snapshot, None
        asset = lookup_asset(snapshot.contexts, coin)
        if asset is not None:
            return snapshot, asset

    for snapshot in snapshots:
        if snapshot.contexts is None:
            continue
        asset = lookup_asset(snapshot.contexts, coin)
        if asset is not None:
            return snapshot, asset
    return None, None


class CrashRiskMonitor:
    """
    Publishes a RiskPerCoin map for the configured coins.

    `source` is anything with the HyperliquidInfoClient fetch methods.
    """

    def __init__(
        self,
        coins: Optional[Iterable[str]] = None,
        venues: Optional[Iterable[str]] = None,
        source: Optional[Any] = None,
        engine: Optional[CrashRiskEngine] = None,
        staleness: Optional[StalenessMonitor] = None,
        tick_interval_s: float = settings.TICK_INTERVAL_S,
        stale_check_interval_s: float = settings.STALE_CHECK_INTERVAL_S,
        orderbook_cache_ttl_s: float = settings.ORDERBOOK_CACHE_TTL_S,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.coins = normalize_coins(coins if coins is not None else settings.COINS)
        self.venues = list(venues) if venues is not None else list(settings.SETTLEMENT_VENUES)
        self.source = source or HyperliquidInfoClient()
        self.engine = engine or CrashRiskEngine()
        self.staleness = staleness or StalenessMonitor()
        self.tick_interval_s = tick_interval_s
        self.stale_check_interval_s = stale_check_interval_s
        self.orderbook_cache_ttl_s = orderbook_cache_ttl_s
        self._clock = clock

        self._records: Dict[str, RiskPerCoin] = {}
        # (venue, coin) -> (fetched_at_ms, book)
        self._book_cache: Dict[Tuple[str, str], Tuple[int, OrderBookSnapshot]] = {}
        self._cycle_lock = asyncio.Lock()
        self._cycle_task: Optional[asyncio.Task] = None
        self._loop_tasks: List[asyncio.Task] = []
        self._pending: Set[asyncio.Task] = set()
        self._running = False
        self._stale_published = False

        # Stats
        self.cycles_completed = 0
        self.cycles_failed = 0
        self.cycles_cancelled = 0
        self.last_cycle_ms: Optional[int] = None
        self.last_error: Optional[str] = None

    def now_ms(self) -> int:
        if self._clock is not None:
            return self._clock()
        return int(time.time() * 1000)

    # ========== LIFECYCLE ==========

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.staleness.start(self.now_ms())
        self._loop_tasks = [
            asyncio.create_task(self._tick_loop()),
            asyncio.create_task(self._staleness_loop()),
        ]
        logger.info(
            "crash_risk_monitor_started",
            coins=self.coins,
            venues=self.venues,
            tick_interval_s=self.tick_interval_s,
        )

    async def stop(self) -> None:
        self._running = False
        tasks = self._loop_tasks + list(self._pending)
        if self._cycle_task is not None and not self._cycle_task.done():
            tasks.append(self._cycle_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_tasks = []
        self._pending.clear()
        close = getattr(self.source, "close", None)
        if close is not None:
            await close()
        logger.info("crash_risk_monitor_stopped", cycles=self.cycles_completed)

    async def _tick_loop(self) -> None:
        while self._running:
            await self.run_cycle()
            await asyncio.sleep(self.tick_interval_s)

    async def _staleness_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.stale_check_interval_s)
            self.check_staleness()

    # ========== COIN SET ==========

    def set_coins(self, coins: Iterable[str]) -> List[str]:
        """
        Replace the coin set. Cancels the in-flight cycle, prunes memory for
        dropped coins and schedules an immediate cycle when running.
        """
        new_coins = normalize_coins(coins)
        if new_coins == self.coins:
            return self.coins

        self.coins = new_coins
        if self._cycle_task is not None and not self._cycle_task.done():
            self._cycle_task.cancel()

        removed = self.engine.memory.prune(new_coins)
        self._prune_book_cache(new_coins)
        self._records = {c: r for c, r in self._records.items() if c in new_coins}
        logger.info("risk_coins_changed", coins=new_coins, pruned=removed)

        if self._running:
            task = asyncio.create_task(self.run_cycle())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return self.coins

    # ========== CYCLE ==========

    async def run_cycle(self) -> bool:
        """Run one cycle; True when it completed and published"""
        async with self._cycle_lock:
            coins = list(self.coins)
            task = asyncio.create_task(self._cycle(coins))
            self._cycle_task = task
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                task.cancel()
                raise
            finally:
                if self._cycle_task is task:
                    self._cycle_task = None

            if task.cancelled():
                self.cycles_cancelled += 1
                logger.info("risk_cycle_cancelled", coins=coins)
                return False

            error = task.exception()
            if error is not None:
                self.cycles_failed += 1
                self.last_error = str(error)
                logger.error(
                    "risk_cycle_failed",
                    error=str(error),
                    error_type=type(error).__name__,
                )
                return False
            return True

    async def _cycle(self, coins: List[str]) -> None:
        now_ms = self.now_ms()
        logger.debug("risk_cycle_started", coins=len(coins), now_ms=now_ms)

        # Phase 1: fetch and pure pillar readings
        snapshots = await asyncio.gather(*[self._fetch_venue(v) for v in self.venues])
        if snapshots and all(s.contexts is None for s in snapshots):
            raise RiskCycleError(
                "; ".join(s.contexts_error for s in snapshots if s.contexts_error)
                or "asset contexts unavailable"
            )

        observations: List[CoinObservation] = await asyncio.gather(
            *[self._observe_coin(coin, snapshots, now_ms) for coin in coins]
        )

        # Phase 2: memory, decision and cooldown with one shared now
        records = self.engine.evaluate_cycle(observations, now_ms, coins)
        self._prune_book_cache(coins)
        self._records = records
        self._stale_published = False
        self.staleness.record_success(now_ms)
        self.cycles_completed += 1
        self.last_cycle_ms = now_ms
        self.last_error = None

        logger.info(
            "risk_cycle_complete",
            coins=len(records),
            states={coin: r.state.value for coin, r in records.items()},
        )

    async def _fetch_venue(self, venue: str) -> VenueSnapshot:
        snapshot = VenueSnapshot(venue)
        contexts, capped = await asyncio.gather(
            self.source.fetch_asset_contexts(venue),
            self.source.fetch_oi_cap(venue),
            return_exceptions=True,
        )
        if isinstance(contexts, HyperliquidInfoError):
            snapshot.contexts_error = str(contexts)
            logger.warning("asset_contexts_fetch_failed", venue=venue, error=str(contexts))
        elif isinstance(contexts, BaseException):
            raise contexts
        else:
            snapshot.contexts = contexts

        if isinstance(capped, HyperliquidInfoError):
            snapshot.oi_cap_error = f"open interest cap unavailable: {capped}"
            logger.warning("oi_cap_fetch_failed", venue=venue, error=str(capped))
        elif isinstance(capped, BaseException):
            raise capped
        else:
            snapshot.oi_capped = capped
        return snapshot

    async def _observe_coin(
        self, coin: str, snapshots: List[VenueSnapshot], now_ms: int
    ) -> CoinObservation:
        memory = self.engine.memory.get(coin)
        venue_snapshot, asset = resolve_asset(
            snapshots, coin, memory.venue if memory is not None else None
        )
        if asset is None:
            # Remembered venue unreachable this cycle: keep its label
            venue = venue_snapshot.venue if venue_snapshot is not None else None
            return self.engine.observe_universe(coin, None, venue=venue)

        observation = self.engine.observe_universe(coin, asset)
        if not observation.evaluable:
            return observation

        at_cap = None
        if venue_snapshot.oi_capped is not None:
            at_cap = at_open_interest_cap(venue_snapshot.oi_capped, asset.coin, venue_snapshot.venue)

        needs_book = asset.impact_cost_bps is None
        history_result, book_result = await asyncio.gather(
            self._fetch_funding_rates(asset.coin, now_ms),
            self._fetch_order_book(coin, asset, now_ms) if needs_book else _none(),
        )
        funding_history, funding_error = history_result
        order_book, order_book_error = book_result if needs_book else (None, "")

        crowding = self.engine.observe_crowding(
            observation, funding_history, at_cap, funding_error or venue_snapshot.oi_cap_error
        )
        # Candles only matter once crowding is building
        if crowding.raw:
            candles_15m, candles_1h, candles_error = await self._fetch_candles(asset.coin, now_ms)
            self.engine.observe_returns(observation, candles_15m, candles_1h, candles_error)
        self.engine.observe_liquidity(observation, order_book, order_book_error)
        return observation

    async def _fetch_funding_rates(self, coin: str, now_ms: int):
        start_ms = now_ms - int(settings.FUNDING_LOOKBACK_S * 1000)
        try:
            samples = await self.source.fetch_funding_history(coin, start_ms, now_ms)
        except HyperliquidInfoError as e:
            logger.warning("funding_history_fetch_failed", coin=coin, error=str(e))
            return None, f"funding history unavailable: {e}"
        return [s.funding_rate for s in samples], ""

    async def _fetch_candles(self, coin: str, now_ms: int):
        try:
            candles_15m, candles_1h = await asyncio.gather(
                self.source.fetch_candles(coin, "15m", now_ms - 3 * CANDLE_15M_MS, now_ms),
                self.source.fetch_candles(coin, "1h", now_ms - 3 * CANDLE_1H_MS, now_ms),
            )
        except HyperliquidInfoError as e:
            logger.warning("candles_fetch_failed", coin=coin, error=str(e))
            return None, None, f"candles unavailable: {e}"
        return candles_15m, candles_1h, ""

    async def _fetch_order_book(self, coin: str, asset: AssetContext, now_ms: int):
        key = (asset.venue, coin)
        cached = self._book_cache.get(key)
        if cached is not None and now_ms - cached[0] < self.orderbook_cache_ttl_s * 1000:
            return cached[1], ""
        try:
            book = await self.source.fetch_order_book(asset.coin)
        except HyperliquidInfoError as e:
            logger.warning("order_book_fetch_failed", coin=coin, venue=asset.venue, error=str(e))
            return None, f"order book unavailable: {e}"
        self._book_cache[key] = (now_ms, book)
        return book, ""

    def _prune_book_cache(self, coins: Iterable[str]) -> None:
        keep = set(coins)
        for key in [k for k in self._book_cache if k[1] not in keep]:
            del self._book_cache[key]

    # ========== STALENESS ==========

    def check_staleness(self) -> bool:
        """Publish UNSUPPORTED stale records when the last success is too old"""
        now_ms = self.now_ms()
        if not self.staleness.is_stale(now_ms):
            return False
        self._records = self.engine.stale_records(
            self.coins, now_ms, self.staleness.last_success_ms
        )
        if not self._stale_published:
            logger.warning(
                "risk_data_stale",
                last_success_ms=self.staleness.last_success_ms,
                age_s=round(self.staleness.age_s(now_ms), 1),
            )
        self._stale_published = True
        return True

    # ========== OUTPUT ==========

    def get_records(self) -> Dict[str, RiskPerCoin]:
        return dict(self._records)

    def get_record(self, coin: str) -> Optional[RiskPerCoin]:
        record = self._records.get(coin)
        if record is None:
            for name, candidate in self._records.items():
                if name.upper() == coin.upper():
                    return candidate
        return record

    def get_health(self) -> Dict[str, Any]:
        health = {
            "running": self._running,
            "coins": list(self.coins),
            "venues": list(self.venues),
            "cycles_completed": self.cycles_completed,
            "cycles_failed": self.cycles_failed,
            "cycles_cancelled": self.cycles_cancelled,
            "last_cycle_ms": self.last_cycle_ms,
            "last_error": self.last_error,
            "tracked_coins": self.engine.tracked_coins(),
            "memory": {c: self.engine.memory.get(c).to_dict() for c in self.engine.memory},
            "cached_books": len(self._book_cache),
            "staleness": self.staleness.get_status(self.now_ms()),
        }
        metrics = getattr(self.source, "get_health_metrics", None)
        if metrics is not None:
            health["source"] = metrics()
        return health


async def _none():
    return None
