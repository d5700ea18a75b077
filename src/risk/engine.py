"""
Crash Risk Engine - per-cycle evaluation over already-fetched market data

Two phases:
1. observe_*(): pure pillar readings per coin (universe, crowding raw,
   candle returns, liquidity raw), each computed once. Touches no memory.
2. evaluate_cycle(): with a single shared `now`, runs the debouncers,
   structure evaluator, decision table and cooldown guard for every coin,
   and builds the trace. No await points, so it runs to completion or not
   at all.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from src.core.models import AssetContext, Candle, OrderBookSnapshot
from src.risk.confirmation import ConfirmationGate
from src.risk.hysteresis import HysteresisGuard
from src.risk.memory import CoinMemoryArena
from src.risk.models import (
    CandleReturns, CrowdingResult, LiquidityResult, RiskPerCoin, RiskState,
    UniverseResult, STALE_MESSAGE,
)
from src.risk.processors.crowding import CrowdingDetector
from src.risk.processors.liquidity import LiquidityStressDetector
from src.risk.processors.structure import StructureEvaluator, candle_returns
from src.risk.processors.universe import UniverseFilter
from src.risk.resolver import resolve_state
from src.risk.trace import build_stale_trace, build_trace


@dataclass
class CoinObservation:
    """Everything phase 1 learned about one coin this cycle"""
    coin: str
    venue: Optional[str]
    asset: Optional[AssetContext]
    universe: UniverseResult
    crowding: CrowdingResult
    returns: Optional[CandleReturns]
    liquidity: LiquidityResult

    @property
    def evaluable(self) -> bool:
        return not self.universe.data_unavailable and self.universe.eligible


class CrashRiskEngine:
    """
    Owns CoinMemoryState for every tracked coin.
    Only the single active cycle may call evaluate_cycle().
    """

    def __init__(
        self,
        universe_filter: Optional[UniverseFilter] = None,
        crowding_detector: Optional[CrowdingDetector] = None,
        structure_evaluator: Optional[StructureEvaluator] = None,
        liquidity_detector: Optional[LiquidityStressDetector] = None,
        confirmation_gate: Optional[ConfirmationGate] = None,
        hysteresis_guard: Optional[HysteresisGuard] = None,
    ):
        self.universe_filter = universe_filter or UniverseFilter()
        self.crowding_detector = crowding_detector or CrowdingDetector()
        self.structure_evaluator = structure_evaluator or StructureEvaluator()
        self.liquidity_detector = liquidity_detector or LiquidityStressDetector()
        self.confirmation_gate = confirmation_gate or ConfirmationGate()
        self.hysteresis_guard = hysteresis_guard or HysteresisGuard()
        self.memory = CoinMemoryArena()

    # ========== PHASE 1: PURE READINGS ==========

    def observe_universe(
        self,
        coin: str,
        asset: Optional[AssetContext],
        venue: Optional[str] = None,
    ) -> CoinObservation:
        """
        Universe reading plus "skipped" placeholders for the other pillars.
        `venue` labels a coin that was not found (its venue was unreachable).
        """
        universe = self.universe_filter.evaluate(
            asset_found=asset is not None,
            day_notional_volume=asset.day_notional_volume if asset else None,
            open_interest_usd=asset.open_interest_usd if asset else None,
        )
        return CoinObservation(
            coin=coin,
            venue=asset.venue if asset else venue,
            asset=asset,
            universe=universe,
            crowding=CrowdingResult(
                z_threshold=self.crowding_detector.z_threshold, reason="skipped: not eligible"
            ),
            returns=None,
            liquidity=LiquidityResult(
                impact_cost_threshold_bps=self.liquidity_detector.impact_cost_threshold_bps,
                spread_threshold_bps=self.liquidity_detector.spread_threshold_bps,
                depth_min_notional=self.liquidity_detector.depth_min_notional,
                depth_band_pct=self.liquidity_detector.depth_band_pct,
                reason="skipped: not eligible",
            ),
        )

    def observe_crowding(
        self,
        observation: CoinObservation,
        funding_history: Optional[Sequence[float]],
        at_oi_cap: Optional[bool],
        failure_reason: str = "",
    ) -> CrowdingResult:
        observation.crowding = self.crowding_detector.evaluate(
            funding_rate=observation.asset.funding,
            history=funding_history,
            at_oi_cap=at_oi_cap,
            failure_reason=failure_reason or None,
        )
        return observation.crowding

    def observe_returns(
        self,
        observation: CoinObservation,
        candles_15m: Optional[Sequence[Candle]],
        candles_1h: Optional[Sequence[Candle]],
        candles_error: str = "",
    ) -> Optional[CandleReturns]:
        if candles_15m is not None or candles_1h is not None or candles_error:
            observation.returns = candle_returns(candles_15m, candles_1h, candles_error)
        return observation.returns

    def observe_liquidity(
        self,
        observation: CoinObservation,
        order_book: Optional[OrderBookSnapshot],
        order_book_error: str = "",
    ) -> LiquidityResult:
        observation.liquidity = self.liquidity_detector.evaluate(
            impact_cost_bps=observation.asset.impact_cost_bps,
            book=order_book,
            book_failure_reason=order_book_error,
        )
        return observation.liquidity

    def observe(
        self,
        coin: str,
        asset: Optional[AssetContext],
        funding_history: Optional[Sequence[float]] = None,
        at_oi_cap: Optional[bool] = None,
        candles_15m: Optional[Sequence[Candle]] = None,
        candles_1h: Optional[Sequence[Candle]] = None,
        order_book: Optional[OrderBookSnapshot] = None,
        funding_error: str = "",
        oi_cap_error: str = "",
        candles_error: str = "",
        order_book_error: str = "",
    ) -> CoinObservation:
        """
        All pillar readings at once from fetched data. None for a collection
        means the fetch failed (or was skipped); the *_error strings say why.
        """
        observation = self.observe_universe(coin, asset)
        if not observation.evaluable:
            return observation
        self.observe_crowding(observation, funding_history, at_oi_cap, funding_error or oi_cap_error)
        self.observe_returns(observation, candles_15m, candles_1h, candles_error)
        self.observe_liquidity(observation, order_book, order_book_error)
        return observation

    # ========== PHASE 2: MEMORY, DECISION, COOLDOWN ==========

    def commit(self, observation: CoinObservation, now_ms: int) -> RiskPerCoin:
        memory = self.memory.get_or_create(observation.coin, observation.venue)
        universe = observation.universe

        crowding_step = self.confirmation_gate.update(memory.crowding, observation.crowding.raw)
        liquidity_step = self.confirmation_gate.update(memory.liquidity, observation.liquidity.raw)

        structure = self.structure_evaluator.evaluate(
            crowding_confirmed=crowding_step.confirmed,
            direction=observation.crowding.direction,
            returns=observation.returns,
        )
        decision = resolve_state(
            data_unavailable=universe.data_unavailable,
            universe_eligible=universe.eligible,
            crowding_confirmed=crowding_step.confirmed,
            structure_state=structure.state,
            liquidity_confirmed=liquidity_step.confirmed,
        )
        hysteresis = self.hysteresis_guard.apply(memory, decision.state, now_ms)

        trace = build_trace(
            coin=observation.coin,
            venue=observation.venue,
            cycle_ts_ms=now_ms,
            universe=universe,
            crowding=observation.crowding,
            crowding_confirmation=crowding_step,
            structure=structure,
            liquidity=observation.liquidity,
            liquidity_confirmation=liquidity_step,
            decision=decision,
            hysteresis=hysteresis,
        )
        asset = observation.asset
        state = hysteresis.effective
        return RiskPerCoin(
            coin=observation.coin,
            state=state,
            message=state.message,
            dot_color=state.dot_color,
            funding=asset.funding if asset else None,
            open_interest=asset.open_interest_usd if asset else None,
            day_notional_volume=asset.day_notional_volume if asset else None,
            mark_price=asset.mark_price if asset else None,
            trace=trace,
        )

    def evaluate_cycle(
        self,
        observations: Iterable[CoinObservation],
        now_ms: int,
        coins: Optional[Iterable[str]] = None,
    ) -> Dict[str, RiskPerCoin]:
        """
        Commit one cycle. `coins` is the current coin set; memory for coins
        outside it is pruned first.
        """
        observations = list(observations)
        if coins is not None:
            self.memory.prune(coins)
        return {obs.coin: self.commit(obs, now_ms) for obs in observations}

    # ========== STALENESS OVERRIDE ==========

    def stale_records(
        self,
        coins: Iterable[str],
        now_ms: int,
        last_success_ms: Optional[int],
    ) -> Dict[str, RiskPerCoin]:
        """
        UNSUPPORTED records for every coin, bypassing the resolver and the
        cooldown guard. Memory is left as is.
        """
        records = {}
        for coin in coins:
            memory = self.memory.get(coin)
            trace = build_stale_trace(
                coin=coin,
                venue=memory.venue if memory else None,
                now_ms=now_ms,
                last_success_ms=last_success_ms,
                min_day_notional_volume=self.universe_filter.min_day_notional_volume,
                min_open_interest_usd=self.universe_filter.min_open_interest_usd,
            )
            records[coin] = RiskPerCoin(
                coin=coin,
                state=RiskState.UNSUPPORTED,
                message=STALE_MESSAGE,
                dot_color=RiskState.UNSUPPORTED.dot_color,
                funding=None,
                open_interest=None,
                day_notional_volume=None,
                mark_price=None,
                trace=trace,
            )
        return records

    def tracked_coins(self) -> List[str]:
        return list(self.memory)
