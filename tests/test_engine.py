"""
ENGINE TESTS
Confirmation debouncer, decision table, cooldown guard, coin memory,
staleness monitor and the full per-cycle engine

Run:
    python -m pytest tests/test_engine.py -v
"""
import pytest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


T0 = 1700000000000
FLAT_HISTORY = [0.0001, 0.0002] * 12


def make_asset(coin="BTC", venue="", funding=0.0005, impact=(99.9, 100.2), volume=1e9, oi=1e8):
    from src.core.models import AssetContext, ImpactPrices
    return AssetContext(
        coin=coin,
        venue=venue,
        mark_price=100.0,
        funding=funding,
        open_interest_usd=oi,
        day_notional_volume=volume,
        impact=ImpactPrices(*impact) if impact else None,
    )


def make_candles(*closes):
    from src.core.models import Candle
    return [Candle(timestamp_ms=T0 + i, open=c, high=c, low=c, close=c) for i, c in enumerate(closes)]


# ============================================================
# A. CONFIRMATION DEBOUNCER
# ============================================================

class TestConfirmationGate:
    """Generic N-consecutive confirm"""

    def test_two_of_two(self):
        from src.risk.confirmation import ConfirmationGate, ConfirmationState

        gate = ConfirmationGate(2)
        state = ConfirmationState()

        steps = [gate.update(state, raw) for raw in (True, True, True, False, True)]

        assert [s.count for s in steps] == [1, 2, 2, 0, 1]
        assert [s.confirmed for s in steps] == [False, True, True, False, False]

    def test_single_true_never_confirms(self):
        from src.risk.confirmation import ConfirmationGate, ConfirmationState

        gate = ConfirmationGate(2)
        state = ConfirmationState()

        for raw in (True, False, True, False, True, False):
            assert not gate.update(state, raw).confirmed

    def test_three_required(self):
        from src.risk.confirmation import ConfirmationGate, ConfirmationState

        gate = ConfirmationGate(3)
        state = ConfirmationState()

        steps = [gate.update(state, True) for _ in range(4)]
        assert [s.confirmed for s in steps] == [False, False, True, True]
        assert state.count == 3

    def test_peek_does_not_mutate(self):
        from src.risk.confirmation import ConfirmationGate, ConfirmationState

        gate = ConfirmationGate(2)
        state = ConfirmationState(count=1, last_raw=True)

        result = gate.peek(state, True)

        assert result.confirmed
        assert result.previous_count == 1
        assert state.count == 1

    def test_invalid_required(self):
        from src.risk.confirmation import ConfirmationGate

        with pytest.raises(ValueError):
            ConfirmationGate(0)


# ============================================================
# B. STATE RESOLVER
# ============================================================

class TestResolveState:
    """Decision table rows, first match wins"""

    @pytest.mark.parametrize("args,branch,state", [
        ((True, True, True, "BROKEN", True), 1, "UNSUPPORTED"),
        ((False, False, True, "BROKEN", True), 2, "UNSUPPORTED"),
        ((False, True, False, "BROKEN", True), 3, "GREEN"),
        ((False, True, True, "INTACT", True), 4, "GREEN"),
        ((False, True, True, "WEAKENING", False), 5, "ORANGE"),
        ((False, True, True, "BROKEN", True), 6, "RED"),
        ((False, True, True, "WEAKENING", True), 7, "ORANGE"),
        ((False, True, True, "BROKEN", False), 8, "ORANGE"),
        ((False, True, True, None, True), 9, "GREEN"),
    ])
    def test_rows(self, args, branch, state):
        from src.risk.resolver import resolve_state
        from src.risk.models import StructureState

        data_unavailable, eligible, crowding, structure, liquidity = args
        result = resolve_state(
            data_unavailable,
            eligible,
            crowding,
            StructureState(structure) if structure else None,
            liquidity,
        )

        assert result.branch.value == branch
        assert result.state.value == state

    def test_red_only_from_row_six(self):
        from itertools import product
        from src.risk.resolver import resolve_state
        from src.risk.models import RiskState, StructureState

        for unavailable, eligible, crowding, structure, liquidity in product(
            (True, False), (True, False), (True, False),
            (None, StructureState.INTACT, StructureState.WEAKENING, StructureState.BROKEN),
            (True, False),
        ):
            result = resolve_state(unavailable, eligible, crowding, structure, liquidity)
            if result.state == RiskState.RED:
                assert result.branch.value == 6
                assert structure == StructureState.BROKEN and liquidity and crowding


# ============================================================
# C. HYSTERESIS / COOLDOWN GUARD
# ============================================================

class TestHysteresisGuard:
    """Immediate upgrades, held downgrades"""

    def _memory(self, state, entered_at_ms):
        from src.risk.memory import CoinMemoryState, StateRecord
        memory = CoinMemoryState(coin="BTC", venue="")
        memory.last_state = StateRecord(state=state, entered_at_ms=entered_at_ms)
        return memory

    def test_first_state_applies(self):
        from src.risk.hysteresis import HysteresisGuard
        from src.risk.memory import CoinMemoryState
        from src.risk.models import RiskState

        memory = CoinMemoryState(coin="BTC")
        result = HysteresisGuard().apply(memory, RiskState.GREEN, T0)

        assert result.effective == RiskState.GREEN
        assert result.changed
        assert memory.last_state.entered_at_ms == T0

    def test_red_downgrade_blocked_inside_hold(self):
        from src.risk.hysteresis import HysteresisGuard
        from src.risk.models import RiskState

        memory = self._memory(RiskState.RED, T0)
        result = HysteresisGuard(1800, 900).apply(memory, RiskState.GREEN, T0 + 60_000)

        assert result.effective == RiskState.RED
        assert result.blocked
        assert result.cooldown_remaining_s == pytest.approx(1740.0)
        assert memory.last_state.entered_at_ms == T0

    def test_hold_boundary_is_strict(self):
        from src.risk.hysteresis import HysteresisGuard
        from src.risk.models import RiskState

        guard = HysteresisGuard(1800, 900)

        at_boundary = guard.apply(self._memory(RiskState.RED, T0), RiskState.ORANGE, T0 + 1_800_000)
        assert at_boundary.effective == RiskState.RED

        past = guard.apply(self._memory(RiskState.RED, T0), RiskState.ORANGE, T0 + 1_800_001)
        assert past.effective == RiskState.ORANGE
        assert past.changed

    def test_orange_hold(self):
        from src.risk.hysteresis import HysteresisGuard
        from src.risk.models import RiskState

        guard = HysteresisGuard(1800, 900)

        held = guard.apply(self._memory(RiskState.ORANGE, T0), RiskState.GREEN, T0 + 600_000)
        assert held.effective == RiskState.ORANGE

        memory = self._memory(RiskState.ORANGE, T0)
        released = guard.apply(memory, RiskState.GREEN, T0 + 901_000)
        assert released.effective == RiskState.GREEN
        assert memory.last_state.entered_at_ms == T0 + 901_000

    def test_upgrade_is_immediate(self):
        from src.risk.hysteresis import HysteresisGuard
        from src.risk.models import RiskState

        result = HysteresisGuard().apply(self._memory(RiskState.ORANGE, T0), RiskState.RED, T0 + 1000)

        assert result.effective == RiskState.RED
        assert not result.blocked

    def test_unsupported_skips_cooldown(self):
        """Data loss while RED is held is not held back"""
        from src.risk.hysteresis import HysteresisGuard
        from src.risk.models import RiskState

        result = HysteresisGuard().apply(self._memory(RiskState.RED, T0), RiskState.UNSUPPORTED, T0 + 1000)

        assert result.effective == RiskState.UNSUPPORTED
        assert not result.blocked

    def test_same_state_keeps_entered_at(self):
        from src.risk.hysteresis import HysteresisGuard
        from src.risk.models import RiskState

        memory = self._memory(RiskState.ORANGE, T0)
        result = HysteresisGuard().apply(memory, RiskState.ORANGE, T0 + 5000)

        assert not result.changed
        assert memory.last_state.entered_at_ms == T0


# ============================================================
# D. COIN MEMORY AND STALENESS
# ============================================================

class TestCoinMemoryArena:
    """Lazy creation, venue reset and pruning"""

    def test_lazy_create_and_prune(self):
        from src.risk.memory import CoinMemoryArena

        arena = CoinMemoryArena()
        arena.get_or_create("BTC", "")
        arena.get_or_create("ETH", "")

        assert len(arena) == 2
        assert arena.prune(["BTC"]) == ["ETH"]
        assert "ETH" not in arena
        assert arena.get("BTC") is not None

    def test_venue_change_resets(self):
        from src.risk.memory import CoinMemoryArena, StateRecord
        from src.risk.models import RiskState

        arena = CoinMemoryArena()
        memory = arena.get_or_create("BTC", "")
        memory.crowding.count = 2
        memory.last_state = StateRecord(RiskState.RED, T0)

        same = arena.get_or_create("BTC", "")
        assert same.crowding.count == 2

        moved = arena.get_or_create("BTC", "xyz")
        assert moved.venue == "xyz"
        assert moved.crowding.count == 0
        assert moved.last_state is None


class TestStalenessMonitor:

    def test_never_succeeded_goes_stale_from_start(self):
        from src.risk.staleness import StalenessMonitor

        monitor = StalenessMonitor(60, started_at_ms=T0)

        assert not monitor.is_stale(T0 + 60_000)
        assert monitor.is_stale(T0 + 60_001)
        assert monitor.last_success_ms is None

    def test_success_resets_age(self):
        from src.risk.staleness import StalenessMonitor

        monitor = StalenessMonitor(60, started_at_ms=T0)
        monitor.record_success(T0 + 50_000)

        assert monitor.age_s(T0 + 80_000) == pytest.approx(30.0)
        assert not monitor.is_stale(T0 + 80_000)
        assert monitor.get_status(T0 + 200_000)["stale"]


# ============================================================
# E. CRASH RISK ENGINE
# ============================================================

class TestCrashRiskEngine:
    """Full cycles over prepared observations"""

    def _observe_crash(self, engine, coin="BTC", venue=""):
        """Long-crowded at cap, price breaking down, impact cost 30bps"""
        return engine.observe(
            coin,
            make_asset(coin=coin, venue=venue),
            funding_history=FLAT_HISTORY,
            at_oi_cap=True,
            candles_15m=make_candles(100.0, 99.0),
            candles_1h=make_candles(100.0, 99.0),
        )

    def _observe_calm(self, engine, coin="BTC"):
        return engine.observe(
            coin,
            make_asset(coin=coin, funding=0.00015, impact=(99.99, 100.01)),
            funding_history=FLAT_HISTORY,
            at_oi_cap=False,
        )

    def test_observe_does_not_touch_memory(self):
        from src.risk.engine import CrashRiskEngine

        engine = CrashRiskEngine()
        obs = self._observe_crash(engine)

        assert obs.crowding.raw
        assert obs.liquidity.raw
        assert len(engine.memory) == 0

    def test_red_requires_two_cycles(self):
        from src.risk.engine import CrashRiskEngine
        from src.risk.models import RiskState

        engine = CrashRiskEngine()

        first = engine.evaluate_cycle([self._observe_crash(engine)], T0, ["BTC"])["BTC"]
        assert first.state == RiskState.GREEN
        assert first.trace.decision.branch.value == 3

        second = engine.evaluate_cycle([self._observe_crash(engine)], T0 + 15_000, ["BTC"])["BTC"]
        assert second.state == RiskState.RED
        assert second.trace.decision.branch.value == 6
        assert second.message == "High crash risk. Protect capital or exit."
        assert second.dot_color == RiskState.RED.dot_color

    def test_red_held_after_calm(self):
        from src.risk.engine import CrashRiskEngine
        from src.risk.models import RiskState

        engine = CrashRiskEngine()
        engine.evaluate_cycle([self._observe_crash(engine)], T0, ["BTC"])
        engine.evaluate_cycle([self._observe_crash(engine)], T0 + 15_000, ["BTC"])

        calm = engine.evaluate_cycle([self._observe_calm(engine)], T0 + 30_000, ["BTC"])["BTC"]

        assert calm.trace.decision.state == RiskState.GREEN
        assert calm.state == RiskState.RED
        assert calm.trace.hysteresis.blocked

    def test_asset_not_found(self):
        from src.risk.engine import CrashRiskEngine
        from src.risk.models import RiskState

        engine = CrashRiskEngine()
        record = engine.evaluate_cycle([engine.observe("NOPE", None)], T0, ["NOPE"])["NOPE"]

        assert record.state == RiskState.UNSUPPORTED
        assert record.trace.decision.branch.value == 1
        assert record.funding is None

    def test_ineligible_skips_pillars(self):
        from src.risk.engine import CrashRiskEngine
        from src.risk.models import RiskState

        engine = CrashRiskEngine()
        obs = engine.observe("TINY", make_asset(coin="TINY", volume=1e6), FLAT_HISTORY, True)

        assert not obs.crowding.evaluated
        assert not obs.liquidity.evaluated
        record = engine.evaluate_cycle([obs], T0)["TINY"]
        assert record.state == RiskState.UNSUPPORTED
        assert record.trace.decision.branch.value == 2

    def test_missing_candles_fail_safe_green(self):
        from src.risk.engine import CrashRiskEngine
        from src.risk.models import RiskState

        engine = CrashRiskEngine()

        def observe():
            return engine.observe(
                "BTC", make_asset(), FLAT_HISTORY, True, candles_error="candles unavailable: timeout"
            )

        engine.evaluate_cycle([observe()], T0)
        record = engine.evaluate_cycle([observe()], T0 + 15_000)["BTC"]

        assert record.trace.structure.state is None
        assert record.trace.decision.branch.value == 9
        assert record.state == RiskState.GREEN

    def test_cycle_prunes_removed_coins(self):
        from src.risk.engine import CrashRiskEngine

        engine = CrashRiskEngine()
        engine.evaluate_cycle(
            [self._observe_crash(engine, "BTC"), self._observe_crash(engine, "ETH")], T0, ["BTC", "ETH"]
        )
        assert set(engine.tracked_coins()) == {"BTC", "ETH"}

        engine.evaluate_cycle([self._observe_crash(engine, "BTC")], T0 + 15_000, ["BTC"])
        assert engine.tracked_coins() == ["BTC"]

    def test_venue_migration_restarts_confirmation(self):
        from src.risk.engine import CrashRiskEngine
        from src.risk.models import RiskState

        engine = CrashRiskEngine()
        engine.evaluate_cycle([self._observe_crash(engine, venue="")], T0)

        moved = engine.evaluate_cycle([self._observe_crash(engine, venue="xyz")], T0 + 15_000)["BTC"]

        assert moved.trace.crowding_confirmation.count == 1
        assert moved.state == RiskState.GREEN
        assert moved.trace.venue == "xyz"

    def test_unreachable_venue_keeps_memory(self):
        from src.risk.engine import CrashRiskEngine
        from src.risk.models import RiskState

        engine = CrashRiskEngine()
        engine.evaluate_cycle([self._observe_crash(engine, venue="xyz")], T0)

        missing = engine.observe_universe("BTC", None, venue="xyz")
        record = engine.evaluate_cycle([missing], T0 + 15_000)["BTC"]

        assert not missing.evaluable
        assert record.state == RiskState.UNSUPPORTED
        assert record.trace.venue == "xyz"
        assert engine.memory.get("BTC").venue == "xyz"
        assert engine.memory.get("BTC").last_state.state == RiskState.UNSUPPORTED

    def test_step_readings_match_observe(self):
        from src.risk.engine import CrashRiskEngine

        engine = CrashRiskEngine()
        whole = self._observe_crash(engine)

        steps = engine.observe_universe("BTC", make_asset(venue=""))
        assert steps.evaluable
        assert steps.crowding.reason == "skipped: not eligible"
        engine.observe_crowding(steps, FLAT_HISTORY, True)
        engine.observe_returns(steps, make_candles(100.0, 99.0), make_candles(100.0, 99.0))
        engine.observe_liquidity(steps, None)

        assert steps.crowding.to_dict() == whole.crowding.to_dict()
        assert steps.returns.to_dict() == whole.returns.to_dict()
        assert steps.liquidity.to_dict() == whole.liquidity.to_dict()

    def test_stale_records_leave_memory(self):
        from src.risk.engine import CrashRiskEngine
        from src.risk.models import RiskState, STALE_MESSAGE

        engine = CrashRiskEngine()
        engine.evaluate_cycle([self._observe_crash(engine)], T0)

        records = engine.stale_records(["BTC", "ETH"], T0 + 120_000, T0)

        assert records["BTC"].state == RiskState.UNSUPPORTED
        assert records["BTC"].message == STALE_MESSAGE
        assert records["BTC"].trace.stale
        assert records["BTC"].trace.decision is None
        assert records["ETH"].trace.venue is None
        assert engine.memory.get("BTC").crowding.count == 1
        assert "ETH" not in engine.memory
