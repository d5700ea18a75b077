"""
Crash Risk Models - states, pillar outputs and the per-cycle decision trace
Every pillar output carries its inputs, thresholds and reason so the trace
can be rebuilt from these objects alone
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class RiskState(Enum):
    """Effective crash risk classification"""
    GREEN = "GREEN"
    ORANGE = "ORANGE"
    RED = "RED"
    UNSUPPORTED = "UNSUPPORTED"  # Insufficient data, ranked below GREEN

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]

    @property
    def dot_color(self) -> str:
        return DOT_COLORS[self]

    @property
    def message(self) -> str:
        return STATE_MESSAGES[self]


_STATE_RANK = {
    RiskState.RED: 3,
    RiskState.ORANGE: 2,
    RiskState.GREEN: 1,
    RiskState.UNSUPPORTED: 0,
}

DOT_COLORS = {
    RiskState.GREEN: "#2ECC71",
    RiskState.ORANGE: "#F39C12",
    RiskState.RED: "#E74C3C",
    RiskState.UNSUPPORTED: "#A0AEC0",
}

STATE_MESSAGES = {
    RiskState.GREEN: "Market is stable. Trade as planned.",
    RiskState.ORANGE: "Risk is rising. Consider reducing size or tightening your stop.",
    RiskState.RED: "High crash risk. Protect capital or exit.",
    RiskState.UNSUPPORTED: "Market too unstable for reliable risk signals.",
}

STALE_MESSAGE = "Risk data unavailable."
STALE_REASON = "data stale"


class CrowdingDirection(Enum):
    """Which side of the book is over-leveraged"""
    LONG_CROWDED = "LONG_CROWDED"
    SHORT_CROWDED = "SHORT_CROWDED"
    NEUTRAL = "NEUTRAL"


class StructureState(Enum):
    """Short-horizon price structure relative to the crowded side"""
    INTACT = "INTACT"
    WEAKENING = "WEAKENING"
    BROKEN = "BROKEN"


class LiquiditySource(Enum):
    IMPACT = "IMPACT"          # Impact prices from asset context
    ORDERBOOK = "ORDERBOOK"    # L2 spread + depth fallback
    NONE = "NONE"


class DecisionBranch(Enum):
    """Decision table rows, evaluated top-down"""
    DATA_UNAVAILABLE = 1
    NOT_ELIGIBLE = 2
    NO_CROWDING = 3
    STRUCTURE_INTACT = 4
    WEAKENING_NO_LIQUIDITY_STRESS = 5
    BROKEN_WITH_LIQUIDITY_STRESS = 6
    WEAKENING_WITH_LIQUIDITY_STRESS = 7
    BROKEN_NO_LIQUIDITY_STRESS = 8
    STRUCTURE_UNAVAILABLE = 9
    DEFAULT = 10

    @property
    def label(self) -> str:
        return f"R{self.value} {self.name}"


# ========== PILLAR OUTPUTS ==========

@dataclass(slots=True)
class UniverseResult:
    """Universe filter inputs and outcome"""
    asset_found: bool
    day_notional_volume: Optional[float]
    open_interest_usd: Optional[float]
    min_day_notional_volume: float
    min_open_interest_usd: float
    eligible: bool = False
    data_unavailable: bool = False
    failed_checks: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_found": self.asset_found,
            "day_notional_volume": self.day_notional_volume,
            "open_interest_usd": self.open_interest_usd,
            "min_day_notional_volume": self.min_day_notional_volume,
            "min_open_interest_usd": self.min_open_interest_usd,
            "eligible": self.eligible,
            "data_unavailable": self.data_unavailable,
            "failed_checks": list(self.failed_checks),
        }


@dataclass(slots=True)
class CrowdingResult:
    """Pillar 1 - funding z-score plus open interest cap"""
    evaluated: bool = False
    funding_rate: Optional[float] = None
    history_count: int = 0
    history_mean: Optional[float] = None
    history_stdev: Optional[float] = None
    z_score: Optional[float] = None
    z_threshold: float = 1.5
    at_oi_cap: Optional[bool] = None
    raw: bool = False
    direction: CrowdingDirection = CrowdingDirection.NEUTRAL
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evaluated": self.evaluated,
            "funding_rate": self.funding_rate,
            "history_count": self.history_count,
            "history_mean": self.history_mean,
            "history_stdev": self.history_stdev,
            "z_score": self.z_score,
            "z_threshold": self.z_threshold,
            "at_oi_cap": self.at_oi_cap,
            "raw": self.raw,
            "direction": self.direction.value,
            "reason": self.reason,
        }


@dataclass(slots=True)
class CandleReturns:
    """Close-to-close returns feeding the structure evaluator"""
    r15: Optional[float] = None
    r1h: Optional[float] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"r15": self.r15, "r1h": self.r1h, "reason": self.reason}


@dataclass(slots=True)
class StructureResult:
    """Pillar 2 - continuation / breakdown relative to the crowded side"""
    evaluated: bool = False
    direction: CrowdingDirection = CrowdingDirection.NEUTRAL
    r15: Optional[float] = None
    r1h: Optional[float] = None
    broken_r15: float = 0.006
    broken_r1h: float = 0.012
    weakening_r15: float = 0.002
    state: Optional[StructureState] = None  # None = N/A, never coerced
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evaluated": self.evaluated,
            "direction": self.direction.value,
            "r15": self.r15,
            "r1h": self.r1h,
            "broken_r15": self.broken_r15,
            "broken_r1h": self.broken_r1h,
            "weakening_r15": self.weakening_r15,
            "state": self.state.value if self.state else None,
            "reason": self.reason,
        }


@dataclass(slots=True)
class LiquidityResult:
    """Pillar 3 - impact cost, or spread + depth fallback"""
    evaluated: bool = False
    source: LiquiditySource = LiquiditySource.NONE
    impact_cost_bps: Optional[float] = None
    impact_cost_threshold_bps: float = 25.0
    spread_bps: Optional[float] = None
    spread_threshold_bps: float = 8.0
    depth_notional: Optional[float] = None
    depth_min_notional: float = 500_000
    depth_band_pct: float = 0.002
    raw: bool = False
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evaluated": self.evaluated,
            "source": self.source.value,
            "impact_cost_bps": self.impact_cost_bps,
            "impact_cost_threshold_bps": self.impact_cost_threshold_bps,
            "spread_bps": self.spread_bps,
            "spread_threshold_bps": self.spread_threshold_bps,
            "depth_notional": self.depth_notional,
            "depth_min_notional": self.depth_min_notional,
            "depth_band_pct": self.depth_band_pct,
            "raw": self.raw,
            "reason": self.reason,
        }


@dataclass(slots=True)
class ConfirmationResult:
    """One debouncer step: previous memory, new raw sample, new counter"""
    previous_raw: bool
    previous_count: int
    raw: bool
    count: int
    required: int
    confirmed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_raw": self.previous_raw,
            "previous_count": self.previous_count,
            "raw": self.raw,
            "count": self.count,
            "required": self.required,
            "confirmed": self.confirmed,
        }


@dataclass(slots=True)
class DecisionResult:
    """State resolver output before hysteresis"""
    branch: DecisionBranch
    state: RiskState

    def to_dict(self) -> Dict[str, Any]:
        return {"branch": self.branch.label, "rule": self.branch.value, "state": self.state.value}


@dataclass(slots=True)
class HysteresisResult:
    """Cooldown guard outcome"""
    computed: RiskState
    effective: RiskState
    previous_state: Optional[RiskState] = None
    previous_entered_at_ms: Optional[int] = None
    entered_at_ms: int = 0
    hold_s: float = 0.0
    elapsed_s: Optional[float] = None
    cooldown_remaining_s: float = 0.0
    blocked: bool = False
    changed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "computed": self.computed.value,
            "effective": self.effective.value,
            "previous_state": self.previous_state.value if self.previous_state else None,
            "previous_entered_at_ms": self.previous_entered_at_ms,
            "entered_at_ms": self.entered_at_ms,
            "hold_s": self.hold_s,
            "elapsed_s": self.elapsed_s,
            "cooldown_remaining_s": self.cooldown_remaining_s,
            "blocked": self.blocked,
            "changed": self.changed,
        }


# ========== PRODUCED RECORDS ==========

@dataclass(frozen=True)
class RiskDecisionTrace:
    """
    Complete audit of one coin in one cycle.
    Replaced wholesale every cycle; never mutated after construction.
    """
    coin: str
    venue: Optional[str]
    cycle_ts_ms: int
    universe: UniverseResult
    crowding: CrowdingResult
    crowding_confirmation: Optional[ConfirmationResult]
    structure: StructureResult
    liquidity: LiquidityResult
    liquidity_confirmation: Optional[ConfirmationResult]
    decision: Optional[DecisionResult]
    hysteresis: Optional[HysteresisResult]
    effective_state: RiskState
    stale: bool = False
    stale_reason: str = ""
    last_success_ms: Optional[int] = None


@dataclass
class RiskPerCoin:
    """Record published to the dashboard for one coin"""
    coin: str
    state: RiskState
    message: str
    dot_color: str
    funding: Optional[float]
    open_interest: Optional[float]
    day_notional_volume: Optional[float]
    mark_price: Optional[float]
    trace: RiskDecisionTrace

    def to_dict(self, include_trace: bool = True) -> Dict[str, Any]:
        from src.risk.trace import trace_to_dict

        data: Dict[str, Any] = {
            "coin": self.coin,
            "state": self.state.value,
            "message": self.message,
            "dotColor": self.dot_color,
            "funding": self.funding,
            "openInterest": self.open_interest,
            "dayNotionalVolume": self.day_notional_volume,
            "markPrice": self.mark_price,
        }
        if include_trace:
            data["trace"] = trace_to_dict(self.trace)
        return data
