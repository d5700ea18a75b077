"""
Trace Builder - replayable audit of every intermediate decision

build_trace() is a pure function of the cycle's intermediate values.
render_trace_text() is a pure function of the trace: identical traces give
byte-identical reports.
"""
from typing import Any, Dict, List, Optional
import orjson

from src.risk.models import (
    ConfirmationResult, CrowdingResult, DecisionResult, HysteresisResult,
    LiquidityResult, LiquiditySource, RiskDecisionTrace, RiskState,
    StructureResult, UniverseResult, STALE_REASON,
)


def build_trace(
    coin: str,
    venue: Optional[str],
    cycle_ts_ms: int,
    universe: UniverseResult,
    crowding: CrowdingResult,
    crowding_confirmation: Optional[ConfirmationResult],
    structure: StructureResult,
    liquidity: LiquidityResult,
    liquidity_confirmation: Optional[ConfirmationResult],
    decision: DecisionResult,
    hysteresis: HysteresisResult,
) -> RiskDecisionTrace:
    return RiskDecisionTrace(
        coin=coin,
        venue=venue,
        cycle_ts_ms=cycle_ts_ms,
        universe=universe,
        crowding=crowding,
        crowding_confirmation=crowding_confirmation,
        structure=structure,
        liquidity=liquidity,
        liquidity_confirmation=liquidity_confirmation,
        decision=decision,
        hysteresis=hysteresis,
        effective_state=hysteresis.effective,
    )


def build_stale_trace(
    coin: str,
    venue: Optional[str],
    now_ms: int,
    last_success_ms: Optional[int],
    min_day_notional_volume: float,
    min_open_interest_usd: float,
) -> RiskDecisionTrace:
    """Synthetic record for the staleness override; bypasses resolver and cooldowns"""
    return RiskDecisionTrace(
        coin=coin,
        venue=venue,
        cycle_ts_ms=now_ms,
        universe=UniverseResult(
            asset_found=False,
            day_notional_volume=None,
            open_interest_usd=None,
            min_day_notional_volume=min_day_notional_volume,
            min_open_interest_usd=min_open_interest_usd,
            data_unavailable=True,
            failed_checks=[STALE_REASON],
        ),
        crowding=CrowdingResult(reason=STALE_REASON),
        crowding_confirmation=None,
        structure=StructureResult(reason=STALE_REASON),
        liquidity=LiquidityResult(reason=STALE_REASON),
        liquidity_confirmation=None,
        decision=None,
        hysteresis=None,
        effective_state=RiskState.UNSUPPORTED,
        stale=True,
        stale_reason=STALE_REASON,
        last_success_ms=last_success_ms,
    )


# ========== STRUCTURED DATA ==========

def trace_to_dict(trace: RiskDecisionTrace) -> Dict[str, Any]:
    return {
        "coin": trace.coin,
        "venue": trace.venue,
        "cycle_ts_ms": trace.cycle_ts_ms,
        "effective_state": trace.effective_state.value,
        "stale": trace.stale,
        "stale_reason": trace.stale_reason,
        "last_success_ms": trace.last_success_ms,
        "universe": trace.universe.to_dict(),
        "crowding": trace.crowding.to_dict(),
        "crowding_confirmation": (
            trace.crowding_confirmation.to_dict() if trace.crowding_confirmation else None
        ),
        "structure": trace.structure.to_dict(),
        "liquidity": trace.liquidity.to_dict(),
        "liquidity_confirmation": (
            trace.liquidity_confirmation.to_dict() if trace.liquidity_confirmation else None
        ),
        "decision": trace.decision.to_dict() if trace.decision else None,
        "hysteresis": trace.hysteresis.to_dict() if trace.hysteresis else None,
        "indicators": indicator_statuses(trace),
    }


def trace_to_json(trace: RiskDecisionTrace) -> bytes:
    return orjson.dumps(trace_to_dict(trace), option=orjson.OPT_SORT_KEYS | orjson.OPT_INDENT_2)


# ========== HUMAN READABLE INDICATORS ==========

def indicator_statuses(trace: RiskDecisionTrace) -> List[Dict[str, Any]]:
    """Plain-language summary of the three warning indicators"""
    crowding = trace.crowding
    liquidity = trace.liquidity

    funding_active = crowding.z_score is not None and abs(crowding.z_score) >= crowding.z_threshold
    if not crowding.evaluated:
        funding_details = "Skipped (insufficient data)"
    elif crowding.z_score is None:
        funding_details = "Unable to calculate (not enough historical data)"
    elif funding_active:
        funding_details = (
            f"Funding rate is {abs(crowding.z_score):.2f} sigma from normal "
            f"(threshold: {crowding.z_threshold:g} sigma)"
        )
    else:
        funding_details = (
            f"Funding rate is {abs(crowding.z_score):.2f} sigma from normal "
            f"(within {crowding.z_threshold:g} sigma threshold)"
        )

    oi_cap_active = crowding.at_oi_cap is True
    if not crowding.evaluated:
        oi_cap_details = "Skipped (insufficient data)"
    elif crowding.at_oi_cap is None:
        oi_cap_details = "OI cap data unavailable"
    elif oi_cap_active:
        oi_cap_details = "Market has reached maximum open interest - no new positions can be opened"
    else:
        oi_cap_details = "Market is below open interest cap - positions can be opened normally"

    confirmation = trace.liquidity_confirmation
    liquidity_active = bool(confirmation and confirmation.confirmed)
    if not liquidity.evaluated:
        liquidity_details = "Skipped (insufficient data)"
    elif liquidity.source == LiquiditySource.IMPACT:
        verdict = "exceeds" if liquidity.raw else "within"
        liquidity_details = (
            f"Trade impact cost is {liquidity.impact_cost_bps:.1f} bps "
            f"({verdict} {liquidity.impact_cost_threshold_bps:g} bps threshold)"
        )
    elif liquidity.source == LiquiditySource.ORDERBOOK and liquidity.spread_bps is not None:
        depth = (
            f"${liquidity.depth_notional / 1000:.0f}K" if liquidity.depth_notional is not None else "-"
        )
        verdict = "thin" if liquidity.raw else "healthy"
        liquidity_details = f"Order book is {verdict}: spread {liquidity.spread_bps:.1f} bps, depth {depth}"
    else:
        liquidity_details = "Liquidity data unavailable"

    return [
        {
            "name": "Leverage Imbalance",
            "active": funding_active,
            "description": "Detects when too many traders are positioned on the same side of the market.",
            "details": funding_details,
        },
        {
            "name": "Position Limit Reached",
            "active": oi_cap_active,
            "description": "Detects when the market hits its maximum leverage capacity.",
            "details": oi_cap_details,
        },
        {
            "name": "Low Liquidity",
            "active": liquidity_active,
            "description": "Detects when the order book is thin and trades may cause significant slippage.",
            "details": liquidity_details,
        },
    ]


def state_headline(state: RiskState, active_count: int) -> str:
    if state == RiskState.GREEN:
        return "All Clear: Market conditions are normal. No warning signs detected."
    if state == RiskState.ORANGE:
        plural = "s" if active_count != 1 else ""
        return (
            f"Caution Advised: {active_count} risk signal{plural} active. "
            "Consider tightening stops or reducing position size."
        )
    if state == RiskState.RED:
        return "High Risk: All risk signals are active. Consider exiting or using very tight stop losses."
    return "Insufficient Data: This market has insufficient volume or data for reliable risk analysis."


# ========== PLAIN TEXT REPORT ==========

def _num(value: Optional[float], fmt: str) -> str:
    return "n/a" if value is None else format(value, fmt)


def _pct(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value * 100:+.4f}%"


def _flag(value: Optional[bool]) -> str:
    if value is None:
        return "n/a"
    return "yes" if value else "no"


def _usd(value: Optional[float]) -> str:
    return "n/a" if value is None else f"${value:,.0f}"


def _confirmation_line(confirmation: Optional[ConfirmationResult]) -> str:
    if confirmation is None:
        return "confirmation: n/a"
    return (
        f"confirmation: {confirmation.count}/{confirmation.required} "
        f"(previous {confirmation.previous_count}, previous raw {_flag(confirmation.previous_raw)}) "
        f"-> {'confirmed' if confirmation.confirmed else 'not confirmed'}"
    )


def render_trace_text(trace: RiskDecisionTrace) -> str:
    """Deterministic multi-section plain-text report"""
    u = trace.universe
    c = trace.crowding
    s = trace.structure
    l = trace.liquidity
    lines: List[str] = [
        f"=== CRASH RISK TRACE: {trace.coin} ===",
        f"venue: {trace.venue if trace.venue else 'main'}",
        f"cycle: {trace.cycle_ts_ms}",
        f"effective state: {trace.effective_state.value}",
    ]
    if trace.stale:
        lines.append(f"override: {trace.stale_reason} (last success: {trace.last_success_ms if trace.last_success_ms is not None else 'never'})")

    lines += [
        "",
        "--- UNIVERSE FILTER ---",
        f"asset found: {_flag(u.asset_found)}",
        f"day notional volume: {_usd(u.day_notional_volume)} (min {_usd(u.min_day_notional_volume)})",
        f"open interest: {_usd(u.open_interest_usd)} (min {_usd(u.min_open_interest_usd)})",
        f"eligible: {_flag(u.eligible)}",
        f"data unavailable: {_flag(u.data_unavailable)}",
        f"failed checks: {', '.join(u.failed_checks) if u.failed_checks else 'none'}",
        "",
        "--- PILLAR 1: CROWDING ---",
        f"evaluated: {_flag(c.evaluated)}",
        f"funding rate: {_num(c.funding_rate, '.6f')}",
        f"history samples: {c.history_count}",
        f"history mean: {_num(c.history_mean, '.6f')}",
        f"history stdev: {_num(c.history_stdev, '.6f')}",
        f"z-score: {_num(c.z_score, '.3f')} (threshold {c.z_threshold:g})",
        f"at OI cap: {_flag(c.at_oi_cap)}",
        f"raw: {_flag(c.raw)}",
        f"direction: {c.direction.value}",
        f"reason: {c.reason or '-'}",
        _confirmation_line(trace.crowding_confirmation),
        "",
        "--- PILLAR 2: STRUCTURE ---",
        f"evaluated: {_flag(s.evaluated)}",
        f"direction: {s.direction.value}",
        f"r15: {_pct(s.r15)}",
        f"r1h: {_pct(s.r1h)}",
        f"thresholds: broken r15 {s.broken_r15 * 100:g}%, broken r1h {s.broken_r1h * 100:g}%, "
        f"weakening r15 {s.weakening_r15 * 100:g}%",
        f"state: {s.state.value if s.state else 'N/A'}",
        f"reason: {s.reason or '-'}",
        "",
        "--- PILLAR 3: LIQUIDITY ---",
        f"evaluated: {_flag(l.evaluated)}",
        f"source: {l.source.value}",
        f"impact cost: {_num(l.impact_cost_bps, '.2f')}bps (threshold {l.impact_cost_threshold_bps:g}bps)",
        f"spread: {_num(l.spread_bps, '.2f')}bps (threshold {l.spread_threshold_bps:g}bps)",
        f"depth within {l.depth_band_pct * 100:g}%: {_usd(l.depth_notional)} (min {_usd(l.depth_min_notional)})",
        f"raw: {_flag(l.raw)}",
        f"reason: {l.reason or '-'}",
        _confirmation_line(trace.liquidity_confirmation),
        "",
        "--- DECISION ---",
    ]

    if trace.decision is None:
        lines += ["branch: bypassed", "computed: n/a"]
    else:
        lines += [
            f"branch: {trace.decision.branch.label}",
            f"computed: {trace.decision.state.value}",
        ]

    lines += ["", "--- HYSTERESIS ---"]
    h = trace.hysteresis
    if h is None:
        lines.append("bypassed")
    else:
        lines += [
            f"previous: {h.previous_state.value if h.previous_state else 'none'}"
            f" (entered {h.previous_entered_at_ms if h.previous_entered_at_ms is not None else 'n/a'})",
            f"elapsed: {_num(h.elapsed_s, '.1f')}s, hold: {h.hold_s:.0f}s, "
            f"cooldown remaining: {h.cooldown_remaining_s:.1f}s",
            f"blocked: {_flag(h.blocked)}",
            f"changed: {_flag(h.changed)}",
            f"effective: {h.effective.value} (entered {h.entered_at_ms})",
        ]

    indicators = indicator_statuses(trace)
    active_count = sum(1 for ind in indicators if ind["active"])
    lines += ["", "--- INDICATORS ---"]
    for ind in indicators:
        lines.append(f"[{'ACTIVE' if ind['active'] else 'normal'}] {ind['name']}: {ind['details']}")
    lines.append(state_headline(trace.effective_state, active_count))

    return "\n".join(lines) + "\n"
