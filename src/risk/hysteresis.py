"""
Hysteresis / Cooldown Guard

Upgrades, equal severity and transitions into UNSUPPORTED apply at once.
A strict downgrade applies only after the minimum hold of the state being
left has elapsed (RED 30 min, ORANGE 15 min); until then the previous
effective state is kept and the cycle is marked blocked.

Note: UNSUPPORTED ranks below GREEN, so losing data while RED/ORANGE is
held skips the cooldown (fail-open on data loss).
"""
from typing import Dict, Optional
import structlog

from config import settings
from src.risk.memory import CoinMemoryState, StateRecord
from src.risk.models import HysteresisResult, RiskState

logger = structlog.get_logger(__name__)


class HysteresisGuard:

    def __init__(
        self,
        cooldown_red_s: float = settings.COOLDOWN_RED_S,
        cooldown_orange_s: float = settings.COOLDOWN_ORANGE_S,
    ):
        self.min_hold_s: Dict[RiskState, float] = {
            RiskState.RED: cooldown_red_s,
            RiskState.ORANGE: cooldown_orange_s,
        }

    def evaluate(
        self, previous: Optional[StateRecord], computed: RiskState, now_ms: int
    ) -> HysteresisResult:
        """Pure: decide the effective state without touching memory"""
        if previous is None:
            return HysteresisResult(
                computed=computed, effective=computed, entered_at_ms=now_ms, changed=True,
            )

        result = HysteresisResult(
            computed=computed,
            effective=computed,
            previous_state=previous.state,
            previous_entered_at_ms=previous.entered_at_ms,
            entered_at_ms=previous.entered_at_ms,
            elapsed_s=(now_ms - previous.entered_at_ms) / 1000.0,
        )

        immediate = (
            computed == previous.state
            or computed == RiskState.UNSUPPORTED
            or computed.rank >= previous.state.rank
        )
        if not immediate:
            hold_s = self.min_hold_s.get(previous.state, 0.0)
            result.hold_s = hold_s
            if result.elapsed_s <= hold_s:
                result.effective = previous.state
                result.blocked = True
                result.cooldown_remaining_s = max(0.0, hold_s - result.elapsed_s)

        if result.effective != previous.state:
            result.changed = True
            result.entered_at_ms = now_ms
        return result

    def apply(self, memory: CoinMemoryState, computed: RiskState, now_ms: int) -> HysteresisResult:
        """Evaluate and record the effective state; enteredAt moves only on change"""
        result = self.evaluate(memory.last_state, computed, now_ms)
        if result.changed:
            if memory.last_state is not None:
                logger.info(
                    "risk_state_changed",
                    coin=memory.coin,
                    old_state=memory.last_state.state.value,
                    new_state=result.effective.value,
                )
            memory.last_state = StateRecord(state=result.effective, entered_at_ms=now_ms)
        elif result.blocked:
            logger.debug(
                "risk_downgrade_blocked",
                coin=memory.coin,
                held_state=result.effective.value,
                computed=computed.value,
                remaining_s=round(result.cooldown_remaining_s, 1),
            )
        return result
