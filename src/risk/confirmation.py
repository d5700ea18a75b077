"""
Confirmation Debouncer - N consecutive raw samples before a signal is actionable
Shared by the crowding and liquidity pillars, each with its own state
"""
from dataclasses import dataclass

from config import settings
from src.risk.models import ConfirmationResult


@dataclass(slots=True)
class ConfirmationState:
    """Per-signal memory carried across cycles"""
    count: int = 0
    last_raw: bool = False

    def to_dict(self) -> dict:
        return {"count": self.count, "last_raw": self.last_raw}


class ConfirmationGate:
    """
    Counter transition per cycle:
        raw true  -> previous count + 1 if the previous raw was true, else 1
        raw false -> 0
    capped at `required`. Confirmed once the counter reaches `required`.
    """

    def __init__(self, required: int = settings.CONFIRMATION_REQUIRED):
        if required < 1:
            raise ValueError("required must be >= 1")
        self.required = required

    def peek(self, state: ConfirmationState, raw: bool) -> ConfirmationResult:
        """Compute the next step without touching state"""
        if raw:
            count = state.count + 1 if state.last_raw else 1
            count = min(count, self.required)
        else:
            count = 0
        return ConfirmationResult(
            previous_raw=state.last_raw,
            previous_count=state.count,
            raw=raw,
            count=count,
            required=self.required,
            confirmed=count >= self.required,
        )

    def update(self, state: ConfirmationState, raw: bool) -> ConfirmationResult:
        """Advance state by one cycle; compares against the previous cycle's raw"""
        result = self.peek(state, raw)
        state.count = result.count
        state.last_raw = raw
        return result
