"""
Coin Memory - volatile per-symbol state owned by the engine
Created lazily on first evaluation, pruned against the current coin set
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional
import structlog

from src.risk.confirmation import ConfirmationState
from src.risk.models import RiskState

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class StateRecord:
    """Last effective state and when it was entered"""
    state: RiskState
    entered_at_ms: int


@dataclass
class CoinMemoryState:
    """Everything the engine remembers about one symbol between cycles"""
    coin: str
    venue: Optional[str] = None
    crowding: ConfirmationState = field(default_factory=ConfirmationState)
    liquidity: ConfirmationState = field(default_factory=ConfirmationState)
    last_state: Optional[StateRecord] = None

    def reset(self, venue: Optional[str] = None) -> None:
        self.venue = venue
        self.crowding = ConfirmationState()
        self.liquidity = ConfirmationState()
        self.last_state = None

    def to_dict(self) -> dict:
        return {
            "coin": self.coin,
            "venue": self.venue,
            "crowding": self.crowding.to_dict(),
            "liquidity": self.liquidity.to_dict(),
            "last_state": {
                "state": self.last_state.state.value,
                "entered_at_ms": self.last_state.entered_at_ms,
            } if self.last_state else None,
        }


class CoinMemoryArena:
    """
    Keyed store of CoinMemoryState.
    Never written to disk; rebuilt from the first observed cycle.
    """

    def __init__(self):
        self._states: Dict[str, CoinMemoryState] = {}

    def __contains__(self, coin: str) -> bool:
        return coin in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[str]:
        return iter(self._states)

    def get(self, coin: str) -> Optional[CoinMemoryState]:
        return self._states.get(coin)

    def get_or_create(self, coin: str, venue: Optional[str] = None) -> CoinMemoryState:
        """
        Fetch memory for a coin, creating it on first use.
        A coin resolved on a different venue than last time starts over.
        """
        state = self._states.get(coin)
        if state is None:
            state = CoinMemoryState(coin=coin, venue=venue)
            self._states[coin] = state
        elif venue is not None and state.venue is not None and state.venue != venue:
            logger.info("coin_venue_changed_memory_reset", coin=coin, old_venue=state.venue, new_venue=venue)
            state.reset(venue)
        elif venue is not None and state.venue is None:
            state.venue = venue
        return state

    def prune(self, coins: Iterable[str]) -> List[str]:
        """Drop memory for coins no longer in the coin set"""
        keep = set(coins)
        removed = [coin for coin in self._states if coin not in keep]
        for coin in removed:
            del self._states[coin]
        if removed:
            logger.info("coin_memory_pruned", removed=removed, remaining=len(self._states))
        return removed
