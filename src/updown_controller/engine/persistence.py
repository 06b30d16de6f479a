from typing import Dict, Optional

from updown_controller.models import PersistenceState, Side


def advance(prev: PersistenceState, side: Optional[Side]) -> PersistenceState:
    if side is None:
        return PersistenceState()
    if prev.side == side:
        return PersistenceState(side=side, count=prev.count + 1)
    return PersistenceState(side=side, count=1)


class PersistenceTracker:
    """Per-symbol count of consecutive same-side raw signals."""

    def __init__(self):
        self._state: Dict[str, PersistenceState] = {}

    def get(self, symbol: str) -> PersistenceState:
        return self._state.get(symbol, PersistenceState())

    def update(self, symbol: str, side: Optional[Side]) -> PersistenceState:
        st = advance(self.get(symbol), side)
        self._state[symbol] = st
        return st

    def snapshot(self) -> Dict[str, dict]:
        return {k: v.model_dump(mode="json") for k, v in self._state.items()}
