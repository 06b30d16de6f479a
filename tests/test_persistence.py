from updown_controller.engine.persistence import PersistenceTracker, advance
from updown_controller.models import PersistenceState, Side


def test_advance_counts_same_side():
    st = advance(PersistenceState(), Side.UP)
    assert (st.side, st.count) == (Side.UP, 1)
    st = advance(st, Side.UP)
    assert st.count == 2


def test_advance_flip_restarts_at_one():
    st = advance(PersistenceState(side=Side.UP, count=3), Side.DN)
    assert (st.side, st.count) == (Side.DN, 1)


def test_advance_none_resets():
    assert advance(PersistenceState(side=Side.UP, count=3), None) == PersistenceState()


def test_tracker_is_per_symbol():
    t = PersistenceTracker()
    t.update("BTC", Side.UP)
    t.update("ETH", Side.DN)
    st = t.update("BTC", Side.UP)
    assert st == PersistenceState(side=Side.UP, count=2)
    assert t.get("ETH") == PersistenceState(side=Side.DN, count=1)
    assert t.get("SOL") == PersistenceState()
    assert t.snapshot()["BTC"] == {"side": "UP", "count": 2}
