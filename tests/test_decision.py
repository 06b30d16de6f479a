from updown_controller.config import Settings
from updown_controller.engine.decision import DecisionEngine
from updown_controller.engine.verdict import SymbolInputs, evaluate
from updown_controller.models import BookSide, DecisionKind, PersistenceState, Side

PRIMED = PersistenceState(side=Side.UP, count=1)


def inputs(market, features, t0, connected=True):
    return SymbolInputs(market=market, features=features, feed_connected=connected, now=t0)


def test_strong_move_candidate_then_propose(make_market, make_features, t0):
    engine = DecisionEngine(Settings())
    first = engine.decide(inputs(make_market(), make_features(), t0), cycle=1)
    assert first.decision == DecisionKind.CANDIDATE_UP
    assert first.dominant_blocker == "PERSISTENCE"
    assert first.persistence_count == 1
    assert first.p_hat > 0.97
    assert first.net_edge > 0.03
    assert first.buy_side == Side.UP
    assert first.buy_price == 0.41

    second = engine.decide(inputs(make_market(), make_features(), t0), cycle=2)
    assert second.decision == DecisionKind.PROPOSE_UP
    assert second.signal == DecisionKind.PROPOSE_UP
    assert second.dominant_blocker is None
    assert second.persisted
    assert second.counterfactuals is None


def test_down_move_proposes_down(make_market, make_features, t0):
    v = evaluate(inputs(make_market(up=(0.59, 0.61), down=(0.39, 0.41)), make_features(ret=-0.002), t0), Settings(), PersistenceState(side=Side.DN, count=1))
    assert v.decision == DecisionKind.PROPOSE_DN
    assert v.buy_side == Side.DN
    assert v.buy_price == 0.41


def test_vol_floor_blocks_with_reason(make_market, make_features, t0):
    v = evaluate(inputs(make_market(), make_features(vol=0.0001), t0), Settings(), PRIMED)
    assert v.decision == DecisionKind.DO_NOTHING
    assert v.blocker == "NO_SIGNAL"
    assert "volatility floor" in v.reason
    assert v.persistence == PersistenceState()


def test_sanity_failure_blocks_persisted_signal(make_market, make_features, t0):
    engine = DecisionEngine(Settings())
    engine.tracker.update("BTC", Side.UP)
    d = engine.decide(inputs(make_market(up=(0.59, 0.61), down=(0.59, 0.61)), make_features(), t0), cycle=2)
    assert d.decision == DecisionKind.DO_NOTHING
    assert d.dominant_blocker == "SANITY"
    assert d.gate_block == ["SANITY"]
    assert d.signal == DecisionKind.PROPOSE_UP
    assert "blocked by gates" in d.reason


def test_feed_blocker_outranks_missing_book(make_market, make_features, t0):
    m = make_market(up=BookSide(), down=BookSide())
    v = evaluate(inputs(m, make_features(ok=False), t0), Settings(), PRIMED)
    assert v.blocker == "NO_CEX_FEED"
    v = evaluate(inputs(m, make_features(), t0, connected=False), Settings(), PRIMED)
    assert v.blocker == "NO_CEX_FEED"
    assert v.reason == "NO_CEX_FEED: feed disconnected"


def test_missing_book(make_market, make_features, t0):
    v = evaluate(inputs(make_market(up=BookSide()), make_features(), t0), Settings(), PRIMED)
    assert v.blocker == "NO_BOOK"
    assert v.p is None


def test_missing_ask(make_market, make_features, t0):
    m = make_market(up=BookSide(bid=0.39, ask=None, mid=0.40, ask_size=None))
    v = evaluate(inputs(m, make_features(), t0), Settings(), PRIMED)
    assert v.blocker == "NO_ASK"


def test_flat_edge(make_market, make_features, t0):
    m = make_market(up=(0.49, 0.51), down=(0.49, 0.51))
    v = evaluate(inputs(m, make_features(ret=0.0), t0), Settings(), PRIMED)
    assert v.blocker == "EDGE"
    assert v.reason.startswith("flat")


def test_below_threshold(make_market, make_features, t0):
    m = make_market(up=(0.48, 0.50), down=(0.50, 0.52))
    v = evaluate(inputs(m, make_features(ret=0.0), t0), Settings(), PRIMED)
    assert v.blocker == "EDGE"
    assert v.reason.startswith("below threshold")


def test_costs_eat_the_edge(make_market, make_features, t0):
    m = make_market(up=(0.46, 0.48), down=(0.52, 0.54))
    v = evaluate(inputs(m, make_features(ret=0.0), t0), Settings(), PRIMED)
    assert v.blocker == "NET_EDGE"
    assert v.reason.startswith("costs too high")
    assert v.net_edge < 0.03


def test_clamp_annotation(make_market, make_features, t0):
    v = evaluate(inputs(make_market(), make_features(ret=0.05, vol=0.001), t0), Settings(), PRIMED)
    assert v.decision == DecisionKind.PROPOSE_UP
    assert "z-clamped" in v.reason
    assert "p_hat-clamped" in v.reason


def test_exit_near_window_end(make_market, make_features, t0):
    settings = Settings.model_validate({"decision": {"exit_seconds": 300}})
    v = evaluate(inputs(make_market(seconds_left=280), make_features(), t0), settings, PRIMED)
    assert v.decision == DecisionKind.EXIT
    assert v.gates.all_pass


def test_evaluate_is_pure(make_market, make_features, t0):
    args = (inputs(make_market(), make_features(), t0), Settings(), PRIMED)
    assert evaluate(*args) == evaluate(*args)


def test_skip_resets_persistence(make_market, make_features, t0):
    engine = DecisionEngine(Settings())
    engine.decide(inputs(make_market(), make_features(), t0), cycle=1)
    d = engine.skip("BTC", 2, "NO_MARKET", "NO_MARKET: no active market for current slot", now=t0)
    assert d.decision == DecisionKind.DO_NOTHING
    assert d.dominant_blocker == "NO_MARKET"
    assert engine.tracker.get("BTC") == PersistenceState()
    third = engine.decide(inputs(make_market(), make_features(), t0), cycle=3)
    assert third.decision == DecisionKind.CANDIDATE_UP


def test_counterfactual_persistence_one(make_market, make_features, t0):
    d = DecisionEngine(Settings()).decide(inputs(make_market(), make_features(), t0), cycle=1)
    cf = d.counterfactuals
    assert cf.persistence_one
    assert not cf.relaxed_net_edge
    assert not cf.zero_vol_floor
    assert not cf.wide_spread
    assert cf.would_fire_count == 1


def test_counterfactual_zero_vol_floor(make_market, make_features, t0):
    engine = DecisionEngine(Settings())
    engine.tracker.update("BTC", Side.UP)
    d = engine.decide(inputs(make_market(), make_features(vol=0.0001), t0), cycle=2)
    assert d.dominant_blocker == "NO_SIGNAL"
    assert d.counterfactuals.zero_vol_floor
    assert not d.counterfactuals.persistence_one
    assert d.counterfactuals.would_fire_count == 1


def test_counterfactual_wide_spread(make_market, make_features, t0):
    engine = DecisionEngine(Settings())
    engine.tracker.update("BTC", Side.UP)
    d = engine.decide(inputs(make_market(up=(0.36, 0.44), down=(0.56, 0.64)), make_features(), t0), cycle=2)
    assert d.dominant_blocker == "SPREAD"
    assert d.counterfactuals.wide_spread
    assert d.counterfactuals.would_fire_count == 1


def test_counterfactuals_leave_tracker_alone(make_market, make_features, t0):
    engine = DecisionEngine(Settings())
    engine.decide(inputs(make_market(), make_features(), t0), cycle=1)
    assert engine.tracker.get("BTC") == PersistenceState(side=Side.UP, count=1)


def test_vol_floor_blocks_any_return(make_market, make_features, t0):
    engine = DecisionEngine(Settings())
    for ret in (0.5, -0.5, 0.01, 0.0005, 0.0, -0.002):
        engine.tracker.update("BTC", Side.UP)
        d = engine.decide(inputs(make_market(), make_features(ret=ret, vol=0.00001), t0), cycle=1)
        assert d.decision == DecisionKind.DO_NOTHING
        assert d.vol_floor_hit is True
        assert d.dominant_blocker == "NO_SIGNAL"
        assert "volatility floor" in d.reason


def test_slightly_rich_book_still_escalates(make_market, make_features, t0):
    engine = DecisionEngine(Settings())
    market = make_market(up=(0.39, 0.41), down=(0.61, 0.63))
    assert market.sanity_sum == 1.02

    first = engine.decide(inputs(market, make_features(), t0), cycle=1)
    assert first.decision == DecisionKind.CANDIDATE_UP
    assert first.all_gates_pass

    second = engine.decide(inputs(market, make_features(), t0), cycle=2)
    assert second.decision == DecisionKind.PROPOSE_UP
    assert second.up_mid == 0.40
    assert second.dn_mid == 0.62
