from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from updown_controller.config import Settings
from updown_controller.engine.costs import CostModel
from updown_controller.engine.persistence import advance
from updown_controller.engine.signal import compute_p_hat
from updown_controller.models import (
    DecisionKind,
    FeatureSnapshot,
    GateReport,
    MarketWindowState,
    PersistenceState,
    PHat,
    Side,
    candidate_for,
    propose_for,
)
from updown_controller.risk.guards import evaluate_gates


@dataclass(frozen=True)
class SymbolInputs:
    market: MarketWindowState
    features: FeatureSnapshot
    feed_connected: bool
    now: datetime

    @property
    def feed_ok(self) -> bool:
        return bool(self.features.ok and self.feed_connected)


@dataclass(frozen=True)
class Verdict:
    decision: DecisionKind
    signal: DecisionKind
    raw_side: Optional[Side]
    reason: str
    blocker: Optional[str]
    gates: GateReport
    persistence: PersistenceState
    persisted: bool
    p: Optional[PHat] = None
    edge: Optional[float] = None
    fees: Optional[float] = None
    slippage: Optional[float] = None
    net_edge: Optional[float] = None
    buy_side: Optional[Side] = None
    buy_price: Optional[float] = None


def _pct(x: float, nd: int = 2) -> str:
    return f"{x * 100:.{nd}f}%"


def evaluate(inputs: SymbolInputs, settings: Settings, prior: PersistenceState, costs: Optional[CostModel] = None) -> Verdict:
    """One symbol, one cycle, no side effects.

    Checks run in precedence order; the first one that stops escalation is
    the dominant blocker. ``prior`` is the persistence state before this
    cycle and the returned ``persistence`` is the state after it.
    """
    costs = costs or CostModel(settings.fees)
    dcfg = settings.decision
    market, feats = inputs.market, inputs.features
    gates = evaluate_gates(market, inputs.feed_ok, settings.gates, inputs.now)

    up_mid, dn_mid = market.up.mid, market.down.mid
    signal = DecisionKind.DO_NOTHING
    raw_side: Optional[Side] = None
    blocker: Optional[str] = None
    p: Optional[PHat] = None
    edge = fees = slippage = net_edge = buy_price = None
    buy_side: Optional[Side] = None

    if not inputs.feed_ok:
        blocker = "NO_CEX_FEED"
        detail = feats.reason or ("feed disconnected" if not inputs.feed_connected else "feed not ready")
        reason = f"NO_CEX_FEED: {detail}"
    elif up_mid is None or dn_mid is None:
        blocker = "NO_BOOK"
        reason = "NO_BOOK: no book data"
    else:
        p = compute_p_hat(float(feats.return_60s or 0.0), float(feats.vol_60s or 0.0), settings.signal)
        buy_side = Side.UP if p.p_hat > up_mid else Side.DN
        book = market.up if buy_side == Side.UP else market.down
        buy_price = book.ask
        if p.vol_floor_hit:
            blocker = "NO_SIGNAL"
            reason = f"NO_SIGNAL: vol_60s={feats.vol_60s} < floor={settings.signal.vol_floor} (volatility floor)"
        elif buy_price is None:
            blocker = "NO_ASK"
            reason = "NO_ASK: no ask price"
        else:
            edge = abs(p.p_hat - up_mid)
            fees = costs.fee(buy_price)
            slippage = costs.slippage(book.ask_size)
            net_edge = edge - fees - slippage - dcfg.edge_buffer
            if edge < dcfg.proposal_threshold:
                blocker = "EDGE"
                if edge < dcfg.flat_edge:
                    reason = f"flat: p_hat={p.p_hat:.4f} ~ upMid={up_mid:.4f}"
                else:
                    reason = f"below threshold: edge={_pct(edge, 3)} < {_pct(dcfg.proposal_threshold, 1)}"
            elif net_edge < dcfg.min_net_edge:
                blocker = "NET_EDGE"
                reason = f"costs too high: netEdge={_pct(net_edge)} < {_pct(dcfg.min_net_edge, 1)}"
            else:
                signal = propose_for(buy_side)
                raw_side = buy_side
                reason = f"p_hat={p.p_hat:.4f} vs upMid={up_mid:.4f}, edge={_pct(edge)}, netEdge={_pct(net_edge)}"
        flags = []
        if p.z_clamped:
            flags.append(f"z-clamped({p.raw_z:.2f}->{p.z:.2f})")
        if p.p_hat_clamped:
            flags.append("p_hat-clamped")
        if flags:
            reason += f" [{', '.join(flags)}]"

    persistence = advance(prior, raw_side)
    persisted = raw_side is not None and persistence.count >= dcfg.persistence_n
    decision = signal
    if raw_side is not None:
        if not persisted:
            decision = candidate_for(raw_side)
            blocker = "PERSISTENCE"
            reason += f" | persistence {persistence.count}/{dcfg.persistence_n}"
        elif not gates.all_pass:
            decision = DecisionKind.DO_NOTHING
            blocker = gates.failing[0]
            reason += f" | blocked by gates: {', '.join(gates.failing)}"
        elif gates.time_remaining < dcfg.exit_seconds:
            decision = DecisionKind.EXIT
            reason += f" | exit: {gates.time_remaining:.0f}s left < {dcfg.exit_seconds:.0f}s"

    return Verdict(
        decision=decision,
        signal=signal,
        raw_side=raw_side,
        reason=reason,
        blocker=blocker,
        gates=gates,
        persistence=persistence,
        persisted=persisted,
        p=p,
        edge=edge,
        fees=fees,
        slippage=slippage,
        net_edge=net_edge,
        buy_side=buy_side,
        buy_price=buy_price,
    )
