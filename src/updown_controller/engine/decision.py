from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

from updown_controller.config import Settings
from updown_controller.engine.costs import CostModel
from updown_controller.engine.counterfactual import CounterfactualAnalyzer
from updown_controller.engine.persistence import PersistenceTracker
from updown_controller.engine.verdict import SymbolInputs, Verdict, evaluate
from updown_controller.models import Decision, DecisionKind


def _r(x: Optional[float], nd: int) -> Optional[float]:
    return None if x is None else round(float(x), nd)


class DecisionEngine:
    """Turns one symbol's market state and features into a Decision.

    Owns the persistence tracker; call ``decide`` exactly once per symbol
    per cycle.
    """

    def __init__(self, settings: Settings, tracker: Optional[PersistenceTracker] = None, costs: Optional[CostModel] = None):
        self.settings = settings
        self.costs = costs or CostModel(settings.fees)
        self.tracker = tracker or PersistenceTracker()
        self.counterfactuals = CounterfactualAnalyzer(settings, self.costs)

    def decide(self, inputs: SymbolInputs, cycle: int) -> Decision:
        symbol = inputs.market.symbol
        prior = self.tracker.get(symbol)
        verdict = evaluate(inputs, self.settings, prior, self.costs)
        self.tracker.update(symbol, verdict.raw_side)
        cf = None
        if not verdict.decision.is_proposal:
            cf = self.counterfactuals.analyze(inputs, prior)
        return self._to_decision(inputs, verdict, cycle, cf)

    def skip(self, symbol: str, cycle: int, blocker: str, reason: str, slug: str = "", now: Optional[datetime] = None) -> Decision:
        """Decision for a symbol that could not be evaluated this cycle (no market, resolver error)."""
        st = self.tracker.update(symbol, None)
        return Decision(
            cycle=cycle,
            ts=(now or datetime.now(timezone.utc)).isoformat(),
            symbol=symbol,
            slug=slug,
            decision=DecisionKind.DO_NOTHING,
            signal=DecisionKind.DO_NOTHING,
            reason=reason,
            dominant_blocker=blocker,
            persistence_count=st.count,
            persistence_needed=self.settings.decision.persistence_n,
        )

    def _to_decision(self, inputs: SymbolInputs, v: Verdict, cycle: int, cf) -> Decision:
        m, f, p = inputs.market, inputs.features, v.p
        gate_block = v.gates.failing if (v.persisted and not v.gates.all_pass) else []
        return Decision(
            cycle=cycle,
            ts=inputs.now.isoformat(),
            symbol=m.symbol,
            slug=m.slug,
            decision=v.decision,
            signal=v.signal,
            reason=v.reason,
            dominant_blocker=None if (v.decision.is_proposal or v.decision == DecisionKind.EXIT) else v.blocker,
            gate_block=gate_block,
            gates=v.gates.gates,
            all_gates_pass=v.gates.all_pass,
            time_remaining=round(v.gates.time_remaining, 0),
            persistence_count=v.persistence.count,
            persistence_needed=self.settings.decision.persistence_n,
            persisted=v.persisted,
            reference_price=f.reference_price,
            return_60s=f.return_60s,
            vol_60s=f.vol_60s,
            p_hat=_r(p.p_hat, 6) if p else None,
            z=_r(p.z, 4) if p else None,
            raw_z=_r(p.raw_z, 4) if p else None,
            vol_floor_hit=p.vol_floor_hit if p else False,
            z_clamped=p.z_clamped if p else False,
            p_hat_clamped=p.p_hat_clamped if p else False,
            edge=_r(v.edge, 6),
            fees=_r(v.fees, 6),
            slippage=_r(v.slippage, 6),
            buffer=self.settings.decision.edge_buffer,
            net_edge=_r(v.net_edge, 6),
            up_mid=m.up.mid,
            dn_mid=m.down.mid,
            buy_side=v.buy_side,
            buy_price=v.buy_price,
            window_end=m.window_end,
            counterfactuals=cf,
        )
