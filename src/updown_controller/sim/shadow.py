from __future__ import annotations
import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError
from rich import print

from updown_controller.adapters.resolver import OutcomeResolver
from updown_controller.config import ShadowSettings
from updown_controller.models import (
    Decision,
    Outcome,
    ProposalStatus,
    ShadowProposal,
    ShadowStats,
    Side,
)
from updown_controller.utils.storage import append_jsonl, read_jsonl, scan_jsonl


def realized_pnl(won: bool, entry_price: float, fees: float, slippage: float, buffer: float) -> float:
    gross = (1.0 - entry_price) if won else -entry_price
    return gross - fees - slippage - buffer


def side_won(side: Side, outcome: Outcome) -> bool:
    return (side == Side.UP and outcome == Outcome.UP_WON) or (side == Side.DN and outcome == Outcome.DOWN_WON)


class ShadowLedger:
    """Tracks proposals that were never executed against how the market actually settled.

    The shadow log is the source of truth: every lifecycle event (created,
    deferred, resolved) is appended to it. ``pending`` only ever holds
    proposals still waiting for an outcome.
    """

    def __init__(self, shadow_path: str, decisions_path: str, resolver: Optional[OutcomeResolver] = None, cfg: Optional[ShadowSettings] = None):
        self.shadow_path = shadow_path
        self.decisions_path = decisions_path
        self.resolver = resolver
        self.cfg = cfg or ShadowSettings()
        self.pending: Dict[str, ShadowProposal] = {}
        self._seq = 0
        self._decisions_pos = 0
        self._vol_floor_hits = 0
        self._z_clamp_hits = 0

    def load_pending(self) -> int:
        latest: Dict[str, dict] = {}
        for row in read_jsonl(self.shadow_path):
            pid = row.get("id")
            if pid:
                latest[str(pid)] = row
        for pid, row in latest.items():
            if row.get("status") != ProposalStatus.PENDING.value:
                continue
            try:
                self.pending[pid] = ShadowProposal.model_validate(row)
            except ValidationError:
                continue
        return len(self.pending)

    def _write(self, prop: ShadowProposal) -> None:
        append_jsonl(self.shadow_path, prop.model_dump(mode="json"))

    def record_proposal(self, d: Decision) -> ShadowProposal:
        if not d.decision.is_proposal:
            raise ValueError(f"not a proposal: {d.decision.value}")
        if d.buy_side is None or d.buy_price is None or d.window_end is None:
            raise ValueError("proposal is missing side, price or window end")
        self._seq += 1
        prop = ShadowProposal(
            id=f"shadow-{int(time.time() * 1000)}-{self._seq}",
            cycle=d.cycle,
            ts=d.ts,
            symbol=d.symbol,
            slug=d.slug,
            side=d.buy_side,
            decision=d.decision,
            entry_price=d.buy_price,
            fees=d.fees or 0.0,
            slippage=d.slippage or 0.0,
            buffer=d.buffer or 0.0,
            p_hat=d.p_hat,
            z=d.z,
            up_mid=d.up_mid,
            dn_mid=d.dn_mid,
            edge=d.edge,
            net_edge=d.net_edge,
            reference_price=d.reference_price,
            return_60s=d.return_60s,
            vol_60s=d.vol_60s,
            vol_floor_hit=d.vol_floor_hit,
            z_clamped=d.z_clamped,
            p_hat_clamped=d.p_hat_clamped,
            window_end=d.window_end,
        )
        self.pending[prop.id] = prop
        self._write(prop)
        return prop

    async def _fetch_outcome(self, slug: str) -> Outcome:
        if self.resolver is None:
            return Outcome.FETCH_ERROR
        try:
            return await asyncio.wait_for(self.resolver.fetch_outcome(slug), timeout=self.cfg.resolve_timeout_seconds)
        except Exception as e:
            print(f"[yellow]\\[shadow][/yellow] outcome fetch failed for {slug}: {e!r}")
            return Outcome.FETCH_ERROR

    async def resolve_due(self, now: Optional[datetime] = None) -> List[ShadowProposal]:
        now = now or datetime.now(timezone.utc)
        due = [p for p in list(self.pending.values()) if p.window_end < now]
        outcomes = await asyncio.gather(*(self._fetch_outcome(p.slug) for p in due))
        done: List[ShadowProposal] = []
        for prop, outcome in zip(due, outcomes):
            prop.resolve_attempts += 1
            prop.outcome = outcome
            if outcome.definitive:
                prop.won = side_won(prop.side, outcome)
                prop.realized_pnl = round(realized_pnl(prop.won, prop.entry_price, prop.fees, prop.slippage, prop.buffer), 6)
            elif prop.resolve_attempts >= self.cfg.max_resolve_attempts:
                prop.won = None
                prop.realized_pnl = None
                prop.note = "could not resolve"
            else:
                prop.event = "deferred"
                self._write(prop)
                continue

            prop.status = ProposalStatus.RESOLVED
            prop.event = "resolved"
            prop.resolved_at = now.isoformat()
            self._write(prop)
            self.pending.pop(prop.id, None)
            done.append(prop)
            print(
                f"[cyan]\\[shadow][/cyan] resolved {prop.id}: {prop.symbol} {prop.side.value} -> outcome={outcome.value} "
                f"won={prop.won} pnl={prop.realized_pnl} (p_hat={prop.p_hat} edge={prop.edge})"
            )
        return done

    def _scan_filters(self) -> Tuple[int, int]:
        # decision log only grows; count just the rows appended since the last call
        rows, self._decisions_pos = scan_jsonl(self.decisions_path, self._decisions_pos)
        for row in rows:
            for d in row.get("decisions") or []:
                if d.get("vol_floor_hit"):
                    self._vol_floor_hits += 1
                if d.get("z_clamped"):
                    self._z_clamp_hits += 1
        return self._vol_floor_hits, self._z_clamp_hits

    def stats(self) -> ShadowStats:
        """Aggregate performance from the shadow log plus the decision-log filter counts."""
        latest: Dict[str, dict] = {}
        for row in read_jsonl(self.shadow_path):
            if row.get("id"):
                latest[str(row["id"])] = row

        definitive = {Outcome.UP_WON.value, Outcome.DOWN_WON.value}
        pending = [e for e in latest.values() if e.get("status") == ProposalStatus.PENDING.value]
        closed = [e for e in latest.values() if e.get("status") == ProposalStatus.RESOLVED.value]
        resolved = [e for e in closed if e.get("outcome") in definitive]
        wins = [e for e in resolved if e.get("won") is True]
        losses = [e for e in resolved if e.get("won") is False]

        def avg(key: str) -> float:
            if not resolved:
                return 0.0
            return sum(float(e.get(key) or 0.0) for e in resolved) / len(resolved)

        total_pnl = sum(float(e.get("realized_pnl") or 0.0) for e in resolved)

        vol_floor, z_clamp = self._scan_filters()

        return ShadowStats(
            total_proposals=len(latest),
            pending_count=len(pending),
            resolved_count=len(resolved),
            unresolvable_count=len(closed) - len(resolved),
            wins=len(wins),
            losses=len(losses),
            win_rate=round(len(wins) / len(resolved), 4) if resolved else 0.0,
            avg_edge=round(avg("edge"), 6),
            avg_net_edge=round(avg("net_edge"), 6),
            avg_p_hat=round(avg("p_hat"), 4),
            total_pnl=round(total_pnl, 6),
            avg_pnl=round(total_pnl / len(resolved), 6) if resolved else 0.0,
            vol_floor_filtered=vol_floor,
            z_clamp_filtered=z_clamp,
        )
