from __future__ import annotations
import asyncio
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

from rich import print

from updown_controller.adapters.resolver import MarketResolver, OutcomeResolver
from updown_controller.config import Settings
from updown_controller.engine.decision import DecisionEngine
from updown_controller.engine.verdict import SymbolInputs
from updown_controller.models import CycleResult, Decision, DecisionKind
from updown_controller.sim.shadow import ShadowLedger
from updown_controller.utils.storage import append_event, append_jsonl, save_snapshot


@dataclass
class ControllerContext:
    """Everything that survives between cycles. Owned by the decision loop."""

    settings: Settings
    engine: DecisionEngine
    ledger: ShadowLedger
    feed: object  # exposes .connected and .features(symbol)
    ring: Dict[str, Deque[dict]] = field(default_factory=dict)
    cycle: int = 0

    @classmethod
    def build(cls, settings: Settings, feed, outcome_resolver: Optional[OutcomeResolver] = None) -> "ControllerContext":
        ledger = ShadowLedger(
            settings.storage.shadow_path,
            settings.storage.decisions_path,
            resolver=outcome_resolver,
            cfg=settings.shadow,
        )
        return cls(settings=settings, engine=DecisionEngine(settings), ledger=ledger, feed=feed)

    def push_ring(self, d: Decision):
        buf = self.ring.get(d.symbol)
        if buf is None:
            buf = deque(maxlen=self.settings.storage.ring_buffer_max)
            self.ring[d.symbol] = buf
        buf.append(
            {
                "ts": d.ts,
                "decision": d.decision.value,
                "net_edge": d.net_edge,
                "p_hat": d.p_hat,
                "z": d.z,
                "up_mid": d.up_mid,
                "dn_mid": d.dn_mid,
                "reference_price": d.reference_price,
                "time_remaining": d.time_remaining,
            }
        )


async def evaluate_symbol(ctx: ControllerContext, resolver: MarketResolver, symbol: str, cycle: int, now: datetime) -> Decision:
    cfg = ctx.settings
    try:
        market = await asyncio.wait_for(resolver.resolve(symbol, now), timeout=cfg.market.http_timeout * 2)
    except Exception as e:
        append_event(cfg.storage.events_path, {"type": "symbol_error", "stage": "resolve", "symbol": symbol, "cycle": cycle, "error": repr(e)})
        return ctx.engine.skip(symbol, cycle, "MARKET_ERROR", f"MARKET_ERROR: {e!r}", now=now)
    if market is None:
        return ctx.engine.skip(symbol, cycle, "NO_MARKET", "NO_MARKET: no active market for current slot", now=now)

    # Read features only after the awaited resolve; ticks may have landed meanwhile.
    inputs = SymbolInputs(market=market, features=ctx.feed.features(symbol), feed_connected=ctx.feed.connected, now=now)
    try:
        d = ctx.engine.decide(inputs, cycle)
        if d.decision.is_proposal and cfg.shadow.enabled:
            prop = ctx.ledger.record_proposal(d)
            d = d.model_copy(update={"shadow_id": prop.id})
    except Exception as e:
        append_event(cfg.storage.events_path, {"type": "symbol_error", "stage": "decide", "symbol": symbol, "cycle": cycle, "error": repr(e)})
        return ctx.engine.skip(symbol, cycle, "EVAL_ERROR", f"EVAL_ERROR: {e!r}", slug=market.slug, now=now)
    return d


async def run_cycle(ctx: ControllerContext, resolver: MarketResolver, now: Optional[datetime] = None) -> CycleResult:
    """One full pass over every symbol: resolve due shadows, decide, log, snapshot."""
    cfg = ctx.settings
    now = now or datetime.now(timezone.utc)
    ctx.cycle += 1
    cycle = ctx.cycle

    resolved = await ctx.ledger.resolve_due(now) if cfg.shadow.enabled else []

    decisions: List[Decision] = []
    for symbol in cfg.symbols:
        decisions.append(await evaluate_symbol(ctx, resolver, symbol, cycle, now))

    result = CycleResult(
        cycle=cycle,
        ts=now.isoformat(),
        feed_connected=bool(ctx.feed.connected),
        shadow_mode=cfg.shadow.enabled,
        decisions=decisions,
        resolved=resolved,
    )
    log_decisions(cfg.storage.decisions_path, result)
    for d in decisions:
        ctx.push_ring(d)
    if cfg.shadow.enabled:
        result.shadow_stats = ctx.ledger.stats()
    save_snapshot(cfg.storage.snapshot_path, build_snapshot(ctx, result, resolver))
    return result


def log_decisions(path: str, result: CycleResult):
    append_jsonl(
        path,
        {
            "ts": result.ts,
            "cycle": result.cycle,
            "feed_connected": result.feed_connected,
            "shadow_mode": result.shadow_mode,
            "decisions": [d.model_dump(mode="json") for d in result.decisions],
        },
    )


def build_snapshot(ctx: ControllerContext, result: CycleResult, resolver: Optional[MarketResolver] = None) -> dict:
    decisions = [d.model_dump(mode="json") for d in result.decisions]
    counts = Counter(d.decision.value for d in result.decisions)
    feed_stats = ctx.feed.stats() if hasattr(ctx.feed, "stats") else {"connected": result.feed_connected}
    return {
        "last_cycle": result.cycle,
        "last_ts": result.ts,
        "feed": feed_stats,
        "resolver": resolver.stats() if hasattr(resolver, "stats") else None,
        "shadow_mode": result.shadow_mode,
        "shadow_stats": result.shadow_stats.model_dump() if result.shadow_stats else None,
        "shadow_pending": len(ctx.ledger.pending),
        "decisions": decisions,
        "proposals": [x for x in decisions if x["decision"] in (DecisionKind.PROPOSE_UP.value, DecisionKind.PROPOSE_DN.value)],
        "candidates": [x for x in decisions if x["decision"] in (DecisionKind.CANDIDATE_UP.value, DecisionKind.CANDIDATE_DN.value)],
        "counts": {k.value: counts.get(k.value, 0) for k in DecisionKind},
        "persistence": ctx.engine.tracker.snapshot(),
        "ring": {k: list(v) for k, v in ctx.ring.items()},
        "config": ctx.settings.model_dump(mode="json"),
    }


def summarize(result: CycleResult) -> List[str]:
    lines = []
    parts = []
    for d in result.decisions:
        p = f"p={d.p_hat:.3f}" if d.p_hat is not None else "p=?"
        z = f"z={d.z:.2f}" if d.z is not None else ""
        net = f"net={d.net_edge * 100:.2f}%" if d.net_edge is not None else "net=?"
        pers = f"{d.persistence_count}/{d.persistence_needed}" if d.persistence_count > 0 else ""
        flags = [f for f, on in (("VF", d.vol_floor_hit), ("ZC", d.z_clamped), ("PC", d.p_hat_clamped)) if on]
        flag_s = f"[{','.join(flags)}]" if flags else ""
        parts.append(" ".join(x for x in (f"{d.symbol}:{d.decision.value}", p, z, net, pers, flag_s) if x))
    feed = "BN:OK" if result.feed_connected else "BN:DOWN"
    lines.append(f"[bold]#{result.cycle}[/bold] \\[{feed}] " + " | ".join(parts))
    for d in result.decisions:
        if d.decision == DecisionKind.DO_NOTHING:
            continue
        edge = f"{d.edge * 100:.2f}%" if d.edge is not None else "?"
        net = f"{d.net_edge * 100:.2f}%" if d.net_edge is not None else "?"
        shadow = f" shadow={d.shadow_id}" if d.shadow_id else ""
        lines.append(
            f"  [magenta]>>>[/magenta] {d.symbol} {d.decision.value} | p_hat={d.p_hat} z={d.z} upMid={d.up_mid} | "
            f"edge={edge} net={net} | persist={d.persistence_count}/{d.persistence_needed}{shadow}"
        )
    s = result.shadow_stats
    if s and s.resolved_count > 0:
        lines.append(
            f"[cyan]\\[shadow][/cyan] stats: {s.resolved_count} resolved, {s.wins}W/{s.losses}L ({s.win_rate * 100:.1f}%), "
            f"avgEdge={s.avg_edge * 100:.2f}%, pnl={s.total_pnl:.4f}, pending={s.pending_count}"
        )
    return lines


def print_cycle(result: CycleResult):
    for line in summarize(result):
        print(line)
