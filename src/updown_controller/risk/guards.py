from datetime import datetime, timezone
from typing import List, Optional

from updown_controller.config import GateSettings
from updown_controller.models import GateReport, GateResult, MarketWindowState

GATE_ORDER = ("SANITY", "SPREAD", "DEPTH", "TIME_REMAINING", "CEX_FEED")


def time_remaining(market: MarketWindowState, now: datetime) -> float:
    if market.window_end is None:
        return 0.0
    end = market.window_end
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return max(0.0, (end - now).total_seconds())


def check_sanity(market: MarketWindowState, cfg: GateSettings) -> GateResult:
    s = market.sanity_sum
    ok = s is not None and abs(s - 1.0) <= cfg.sanity_tol
    return GateResult(name="SANITY", passed=ok, observed=s, threshold=f"1.0 +/- {cfg.sanity_tol}")


def check_spread(market: MarketWindowState, cfg: GateSettings) -> GateResult:
    spreads = [x if x is not None else 1.0 for x in (market.up.spread, market.down.spread)]
    best = min(spreads)
    return GateResult(name="SPREAD", passed=best <= cfg.max_spread, observed=round(best, 6), threshold=f"<= {cfg.max_spread}")


def check_depth(market: MarketWindowState, cfg: GateSettings) -> GateResult:
    depth = max(market.up.ask_size or 0.0, market.down.ask_size or 0.0)
    return GateResult(name="DEPTH", passed=depth >= cfg.min_depth, observed=depth, threshold=f">= {cfg.min_depth}")


def check_time(remaining: float, cfg: GateSettings) -> GateResult:
    return GateResult(
        name="TIME_REMAINING",
        passed=remaining >= cfg.min_time_remaining,
        observed=round(remaining, 1),
        threshold=f">= {cfg.min_time_remaining}s",
    )


def check_feed(feed_ok: bool) -> GateResult:
    return GateResult(name="CEX_FEED", passed=bool(feed_ok), observed=1.0 if feed_ok else 0.0, threshold="connected + data")


def evaluate_gates(market: MarketWindowState, feed_ok: bool, cfg: GateSettings, now: Optional[datetime] = None) -> GateReport:
    """Run every hard gate; no short-circuit, failures are data."""
    now = now or datetime.now(timezone.utc)
    remaining = time_remaining(market, now)
    gates: List[GateResult] = [
        check_sanity(market, cfg),
        check_spread(market, cfg),
        check_depth(market, cfg),
        check_time(remaining, cfg),
        check_feed(feed_ok),
    ]
    return GateReport(gates=gates, all_pass=all(g.passed for g in gates), time_remaining=remaining)
