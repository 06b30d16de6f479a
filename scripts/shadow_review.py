#!/usr/bin/env python3
import argparse
import json
from collections import Counter, defaultdict
from pathlib import Path

from updown_controller.sim.shadow import ShadowLedger
from updown_controller.utils.storage import load_snapshot, read_jsonl

DATA = Path(__file__).resolve().parents[1] / "data"


def breakdown(shadow_path: str) -> dict:
    latest = {}
    for row in read_jsonl(shadow_path):
        if row.get("id"):
            latest[str(row["id"])] = row
    closed = [e for e in latest.values() if e.get("status") == "resolved" and e.get("won") is not None]

    trades = Counter()
    wins = Counter()
    pnl = defaultdict(float)
    for e in closed:
        key = f"{e.get('symbol') or '-'}:{e.get('side') or '-'}"
        trades[key] += 1
        if e.get("won"):
            wins[key] += 1
        pnl[key] += float(e.get("realized_pnl") or 0.0)

    return {
        k: {"trades": n, "winrate_pct": round(wins.get(k, 0) / n * 100.0, 2), "pnl": round(pnl[k], 6)}
        for k, n in trades.items()
    }


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--shadow", default=str(DATA / "shadow.jsonl"))
    parser.add_argument("--decisions", default=str(DATA / "decisions.jsonl"))
    parser.add_argument("--snapshot", default=str(DATA / "controller.json"))
    args = parser.parse_args()

    stats = ShadowLedger(args.shadow, args.decisions).stats()
    snap = load_snapshot(args.snapshot)
    out = {
        "stats": stats.model_dump(),
        "by_symbol_side": breakdown(args.shadow),
        "last_cycle": snap.get("last_cycle"),
        "last_ts": snap.get("last_ts"),
        "decision_counts": snap.get("counts", {}),
    }
    print(json.dumps(out, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
