from __future__ import annotations
import math
import time
from collections import deque
from typing import Deque, Dict, Iterable, Optional, Tuple

from updown_controller.models import FeatureSnapshot


class FeedBuffer:
    """Rolling (ts, price) history per symbol.

    Timestamps are epoch seconds. Ticks older than ``buffer_seconds`` are
    dropped on every push and every read. Features are bucketed into 1s
    buckets (last price wins) over the trailing ``window_seconds``.
    """

    def __init__(self, symbols: Iterable[str], buffer_seconds: float = 120.0, window_seconds: float = 60.0, min_buckets: int = 10):
        self.window_seconds = float(window_seconds)
        self.buffer_seconds = max(float(buffer_seconds), self.window_seconds)
        self.min_buckets = int(min_buckets)
        self._ticks: Dict[str, Deque[Tuple[float, float]]] = {s: deque() for s in symbols}

    @property
    def symbols(self):
        return list(self._ticks.keys())

    def push(self, symbol: str, ts: float, price: float, now: Optional[float] = None) -> bool:
        buf = self._ticks.get(symbol)
        if buf is None or price <= 0 or not math.isfinite(price):
            return False
        buf.append((float(ts), float(price)))
        self._trim(symbol, time.time() if now is None else now)
        return True

    def count(self, symbol: str) -> int:
        return len(self._ticks.get(symbol, ()))

    def has_data(self) -> bool:
        return any(len(b) > 0 for b in self._ticks.values())

    def _trim(self, symbol: str, now: float):
        buf = self._ticks[symbol]
        cutoff = now - self.buffer_seconds
        while buf and buf[0][0] < cutoff:
            buf.popleft()

    def features(self, symbol: str, now: Optional[float] = None) -> FeatureSnapshot:
        now = time.time() if now is None else now
        if symbol not in self._ticks:
            return FeatureSnapshot(symbol=symbol, reason="untracked symbol")
        self._trim(symbol, now)
        buf = list(self._ticks[symbol])
        if len(buf) < 2:
            return FeatureSnapshot(symbol=symbol, tick_count=len(buf), reason="insufficient ticks")

        latest_price = buf[-1][1]
        target = now - self.window_seconds
        anchor = None
        for ts, px in reversed(buf):
            if ts <= target:
                anchor = px
                break
        if anchor is None:
            # buffer younger than the window
            anchor = buf[0][1]
        ret = latest_price / anchor - 1.0

        buckets: Dict[int, float] = {}
        for ts, px in buf:
            if ts >= target:
                buckets[int(math.floor(ts))] = px
        prices = [buckets[k] for k in sorted(buckets)]

        vol = 0.0
        if len(prices) >= 2:
            rets = [prices[i] / prices[i - 1] - 1.0 for i in range(1, len(prices))]
            mean = sum(rets) / len(rets)
            vol = math.sqrt(sum((r - mean) ** 2 for r in rets) / len(rets))

        ok = len(prices) >= self.min_buckets
        return FeatureSnapshot(
            symbol=symbol,
            reference_price=latest_price,
            return_60s=round(ret, 8),
            vol_60s=round(vol, 8),
            ok=ok,
            sample_count=len(prices),
            tick_count=len(buf),
            reason=None if ok else f"need {self.min_buckets} buckets, have {len(prices)}",
        )
