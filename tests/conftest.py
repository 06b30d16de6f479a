from datetime import datetime, timedelta, timezone

import pytest

from updown_controller.config import Settings
from updown_controller.models import BookSide, FeatureSnapshot, MarketWindowState, Outcome

T0 = datetime(2026, 1, 1, 0, 5, tzinfo=timezone.utc)


def book(bid, ask, size=500.0):
    mid = round((bid + ask) / 2.0, 4) if (bid is not None and ask is not None) else None
    return BookSide(bid=bid, ask=ask, mid=mid, ask_size=size)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def make_market():
    def _make(symbol="BTC", up=(0.39, 0.41), down=(0.59, 0.61), size=500.0, seconds_left=600, sanity=None):
        up_side = up if isinstance(up, BookSide) else book(up[0], up[1], size)
        down_side = down if isinstance(down, BookSide) else book(down[0], down[1], size)
        if sanity is None and up_side.mid is not None and down_side.mid is not None:
            sanity = round(up_side.mid + down_side.mid, 4)
        return MarketWindowState(
            symbol=symbol,
            slug=f"{symbol.lower()}-updown-15m-1767225600",
            market_id="m-1",
            up=up_side,
            down=down_side,
            sanity_sum=sanity,
            window_start=T0 - timedelta(seconds=300),
            window_end=T0 + timedelta(seconds=seconds_left),
        )

    return _make


@pytest.fixture
def make_features():
    def _make(symbol="BTC", ret=0.002, vol=0.0005, ok=True):
        return FeatureSnapshot(
            symbol=symbol,
            reference_price=50000.0,
            return_60s=ret,
            vol_60s=vol,
            ok=ok,
            sample_count=60 if ok else 3,
            tick_count=120 if ok else 3,
            reason=None if ok else "need 10 buckets, have 3",
        )

    return _make


@pytest.fixture
def settings(tmp_path):
    return Settings.model_validate(
        {
            "storage": {
                "decisions_path": str(tmp_path / "decisions.jsonl"),
                "shadow_path": str(tmp_path / "shadow.jsonl"),
                "snapshot_path": str(tmp_path / "controller.json"),
                "events_path": str(tmp_path / "events.jsonl"),
            }
        }
    )


class FakeFeed:
    def __init__(self, features=None, connected=True):
        self.by_symbol = features or {}
        self.connected = connected
        self.started = False
        self.stopped = False

    def features(self, symbol):
        return self.by_symbol.get(symbol) or FeatureSnapshot(symbol=symbol, reason="insufficient ticks")

    def stats(self):
        return {"connected": self.connected}

    async def start(self):
        self.started = True

    async def wait_ready(self, timeout):
        return True

    async def stop(self):
        self.stopped = True


class FakeResolver:
    def __init__(self, markets=None, errors=(), outcomes=None):
        self.markets = markets or {}
        self.errors = set(errors)
        self.outcomes = list(outcomes or [])
        self.outcome_calls = []
        self.closed = False

    async def resolve(self, symbol, now=None):
        if symbol in self.errors:
            raise RuntimeError(f"gamma down for {symbol}")
        return self.markets.get(symbol)

    async def fetch_outcome(self, slug):
        self.outcome_calls.append(slug)
        return self.outcomes.pop(0) if self.outcomes else Outcome.UNRESOLVED

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_feed():
    return FakeFeed


@pytest.fixture
def fake_resolver():
    return FakeResolver
