from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


def load_config(path: str) -> dict:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(p.read_text()) or {}


class FeeSettings(BaseModel):
    rate: float = 0.25
    exponent: float = 2.0
    # price -> expected fee, checked at startup
    reference_points: Dict[float, float] = Field(default_factory=lambda: {0.5: 0.015625, 0.1: 0.002025})
    reference_tolerance: float = 1e-10
    notional_usdc: float = 100.0
    slippage_coeff: float = 2.0
    max_slippage: float = 0.05


class SignalSettings(BaseModel):
    k: float = 1.0
    eps: float = 1e-6
    vol_floor: float = 0.0002
    vol_multiplier: float = 1.0
    z_clamp: float = 6.0
    p_min: float = 0.01
    p_max: float = 0.99


class DecisionSettings(BaseModel):
    proposal_threshold: float = 0.02
    min_net_edge: float = 0.03
    edge_buffer: float = 0.005
    flat_edge: float = 0.005
    persistence_n: int = 2
    exit_seconds: float = 120.0


class GateSettings(BaseModel):
    sanity_tol: float = 0.05
    max_spread: float = 0.03
    min_depth: float = 50.0
    min_time_remaining: float = 240.0


class CounterfactualSettings(BaseModel):
    min_net_edge: float = 0.0
    max_spread: float = 0.10


class FeedSettings(BaseModel):
    url: str = "wss://stream.binance.com:9443/stream"
    symbols: Dict[str, str] = Field(
        default_factory=lambda: {"BTC": "btcusdt", "ETH": "ethusdt", "SOL": "solusdt", "XRP": "xrpusdt"}
    )
    buffer_seconds: float = 120.0
    window_seconds: float = 60.0
    min_buckets: int = 10
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 30.0
    health_check_seconds: float = 30.0
    stale_seconds: float = 60.0
    warmup_seconds: float = 12.0
    ping_interval: float = 20.0

    @model_validator(mode="after")
    def _buffer_covers_window(self):
        # the return anchor must still be in the buffer
        if self.buffer_seconds < self.window_seconds:
            self.buffer_seconds = 2.0 * self.window_seconds
        return self


class MarketSettings(BaseModel):
    gamma_base: str = "https://gamma-api.polymarket.com"
    clob_base: str = "https://clob.polymarket.com"
    slot_seconds: int = 900
    slug_template: str = "{asset}-updown-15m-{slot}"
    http_timeout: float = 10.0


class LoopSettings(BaseModel):
    interval_seconds: float = 60.0
    duration_seconds: float = 3600.0
    once: bool = False


class ShadowSettings(BaseModel):
    enabled: bool = True
    max_resolve_attempts: int = 20
    resolve_timeout_seconds: float = 15.0
    up_won_above: float = 0.9
    down_won_below: float = 0.1


class StorageSettings(BaseModel):
    decisions_path: str = "data/decisions.jsonl"
    shadow_path: str = "data/shadow.jsonl"
    snapshot_path: str = "data/controller.json"
    events_path: str = "data/events.jsonl"
    ring_buffer_max: int = 500


class Settings(BaseModel):
    fees: FeeSettings = Field(default_factory=FeeSettings)
    signal: SignalSettings = Field(default_factory=SignalSettings)
    decision: DecisionSettings = Field(default_factory=DecisionSettings)
    gates: GateSettings = Field(default_factory=GateSettings)
    counterfactual: CounterfactualSettings = Field(default_factory=CounterfactualSettings)
    feed: FeedSettings = Field(default_factory=FeedSettings)
    market: MarketSettings = Field(default_factory=MarketSettings)
    loop: LoopSettings = Field(default_factory=LoopSettings)
    shadow: ShadowSettings = Field(default_factory=ShadowSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @property
    def symbols(self) -> List[str]:
        return list(self.feed.symbols.keys())


def build_settings(cfg: Optional[dict] = None) -> Settings:
    return Settings.model_validate(cfg or {})


def apply_overrides(settings: Settings, args) -> Settings:
    """Return a copy of ``settings`` with any CLI flags that were given applied on top."""
    data = settings.model_dump()
    pairs = [
        ("interval", "loop", "interval_seconds"),
        ("duration", "loop", "duration_seconds"),
        ("vol_floor", "signal", "vol_floor"),
        ("vol_multiplier", "signal", "vol_multiplier"),
        ("z_clamp", "signal", "z_clamp"),
        ("window", "feed", "window_seconds"),
        ("persistence", "decision", "persistence_n"),
    ]
    for attr, section, key in pairs:
        val = getattr(args, attr, None)
        if val is not None:
            data[section][key] = val
    if getattr(args, "once", False):
        data["loop"]["once"] = True
    symbols = getattr(args, "symbols", None)
    if symbols:
        wanted = [s.strip().upper() for s in symbols.split(",") if s.strip()]
        known = data["feed"]["symbols"]
        data["feed"]["symbols"] = {s: known.get(s, f"{s.lower()}usdt") for s in wanted}
    return Settings.model_validate(data)
