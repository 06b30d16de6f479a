from __future__ import annotations
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, Tuple

import httpx

from updown_controller.adapters.clob import ClobAdapter
from updown_controller.adapters.gamma import GammaAdapter, parse_dt
from updown_controller.config import MarketSettings, ShadowSettings
from updown_controller.models import MarketWindowState, Outcome


class MarketResolver(Protocol):
    async def resolve(self, symbol: str, now: Optional[datetime] = None) -> Optional[MarketWindowState]:
        ...


class OutcomeResolver(Protocol):
    async def fetch_outcome(self, slug: str) -> Outcome:
        ...


class UpDownResolver:
    """Finds the live Up/Down market for a symbol's current slot and reads both books."""

    def __init__(self, cfg: MarketSettings, client: Optional[httpx.AsyncClient] = None, shadow: Optional[ShadowSettings] = None):
        self.cfg = cfg
        shadow = shadow or ShadowSettings()
        self.client = client or httpx.AsyncClient(timeout=cfg.http_timeout, headers={"Accept": "application/json"})
        self.gamma = GammaAdapter(cfg.gamma_base, self.client, shadow.up_won_above, shadow.down_won_below)
        self.clob = ClobAdapter(cfg.clob_base, self.client)

    def slot(self, symbol: str, now: datetime) -> Tuple[str, datetime]:
        size = int(self.cfg.slot_seconds)
        start_ts = (int(now.timestamp()) // size) * size
        slug = self.cfg.slug_template.format(asset=symbol.lower(), slot=start_ts)
        return slug, datetime.fromtimestamp(start_ts, tz=timezone.utc)

    async def resolve(self, symbol: str, now: Optional[datetime] = None) -> Optional[MarketWindowState]:
        now = now or datetime.now(timezone.utc)
        slug, start = self.slot(symbol, now)
        ref = await self.gamma.fetch_market_ref_by_slug(slug)
        if ref is None or ref.closed or not ref.accepting_orders:
            return None

        up_book, down_book = await asyncio.gather(self.clob.fetch_book(ref.up_token), self.clob.fetch_book(ref.down_token))
        up = ClobAdapter.book_side(up_book)
        down = ClobAdapter.book_side(down_book)
        sanity = round(up.mid + down.mid, 4) if (up.mid is not None and down.mid is not None) else None

        return MarketWindowState(
            symbol=symbol,
            slug=ref.slug or slug,
            market_id=ref.market_id,
            up=up,
            down=down,
            sanity_sum=sanity,
            window_start=parse_dt(ref.start_date) or start,
            window_end=parse_dt(ref.end_date) or start + timedelta(seconds=self.cfg.slot_seconds),
        )

    async def fetch_outcome(self, slug: str) -> Outcome:
        return await self.gamma.fetch_outcome(slug)

    def stats(self) -> dict:
        return {"gamma_calls": self.gamma.call_count, "clob_calls": self.clob.call_count}

    async def aclose(self):
        await self.client.aclose()
