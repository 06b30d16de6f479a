from __future__ import annotations
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx

from updown_controller.models import Outcome


@dataclass
class GammaMarketRef:
    market_id: str
    question: str
    up_token: str
    down_token: str
    accepting_orders: bool
    closed: bool = False
    up_price_hint: float = 0.0
    down_price_hint: float = 0.0
    end_date: str = ""
    start_date: str = ""
    slug: str = ""


def parse_dt(s: str) -> Optional[datetime]:
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _json_list(v) -> list:
    if isinstance(v, str):
        try:
            v = json.loads(v)
        except ValueError:
            return []
    return v if isinstance(v, list) else []


class GammaAdapter:
    def __init__(self, base_url: str, client: httpx.AsyncClient, up_won_above: float = 0.9, down_won_below: float = 0.1):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.up_won_above = up_won_above
        self.down_won_below = down_won_below
        self.call_count = 0

    async def _counted_get(self, url: str, **kwargs) -> httpx.Response:
        self.call_count += 1
        return await self.client.get(url, **kwargs)

    @staticmethod
    def _to_ref(m: dict) -> GammaMarketRef | None:
        token_ids = _json_list(m.get("clobTokenIds"))
        if len(token_ids) < 2:
            return None
        outcomes = [str(x).lower() for x in _json_list(m.get("outcomes"))]
        prices = _json_list(m.get("outcomePrices"))
        up_i, down_i = 0, 1
        # Up/Down markets list "Up" first, but do not rely on it.
        if "up" in outcomes and "down" in outcomes:
            up_i, down_i = outcomes.index("up"), outcomes.index("down")

        def hint(i: int) -> float:
            try:
                return float(prices[i])
            except (IndexError, TypeError, ValueError):
                return 0.0

        ev0 = {}
        if isinstance(m.get("events"), list) and m.get("events"):
            ev0 = m["events"][0] or {}

        return GammaMarketRef(
            market_id=str(m.get("id")),
            question=str(m.get("question", "")),
            up_token=str(token_ids[up_i]),
            down_token=str(token_ids[down_i]),
            accepting_orders=bool(m.get("acceptingOrders", True)),
            closed=bool(m.get("closed", False)),
            up_price_hint=hint(up_i),
            down_price_hint=hint(down_i),
            end_date=str(m.get("endDate") or ev0.get("endDate") or ""),
            start_date=str(m.get("eventStartTime") or ev0.get("startTime") or m.get("startDate") or ""),
            slug=str(m.get("slug") or ev0.get("slug") or ""),
        )

    async def fetch_market_ref_by_slug(self, slug: str) -> Optional[GammaMarketRef]:
        r = await self._counted_get(f"{self.base_url}/markets", params={"slug": slug})
        if r.status_code != 200:
            return None
        for m in r.json() or []:
            ref = self._to_ref(m)
            if ref:
                return ref
        return None

    async def fetch_outcome(self, slug: str) -> Outcome:
        """Settled side of a market: final outcome prices sit at 1/0."""
        try:
            r = await self._counted_get(f"{self.base_url}/markets", params={"slug": slug})
            r.raise_for_status()
            arr = r.json()
        except (httpx.HTTPError, ValueError):
            return Outcome.FETCH_ERROR
        if not arr:
            return Outcome.UNRESOLVED
        ref = self._to_ref(arr[0])
        if ref is None or len(_json_list(arr[0].get("outcomePrices"))) < 2:
            return Outcome.UNRESOLVED
        if ref.up_price_hint > self.up_won_above:
            return Outcome.UP_WON
        if ref.up_price_hint < self.down_won_below:
            return Outcome.DOWN_WON
        return Outcome.UNRESOLVED
