from __future__ import annotations
from typing import Optional, Tuple

import httpx

from updown_controller.models import BookSide


class ClobAdapter:
    def __init__(self, base_url: str, client: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.call_count = 0

    async def fetch_book(self, token_id: str) -> Optional[dict]:
        self.call_count += 1
        r = await self.client.get(f"{self.base_url}/book", params={"token_id": token_id})
        if r.status_code != 200:
            return None
        return r.json()

    @staticmethod
    def _levels(levels: list) -> list:
        out = []
        for lvl in levels or []:
            try:
                px = float((lvl or {}).get("price", 0.0))
                sz = float((lvl or {}).get("size", 0.0))
            except (TypeError, ValueError):
                continue
            if px > 0:
                out.append((px, sz))
        return out

    @classmethod
    def _best_bid(cls, levels: list) -> Optional[float]:
        vals = [px for px, _ in cls._levels(levels)]
        return max(vals) if vals else None

    @classmethod
    def _best_ask(cls, levels: list) -> Tuple[Optional[float], Optional[float]]:
        lv = cls._levels(levels)
        if not lv:
            return None, None
        px = min(p for p, _ in lv)
        size = sum(s for p, s in lv if p == px)
        return px, size

    @classmethod
    def book_side(cls, book: Optional[dict]) -> BookSide:
        if not book:
            return BookSide()
        bid = cls._best_bid(book.get("bids", []))
        ask, ask_size = cls._best_ask(book.get("asks", []))
        mid = (bid + ask) / 2.0 if (bid is not None and ask is not None) else None
        return BookSide(bid=bid, ask=ask, mid=None if mid is None else round(mid, 4), ask_size=ask_size)
