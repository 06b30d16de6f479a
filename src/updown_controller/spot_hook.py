import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import websockets
from rich import print

from updown_controller.config import FeedSettings
from updown_controller.engine.features import FeedBuffer
from updown_controller.models import FeatureSnapshot


@dataclass
class Tick:
    symbol: str
    ts: float
    price: float


class TickTransport(ABC):
    """One streaming connection at a time: open, read raw frames, close."""

    @abstractmethod
    async def open(self) -> None:
        ...

    @abstractmethod
    async def recv(self) -> str:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    def parse(self, raw) -> Optional[Tick]:
        ...


class BinanceTradeTransport(TickTransport):
    def __init__(self, url: str, symbols: Dict[str, str], ping_interval: float = 20.0):
        self._by_stream = {v.lower(): k for k, v in symbols.items()}
        streams = "/".join(f"{s.lower()}@trade" for s in symbols.values())
        self.url = f"{url}?streams={streams}"
        self.ping_interval = ping_interval
        self._ws = None

    async def open(self) -> None:
        self._ws = await websockets.connect(
            self.url, ping_interval=self.ping_interval, ping_timeout=self.ping_interval, close_timeout=10
        )

    async def recv(self) -> str:
        if self._ws is None:
            raise ConnectionError("not connected")
        return await self._ws.recv()

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    def parse(self, raw) -> Optional[Tick]:
        try:
            obj = json.loads(raw)
        except (TypeError, ValueError):
            return None
        data = obj.get("data") if isinstance(obj, dict) else None
        if not isinstance(data, dict) or not data.get("s") or not data.get("p"):
            return None
        sym = self._by_stream.get(str(data["s"]).lower())
        if not sym:
            return None
        try:
            px = float(data["p"])
            ts = float(data.get("T") or time.time() * 1000) / 1000.0
        except (TypeError, ValueError):
            return None
        return Tick(symbol=sym, ts=ts, price=px)


class SpotFeed:
    """Keeps a FeedBuffer filled from a TickTransport.

    Reconnects with exponential backoff capped at ``reconnect_max_seconds``;
    a health check force-reconnects when nothing has arrived for
    ``stale_seconds``. Runs as tasks on the caller's event loop.
    """

    def __init__(
        self,
        buffer: FeedBuffer,
        transport: TickTransport,
        cfg: FeedSettings,
        on_event: Optional[Callable[[dict], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.buffer = buffer
        self.transport = transport
        self.cfg = cfg
        self._on_event = on_event
        self._sleep = sleep
        self._clock = clock
        self._delay = cfg.reconnect_initial_seconds
        self._connected = False
        self._running = False
        self._last_msg_ts = 0.0
        self._task: Optional[asyncio.Task] = None
        self._conn: Optional[asyncio.Task] = None
        self._health: Optional[asyncio.Task] = None
        self.reconnects = 0
        self.stale_reconnects = 0

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last_msg_ts(self) -> float:
        return self._last_msg_ts

    def features(self, symbol: str) -> FeatureSnapshot:
        return self.buffer.features(symbol, now=self._clock())

    def stats(self) -> dict:
        return {
            "connected": self._connected,
            "last_msg_ts": self._last_msg_ts,
            "reconnects": self.reconnects,
            "stale_reconnects": self.stale_reconnects,
            "ticks": {s: self.buffer.count(s) for s in self.buffer.symbols},
        }

    def _emit(self, kind: str, **kw):
        if self._on_event:
            try:
                self._on_event({"type": kind, **kw})
            except Exception as e:
                print(f"[red]\\[spot][/red] event hook failed: {e!r}")

    async def start(self):
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        if self.cfg.health_check_seconds > 0:
            self._health = asyncio.create_task(self._health_loop())

    async def wait_ready(self, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._connected and self.buffer.has_data():
                return True
            await asyncio.sleep(0.2)
        return self._connected and self.buffer.has_data()

    async def stop(self):
        self._running = False
        tasks = [t for t in (self._health, self._conn, self._task) if t is not None]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._connected = False
        print("\\[spot] stopped")

    async def _run(self):
        while self._running:
            self._conn = asyncio.create_task(self._consume())
            await asyncio.wait({self._conn})
            err = None if self._conn.cancelled() else self._conn.exception()
            self._connected = False
            if not self._running:
                break
            self.reconnects += 1
            print(f"[yellow]\\[spot][/yellow] disconnected ({err!r}), reconnecting in {self._delay:.0f}s")
            self._emit("feed_disconnected", error=repr(err) if err else None, retry_in=self._delay)
            await self._sleep(self._delay)
            self._delay = min(self._delay * 2, self.cfg.reconnect_max_seconds)

    async def _consume(self):
        try:
            await self.transport.open()
            self._connected = True
            self._delay = self.cfg.reconnect_initial_seconds
            self._last_msg_ts = self._clock()
            print(f"[green]\\[spot][/green] connected ({', '.join(self.buffer.symbols)})")
            self._emit("feed_connected")
            while True:
                raw = await self.transport.recv()
                now = self._clock()
                self._last_msg_ts = now
                tick = self.transport.parse(raw)
                if tick is not None:
                    self.buffer.push(tick.symbol, tick.ts, tick.price, now=now)
        finally:
            self._connected = False
            await self.transport.close()

    def check_health(self) -> bool:
        """Force a reconnect if the live connection has gone quiet. Returns True when it did."""
        since = self._clock() - self._last_msg_ts
        if self._last_msg_ts > 0 and since > self.cfg.stale_seconds and self._conn is not None and not self._conn.done():
            print(f"[yellow]\\[spot][/yellow] stale connection: no data for {since:.0f}s, forcing reconnect")
            self._emit("feed_stale", seconds_since_msg=round(since, 1))
            self.stale_reconnects += 1
            self._delay = self.cfg.reconnect_initial_seconds
            self._conn.cancel()
            return True
        return False

    async def _health_loop(self):
        while self._running:
            await self._sleep(self.cfg.health_check_seconds)
            self.check_health()
