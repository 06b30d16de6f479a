import asyncio
import time
from typing import Awaitable, Callable, Optional

from rich import print

from updown_controller.adapters.resolver import UpDownResolver
from updown_controller.config import LoopSettings, Settings
from updown_controller.controller import ControllerContext, print_cycle, run_cycle
from updown_controller.engine.features import FeedBuffer
from updown_controller.models import CycleResult
from updown_controller.spot_hook import BinanceTradeTransport, SpotFeed
from updown_controller.utils.storage import append_event


async def guarded_cycle(ctx: ControllerContext, resolver) -> Optional[CycleResult]:
    try:
        result = await run_cycle(ctx, resolver)
    except Exception as e:
        append_event(ctx.settings.storage.events_path, {"type": "loop_error", "cycle": ctx.cycle, "error": str(e)})
        print(f"[red]#{ctx.cycle} error[/red]: {e!r}")
        return None
    print_cycle(result)
    return result


async def drive(
    ctx: ControllerContext,
    resolver,
    loop_cfg: LoopSettings,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Run cycles on a fixed interval until the duration runs out. Returns the number of cycles that completed."""
    if loop_cfg.once:
        return 1 if await guarded_cycle(ctx, resolver) is not None else 0

    deadline = clock() + loop_cfg.duration_seconds
    ok = 0
    while clock() < deadline:
        started = clock()
        if await guarded_cycle(ctx, resolver) is not None:
            ok += 1
        wait = max(0.0, loop_cfg.interval_seconds - (clock() - started))
        if deadline - clock() <= wait:
            break
        await sleep(wait)
    return ok


def build_feed(settings: Settings) -> SpotFeed:
    fcfg = settings.feed
    buffer = FeedBuffer(fcfg.symbols.keys(), fcfg.buffer_seconds, fcfg.window_seconds, fcfg.min_buckets)
    transport = BinanceTradeTransport(fcfg.url, fcfg.symbols, ping_interval=fcfg.ping_interval)
    events_path = settings.storage.events_path
    return SpotFeed(buffer, transport, fcfg, on_event=lambda e: append_event(events_path, e))


async def run_controller(settings: Settings, feed: Optional[SpotFeed] = None, resolver=None) -> int:
    feed = feed or build_feed(settings)
    resolver = resolver or UpDownResolver(settings.market, shadow=settings.shadow)
    ctx = ControllerContext.build(settings, feed, outcome_resolver=resolver)

    if settings.shadow.enabled:
        n = ctx.ledger.load_pending()
        if n:
            print(f"\\[controller] loaded {n} pending shadow proposals")

    print("\\[controller] starting spot feed...")
    await feed.start()
    try:
        ready = await feed.wait_ready(settings.feed.warmup_seconds)
        if not ready:
            print("[yellow]\\[controller] WARNING: spot feed has no data yet[/yellow]")
        for sym in settings.symbols:
            f = feed.features(sym)
            extra = f" ({f.reason})" if f.reason else ""
            print(f"\\[controller]   {sym}: px={f.reference_price} buckets={f.sample_count} ok={f.ok}{extra}")
        return await drive(ctx, resolver, settings.loop)
    finally:
        await feed.stop()
        if hasattr(resolver, "aclose"):
            await resolver.aclose()
