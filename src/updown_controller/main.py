import argparse
import asyncio

from rich import print

from updown_controller.config import Settings, apply_overrides, build_settings, load_config
from updown_controller.engine.costs import CostModel, FeeCurveError
from updown_controller.loop import run_controller


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Shadow-mode decision controller for 15-minute Up/Down markets")
    parser.add_argument("--config", default=None)
    parser.add_argument("--interval", type=float, default=None, help="seconds between cycles")
    parser.add_argument("--duration", type=float, default=None, help="total run time in seconds")
    parser.add_argument("--once", action="store_true")
    parser.add_argument("--vol-floor", dest="vol_floor", type=float, default=None)
    parser.add_argument("--vol-multiplier", dest="vol_multiplier", type=float, default=None)
    parser.add_argument("--window", type=float, default=None, help="feature window in seconds")
    parser.add_argument("--z-clamp", dest="z_clamp", type=float, default=None)
    parser.add_argument("--persistence", type=int, default=None)
    parser.add_argument("--symbols", default=None, help="comma separated, e.g. BTC,ETH")
    return parser


def print_startup(settings: Settings, checks: dict):
    for price, r in checks.items():
        print(f"[green]fee self-check[/green] fee({price})={r['fee']:.6f} expected={r['expected']:.6f} ok")
    s, d, g = settings.signal, settings.decision, settings.gates
    print(
        f"[bold]signal[/bold] k={s.k} vol_floor={s.vol_floor} x{s.vol_multiplier} z_clamp={s.z_clamp} "
        f"window={settings.feed.window_seconds:.0f}s"
    )
    print(
        f"[bold]decision[/bold] threshold={d.proposal_threshold} min_net_edge={d.min_net_edge} "
        f"buffer={d.edge_buffer} persistence={d.persistence_n} exit<{d.exit_seconds:.0f}s"
    )
    print(
        f"[bold]gates[/bold] sanity=1.0+/-{g.sanity_tol} spread<={g.max_spread} depth>={g.min_depth} "
        f"time>={g.min_time_remaining:.0f}s"
    )
    mode = "once" if settings.loop.once else f"every {settings.loop.interval_seconds:.0f}s for {settings.loop.duration_seconds:.0f}s"
    shadow = "on" if settings.shadow.enabled else "off"
    print(f"[bold]run[/bold] symbols={','.join(settings.symbols)} mode={mode} shadow={shadow}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config) if args.config else {}
    settings = apply_overrides(build_settings(cfg), args)

    try:
        checks = CostModel(settings.fees).self_check()
    except FeeCurveError as e:
        print(f"[red]FATAL[/red] {e}")
        return 1
    print_startup(settings, checks)

    try:
        completed = asyncio.run(run_controller(settings))
    except KeyboardInterrupt:
        print("[yellow]interrupted[/yellow]")
        return 0
    except Exception as e:
        print(f"[red]FATAL[/red] {e!r}")
        return 1
    if settings.loop.once and completed == 0:
        return 1
    print(f"[bold]done[/bold] {completed} cycles")
    return 0


def cli():
    raise SystemExit(main())


if __name__ == "__main__":
    cli()
