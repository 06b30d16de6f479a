from pathlib import Path

from updown_controller.config import Settings, apply_overrides, build_settings, load_config
from updown_controller.main import build_parser, main

DEFAULT_YAML = Path(__file__).resolve().parents[1] / "config" / "default.yaml"


def test_empty_config_gives_defaults():
    s = build_settings({})
    assert s.decision.persistence_n == 2
    assert s.gates.min_time_remaining == 240
    assert s.symbols == ["BTC", "ETH", "SOL", "XRP"]


def test_shipped_yaml_matches_defaults():
    assert build_settings(load_config(str(DEFAULT_YAML))) == Settings()


def test_partial_yaml(tmp_path):
    p = tmp_path / "c.yaml"
    p.write_text("signal:\n  vol_floor: 0.0005\nloop:\n  once: true\n")
    s = build_settings(load_config(str(p)))
    assert s.signal.vol_floor == 0.0005
    assert s.signal.z_clamp == 6.0
    assert s.loop.once


def test_cli_overrides():
    args = build_parser().parse_args(
        ["--interval", "15", "--duration", "120", "--vol-floor", "0.001", "--z-clamp", "4", "--window", "30", "--persistence", "3", "--symbols", "btc, sol", "--once"]
    )
    s = apply_overrides(Settings(), args)
    assert s.loop.interval_seconds == 15
    assert s.loop.duration_seconds == 120
    assert s.loop.once
    assert s.signal.vol_floor == 0.001
    assert s.signal.z_clamp == 4
    assert s.feed.window_seconds == 30
    assert s.decision.persistence_n == 3
    assert s.feed.symbols == {"BTC": "btcusdt", "SOL": "solusdt"}


def test_no_flags_changes_nothing():
    assert apply_overrides(Settings(), build_parser().parse_args([])) == Settings()


def test_bad_fee_curve_exits_before_running(tmp_path):
    p = tmp_path / "c.yaml"
    p.write_text("fees:\n  rate: 0.3\n")
    assert main(["--config", str(p), "--once"]) == 1


def test_long_window_grows_buffer():
    s = apply_overrides(Settings(), build_parser().parse_args(["--window", "300"]))
    assert s.feed.window_seconds == 300
    assert s.feed.buffer_seconds == 600


def test_buffer_already_long_enough_is_kept():
    s = build_settings({"feed": {"window_seconds": 90, "buffer_seconds": 100}})
    assert s.feed.buffer_seconds == 100
