import pytest

from updown_controller.config import FeeSettings
from updown_controller.engine.costs import CostModel, FeeCurveError, estimate_slippage, taker_fee


def test_fee_reference_points():
    assert abs(taker_fee(0.5) - 0.015625) < 1e-10
    assert abs(taker_fee(0.1) - 0.002025) < 1e-10


def test_fee_is_zero_outside_open_interval():
    assert taker_fee(0.0) == 0.0
    assert taker_fee(1.0) == 0.0
    assert taker_fee(-0.2) == 0.0
    assert taker_fee(1.3) == 0.0


def test_fee_symmetric_around_half():
    assert abs(taker_fee(0.3) - taker_fee(0.7)) < 1e-12


def test_slippage_caps_and_scales():
    cfg = FeeSettings()
    assert estimate_slippage(None, cfg) == cfg.max_slippage
    assert estimate_slippage(0, cfg) == cfg.max_slippage
    assert estimate_slippage(10, cfg) == cfg.max_slippage
    assert estimate_slippage(2000, cfg) == pytest.approx(0.025)


def test_self_check_passes_with_defaults():
    results = CostModel(FeeSettings()).self_check()
    assert all(r["ok"] for r in results.values())
    assert set(results) == {0.5, 0.1}


def test_self_check_raises_on_mismatch():
    model = CostModel(FeeSettings(rate=0.2))
    with pytest.raises(FeeCurveError):
        model.self_check()
