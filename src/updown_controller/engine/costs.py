from typing import Optional

from updown_controller.config import FeeSettings


class FeeCurveError(RuntimeError):
    pass


def taker_fee(p: float, rate: float = 0.25, exponent: float = 2.0) -> float:
    if p <= 0 or p >= 1:
        return 0.0
    return rate * (p * (1.0 - p)) ** exponent


def estimate_slippage(ask_size: Optional[float], cfg: FeeSettings) -> float:
    """Slippage for ``cfg.notional_usdc`` against the resting size at the touch.

    Unknown or empty size is priced at the cap.
    """
    if not ask_size or ask_size <= 0:
        return cfg.max_slippage
    return min(cfg.notional_usdc / (ask_size * cfg.slippage_coeff), cfg.max_slippage)


class CostModel:
    def __init__(self, cfg: FeeSettings):
        self.cfg = cfg

    def fee(self, p: float) -> float:
        return taker_fee(p, self.cfg.rate, self.cfg.exponent)

    def slippage(self, ask_size: Optional[float]) -> float:
        return estimate_slippage(ask_size, self.cfg)

    def self_check(self) -> dict:
        """Compare the fee curve against its reference points; raise FeeCurveError on mismatch."""
        results = {}
        bad = []
        for price, expected in sorted(self.cfg.reference_points.items(), reverse=True):
            got = self.fee(float(price))
            ok = abs(got - float(expected)) < self.cfg.reference_tolerance
            results[float(price)] = {"fee": got, "expected": float(expected), "ok": ok}
            if not ok:
                bad.append(f"fee({price})={got} expected {expected}")
        if bad:
            raise FeeCurveError("fee curve self-check failed: " + "; ".join(bad))
        return results
