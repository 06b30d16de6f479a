import math

from updown_controller.config import SignalSettings
from updown_controller.models import PHat


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def compute_p_hat(return_60s: float, vol_60s: float, cfg: SignalSettings) -> PHat:
    """Up-side win probability from the short-horizon return and volatility.

    Below the vol floor the estimate is still produced but flagged; callers
    must not escalate on it.
    """
    vol_floor_hit = vol_60s < cfg.vol_floor
    effective_vol = max(vol_60s, cfg.vol_floor * cfg.vol_multiplier)
    raw_z = cfg.k * return_60s / (effective_vol + cfg.eps)
    z = max(-cfg.z_clamp, min(cfg.z_clamp, raw_z))
    raw_p = sigmoid(z)
    p_hat = max(cfg.p_min, min(cfg.p_max, raw_p))
    return PHat(
        p_hat=p_hat,
        z=z,
        raw_z=raw_z,
        effective_vol=effective_vol,
        vol_floor_hit=vol_floor_hit,
        z_clamped=z != raw_z,
        p_hat_clamped=p_hat != raw_p,
    )
