from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Side(str, Enum):
    UP = "UP"
    DN = "DN"


class DecisionKind(str, Enum):
    DO_NOTHING = "DO_NOTHING"
    CANDIDATE_UP = "CANDIDATE_UP"
    CANDIDATE_DN = "CANDIDATE_DN"
    PROPOSE_UP = "PROPOSE_UP"
    PROPOSE_DN = "PROPOSE_DN"
    EXIT = "EXIT"

    @property
    def is_proposal(self) -> bool:
        return self in (DecisionKind.PROPOSE_UP, DecisionKind.PROPOSE_DN)


def propose_for(side: Side) -> DecisionKind:
    return DecisionKind.PROPOSE_UP if side == Side.UP else DecisionKind.PROPOSE_DN


def candidate_for(side: Side) -> DecisionKind:
    return DecisionKind.CANDIDATE_UP if side == Side.UP else DecisionKind.CANDIDATE_DN


class Outcome(str, Enum):
    UP_WON = "UP_WON"
    DOWN_WON = "DOWN_WON"
    UNRESOLVED = "UNRESOLVED"
    FETCH_ERROR = "FETCH_ERROR"

    @property
    def definitive(self) -> bool:
        return self in (Outcome.UP_WON, Outcome.DOWN_WON)


class ProposalStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class FeatureSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    reference_price: Optional[float] = None
    return_60s: Optional[float] = None
    vol_60s: Optional[float] = None
    ok: bool = False
    sample_count: int = 0  # 1s buckets in the window
    tick_count: int = 0
    reason: Optional[str] = None


class BookSide(BaseModel):
    bid: Optional[float] = None
    ask: Optional[float] = None
    mid: Optional[float] = None
    ask_size: Optional[float] = None

    @property
    def spread(self) -> Optional[float]:
        if self.bid is None or self.ask is None:
            return None
        return self.ask - self.bid


class MarketWindowState(BaseModel):
    symbol: str
    slug: str
    market_id: str = ""
    up: BookSide = Field(default_factory=BookSide)
    down: BookSide = Field(default_factory=BookSide)
    sanity_sum: Optional[float] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


class GateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    observed: Optional[float] = None
    threshold: str


class GateReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    gates: List[GateResult]
    all_pass: bool
    time_remaining: float

    @property
    def failing(self) -> List[str]:
        return [g.name for g in self.gates if not g.passed]


class PersistenceState(BaseModel):
    model_config = ConfigDict(frozen=True)

    side: Optional[Side] = None
    count: int = 0


class PHat(BaseModel):
    model_config = ConfigDict(frozen=True)

    p_hat: float
    z: float
    raw_z: float
    effective_vol: float
    vol_floor_hit: bool
    z_clamped: bool
    p_hat_clamped: bool


class Counterfactuals(BaseModel):
    model_config = ConfigDict(frozen=True)

    relaxed_net_edge: bool = False
    persistence_one: bool = False
    zero_vol_floor: bool = False
    wide_spread: bool = False
    would_fire_count: int = 0


class Decision(BaseModel):
    model_config = ConfigDict(frozen=True)

    cycle: int
    ts: str
    symbol: str
    slug: str = ""
    decision: DecisionKind
    signal: DecisionKind  # raw, before persistence and gates
    reason: str
    dominant_blocker: Optional[str] = None
    gate_block: List[str] = Field(default_factory=list)
    gates: List[GateResult] = Field(default_factory=list)
    all_gates_pass: bool = False
    time_remaining: Optional[float] = None

    persistence_count: int = 0
    persistence_needed: int = 0
    persisted: bool = False

    reference_price: Optional[float] = None
    return_60s: Optional[float] = None
    vol_60s: Optional[float] = None
    p_hat: Optional[float] = None
    z: Optional[float] = None
    raw_z: Optional[float] = None
    vol_floor_hit: bool = False
    z_clamped: bool = False
    p_hat_clamped: bool = False

    edge: Optional[float] = None
    fees: Optional[float] = None
    slippage: Optional[float] = None
    buffer: Optional[float] = None
    net_edge: Optional[float] = None

    up_mid: Optional[float] = None
    dn_mid: Optional[float] = None
    buy_side: Optional[Side] = None
    buy_price: Optional[float] = None
    window_end: Optional[datetime] = None

    counterfactuals: Optional[Counterfactuals] = None
    shadow_id: Optional[str] = None


class ShadowProposal(BaseModel):
    id: str
    status: ProposalStatus = ProposalStatus.PENDING
    event: str = "created"
    cycle: int = 0
    ts: str = ""
    symbol: str
    slug: str
    side: Side
    decision: DecisionKind
    entry_price: float
    fees: float
    slippage: float
    buffer: float
    p_hat: Optional[float] = None
    z: Optional[float] = None
    up_mid: Optional[float] = None
    dn_mid: Optional[float] = None
    edge: Optional[float] = None
    net_edge: Optional[float] = None
    reference_price: Optional[float] = None
    return_60s: Optional[float] = None
    vol_60s: Optional[float] = None
    vol_floor_hit: bool = False
    z_clamped: bool = False
    p_hat_clamped: bool = False
    window_end: datetime
    resolve_attempts: int = 0
    outcome: Optional[Outcome] = None
    won: Optional[bool] = None
    realized_pnl: Optional[float] = None
    resolved_at: Optional[str] = None
    note: Optional[str] = None


class ShadowStats(BaseModel):
    total_proposals: int = 0
    pending_count: int = 0
    resolved_count: int = 0
    unresolvable_count: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    avg_edge: float = 0.0
    avg_net_edge: float = 0.0
    avg_p_hat: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0
    vol_floor_filtered: int = 0
    z_clamp_filtered: int = 0


class CycleResult(BaseModel):
    cycle: int
    ts: str
    feed_connected: bool
    shadow_mode: bool
    decisions: List[Decision] = Field(default_factory=list)
    resolved: List[ShadowProposal] = Field(default_factory=list)
    shadow_stats: Optional[ShadowStats] = None
