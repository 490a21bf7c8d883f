"""Models for the internal trade-pattern store."""

from typing import Any

from pydantic import BaseModel, Field

from options_intel.models.common import Confidence
from options_intel.timeutil import NO_DATA_AGE_DAYS


class TradeCriteria(BaseModel):
    symbol: str
    strategy_type: str = "put_credit_spread"
    dte: int | None = 30
    delta: float | None = 0.20


class TradeOutcome(BaseModel):
    """A closed trade to be embedded into the pattern store."""

    trade_id: str
    symbol: str
    strategy_type: str
    dte: int | None = None
    delta: float | None = None
    iv_rank: float | None = None
    ips_score: float | None = None
    realized_pnl: float | None = None
    realized_pnl_percent: float | None = None
    entry_date: str | None = None
    exit_date: str | None = None

    @property
    def win(self) -> bool:
        return self.realized_pnl is not None and self.realized_pnl > 0


class SimilarTrade(BaseModel):
    trade_id: str
    similarity: float
    metadata: dict[str, Any] = {}


class HistoricalAnalysis(BaseModel):
    has_data: bool = False
    trade_count: int = 0
    win_rate: float = 0.0
    avg_roi: float = 0.0
    avg_hold_days: float = 0.0
    similar_trades: list[SimilarTrade] = []
    confidence: Confidence = Confidence.LOW


class KnowledgeRecord(BaseModel):
    """One row of the time-windowed knowledge read used by the router."""

    kind: str  # "trade" or "research"
    ref_id: str
    symbol: str
    context: str = ""
    created_at: str
    age_days: float = 0.0
    metadata: dict[str, Any] = {}


class RagKnowledge(BaseModel):
    has_data: bool = False
    relevance: float = Field(default=0.0, ge=0.0, le=1.0)
    avg_age_days: float = float(NO_DATA_AGE_DAYS)
    results_count: int = 0
    data: dict[str, Any] | None = None
