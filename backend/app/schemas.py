from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .models import MatchStatus


class PredictionSummary(BaseModel):
    match_id: str
    predicted_winner: str
    predicted_score: str
    predicted_total: int
    confidence: int
    over_under: str | None = None
    source: str
    generated_at: datetime
    actual_winner: str | None = None
    actual_score: str | None = None
    is_correct: bool | None = None
    finalized_at: datetime | None = None

    model_config = {"from_attributes": True}


class PredictionDetail(PredictionSummary):
    narrative: str
    full_text: str


class MatchBase(BaseModel):
    match_id: str
    league: str
    external_id: str
    home_team: str
    away_team: str
    start_time: datetime
    venue: str | None = None
    status: str
    stage: str
    home_score: int | None = None
    away_score: int | None = None
    last_synced_at: datetime

    model_config = {"from_attributes": True}


class Match(MatchBase):
    buyable: bool = False
    buyable_from: datetime | None = None
    window_open: bool = False
    locked: bool = False
    buyer_count: int | None = None
    prediction: PredictionSummary | None = None


class MatchList(BaseModel):
    total: int
    items: list[Match]


class PurchaseCreate(BaseModel):
    match_id: str = Field(min_length=1)
    buyer: str = Field(min_length=1, description="Wallet address of the buyer")
    payment_ref: str = Field(min_length=1, description="Payment transaction hash or reference")
    amount: float = Field(gt=0)
    token: str = Field(min_length=1)


class MatchResultCreate(BaseModel):
    home_score: int = Field(ge=0)
    away_score: int = Field(ge=0)
    status: MatchStatus = MatchStatus.FINISHED


class Purchase(BaseModel):
    purchase_id: str
    match_id: str
    buyer: str
    payment_ref: str
    amount: float
    token: str
    prediction_snapshot: str | None = None
    purchased_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> float:
        return float(value)


class PurchaseReceipt(BaseModel):
    purchase: Purchase
    prediction: PredictionDetail


class PurchaseList(BaseModel):
    total: int
    items: list[Purchase]


class PurchaseCount(BaseModel):
    match_id: str
    buyer_count: int
    total_purchases: int

    model_config = {"from_attributes": True}


class Raffle(BaseModel):
    match_id: str
    league: str
    entrants: list[str]
    winner: str
    buyer_count: int
    total_entries: int
    entry_fee: float
    prize_pool: float
    payout_fraction: float
    winner_payout: float
    token: str
    payout_status: str
    payout_ref: str | None = None
    payout_error: str | None = None
    payout_attempts: int
    created_at: datetime
    paid_at: datetime | None = None
    actual_winner: str | None = None
    actual_score: str | None = None
    is_correct: bool | None = None
    finalized_at: datetime | None = None
    match: MatchBase | None = None

    model_config = {"from_attributes": True}

    @field_validator("entry_fee", "prize_pool", "payout_fraction", "winner_payout", mode="before")
    @classmethod
    def _coerce_numeric(cls, value: Any) -> float:
        return float(value)


class RaffleList(BaseModel):
    total: int
    page: int
    limit: int
    items: list[Raffle]


class LeagueStatus(BaseModel):
    code: str
    name: str
    sport: str
    window_open: bool
    window_opens_local: str
    window_closes_local: str
    timezone: str
    cycle_date: date
    locked_matches: list[str] = Field(default_factory=list)
    next_slots: dict[str, datetime] = Field(default_factory=dict)


class JobRunSummary(BaseModel):
    run_id: str
    league: str | None = None
    phase: str
    manual: bool
    status: str
    started_at: datetime
    finished_at: datetime | None = None
    message: str | None = None
    failure_count: int = 0


class LeagueOverview(BaseModel):
    league: str
    predictions: int
    resolved_predictions: int
    correct_predictions: int
    accuracy: float | None = None
    purchases: int
    raffles: int


class PayoutStatusCount(BaseModel):
    status: str
    count: int


class PlatformOverview(BaseModel):
    generated_at: datetime
    total_matches: int
    locked_matches: int
    total_predictions: int
    resolved_predictions: int
    correct_predictions: int
    accuracy: float | None = None
    total_purchases: int
    distinct_buyers: int
    total_raffles: int
    payout_status: list[PayoutStatusCount]
    total_prize_pool: float
    total_paid_out: float
    leagues: list[LeagueOverview] = Field(default_factory=list)
    latest_job_run: JobRunSummary | None = None
    recent_job_runs: list[JobRunSummary] = Field(default_factory=list)
