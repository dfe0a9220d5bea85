from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


DRAW = "Draw"


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    POSTPONED = "postponed"
    UNKNOWN = "unknown"


class MatchStage(str, Enum):
    UPCOMING = "upcoming"
    LOCKED = "locked"
    AWAITING_RESULT = "awaiting_result"
    FINALIZED = "finalized"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PredictionSource(str, Enum):
    SCHEDULED = "scheduled"
    FALLBACK = "fallback"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    SQLite drops tzinfo on storage, so values are normalized to UTC on the way
    in and re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Match(Base):
    __tablename__ = "matches"

    match_id: Mapped[str] = mapped_column(String, primary_key=True)
    league: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String, nullable=False)
    home_team: Mapped[str] = mapped_column(String, nullable=False)
    away_team: Mapped[str] = mapped_column(String, nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    venue: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=MatchStatus.SCHEDULED.value)
    stage: Mapped[str] = mapped_column(String, nullable=False, default=MatchStage.UPCOMING.value)
    home_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    away_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source: Mapped[str | None] = mapped_column(String, nullable=True)
    raw_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    prediction: Mapped[Prediction | None] = relationship(
        "Prediction", back_populates="match", uselist=False
    )
    purchases: Mapped[list["Purchase"]] = relationship("Purchase", back_populates="match")
    raffle: Mapped[Raffle | None] = relationship("Raffle", back_populates="match", uselist=False)

    __table_args__ = (
        UniqueConstraint("league", "external_id", name="uq_match_league_external"),
    )


class SelectionCycle(Base):
    __tablename__ = "selection_cycles"

    cycle_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    league: Mapped[str] = mapped_column(String(16), nullable=False)
    cycle_date: Mapped[date] = mapped_column(Date, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    locked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    entries: Mapped[list["SelectionEntry"]] = relationship(
        "SelectionEntry",
        back_populates="cycle",
        order_by="SelectionEntry.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("league", "cycle_date", name="uq_selection_cycle_scope"),
    )

    @property
    def match_ids(self) -> list[str]:
        return [entry.match_id for entry in self.entries]


class SelectionEntry(Base):
    __tablename__ = "selection_entries"

    entry_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cycle_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("selection_cycles.cycle_id"), nullable=False, index=True
    )
    league: Mapped[str] = mapped_column(String(16), nullable=False)
    match_id: Mapped[str] = mapped_column(String, ForeignKey("matches.match_id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    selected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    cycle: Mapped[SelectionCycle] = relationship("SelectionCycle", back_populates="entries")

    __table_args__ = (
        UniqueConstraint("league", "match_id", name="uq_selection_entry_match"),
    )


class Prediction(Base):
    __tablename__ = "predictions"

    match_id: Mapped[str] = mapped_column(String, ForeignKey("matches.match_id"), primary_key=True)
    league: Mapped[str] = mapped_column(String(16), nullable=False)
    predicted_winner: Mapped[str] = mapped_column(String, nullable=False)
    predicted_score: Mapped[str] = mapped_column(String(16), nullable=False)
    predicted_home_score: Mapped[int] = mapped_column(Integer, nullable=False)
    predicted_away_score: Mapped[int] = mapped_column(Integer, nullable=False)
    predicted_total: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    over_under: Mapped[str | None] = mapped_column(String(32), nullable=True)
    narrative: Mapped[str] = mapped_column(Text, nullable=False)
    full_text: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default=PredictionSource.SCHEDULED.value)
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    actual_winner: Mapped[str | None] = mapped_column(String, nullable=True)
    actual_score: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    match: Mapped[Match] = relationship("Match", back_populates="prediction")


class Purchase(Base):
    __tablename__ = "purchases"

    purchase_id: Mapped[str] = mapped_column(String, primary_key=True)
    match_id: Mapped[str] = mapped_column(
        String, ForeignKey("matches.match_id"), nullable=False, index=True
    )
    buyer: Mapped[str] = mapped_column(String, nullable=False, index=True)
    payment_ref: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(18, 6), nullable=False)
    token: Mapped[str] = mapped_column(String(16), nullable=False)
    prediction_snapshot: Mapped[str | None] = mapped_column(Text, nullable=True)
    purchased_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    match: Mapped[Match] = relationship("Match", back_populates="purchases")

    __table_args__ = (
        UniqueConstraint("match_id", "buyer", name="uq_purchase_match_buyer"),
    )


class Raffle(Base):
    __tablename__ = "raffles"

    # Primary key on match_id serializes concurrent draws at the storage layer.
    match_id: Mapped[str] = mapped_column(String, ForeignKey("matches.match_id"), primary_key=True)
    league: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    entrants: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    winner: Mapped[str] = mapped_column(String, nullable=False)
    buyer_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_entries: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_fee: Mapped[float] = mapped_column(Numeric(18, 6), nullable=False)
    prize_pool: Mapped[float] = mapped_column(Numeric(18, 6), nullable=False)
    payout_fraction: Mapped[float] = mapped_column(Numeric(6, 4), nullable=False)
    winner_payout: Mapped[float] = mapped_column(Numeric(18, 6), nullable=False)
    token: Mapped[str] = mapped_column(String(16), nullable=False)
    payout_status: Mapped[str] = mapped_column(
        String, nullable=False, default=PayoutStatus.PENDING.value
    )
    payout_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    payout_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    payout_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    actual_winner: Mapped[str | None] = mapped_column(String, nullable=True)
    actual_score: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    match: Mapped[Match] = relationship("Match", back_populates="raffle")


class ArchivedMatch(Base):
    __tablename__ = "archived_matches"

    archive_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    match_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    league: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    cycle_date: Mapped[date] = mapped_column(Date, nullable=False)
    home_team: Mapped[str] = mapped_column(String, nullable=False)
    away_team: Mapped[str] = mapped_column(String, nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    venue: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    home_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    away_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prediction_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    archived_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class JobRun(Base):
    __tablename__ = "job_runs"

    run_id: Mapped[str] = mapped_column(String, primary_key=True)
    league: Mapped[str | None] = mapped_column(String(16), nullable=True)
    phase: Mapped[str] = mapped_column(String, nullable=False)
    manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="running")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    counts: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    failures: Mapped[list["JobFailure"]] = relationship(
        "JobFailure", back_populates="run", cascade="all, delete-orphan"
    )


class JobFailure(Base):
    __tablename__ = "job_failures"

    failure_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String, ForeignKey("job_runs.run_id"), nullable=False)
    match_id: Mapped[str | None] = mapped_column(String, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    logged_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    run: Mapped[JobRun] = relationship("JobRun", back_populates="failures")
