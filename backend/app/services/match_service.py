"""Higher-level conveniences for the public match and raffle views."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.models import Match as MatchRecord
from app.models import MatchStage, MatchStatus
from app.repositories import MatchRepository, PurchaseRepository, RaffleRepository, SelectionRepository
from app.scheduling.windows import Phase, evaluator_for
from app.schemas import LeagueStatus, Match, MatchBase, PredictionSummary, Raffle

from .errors import MatchNotFoundError, RaffleNotFoundError, UnknownLeagueError
from .purchase_ledger import PurchaseLedger


@dataclass(slots=True)
class MatchQuery:
    league: str | None = None
    history: bool = False
    closed_window: bool = False
    limit: int = 50
    offset: int = 0

    def to_repository_kwargs(self) -> dict[str, Any]:
        """Translate the requested view into repository filters."""

        kwargs: dict[str, Any] = {
            "league": self.league.upper() if self.league else None,
            "limit": self.limit,
            "offset": self.offset,
        }
        if self.history:
            kwargs.update(statuses=[MatchStatus.FINISHED.value], order="desc")
        elif self.closed_window:
            kwargs.update(stages=[MatchStage.AWAITING_RESULT.value], order="asc")
        else:
            kwargs.update(
                stages=[MatchStage.LOCKED.value],
                statuses=[MatchStatus.SCHEDULED.value, MatchStatus.LIVE.value],
                order="asc",
            )
        return kwargs


@dataclass(slots=True)
class MatchQueryResult:
    total: int
    matches: Sequence[Match]


@dataclass(slots=True)
class RaffleQueryResult:
    total: int
    page: int
    limit: int
    raffles: Sequence[Raffle]


class MatchService:
    """Read-only facade over matches, raffles and league windows used by the API."""

    def __init__(self, session: Session, settings: Settings | None = None):
        self._session = session
        self.settings = settings or get_settings()
        self._match_repo = MatchRepository(session)
        self._purchase_repo = PurchaseRepository(session)
        self._raffle_repo = RaffleRepository(session)
        self._selection_repo = SelectionRepository(session)
        self._ledger = PurchaseLedger(session, self.settings)

    def list_matches(self, query: MatchQuery, *, now: datetime | None = None) -> MatchQueryResult:
        if query.league:
            self._require_league(query.league)
        now = now or datetime.now(timezone.utc)
        records, total = self._match_repo.list_matches(**query.to_repository_kwargs())
        matches = [self._build_match_payload(record, now) for record in records]
        return MatchQueryResult(total=total, matches=matches)

    def get_match(self, match_id: str, *, now: datetime | None = None) -> Match:
        record = self._match_repo.get(match_id)
        if record is None:
            raise MatchNotFoundError(match_id)
        return self._build_match_payload(record, now or datetime.now(timezone.utc))

    def get_raffle(self, match_id: str) -> Raffle:
        raffle = self._raffle_repo.get(match_id)
        if raffle is None:
            raise RaffleNotFoundError(match_id)
        return Raffle.model_validate(raffle)

    def list_raffles(self, *, league: str | None = None, page: int = 1, limit: int = 20) -> RaffleQueryResult:
        if league:
            self._require_league(league)
        offset = (page - 1) * limit
        records, total = self._raffle_repo.list_raffles(
            league=league.upper() if league else None, limit=limit, offset=offset
        )
        raffles = [Raffle.model_validate(record) for record in records]
        return RaffleQueryResult(total=total, page=page, limit=limit, raffles=raffles)

    def league_statuses(self, *, now: datetime | None = None) -> list[LeagueStatus]:
        now = now or datetime.now(timezone.utc)
        statuses: list[LeagueStatus] = []
        for config in self.settings.league_configs():
            evaluator = evaluator_for(config, self.settings)
            cycle_date = evaluator.cycle_date(now)
            statuses.append(
                LeagueStatus(
                    code=config.code,
                    name=config.name,
                    sport=config.sport,
                    window_open=evaluator.is_open(now),
                    window_opens_local=config.window_open.strftime("%H:%M"),
                    window_closes_local=config.window_close.strftime("%H:%M"),
                    timezone=self.settings.schedule_timezone_label,
                    cycle_date=cycle_date,
                    locked_matches=self._selection_repo.locked_ids(config.code, cycle_date),
                    next_slots={phase.value: evaluator.next_slot(phase, now) for phase in Phase},
                )
            )
        return statuses

    def _require_league(self, league: str) -> None:
        try:
            self.settings.league_config(league)
        except KeyError as exc:
            raise UnknownLeagueError(f"Unknown league '{league}'") from exc

    def _build_match_payload(self, record: MatchRecord, now: datetime) -> Match:
        """Convert an ORM match into the API schema with storefront flags."""

        visibility = self._ledger.visibility(record, now)
        buyers, _ = self._purchase_repo.count(record.match_id)
        payload = Match(
            **MatchBase.model_validate(record).model_dump(),
            buyable=visibility.buyable,
            buyable_from=visibility.buyable_from,
            window_open=visibility.window_open,
            locked=visibility.locked,
            buyer_count=buyers,
        )
        prediction = record.prediction
        # Prediction text is paid content; only the graded summary is public.
        if prediction is not None and prediction.is_correct is not None:
            payload.prediction = PredictionSummary.model_validate(prediction)
        return payload


__all__ = ["MatchQuery", "MatchQueryResult", "MatchService", "RaffleQueryResult"]
