"""Write final scores back onto predictions and raffles."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Protocol, Sequence

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.leagues import LeagueConfig
from app.domain import MatchSnapshot
from app.models import DRAW, Match, MatchStage, MatchStatus
from app.repositories import MatchRepository, PurchaseRepository

from .errors import MatchNotFoundError, ResultConflictError
from .team_matching import TeamMatcher


class ScoreFeed(Protocol):
    def fetch_live_scores(
        self, leagues: Iterable[LeagueConfig], *, today=None
    ) -> list[MatchSnapshot]:
        ...


@dataclass(slots=True)
class FinalResult:
    home_score: int
    away_score: int
    winner: str

    @property
    def score(self) -> str:
        return f"{self.home_score}-{self.away_score}"


def determine_winner(home_team: str, away_team: str, home_score: int, away_score: int) -> str:
    if home_score > away_score:
        return home_team
    if away_score > home_score:
        return away_team
    return DRAW


def _same_team(left: str | None, right: str | None) -> bool:
    if left is None or right is None:
        return False
    return left.strip().casefold() == right.strip().casefold()


@dataclass(slots=True)
class ReconcileSummary:
    checked: int = 0
    updated: int = 0
    already_final: int = 0
    still_pending: int = 0
    unmatched: int = 0
    ambiguous: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "already_final": self.already_final,
            "still_pending": self.still_pending,
            "unmatched": self.unmatched,
            "ambiguous": self.ambiguous,
            "failures": self.failures,
        }


@dataclass(slots=True)
class ManualResult:
    match_id: str
    status: str
    stage: str
    score: str | None = None
    winner: str | None = None
    updated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "match_id": self.match_id,
            "status": self.status,
            "stage": self.stage,
            "score": self.score,
            "winner": self.winner,
            "updated": self.updated,
        }


class ResultReconciler:
    """Resolve matches awaiting a result against live score feeds.

    Feed fixtures are matched by team names rather than identifiers because
    provider ids are not stable across sources. Actual-result fields are only
    written while still null, so repeated sweeps never overwrite a result.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        *,
        feed: ScoreFeed | None = None,
        matcher: TeamMatcher | None = None,
    ) -> None:
        self._session = session
        self.settings = settings or get_settings()
        self._feed = feed
        self._matcher = matcher or TeamMatcher(self.settings.team_match_threshold)
        self._matches = MatchRepository(session)
        self._purchases = PurchaseRepository(session)

    def reconcile_pending(
        self,
        *,
        now: datetime | None = None,
        league: str | None = None,
        limit: int | None = None,
        snapshots: Sequence[MatchSnapshot] | None = None,
    ) -> ReconcileSummary:
        now = now or datetime.now(timezone.utc)
        summary = ReconcileSummary()
        lookback = timedelta(hours=self.settings.reconcile_lookback_hours)
        pending = self._matches.list_pending_results(
            started_before=now,
            started_after=now - lookback,
            league=league.upper() if league else None,
            limit=limit,
        )
        if not pending:
            logger.info("No matches awaiting results; sweep completed with no updates")
            return summary

        logger.info("Result sweep evaluating {} matches", len(pending))
        if snapshots is None:
            snapshots = self._load_snapshots(pending, now)

        for match in pending:
            summary.checked += 1
            match_id = match.match_id
            try:
                result = self._resolve(match, snapshots, summary)
                if result is None:
                    self._session.commit()
                    continue
                if self._apply(match, result, finalized_at=now):
                    summary.updated += 1
                else:
                    summary.already_final += 1
                self._session.commit()
            except Exception as exc:
                self._session.rollback()
                logger.exception("Result reconciliation failed for {}", match_id)
                summary.failures.append({"match_id": match_id, "reason": str(exc)})

        logger.info(
            "Result sweep finished: checked={}, updated={}, pending={}, unmatched={}, ambiguous={}",
            summary.checked,
            summary.updated,
            summary.still_pending,
            summary.unmatched,
            summary.ambiguous,
        )
        return summary

    def record_result(
        self,
        match_id: str,
        home_score: int,
        away_score: int,
        *,
        status: str = MatchStatus.FINISHED.value,
        now: datetime | None = None,
    ) -> ManualResult:
        """Apply an operator-supplied score to a match the feeds could not resolve.

        A non-final status only updates the match status. A final score is
        written once; resubmitting the same score is a no-op and a different
        one raises ``ResultConflictError``.
        """

        now = now or datetime.now(timezone.utc)
        match = self._matches.get(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        status = MatchStatus(status).value

        recorded = (
            match.status == MatchStatus.FINISHED.value
            and match.home_score is not None
            and match.away_score is not None
        )
        if recorded and (
            status != MatchStatus.FINISHED.value
            or (match.home_score, match.away_score) != (home_score, away_score)
        ):
            raise ResultConflictError(
                f"Match '{match_id}' already finished {match.home_score}-{match.away_score}"
            )

        if status != MatchStatus.FINISHED.value:
            match.status = status
            self._session.commit()
            logger.info("Operator set {} status to {}", match_id, status)
            return ManualResult(match_id=match_id, status=status, stage=match.stage)

        match.status = MatchStatus.FINISHED.value
        match.home_score = home_score
        match.away_score = away_score
        result = FinalResult(
            home_score=home_score,
            away_score=away_score,
            winner=determine_winner(match.home_team, match.away_team, home_score, away_score),
        )
        updated = self._apply(match, result, finalized_at=now)
        self._session.commit()
        logger.info("Operator recorded {} for {}", result.score, match_id)
        return ManualResult(
            match_id=match_id,
            status=match.status,
            stage=match.stage,
            score=result.score,
            winner=result.winner,
            updated=updated,
        )

    def _load_snapshots(self, pending: Sequence[Match], now: datetime) -> list[MatchSnapshot]:
        needs_feed = [
            match
            for match in pending
            if not (
                match.status == MatchStatus.FINISHED.value
                and match.home_score is not None
                and match.away_score is not None
            )
        ]
        if not needs_feed:
            return []
        if self._feed is None:
            logger.warning("No score feed configured; {} matches left pending", len(needs_feed))
            return []
        leagues = [
            self.settings.league_config(code)
            for code in sorted({match.league for match in needs_feed})
        ]
        return self._feed.fetch_live_scores(leagues, today=now.date())

    def _resolve(
        self, match: Match, snapshots: Sequence[MatchSnapshot], summary: ReconcileSummary
    ) -> FinalResult | None:
        if (
            match.status == MatchStatus.FINISHED.value
            and match.home_score is not None
            and match.away_score is not None
        ):
            return FinalResult(
                home_score=match.home_score,
                away_score=match.away_score,
                winner=determine_winner(
                    match.home_team, match.away_team, match.home_score, match.away_score
                ),
            )

        resolution = self._matcher.resolve(
            match.home_team,
            match.away_team,
            snapshots,
            league=match.league,
            kickoff=match.start_time,
        )
        if resolution.ambiguous:
            summary.ambiguous += 1
            contenders = [
                f"{item.home_team} vs {item.away_team}" for item in resolution.contenders
            ]
            logger.warning(
                "Ambiguous feed match for {} ({} vs {}): {}",
                match.match_id,
                match.home_team,
                match.away_team,
                contenders,
            )
            summary.failures.append(
                {"match_id": match.match_id, "reason": "ambiguous feed match", "candidates": contenders}
            )
            return None
        snapshot = resolution.snapshot
        if snapshot is None:
            summary.unmatched += 1
            logger.warning(
                "Match {} ({} vs {}) not found in any score feed; skipping",
                match.match_id,
                match.home_team,
                match.away_team,
            )
            return None

        if snapshot.status != match.status and snapshot.status != MatchStatus.UNKNOWN.value:
            match.status = snapshot.status
        if snapshot.status != MatchStatus.FINISHED.value or not snapshot.has_final_score:
            summary.still_pending += 1
            return None

        match.status = MatchStatus.FINISHED.value
        match.home_score = snapshot.home_score
        match.away_score = snapshot.away_score
        return FinalResult(
            home_score=snapshot.home_score,
            away_score=snapshot.away_score,
            winner=determine_winner(
                match.home_team, match.away_team, snapshot.home_score, snapshot.away_score
            ),
        )

    def _apply(self, match: Match, result: FinalResult, *, finalized_at: datetime) -> bool:
        changed = False
        prediction = match.prediction
        is_correct = None
        if prediction is not None:
            is_correct = _same_team(prediction.predicted_winner, result.winner)
            if prediction.actual_winner is None and prediction.is_correct is None:
                prediction.actual_winner = result.winner
                prediction.actual_score = result.score
                prediction.is_correct = is_correct
                prediction.finalized_at = finalized_at
                changed = True

        raffle = match.raffle
        if raffle is not None and raffle.actual_winner is None and raffle.is_correct is None:
            raffle.actual_winner = result.winner
            raffle.actual_score = result.score
            raffle.is_correct = is_correct
            raffle.finalized_at = finalized_at
            changed = True

        if match.stage != MatchStage.FINALIZED.value:
            buyers, _ = self._purchases.count(match.match_id)
            if buyers == 0:
                # Nothing to settle; the result alone closes out the match.
                match.stage = MatchStage.FINALIZED.value
            elif match.stage in {MatchStage.UPCOMING.value, MatchStage.LOCKED.value}:
                match.stage = MatchStage.AWAITING_RESULT.value

        if changed:
            logger.info(
                "Recorded result for {}: {} ({}) correct={}",
                match.match_id,
                result.winner,
                result.score,
                is_correct,
            )
        return changed
