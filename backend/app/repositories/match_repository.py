"""Match cache and archive data access helpers."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import and_, asc, desc, func, or_, select
from sqlalchemy.orm import Session, selectinload

from app.domain import MatchSnapshot
from app.models import ArchivedMatch, Match, MatchStage, MatchStatus, Prediction, Purchase, Raffle
from app.services.team_matching import TeamMatcher

# Providers agree on kickoff to within minutes for the same fixture.
SAME_FIXTURE_TOLERANCE = timedelta(hours=3)

_DUPLICATE_MATCHER = TeamMatcher(threshold=0.95, kickoff_tolerance=SAME_FIXTURE_TOLERANCE)


def _as_snapshot(match: Match) -> MatchSnapshot:
    return MatchSnapshot(
        external_id=match.external_id,
        league=match.league,
        home_team=match.home_team,
        away_team=match.away_team,
        start_time=match.start_time,
        venue=match.venue,
        home_score=match.home_score,
        away_score=match.away_score,
        status=match.status,
        source=match.source,
    )


class MatchRepository:
    """Encapsulate match cache and archive persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def upsert_snapshot(self, snapshot: MatchSnapshot, *, synced_at: datetime) -> Match | None:
        """Insert or refresh a match from a feed snapshot.

        Finalized matches are immutable and are returned untouched; the stage is
        never changed here because it is owned by the scheduling components. A
        fixture already cached from another provider is refreshed in place
        rather than stored a second time under the new provider's identifier.
        """

        existing = self._session.get(Match, snapshot.match_id)
        if existing is None:
            duplicate = self.find_provider_duplicate(snapshot)
            if duplicate is not None:
                if duplicate.stage != MatchStage.FINALIZED.value:
                    self._refresh_result(duplicate, snapshot, synced_at=synced_at)
                return duplicate

        if existing is not None and existing.stage == MatchStage.FINALIZED.value:
            return existing

        if existing is None:
            if snapshot.start_time is None:
                return None
            existing = Match(
                match_id=snapshot.match_id,
                league=snapshot.league,
                external_id=snapshot.external_id,
                stage=MatchStage.UPCOMING.value,
            )
            self._session.add(existing)

        existing.home_team = snapshot.home_team
        existing.away_team = snapshot.away_team
        if snapshot.start_time is not None:
            existing.start_time = snapshot.start_time
        if snapshot.venue:
            existing.venue = snapshot.venue
        existing.source = snapshot.source
        existing.raw_data = snapshot.raw_data
        self._refresh_result(existing, snapshot, synced_at=synced_at)
        return existing

    def _refresh_result(self, match: Match, snapshot: MatchSnapshot, *, synced_at: datetime) -> None:
        match.status = snapshot.status
        if snapshot.has_final_score:
            match.home_score = snapshot.home_score
            match.away_score = snapshot.away_score
        if snapshot.venue and not match.venue:
            match.venue = snapshot.venue
        match.last_synced_at = synced_at

    def find_provider_duplicate(self, snapshot: MatchSnapshot) -> Match | None:
        """Return the cached row for the same fixture reported by a different provider."""

        if snapshot.start_time is None:
            return None
        query = select(Match).where(
            Match.league == snapshot.league,
            Match.source != snapshot.source,
            Match.start_time >= snapshot.start_time - SAME_FIXTURE_TOLERANCE,
            Match.start_time <= snapshot.start_time + SAME_FIXTURE_TOLERANCE,
        )
        rows = {row.match_id: row for row in self._session.execute(query).scalars()}
        if not rows:
            return None
        resolution = _DUPLICATE_MATCHER.resolve(
            snapshot.home_team,
            snapshot.away_team,
            [_as_snapshot(row) for row in rows.values()],
            league=snapshot.league,
            kickoff=snapshot.start_time,
        )
        if not resolution.matched:
            return None
        return rows.get(resolution.snapshot.match_id)

    def upsert_snapshots(self, snapshots: Iterable[MatchSnapshot], *, synced_at: datetime) -> int:
        count = 0
        for snapshot in snapshots:
            if self.upsert_snapshot(snapshot, synced_at=synced_at) is not None:
                count += 1
        return count

    def set_stage(self, match_ids: Sequence[str], stage: MatchStage) -> int:
        if not match_ids:
            return 0
        matches = self.get_many(match_ids)
        updated = 0
        for match in matches.values():
            if match.stage == MatchStage.FINALIZED.value or match.stage == stage.value:
                continue
            match.stage = stage.value
            updated += 1
        return updated

    def archive(
        self,
        match: Match,
        *,
        cycle_date: date,
        archived_at: datetime,
        prediction_text: str | None = None,
    ) -> ArchivedMatch | None:
        existing = self._session.execute(
            select(ArchivedMatch).where(ArchivedMatch.match_id == match.match_id)
        ).scalar_one_or_none()
        if existing is not None:
            return None
        record = ArchivedMatch(
            match_id=match.match_id,
            league=match.league,
            cycle_date=cycle_date,
            home_team=match.home_team,
            away_team=match.away_team,
            start_time=match.start_time,
            venue=match.venue,
            status=match.status,
            home_score=match.home_score,
            away_score=match.away_score,
            prediction_text=prediction_text,
            archived_at=archived_at,
        )
        self._session.add(record)
        return record

    # ------------------------------------------------------------------
    # Queries

    def get(self, match_id: str) -> Match | None:
        return self._session.get(Match, match_id)

    def get_many(self, match_ids: Iterable[str]) -> dict[str, Match]:
        identifiers = list(dict.fromkeys(match_ids))
        if not identifiers:
            return {}
        rows = self._session.execute(select(Match).where(Match.match_id.in_(identifiers))).scalars()
        return {row.match_id: row for row in rows}

    def list_candidates(
        self, league: str, *, start_after: datetime, start_before: datetime
    ) -> list[Match]:
        query = (
            select(Match)
            .where(
                Match.league == league,
                Match.status == MatchStatus.SCHEDULED.value,
                Match.start_time >= start_after,
                Match.start_time < start_before,
            )
            .order_by(Match.start_time.asc(), Match.match_id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def list_matches(
        self,
        *,
        league: str | None = None,
        stages: Sequence[str] | None = None,
        statuses: Sequence[str] | None = None,
        match_ids: Sequence[str] | None = None,
        order: str = "asc",
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Match], int]:
        filters: list[Any] = []
        if league:
            filters.append(Match.league == league)
        if stages:
            filters.append(Match.stage.in_(list(stages)))
        if statuses:
            filters.append(Match.status.in_(list(statuses)))
        if match_ids is not None:
            filters.append(Match.match_id.in_(list(match_ids)))

        count_query = select(func.count(Match.match_id)).where(*filters)
        total = int(self._session.execute(count_query).scalar_one())

        direction = asc if order == "asc" else desc
        query = (
            select(Match)
            .options(selectinload(Match.prediction), selectinload(Match.raffle))
            .where(*filters)
            .order_by(direction(Match.start_time), Match.match_id.asc())
            .limit(limit)
            .offset(offset)
        )
        items = list(self._session.execute(query).scalars().all())
        return items, total

    def archived_ids(self, league: str) -> set[str]:
        rows = self._session.execute(
            select(ArchivedMatch.match_id).where(ArchivedMatch.league == league)
        ).scalars()
        return set(rows)

    def raffled_ids(self, league: str) -> set[str]:
        rows = self._session.execute(select(Raffle.match_id).where(Raffle.league == league)).scalars()
        return set(rows)

    def list_settleable_ids(self, *, league: str | None = None) -> list[str]:
        """Finished matches with at least one purchase and no raffle yet."""

        purchased = select(Purchase.match_id).distinct()
        query = (
            select(Match.match_id)
            .outerjoin(Raffle, Raffle.match_id == Match.match_id)
            .where(
                Match.status == MatchStatus.FINISHED.value,
                Raffle.match_id.is_(None),
                Match.match_id.in_(purchased),
            )
            .order_by(Match.start_time.asc(), Match.match_id.asc())
        )
        if league:
            query = query.where(Match.league == league)
        return list(self._session.execute(query).scalars().all())

    def list_pending_results(
        self,
        *,
        started_before: datetime,
        started_after: datetime | None = None,
        league: str | None = None,
        limit: int | None = None,
    ) -> list[Match]:
        """Matches that have a prediction or purchase still missing an actual result."""

        unresolved_prediction = select(Prediction.match_id).where(Prediction.actual_winner.is_(None))
        unresolved_raffle = select(Raffle.match_id).where(Raffle.actual_winner.is_(None))
        purchased = select(Purchase.match_id).distinct()

        filters: list[Any] = [
            Match.start_time <= started_before,
            or_(
                Match.match_id.in_(unresolved_prediction),
                Match.match_id.in_(unresolved_raffle),
                and_(
                    Match.match_id.in_(purchased),
                    Match.status != MatchStatus.FINISHED.value,
                ),
            ),
        ]
        if started_after is not None:
            filters.append(Match.start_time >= started_after)
        if league:
            filters.append(Match.league == league)

        query = (
            select(Match)
            .options(selectinload(Match.prediction), selectinload(Match.raffle))
            .where(*filters)
            .order_by(Match.start_time.asc(), Match.match_id.asc())
        )
        if limit:
            query = query.limit(limit)
        return list(self._session.execute(query).scalars().all())
