"""Shared builders for test data."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from app.models import Match, MatchStage, MatchStatus

WIB = timezone(timedelta(hours=7))


def wib(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    """Build a UTC timestamp from a WIB wall-clock time."""

    return datetime(year, month, day, hour, minute, tzinfo=WIB).astimezone(timezone.utc)


def build_match(
    external_id: str,
    *,
    league: str = "NBA",
    home: str = "Boston Celtics",
    away: str = "Miami Heat",
    start_time: datetime,
    status: str = MatchStatus.SCHEDULED.value,
    stage: str = MatchStage.UPCOMING.value,
    home_score: int | None = None,
    away_score: int | None = None,
    source: str = "canonical",
) -> Match:
    return Match(
        match_id=f"{league}:{external_id}",
        league=league,
        external_id=external_id,
        home_team=home,
        away_team=away,
        start_time=start_time,
        venue="Test Arena",
        status=status,
        stage=stage,
        home_score=home_score,
        away_score=away_score,
        source=source,
        last_synced_at=start_time - timedelta(days=2),
    )
