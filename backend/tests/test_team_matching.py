from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.domain import MatchSnapshot
from app.services.team_matching import TeamMatcher, normalize_team_name, side_score

KICKOFF = datetime(2025, 1, 11, 20, 0, tzinfo=timezone.utc)


def _snapshot(
    external_id: str,
    home: str,
    away: str,
    *,
    league: str = "LALIGA",
    start_time: datetime | None = KICKOFF,
    home_score: int | None = None,
    away_score: int | None = None,
    source: str = "espn",
) -> MatchSnapshot:
    return MatchSnapshot(
        external_id=external_id,
        league=league,
        home_team=home,
        away_team=away,
        start_time=start_time,
        venue=None,
        home_score=home_score,
        away_score=away_score,
        status="finished" if home_score is not None else "scheduled",
        source=source,
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Real Madrid CF", "real madrid"),
        ("Atlético de Madrid", "atletico madrid"),
        ("Manchester United FC", "manchester united"),
        ("  Brighton & Hove Albion ", "brighton hove albion"),
        ("LA Clippers", "los angeles clippers"),
        ("Man Utd", "manchester united"),
        ("Wolves", "wolverhampton wanderers"),
        ("Nott'm Forest", "nottingham forest"),
        (None, ""),
    ],
)
def test_normalize_team_name(raw, expected):
    assert normalize_team_name(raw) == expected


def test_side_score_tiers():
    assert side_score("Real Madrid CF", "Real Madrid") == 1.0
    assert side_score("Madrid Real", "Real Madrid") == 0.95
    assert side_score("Tottenham", "Tottenham Hotspur") == 0.85
    assert side_score("Brigthon & Hove Albion", "Brighton & Hove Albion") == 0.85
    assert side_score("Arsenal", "Chelsea") == 0.0


@pytest.mark.parametrize(
    ("expected", "candidate"),
    [
        ("Los Angeles Clippers", "LA Clippers"),
        ("Manchester United", "Man Utd"),
        ("Wolverhampton Wanderers", "Wolves"),
        ("Nottingham Forest", "Nott'm Forest"),
    ],
)
def test_provider_short_forms_match_exactly(expected, candidate):
    assert side_score(expected, candidate) == 1.0


@pytest.mark.parametrize(
    ("expected", "candidate"),
    [
        ("Los Angeles Lakers", "LA Clippers"),
        ("Manchester United", "Manchester City"),
        ("Real Madrid", "Atletico Madrid"),
    ],
)
def test_teams_sharing_a_city_do_not_match(expected, candidate):
    assert side_score(expected, candidate) == 0.0


def test_resolve_matches_abbreviated_feed_names():
    candidates = [
        _snapshot("1", "LA Clippers", "Boston Celtics", league="NBA", home_score=101, away_score=99),
        _snapshot("2", "LA Lakers", "Boston Celtics", league="NBA"),
    ]

    resolution = TeamMatcher(threshold=0.6).resolve(
        "Los Angeles Clippers", "Boston Celtics", candidates, league="NBA", kickoff=KICKOFF
    )

    assert resolution.matched
    assert resolution.snapshot.external_id == "1"
    assert resolution.score == 1.0


def test_resolve_prefers_exact_fixture():
    matcher = TeamMatcher(threshold=0.6)
    candidates = [
        _snapshot("1", "Real Madrid", "Sevilla FC", home_score=2, away_score=0),
        _snapshot("2", "Real Betis", "Sevilla FC"),
    ]

    resolution = matcher.resolve("Real Madrid CF", "Sevilla", candidates, league="LALIGA")

    assert resolution.matched
    assert resolution.snapshot.external_id == "1"
    assert resolution.score == 1.0


def test_resolve_flags_ambiguous_top_scores():
    matcher = TeamMatcher(threshold=0.5)
    candidates = [
        _snapshot("1", "Inter Milan", "Arsenal"),
        _snapshot("2", "Inter Miami", "Arsenal"),
    ]

    resolution = matcher.resolve("Inter", "Arsenal", candidates, league="LALIGA")

    assert resolution.ambiguous
    assert not resolution.matched
    assert resolution.snapshot is None
    assert {item.external_id for item in resolution.contenders} == {"1", "2"}


def test_same_fixture_from_two_providers_is_not_ambiguous():
    matcher = TeamMatcher()
    candidates = [
        _snapshot("espn-1", "Barcelona", "Girona FC", source="espn"),
        _snapshot("fd-1", "FC Barcelona", "Girona", home_score=3, away_score=1, source="football-data"),
    ]

    resolution = matcher.resolve("Barcelona", "Girona", candidates)

    assert resolution.matched
    assert resolution.snapshot.source == "football-data"


def test_resolve_skips_other_leagues_and_distant_kickoffs():
    matcher = TeamMatcher()
    candidates = [
        _snapshot("1", "Valencia", "Villarreal", league="EPL"),
        _snapshot("2", "Valencia", "Villarreal", start_time=KICKOFF + timedelta(days=3)),
    ]

    resolution = matcher.resolve(
        "Valencia CF", "Villarreal CF", candidates, league="LALIGA", kickoff=KICKOFF
    )

    assert resolution.snapshot is None
    assert not resolution.ambiguous


def test_resolve_below_threshold_returns_no_match():
    matcher = TeamMatcher(threshold=0.9)
    resolution = matcher.resolve("Tottenham", "Chelsea", [_snapshot("1", "Tottenham Hotspur", "Chelsea")])
    assert resolution.snapshot is None


def test_kickoff_tolerance_is_configurable():
    candidates = [_snapshot("1", "Valencia", "Villarreal", start_time=KICKOFF + timedelta(hours=5))]

    strict = TeamMatcher(threshold=0.95, kickoff_tolerance=timedelta(hours=3))
    relaxed = TeamMatcher(threshold=0.95)

    assert strict.resolve("Valencia", "Villarreal", candidates, kickoff=KICKOFF).snapshot is None
    assert relaxed.resolve("Valencia", "Villarreal", candidates, kickoff=KICKOFF).matched
