from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser

from app.domain import MatchSnapshot
from app.models import MatchStatus


SOURCE_THESPORTSDB = "thesportsdb"
SOURCE_ESPN = "espn"
SOURCE_FOOTBALL_DATA = "football-data"
SOURCE_CANONICAL = "canonical"

_FINISHED_TOKENS = {
    "ft",
    "aet",
    "pen",
    "ap",
    "final",
    "finished",
    "match finished",
    "full time",
    "after over time",
    "after extra time",
    "after penalties",
    "status_final",
    "status_full_time",
    "status_final_aet",
    "status_final_pen",
    "awarded",
}
_LIVE_TOKENS = {
    "1h",
    "2h",
    "ht",
    "et",
    "bt",
    "p",
    "q1",
    "q2",
    "q3",
    "q4",
    "ot",
    "live",
    "in_play",
    "in play",
    "in progress",
    "paused",
    "halftime",
    "first half",
    "second half",
    "status_in_progress",
    "status_halftime",
    "status_end_period",
    "status_first_half",
    "status_second_half",
}
_SCHEDULED_TOKENS = {
    "ns",
    "tbd",
    "not started",
    "scheduled",
    "timed",
    "status_scheduled",
    "pre",
}
_POSTPONED_TOKENS = {
    "pst",
    "canc",
    "abd",
    "susp",
    "postponed",
    "cancelled",
    "canceled",
    "suspended",
    "abandoned",
    "match postponed",
    "match cancelled",
    "status_postponed",
    "status_canceled",
    "status_suspended",
}


def normalize_status(raw_status: Any) -> str:
    if raw_status is None:
        return MatchStatus.UNKNOWN.value
    token = str(raw_status).strip().lower()
    if not token:
        return MatchStatus.SCHEDULED.value
    if token in _FINISHED_TOKENS:
        return MatchStatus.FINISHED.value
    if token in _LIVE_TOKENS:
        return MatchStatus.LIVE.value
    if token in _SCHEDULED_TOKENS:
        return MatchStatus.SCHEDULED.value
    if token in _POSTPONED_TOKENS:
        return MatchStatus.POSTPONED.value
    if token in {status.value for status in MatchStatus}:
        return token
    return MatchStatus.UNKNOWN.value


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (ValueError, TypeError):
            try:
                parsed = date_parser.parse(str(value))
            except (ValueError, TypeError, OverflowError):
                return None
    if parsed.tzinfo is None:
        # Upstream feeds publish kickoff times in UTC without an offset.
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(round(float(value)))
        except (TypeError, ValueError):
            return None


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _finalize(
    *,
    external_id: Any,
    league: str,
    home: Any,
    away: Any,
    start_time: datetime | None,
    venue: Any,
    home_score: Any,
    away_score: Any,
    status: str,
    source: str,
    raw: dict[str, Any],
) -> MatchSnapshot | None:
    home_team = _clean(home)
    away_team = _clean(away)
    identifier = _clean(external_id)
    if not (home_team and away_team and identifier):
        return None

    parsed_home = _parse_int(home_score)
    parsed_away = _parse_int(away_score)
    if status in {MatchStatus.SCHEDULED.value, MatchStatus.POSTPONED.value}:
        # Scoreboards report 0-0 for fixtures that have not kicked off.
        parsed_home = parsed_away = None

    return MatchSnapshot(
        external_id=identifier,
        league=league.upper(),
        home_team=home_team,
        away_team=away_team,
        start_time=start_time,
        venue=_clean(venue),
        home_score=parsed_home,
        away_score=parsed_away,
        status=status,
        source=source,
        raw_data=raw,
    )


def _normalize_thesportsdb(raw: dict[str, Any], league: str) -> MatchSnapshot | None:
    start_time = _parse_datetime(raw.get("strTimestamp"))
    if start_time is None and raw.get("dateEvent"):
        start_time = _parse_datetime(f"{raw['dateEvent']}T{raw.get('strTime') or '00:00:00'}")
    return _finalize(
        external_id=raw.get("idEvent"),
        league=league,
        home=raw.get("strHomeTeam"),
        away=raw.get("strAwayTeam"),
        start_time=start_time,
        venue=raw.get("strVenue"),
        home_score=raw.get("intHomeScore"),
        away_score=raw.get("intAwayScore"),
        status=normalize_status(raw.get("strStatus")),
        source=SOURCE_THESPORTSDB,
        raw=raw,
    )


def _normalize_espn(raw: dict[str, Any], league: str) -> MatchSnapshot | None:
    competitions = raw.get("competitions") or []
    competition = competitions[0] if competitions and isinstance(competitions[0], dict) else {}
    competitors = competition.get("competitors") or []
    sides: dict[str, dict[str, Any]] = {}
    for competitor in competitors:
        if isinstance(competitor, dict) and competitor.get("homeAway") in {"home", "away"}:
            sides[competitor["homeAway"]] = competitor
    home = sides.get("home", {})
    away = sides.get("away", {})

    status_block = competition.get("status") or raw.get("status") or {}
    status_type = status_block.get("type") or {}
    raw_status = status_type.get("name") or status_type.get("description")
    status = normalize_status(raw_status)
    if status == MatchStatus.UNKNOWN.value and status_type.get("completed"):
        status = MatchStatus.FINISHED.value

    venue = competition.get("venue") or {}
    return _finalize(
        external_id=raw.get("id"),
        league=league,
        home=(home.get("team") or {}).get("displayName"),
        away=(away.get("team") or {}).get("displayName"),
        start_time=_parse_datetime(raw.get("date") or competition.get("date")),
        venue=venue.get("fullName"),
        home_score=home.get("score"),
        away_score=away.get("score"),
        status=status,
        source=SOURCE_ESPN,
        raw=raw,
    )


def _normalize_football_data(raw: dict[str, Any], league: str) -> MatchSnapshot | None:
    score = raw.get("score") or {}
    full_time = score.get("fullTime") or {}
    return _finalize(
        external_id=raw.get("id"),
        league=league,
        home=(raw.get("homeTeam") or {}).get("name"),
        away=(raw.get("awayTeam") or {}).get("name"),
        start_time=_parse_datetime(raw.get("utcDate")),
        venue=raw.get("venue"),
        home_score=full_time.get("home"),
        away_score=full_time.get("away"),
        status=normalize_status(raw.get("status")),
        source=SOURCE_FOOTBALL_DATA,
        raw=raw,
    )


def _normalize_canonical(raw: dict[str, Any], league: str) -> MatchSnapshot | None:
    return _finalize(
        external_id=raw.get("id") or raw.get("external_id"),
        league=raw.get("league") or league,
        home=raw.get("home") or raw.get("home_team"),
        away=raw.get("away") or raw.get("away_team"),
        start_time=_parse_datetime(
            raw.get("startTime") or raw.get("start_time") or raw.get("datetime")
        ),
        venue=raw.get("venue"),
        home_score=raw.get("homeScore", raw.get("home_score")),
        away_score=raw.get("awayScore", raw.get("away_score")),
        status=normalize_status(raw.get("status")),
        source=raw.get("source") or SOURCE_CANONICAL,
        raw=raw,
    )


def detect_schema(raw: dict[str, Any]) -> str:
    if "idEvent" in raw:
        return SOURCE_THESPORTSDB
    if isinstance(raw.get("competitions"), list):
        return SOURCE_ESPN
    if isinstance(raw.get("homeTeam"), dict) and "utcDate" in raw:
        return SOURCE_FOOTBALL_DATA
    return SOURCE_CANONICAL


_NORMALIZERS = {
    SOURCE_THESPORTSDB: _normalize_thesportsdb,
    SOURCE_ESPN: _normalize_espn,
    SOURCE_FOOTBALL_DATA: _normalize_football_data,
    SOURCE_CANONICAL: _normalize_canonical,
}


def normalize_match(raw: dict[str, Any], *, league: str, schema: str | None = None) -> MatchSnapshot | None:
    """Convert an upstream fixture payload into a ``MatchSnapshot``.

    Returns ``None`` when the payload lacks an identifier or either team name.
    """

    if not isinstance(raw, dict):
        return None
    normalizer = _NORMALIZERS.get(schema or detect_schema(raw))
    if normalizer is None:
        raise ValueError(f"Unsupported match schema '{schema}'")
    return normalizer(raw, league)
