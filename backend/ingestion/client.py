from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Iterable

import httpx
from loguru import logger

from app.core.config import Settings, get_settings
from app.core.leagues import LeagueConfig
from app.domain import MatchSnapshot

from .normalize import (
    SOURCE_ESPN,
    SOURCE_FOOTBALL_DATA,
    SOURCE_THESPORTSDB,
    normalize_match,
)


class SportsFeedClient:
    """Best-effort wrapper around the public sports data providers.

    Every provider call is bounded by the configured timeout. Transport and
    HTTP errors are logged and degrade to an empty result so that scheduled
    jobs simply try again on their next tick.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.timeout = timeout or self.settings.feed_timeout_seconds
        self.client = httpx.Client(
            timeout=self.timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def _get_json(self, url: str, *, params: dict[str, Any] | None = None, headers: dict[str, str] | None = None) -> Any:
        logger.info("Feed GET {} params={}", url, params)
        response = self.client.get(url, params=params, headers=headers)
        response.raise_for_status()
        return response.json()

    # ------------------------------------------------------------------
    # Raw provider payloads

    def fetch_thesportsdb_events(self, league: LeagueConfig) -> list[dict[str, Any]]:
        if not league.thesportsdb_league_id:
            return []
        base = f"{str(self.settings.thesportsdb_base_url).rstrip('/')}/{self.settings.thesportsdb_api_key}"
        events: list[dict[str, Any]] = []
        for endpoint in ("eventsnextleague.php", "eventspastleague.php"):
            payload = self._get_json(f"{base}/{endpoint}", params={"id": league.thesportsdb_league_id})
            raw_events = payload.get("events") if isinstance(payload, dict) else None
            if isinstance(raw_events, list):
                events.extend(item for item in raw_events if isinstance(item, dict))
        return events

    def fetch_espn_scoreboard(self, league: LeagueConfig, *, day: date | None = None) -> list[dict[str, Any]]:
        if not league.espn_path:
            return []
        url = f"{str(self.settings.espn_base_url).rstrip('/')}/{league.espn_path}/scoreboard"
        params = {"dates": day.strftime("%Y%m%d")} if day else None
        payload = self._get_json(url, params=params)
        raw_events = payload.get("events") if isinstance(payload, dict) else None
        if not isinstance(raw_events, list):
            return []
        return [item for item in raw_events if isinstance(item, dict)]

    def fetch_football_data_matches(
        self, league: LeagueConfig, *, date_from: date | None = None, date_to: date | None = None
    ) -> list[dict[str, Any]]:
        if not (league.football_data_code and self.settings.football_data_api_key):
            return []
        url = (
            f"{str(self.settings.football_data_base_url).rstrip('/')}"
            f"/competitions/{league.football_data_code}/matches"
        )
        params: dict[str, Any] = {}
        if date_from:
            params["dateFrom"] = date_from.isoformat()
        if date_to:
            params["dateTo"] = date_to.isoformat()
        payload = self._get_json(
            url,
            params=params or None,
            headers={"X-Auth-Token": self.settings.football_data_api_key},
        )
        raw_matches = payload.get("matches") if isinstance(payload, dict) else None
        if not isinstance(raw_matches, list):
            return []
        return [item for item in raw_matches if isinstance(item, dict)]

    # ------------------------------------------------------------------
    # Normalized views

    def _collect(self, league: LeagueConfig, source: str, fetcher, **kwargs) -> list[MatchSnapshot]:
        try:
            raw_items = fetcher(league, **kwargs)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("{} feed unavailable for {}: {}", source, league.code, exc)
            return []
        snapshots: list[MatchSnapshot] = []
        for raw in raw_items:
            snapshot = normalize_match(raw, league=league.code, schema=source)
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    def fetch_fixtures(self, league: LeagueConfig, *, today: date | None = None) -> list[MatchSnapshot]:
        """Upcoming and recent fixtures for ``league``.

        Provider identifiers differ, so a single provider feeds each refresh:
        TheSportsDB first, ESPN scoreboards over the selection horizon otherwise.
        The match cache folds a fixture seen under both providers into one row.
        """

        snapshots = self._collect(league, SOURCE_THESPORTSDB, self.fetch_thesportsdb_events)
        if not snapshots and today is not None and league.espn_path:
            horizon = league.horizon_start_days + league.horizon_days
            for offset in range(horizon + 1):
                snapshots.extend(
                    self._collect(
                        league, SOURCE_ESPN, self.fetch_espn_scoreboard, day=today + timedelta(days=offset)
                    )
                )
        return _dedupe(snapshots)

    def fetch_live_scores(
        self, leagues: Iterable[LeagueConfig], *, today: date | None = None
    ) -> list[MatchSnapshot]:
        """Latest scoreboard snapshots used to reconcile finished matches."""

        snapshots: list[MatchSnapshot] = []
        for league in leagues:
            snapshots.extend(self._collect(league, SOURCE_ESPN, self.fetch_espn_scoreboard))
            if today is not None:
                snapshots.extend(
                    self._collect(
                        league, SOURCE_ESPN, self.fetch_espn_scoreboard, day=today - timedelta(days=1)
                    )
                )
            snapshots.extend(
                self._collect(
                    league,
                    SOURCE_FOOTBALL_DATA,
                    self.fetch_football_data_matches,
                    date_from=today - timedelta(days=3) if today else None,
                    date_to=today,
                )
            )
            snapshots.extend(self._collect(league, SOURCE_THESPORTSDB, self.fetch_thesportsdb_events))
        logger.info("Fetched {} live score snapshots", len(snapshots))
        return snapshots

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "SportsFeedClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _dedupe(snapshots: list[MatchSnapshot]) -> list[MatchSnapshot]:
    seen: dict[tuple[str, str], MatchSnapshot] = {}
    for snapshot in snapshots:
        key = (snapshot.source, snapshot.match_id)
        seen[key] = snapshot
    return list(seen.values())
