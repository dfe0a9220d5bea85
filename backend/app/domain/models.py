"""Typed domain representations used across ingestion, persistence, and APIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class MatchSnapshot:
    """Canonical match record produced from any upstream feed schema."""

    external_id: str
    league: str
    home_team: str
    away_team: str
    start_time: datetime | None
    venue: str | None
    home_score: int | None
    away_score: int | None
    status: str
    source: str
    raw_data: dict[str, Any] | None = field(default=None, repr=False)

    @property
    def match_id(self) -> str:
        return build_match_id(self.league, self.external_id)

    @property
    def has_final_score(self) -> bool:
        return self.home_score is not None and self.away_score is not None


def build_match_id(league: str, external_id: str) -> str:
    return f"{league.upper()}:{external_id}"
