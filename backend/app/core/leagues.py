"""Built-in league schedules expressed in the canonical local timezone."""

from __future__ import annotations

from datetime import time
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


def parse_clock(value: Any) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    if not isinstance(value, str):
        raise ValueError("clock values must be HH:MM strings")
    candidate = value.strip()
    if len(candidate) != 5 or candidate[2] != ":":
        raise ValueError(f"clock value '{value}' must be formatted as HH:MM")
    hours, minutes = candidate.split(":", 1)
    if not (hours.isdigit() and minutes.isdigit()):
        raise ValueError(f"clock value '{value}' must contain numeric hour and minute")
    hour_int = int(hours)
    minute_int = int(minutes)
    if not 0 <= hour_int < 24 or not 0 <= minute_int < 60:
        raise ValueError(f"clock value '{value}' hour must be 0-23 and minute 0-59")
    return time(hour_int, minute_int)


class LeagueConfig(BaseModel):
    """Static schedule and selection policy for a single league."""

    code: str
    name: str
    sport: str = Field(description="basketball or soccer")
    window_open: time = Field(description="Local time the purchase window opens")
    window_close: time = Field(description="Local time the purchase window closes")
    select_at: time
    predict_at: time
    settle_at: time
    horizon_start_days: int = Field(0, ge=0)
    horizon_days: int = Field(1, ge=1)
    min_matches: int = Field(3, ge=0)
    max_matches: int = Field(5, ge=1)
    purchase_lead_hours: float | None = Field(
        default=None,
        description="Hours before kickoff a match becomes buyable; defaults to the horizon length",
    )
    dedicated_generation: bool = Field(
        default=False,
        description="Only the dedicated scheduler job may generate predictions for this league",
    )
    thesportsdb_league_id: str | None = None
    espn_path: str | None = None
    football_data_code: str | None = None

    @field_validator("window_open", "window_close", "select_at", "predict_at", "settle_at", mode="before")
    @classmethod
    def _parse_clock(cls, value: Any) -> time:
        return parse_clock(value)

    @field_validator("sport")
    @classmethod
    def _validate_sport(cls, value: str) -> str:
        lowered = value.strip().lower()
        if lowered not in {"basketball", "soccer"}:
            raise ValueError("sport must be 'basketball' or 'soccer'")
        return lowered

    @model_validator(mode="after")
    def _check_bounds(self) -> "LeagueConfig":
        if self.min_matches > self.max_matches:
            raise ValueError("min_matches cannot exceed max_matches")
        return self

    @property
    def allows_draw(self) -> bool:
        return self.sport == "soccer"

    @property
    def close_at(self) -> time:
        return self.window_close

    @property
    def purchase_lead(self) -> float:
        if self.purchase_lead_hours is not None:
            return float(self.purchase_lead_hours)
        return float((self.horizon_start_days + self.horizon_days) * 24)


DEFAULT_LEAGUES: dict[str, dict[str, Any]] = {
    "NBA": {
        "code": "NBA",
        "name": "NBA",
        "sport": "basketball",
        "window_open": "13:00",
        "window_close": "06:30",
        "select_at": "11:00",
        "predict_at": "12:00",
        "settle_at": "15:00",
        "horizon_start_days": 1,
        "horizon_days": 1,
        "min_matches": 3,
        "max_matches": 5,
        "purchase_lead_hours": 24,
        "dedicated_generation": True,
        "thesportsdb_league_id": "4387",
        "espn_path": "basketball/nba",
    },
    "EPL": {
        "code": "EPL",
        "name": "English Premier League",
        "sport": "soccer",
        "window_open": "01:00",
        "window_close": "16:00",
        "select_at": "23:00",
        "predict_at": "00:00",
        "settle_at": "15:00",
        "horizon_start_days": 0,
        "horizon_days": 7,
        "min_matches": 3,
        "max_matches": 5,
        "thesportsdb_league_id": "4328",
        "espn_path": "soccer/eng.1",
        "football_data_code": "PL",
    },
    "LALIGA": {
        "code": "LALIGA",
        "name": "Spanish La Liga",
        "sport": "soccer",
        "window_open": "01:00",
        "window_close": "16:00",
        "select_at": "23:00",
        "predict_at": "00:00",
        "settle_at": "15:00",
        "horizon_start_days": 0,
        "horizon_days": 7,
        "min_matches": 3,
        "max_matches": 5,
        "thesportsdb_league_id": "4335",
        "espn_path": "soccer/esp.1",
        "football_data_code": "PD",
    },
}
