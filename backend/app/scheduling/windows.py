"""Purchase-window and automation-slot arithmetic for every league.

All schedules are configured in a single canonical local timezone (WIB by
default). Evaluation converts the current UTC instant into that zone and
compares minutes-of-day, treating windows whose close time is earlier than
their open time as wrapping past midnight.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum

from app.core.config import Settings, get_settings
from app.core.leagues import LeagueConfig

MINUTES_PER_DAY = 24 * 60


class Phase(str, Enum):
    SELECT = "select"
    PREDICT = "predict"
    CLOSE = "close"
    SETTLE = "settle"


def minute_of_day(value: time | datetime) -> int:
    return value.hour * 60 + value.minute


def in_daily_interval(minute: int, start: int, end: int) -> bool:
    """Return True when ``minute`` falls inside ``[start, end)`` on a 24h clock.

    ``start > end`` wraps around midnight; ``start == end`` covers the whole day.
    """

    minute %= MINUTES_PER_DAY
    if start == end:
        return True
    if start < end:
        return start <= minute < end
    return minute >= start or minute < end


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class WindowEvaluator:
    """Pure time calculations for one league's purchase window and job slots."""

    def __init__(
        self,
        league: LeagueConfig,
        *,
        utc_offset_hours: float = 7.0,
        slot_minutes: int = 5,
    ) -> None:
        self.league = league
        self.tz = timezone(timedelta(hours=utc_offset_hours))
        self.slot_minutes = slot_minutes
        self._open_minute = minute_of_day(league.window_open)
        self._close_minute = minute_of_day(league.window_close)

    @property
    def wraps_midnight(self) -> bool:
        return self._open_minute > self._close_minute

    def local(self, now: datetime) -> datetime:
        return ensure_utc(now).astimezone(self.tz)

    def is_open(self, now: datetime) -> bool:
        return in_daily_interval(
            minute_of_day(self.local(now)), self._open_minute, self._close_minute
        )

    def cycle_date(self, now: datetime) -> date:
        """Local date of the window that is open now, or of the next one to open."""

        local_now = self.local(now)
        today_open = datetime.combine(local_now.date(), self.league.window_open, tzinfo=self.tz)
        if self.is_open(now):
            opened = today_open if today_open <= local_now else today_open - timedelta(days=1)
            return opened.date()
        upcoming = today_open if today_open > local_now else today_open + timedelta(days=1)
        return upcoming.date()

    def window_bounds(self, cycle_date: date) -> tuple[datetime, datetime]:
        opens = datetime.combine(cycle_date, self.league.window_open, tzinfo=self.tz)
        closes = datetime.combine(cycle_date, self.league.window_close, tzinfo=self.tz)
        if closes <= opens:
            closes += timedelta(days=1)
        return opens.astimezone(timezone.utc), closes.astimezone(timezone.utc)

    def closed_cycle_date(self, now: datetime) -> date:
        """Most recent cycle whose purchase window has fully closed."""

        candidate = self.cycle_date(now)
        _, closes = self.window_bounds(candidate)
        if closes <= ensure_utc(now):
            return candidate
        return candidate - timedelta(days=1)

    def eligibility_range(self, cycle_date: date) -> tuple[datetime, datetime]:
        first_day = cycle_date + timedelta(days=self.league.horizon_start_days)
        start = datetime.combine(first_day, time(0, 0), tzinfo=self.tz)
        end = start + timedelta(days=self.league.horizon_days)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def slot_time(self, phase: Phase) -> time:
        if phase is Phase.SELECT:
            return self.league.select_at
        if phase is Phase.PREDICT:
            return self.league.predict_at
        if phase is Phase.CLOSE:
            return self.league.close_at
        return self.league.settle_at

    def in_slot(self, phase: Phase, now: datetime) -> bool:
        start = minute_of_day(self.slot_time(phase))
        end = (start + self.slot_minutes) % MINUTES_PER_DAY
        return in_daily_interval(minute_of_day(self.local(now)), start, end)

    def active_phases(self, now: datetime) -> list[Phase]:
        return [phase for phase in Phase if self.in_slot(phase, now)]

    def next_slot(self, phase: Phase, now: datetime) -> datetime:
        local_now = self.local(now)
        candidate = datetime.combine(local_now.date(), self.slot_time(phase), tzinfo=self.tz)
        if candidate <= local_now:
            candidate += timedelta(days=1)
        return candidate.astimezone(timezone.utc)


def evaluator_for(league: str | LeagueConfig, settings: Settings | None = None) -> WindowEvaluator:
    settings = settings or get_settings()
    config = league if isinstance(league, LeagueConfig) else settings.league_config(league)
    return WindowEvaluator(
        config,
        utc_offset_hours=settings.schedule_utc_offset_hours,
        slot_minutes=settings.automation_slot_minutes,
    )


def is_window_open(league: str | LeagueConfig, now_utc: datetime, settings: Settings | None = None) -> bool:
    return evaluator_for(league, settings).is_open(now_utc)


def current_cycle_date(
    league: str | LeagueConfig, now_utc: datetime, settings: Settings | None = None
) -> date:
    return evaluator_for(league, settings).cycle_date(now_utc)
