from __future__ import annotations

from datetime import date, datetime, time, timezone

import pytest

from app.core.config import Settings
from app.core.leagues import LeagueConfig
from app.scheduling.windows import Phase, WindowEvaluator, evaluator_for, in_daily_interval

from factories import wib


def _evaluator(code: str) -> WindowEvaluator:
    return evaluator_for(code, Settings())


@pytest.mark.parametrize("hour", range(24))
def test_nba_window_by_hour(hour):
    evaluator = _evaluator("NBA")
    expected = hour >= 13 or hour <= 6
    assert evaluator.is_open(wib(2025, 1, 10, hour)) is expected


@pytest.mark.parametrize("code", ["EPL", "LALIGA"])
@pytest.mark.parametrize("hour", range(24))
def test_soccer_window_by_hour(code, hour):
    evaluator = _evaluator(code)
    expected = 1 <= hour < 16
    assert evaluator.is_open(wib(2025, 1, 10, hour)) is expected


def test_nba_window_closes_at_half_past_six():
    evaluator = _evaluator("NBA")
    assert evaluator.is_open(wib(2025, 1, 11, 6, 29))
    assert not evaluator.is_open(wib(2025, 1, 11, 6, 30))
    assert evaluator.wraps_midnight


def test_evening_to_morning_window():
    league = LeagueConfig(
        code="TEST",
        name="Test",
        sport="soccer",
        window_open="18:00",
        window_close="09:00",
        select_at="17:00",
        predict_at="17:30",
        settle_at="12:00",
    )
    evaluator = WindowEvaluator(league, utc_offset_hours=7)

    assert evaluator.is_open(wib(2025, 1, 10, 23))
    assert not evaluator.is_open(wib(2025, 1, 10, 10))
    assert not evaluator.is_open(wib(2025, 1, 10, 17, 59))
    assert evaluator.is_open(wib(2025, 1, 10, 18, 0))


def test_window_evaluation_accepts_naive_utc():
    evaluator = _evaluator("EPL")
    # 03:00 UTC is 10:00 WIB.
    assert evaluator.is_open(datetime(2025, 1, 10, 3, 0))


def test_in_daily_interval_edges():
    assert in_daily_interval(0, 0, 0)
    assert in_daily_interval(10, 5, 20)
    assert not in_daily_interval(20, 5, 20)
    assert in_daily_interval(1439, 1380, 60)
    assert not in_daily_interval(120, 1380, 60)


def test_nba_cycle_date_spans_midnight():
    evaluator = _evaluator("NBA")
    # Before opening the cycle refers to today's upcoming window.
    assert evaluator.cycle_date(wib(2025, 1, 10, 11)) == date(2025, 1, 10)
    assert evaluator.cycle_date(wib(2025, 1, 10, 14)) == date(2025, 1, 10)
    # After midnight the same window is still open under yesterday's cycle.
    assert evaluator.cycle_date(wib(2025, 1, 11, 2)) == date(2025, 1, 10)


def test_soccer_cycle_date_after_close_targets_tomorrow():
    evaluator = _evaluator("EPL")
    assert evaluator.cycle_date(wib(2025, 1, 10, 23)) == date(2025, 1, 11)
    assert evaluator.cycle_date(wib(2025, 1, 11, 0, 30)) == date(2025, 1, 11)
    assert evaluator.cycle_date(wib(2025, 1, 11, 9)) == date(2025, 1, 11)


def test_closed_cycle_date_tracks_window_close():
    evaluator = _evaluator("NBA")
    assert evaluator.closed_cycle_date(wib(2025, 1, 11, 6, 30)) == date(2025, 1, 10)
    assert evaluator.closed_cycle_date(wib(2025, 1, 11, 2)) == date(2025, 1, 9)


def test_nba_eligibility_is_the_following_local_day():
    evaluator = _evaluator("NBA")
    start, end = evaluator.eligibility_range(date(2025, 1, 10))
    assert start == wib(2025, 1, 11)
    assert end == wib(2025, 1, 12)


def test_soccer_eligibility_covers_a_week():
    evaluator = _evaluator("LALIGA")
    start, end = evaluator.eligibility_range(date(2025, 1, 11))
    assert start == wib(2025, 1, 11)
    assert end == wib(2025, 1, 18)


def test_slots_and_active_phases():
    evaluator = _evaluator("NBA")
    assert evaluator.slot_time(Phase.SELECT) == time(11, 0)
    assert evaluator.slot_time(Phase.CLOSE) == time(6, 30)
    assert evaluator.in_slot(Phase.SELECT, wib(2025, 1, 10, 11, 4))
    assert not evaluator.in_slot(Phase.SELECT, wib(2025, 1, 10, 11, 5))
    assert evaluator.active_phases(wib(2025, 1, 10, 12, 2)) == [Phase.PREDICT]
    assert evaluator.active_phases(wib(2025, 1, 10, 9, 0)) == []


def test_next_slot_rolls_over_to_tomorrow():
    evaluator = _evaluator("EPL")
    assert evaluator.next_slot(Phase.SELECT, wib(2025, 1, 10, 22)) == wib(2025, 1, 10, 23)
    assert evaluator.next_slot(Phase.SELECT, wib(2025, 1, 10, 23, 1)) == wib(2025, 1, 11, 23)
    assert evaluator.next_slot(Phase.SETTLE, wib(2025, 1, 10, 22)).tzinfo == timezone.utc


def test_unknown_league_raises_key_error():
    with pytest.raises(KeyError):
        Settings().league_config("NFL")


def test_league_overrides_merge_with_defaults():
    settings = Settings(league_overrides={"epl": {"window_open": "02:00", "max_matches": 4}})
    config = settings.league_config("EPL")
    assert config.window_open == time(2, 0)
    assert config.window_close == time(16, 0)
    assert config.max_matches == 4
