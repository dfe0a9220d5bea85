from __future__ import annotations

import random
from datetime import date

import pytest

from app.core.config import Settings
from app.models import Prediction
from app.services.errors import MatchNotFoundError, RaffleNotFoundError, UnknownLeagueError
from app.services.match_service import MatchQuery, MatchService
from app.services.prediction_generator import PredictionGenerator
from app.services.purchase_ledger import PurchaseLedger
from app.services.selector import SelectionService

from factories import wib

SELECT_AT = wib(2025, 1, 10, 11)
SHOPPING = wib(2025, 1, 10, 14)


@pytest.fixture
def settings() -> Settings:
    return Settings(enabled_leagues="NBA,EPL,LALIGA", entry_fee=1.0, token_symbol="CARV")


@pytest.fixture
def storefront(db_session, make_match, settings):
    make_match("g1", start_time=wib(2025, 1, 11, 8))
    make_match(
        "old",
        home="Los Angeles Lakers",
        away="Denver Nuggets",
        start_time=wib(2025, 1, 9, 9),
        status="finished",
        stage="finalized",
        home_score=118,
        away_score=111,
    )
    SelectionService(db_session, settings, rng=random.Random(1)).select_for_cycle("NBA", None, SELECT_AT)
    ledger = PurchaseLedger(
        db_session, settings, generator=PredictionGenerator(db_session, settings, rng=random.Random(2))
    )
    for buyer in ("0xaaa", "0xbbb"):
        ledger.buy("NBA:g1", buyer, f"tx-{buyer}", 1.0, "CARV", now=SHOPPING)
    return MatchService(db_session, settings)


def test_storefront_lists_buyable_locked_matches(storefront):
    result = storefront.list_matches(MatchQuery(league="nba"), now=SHOPPING)

    assert result.total == 1
    match = result.matches[0]
    assert match.match_id == "NBA:g1"
    assert match.buyable
    assert match.locked
    assert match.window_open
    assert match.buyer_count == 2
    # Paid predictions stay hidden until they are graded.
    assert match.prediction is None


def test_history_exposes_only_graded_predictions(db_session, storefront):
    db_session.add(
        Prediction(
            match_id="NBA:old",
            league="NBA",
            predicted_winner="Los Angeles Lakers",
            predicted_score="115-108",
            predicted_home_score=115,
            predicted_away_score=108,
            predicted_total=223,
            confidence=61,
            narrative="Lakers at home.",
            full_text="Predicted Winner: Los Angeles Lakers",
            generated_at=wib(2025, 1, 8, 12),
            actual_winner="Los Angeles Lakers",
            actual_score="118-111",
            is_correct=True,
            finalized_at=wib(2025, 1, 9, 15),
        )
    )
    db_session.commit()

    result = storefront.list_matches(MatchQuery(history=True), now=SHOPPING)

    assert [match.match_id for match in result.matches] == ["NBA:old"]
    summary = result.matches[0].prediction
    assert summary.is_correct is True
    assert summary.actual_score == "118-111"
    assert not hasattr(summary, "full_text")


def test_closed_window_view_lists_awaiting_results(db_session, storefront):
    match = storefront.get_match("NBA:g1", now=SHOPPING)
    assert match.stage == "locked"

    db_session.get(Prediction, "NBA:g1").match.stage = "awaiting_result"
    db_session.commit()

    result = storefront.list_matches(MatchQuery(closed_window=True), now=wib(2025, 1, 11, 7))
    assert [item.match_id for item in result.matches] == ["NBA:g1"]
    assert result.matches[0].buyable is False


def test_lookup_errors(storefront):
    with pytest.raises(MatchNotFoundError):
        storefront.get_match("NBA:missing")
    with pytest.raises(RaffleNotFoundError):
        storefront.get_raffle("NBA:g1")
    with pytest.raises(UnknownLeagueError):
        storefront.list_matches(MatchQuery(league="NHL"))
    with pytest.raises(UnknownLeagueError):
        storefront.list_raffles(league="NHL")


def test_league_statuses(storefront):
    statuses = {status.code: status for status in storefront.league_statuses(now=SHOPPING)}

    nba = statuses["NBA"]
    assert set(statuses) == {"NBA", "EPL", "LALIGA"}
    assert nba.window_open is True
    assert nba.window_opens_local == "13:00"
    assert nba.window_closes_local == "06:30"
    assert nba.cycle_date == date(2025, 1, 10)
    assert nba.locked_matches == ["NBA:g1"]
    assert set(nba.next_slots) == {"select", "predict", "close", "settle"}
    assert nba.next_slots["select"] == wib(2025, 1, 11, 11)
    assert statuses["EPL"].window_open is True
    assert statuses["EPL"].cycle_date == date(2025, 1, 10)


def test_empty_raffle_page(storefront):
    result = storefront.list_raffles(page=3, limit=10)

    assert (result.total, result.page, result.limit) == (0, 3, 10)
    assert list(result.raffles) == []
