from __future__ import annotations

import random
from datetime import timedelta

import pytest

from app.core.config import Settings
from app.models import Prediction, PredictionSource, Purchase
from app.services.errors import (
    AlreadyPurchasedError,
    InvalidPurchaseError,
    MatchNotBuyableError,
    MatchNotFoundError,
)
from app.services.prediction_generator import PredictionGenerator
from app.services.purchase_ledger import PurchaseLedger
from app.services.selector import SelectionService

from factories import wib

SELECT_AT = wib(2025, 1, 10, 11)
SHOPPING = wib(2025, 1, 10, 14)
KICKOFF = wib(2025, 1, 11, 8)


@pytest.fixture
def settings() -> Settings:
    return Settings(entry_fee=0.5, token_symbol="CARV")


@pytest.fixture
def locked_match(db_session, make_match, settings):
    match = make_match("g1", start_time=KICKOFF)
    SelectionService(db_session, settings, rng=random.Random(1)).select_for_cycle("NBA", None, SELECT_AT)
    return match


@pytest.fixture
def ledger(db_session, settings) -> PurchaseLedger:
    generator = PredictionGenerator(db_session, settings, rng=random.Random(5))
    return PurchaseLedger(db_session, settings, generator=generator)


def _buy(ledger, buyer="0xABC", **overrides):
    params = {
        "match_id": "NBA:g1",
        "buyer": buyer,
        "payment_ref": f"tx-{buyer}",
        "amount": 0.5,
        "token": "CARV",
        "now": SHOPPING,
    }
    params.update(overrides)
    return ledger.buy(**params)


def test_visibility_of_locked_match(ledger, locked_match):
    visibility = ledger.visibility(locked_match, SHOPPING)

    assert visibility.buyable
    assert visibility.window_open
    assert visibility.locked
    assert visibility.buyable_from == KICKOFF - timedelta(hours=24)


def test_buy_generates_fallback_prediction_and_records_purchase(db_session, ledger, locked_match):
    receipt = _buy(ledger)

    assert receipt.purchase.buyer == "0xabc"
    assert receipt.purchase.token == "CARV"
    assert receipt.prediction.source == PredictionSource.FALLBACK.value
    assert receipt.purchase.prediction_snapshot == receipt.prediction.full_text
    assert db_session.query(Purchase).count() == 1


def test_buy_reuses_scheduled_prediction(db_session, ledger, locked_match, settings):
    PredictionGenerator(db_session, settings, rng=random.Random(2)).generate_for_locked(
        "NBA", ["NBA:g1"], bypass_scope_check=True, now=SELECT_AT
    )

    receipt = _buy(ledger)

    assert receipt.prediction.source == PredictionSource.SCHEDULED.value
    assert db_session.query(Prediction).count() == 1


def test_duplicate_purchase_is_rejected(db_session, ledger, locked_match):
    _buy(ledger)

    with pytest.raises(AlreadyPurchasedError) as excinfo:
        _buy(ledger, buyer="0xAbC", payment_ref="tx-second")

    assert excinfo.value.status_code == 409
    assert str(excinfo.value) == "Already purchased"
    assert db_session.query(Purchase).filter(Purchase.buyer == "0xabc").count() == 1


def test_count_reports_distinct_buyers(ledger, locked_match):
    _buy(ledger, buyer="0x1")
    _buy(ledger, buyer="0x2")

    count = ledger.count("NBA:g1")

    assert count.buyer_count == 2
    assert count.total_purchases == 2
    assert sorted(purchase.buyer for purchase in ledger.lookup(match_id="NBA:g1")) == ["0x1", "0x2"]
    assert len(ledger.lookup(buyer="0X1")) == 1


def test_purchase_outside_window_is_rejected(ledger, locked_match):
    with pytest.raises(MatchNotBuyableError, match="window is closed"):
        _buy(ledger, now=wib(2025, 1, 10, 12))


def test_unlocked_match_is_not_buyable(db_session, make_match, ledger):
    make_match("loose", start_time=KICKOFF)

    with pytest.raises(MatchNotBuyableError, match="not in the current selection"):
        _buy(ledger, match_id="NBA:loose")


@pytest.mark.parametrize(
    "overrides",
    [
        {"token": "USDC"},
        {"amount": 0.1},
        {"payment_ref": "  "},
        {"buyer": ""},
    ],
)
def test_invalid_purchase_details(ledger, locked_match, overrides):
    with pytest.raises(InvalidPurchaseError):
        _buy(ledger, **overrides)


def test_unknown_match(ledger):
    with pytest.raises(MatchNotFoundError):
        _buy(ledger, match_id="NBA:nope")
