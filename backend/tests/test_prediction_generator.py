from __future__ import annotations

import random

import pytest

from app.core.config import Settings
from app.models import DRAW, Prediction, PredictionSource
from app.services.narrative import NarrativeContext
from app.services.prediction_generator import (
    BASKETBALL_MODEL,
    SOCCER_MODEL,
    PredictionGenerator,
    simulate_result,
)

from factories import wib

NOW = wib(2025, 1, 10, 12)


class RecordingNarrator:
    def __init__(self) -> None:
        self.contexts: list[NarrativeContext] = []

    def generate(self, context: NarrativeContext) -> str:
        self.contexts.append(context)
        return f"{context.predicted_winner} by the model"


def _generator(db_session, narrator=None, seed: int = 3) -> PredictionGenerator:
    return PredictionGenerator(db_session, Settings(), rng=random.Random(seed), narrator=narrator)


@pytest.mark.parametrize("seed", range(25))
def test_basketball_results_never_draw(seed):
    result = simulate_result(BASKETBALL_MODEL, "Boston Celtics", "Miami Heat", random.Random(seed))

    assert result.winner in {"Boston Celtics", "Miami Heat"}
    assert result.home_score != result.away_score
    assert result.over_under is None
    assert 55 <= result.confidence <= 75
    assert result.total == result.home_score + result.away_score


@pytest.mark.parametrize("seed", range(25))
def test_soccer_results_are_consistent(seed):
    result = simulate_result(SOCCER_MODEL, "Arsenal", "Chelsea", random.Random(seed))

    if result.home_score == result.away_score:
        assert result.winner == DRAW
    elif result.home_score > result.away_score:
        assert result.winner == "Arsenal"
    else:
        assert result.winner == "Chelsea"
    assert result.over_under == ("Over" if result.total > 2 else "Under")
    assert 58 <= result.confidence <= 77


def test_generate_for_locked_is_generate_once(db_session, make_match):
    make_match("g1", start_time=wib(2025, 1, 11, 8))
    make_match("g2", home="Los Angeles Lakers", away="Denver Nuggets", start_time=wib(2025, 1, 11, 9))
    narrator = RecordingNarrator()
    generator = _generator(db_session, narrator)

    created = generator.generate_for_locked("NBA", ["NBA:g1", "NBA:g2"], bypass_scope_check=True, now=NOW)
    first_text = db_session.get(Prediction, "NBA:g1").full_text

    again = generator.generate_for_locked("NBA", ["NBA:g1", "NBA:g2"], bypass_scope_check=True, now=NOW)

    assert created == 2
    assert again == 0
    assert len(narrator.contexts) == 2
    assert db_session.query(Prediction).count() == 2
    assert db_session.get(Prediction, "NBA:g1").full_text == first_text


def test_prediction_text_carries_the_rendered_fields(db_session, make_match):
    make_match("m1", league="EPL", home="Arsenal", away="Chelsea", start_time=wib(2025, 1, 12, 3))

    _generator(db_session).generate_for_locked("EPL", ["EPL:m1"], now=NOW)

    prediction = db_session.get(Prediction, "EPL:m1")
    assert prediction.source == PredictionSource.SCHEDULED.value
    assert prediction.predicted_score == f"{prediction.predicted_home_score}-{prediction.predicted_away_score}"
    for label in ("Predicted Score:", "Total Score:", "Predicted Winner:", "Over/Under 2.5:", "Confidence:"):
        assert label in prediction.full_text
    assert prediction.narrative in prediction.full_text


def test_dedicated_league_requires_its_own_job(db_session, make_match):
    make_match("g1", start_time=wib(2025, 1, 11, 8))
    generator = _generator(db_session)

    assert generator.generate_for_locked("NBA", ["NBA:g1"], now=NOW) == 0
    assert db_session.get(Prediction, "NBA:g1") is None
    assert generator.generate_for_locked("NBA", ["NBA:g1"], bypass_scope_check=True, now=NOW) == 1


def test_cross_league_and_missing_matches_are_skipped(db_session, make_match):
    make_match("m1", league="EPL", home="Arsenal", away="Chelsea", start_time=wib(2025, 1, 12, 3))

    created = _generator(db_session).generate_for_locked("LALIGA", ["EPL:m1", "LALIGA:missing"], now=NOW)

    assert created == 0
    assert db_session.query(Prediction).count() == 0


def test_fallback_returns_existing_prediction(db_session, make_match):
    match = make_match("g1", start_time=wib(2025, 1, 11, 8))
    generator = _generator(db_session)

    fallback = generator.generate_fallback(match, now=NOW)
    again = generator.generate_fallback(match, now=NOW)

    assert fallback.source == PredictionSource.FALLBACK.value
    assert again.match_id == fallback.match_id
    assert again.full_text == fallback.full_text
    assert db_session.query(Prediction).count() == 1
