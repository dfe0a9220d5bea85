from __future__ import annotations

import random

import pytest

from app.core.config import Settings
from app.models import ArchivedMatch, JobRun, Match, MatchStage, Prediction, Purchase, Raffle
from app.scheduling.dispatcher import Dispatcher
from app.scheduling.windows import Phase
from app.services.errors import UnknownLeagueError
from ingestion.normalize import normalize_match

from factories import wib

SELECT_AT = wib(2025, 1, 10, 11)
SHOPPING = wib(2025, 1, 10, 14)
CLOSE_AT = wib(2025, 1, 11, 6, 30)
SETTLE_AT = wib(2025, 1, 11, 15)


class FixtureFeed:
    def __init__(self, snapshots=None, *, error: Exception | None = None) -> None:
        self.snapshots = snapshots or []
        self.error = error
        self.requested: list[str] = []

    def fetch_fixtures(self, league, *, today=None):
        self.requested.append(league.code)
        if self.error is not None:
            raise self.error
        return list(self.snapshots)

    def fetch_live_scores(self, leagues, *, today=None):
        return []


class FakePayoutClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, float, str, str]] = []

    def send(self, wallet: str, amount: float, token: str, *, reference: str) -> str:
        self.calls.append((wallet, amount, token, reference))
        return f"0xtx{len(self.calls)}"


@pytest.fixture
def settings() -> Settings:
    return Settings(enabled_leagues="NBA,EPL,LALIGA", entry_fee=1.0, payout_fraction=0.8)


def _dispatcher(db_session, settings, *, feed=None, payout_client=None) -> Dispatcher:
    return Dispatcher(
        db_session,
        settings,
        feed=feed,
        payout_client=payout_client or FakePayoutClient(),
        rng=random.Random(4),
    )


def test_select_refreshes_fixtures_and_records_job_run(db_session, settings, thesportsdb_payload):
    snapshots = [
        snapshot
        for snapshot in (normalize_match(raw, league="NBA") for raw in thesportsdb_payload["events"])
        if snapshot is not None
    ]
    feed = FixtureFeed(snapshots)

    result = _dispatcher(db_session, settings, feed=feed).run_phase("nba", Phase.SELECT, SELECT_AT)

    assert result.ok
    assert result.in_slot
    assert result.league == "NBA"
    assert feed.requested == ["NBA"]
    assert result.counts["refreshed"] == 3
    assert result.counts["locked"] == ["NBA:2105001"]
    assert result.message == "Locked 1 NBA matches, 2 short of minimum 3"

    run = db_session.get(JobRun, result.run_id)
    assert run.status == "completed"
    assert run.phase == "select"
    assert run.league == "NBA"
    assert run.manual is False
    assert run.counts["shortfall"] == 2
    assert run.finished_at is not None


def test_out_of_slot_phase_still_runs(db_session, settings, make_match):
    make_match("g1", start_time=wib(2025, 1, 11, 8))
    dispatcher = _dispatcher(db_session, settings)
    dispatcher.run_phase("NBA", Phase.SELECT, SELECT_AT)

    result = dispatcher.run_phase("NBA", "predict", SHOPPING, manual=True)

    assert result.ok
    assert result.in_slot is False
    assert result.counts == {"cycle_date": "2025-01-10", "locked": 1, "generated": 1}
    assert db_session.get(Prediction, "NBA:g1") is not None
    assert db_session.get(JobRun, result.run_id).manual is True


def test_unknown_league_is_rejected(db_session, settings):
    with pytest.raises(UnknownLeagueError):
        _dispatcher(db_session, settings).run_phase("NHL", Phase.SELECT, SELECT_AT)
    assert db_session.query(JobRun).count() == 0


def test_failed_phase_is_recorded(db_session, settings):
    feed = FixtureFeed(error=RuntimeError("feed exploded"))

    result = _dispatcher(db_session, settings, feed=feed).run_phase("NBA", Phase.SELECT, SELECT_AT)

    assert result.ok is False
    assert result.message == "select failed: feed exploded"
    run = db_session.get(JobRun, result.run_id)
    assert run.status == "failed"


def test_close_archives_cycle_and_awaits_results(db_session, settings, make_match):
    make_match("g1", start_time=wib(2025, 1, 11, 8))
    make_match("g2", home="Los Angeles Lakers", away="Denver Nuggets", start_time=wib(2025, 1, 11, 10))
    dispatcher = _dispatcher(db_session, settings)
    dispatcher.run_phase("NBA", Phase.SELECT, SELECT_AT)
    dispatcher.run_phase("NBA", Phase.PREDICT, wib(2025, 1, 10, 12))

    closed = dispatcher.run_phase("NBA", Phase.CLOSE, CLOSE_AT)
    again = dispatcher.run_phase("NBA", Phase.CLOSE, CLOSE_AT)

    assert closed.in_slot
    assert closed.counts == {"cycles_closed": 1, "archived": 2, "awaiting_result": 2}
    assert again.counts["cycles_closed"] == 0
    archived = db_session.query(ArchivedMatch).order_by(ArchivedMatch.match_id).all()
    assert [row.match_id for row in archived] == ["NBA:g1", "NBA:g2"]
    assert all(row.prediction_text for row in archived)
    assert {match.stage for match in db_session.query(Match)} == {MatchStage.AWAITING_RESULT.value}


def test_settle_phase_draws_and_pays(db_session, settings, make_match):
    match = make_match(
        "g1",
        start_time=wib(2025, 1, 11, 8),
        status="finished",
        stage=MatchStage.AWAITING_RESULT.value,
        home_score=101,
        away_score=99,
    )
    for index in range(2):
        db_session.add(
            Purchase(
                purchase_id=f"p{index}",
                match_id=match.match_id,
                buyer=f"0xbuyer{index}",
                payment_ref=f"tx{index}",
                amount=1.0,
                token="CARV",
                purchased_at=SHOPPING,
            )
        )
    db_session.commit()
    payout_client = FakePayoutClient()

    result = _dispatcher(db_session, settings, payout_client=payout_client).run_phase(
        "NBA", Phase.SETTLE, SETTLE_AT
    )

    assert result.ok
    assert result.counts["raffles_settled"] == 1
    assert result.counts["payouts_paid"] == 1
    assert result.counts["payouts_failed"] == 0
    raffle = db_session.get(Raffle, "NBA:g1")
    assert float(raffle.winner_payout) == pytest.approx(1.6)
    assert payout_client.calls[0][1] == pytest.approx(1.6)


def test_tick_runs_only_active_slots(db_session, settings):
    dispatcher = _dispatcher(db_session, settings)

    morning = dispatcher.tick(wib(2025, 1, 10, 11, 2))
    settle = dispatcher.tick(SETTLE_AT)
    idle = dispatcher.tick(wib(2025, 1, 10, 9, 45))

    assert [(result.league, result.phase) for result in morning] == [("NBA", Phase.SELECT)]
    assert sorted(result.league for result in settle) == ["EPL", "LALIGA", "NBA"]
    assert all(result.phase is Phase.SETTLE for result in settle)
    assert idle == []
    assert db_session.query(JobRun).count() == 4


def test_sweep_skips_dedicated_leagues(db_session, settings, make_match):
    make_match("nba", start_time=wib(2025, 1, 11, 8))
    make_match("m1", league="EPL", home="Arsenal", away="Chelsea", start_time=wib(2025, 1, 13, 3))
    dispatcher = _dispatcher(db_session, settings)
    dispatcher.run_phase("NBA", Phase.SELECT, SELECT_AT)
    dispatcher.run_phase("EPL", Phase.SELECT, wib(2025, 1, 10, 23))

    generated = dispatcher.sweep_predictions(wib(2025, 1, 11, 2))

    assert generated == {"EPL": 1, "LALIGA": 0}
    assert db_session.get(Prediction, "EPL:m1") is not None
    assert db_session.get(Prediction, "NBA:nba") is None
