from __future__ import annotations

import json
import random
from contextlib import contextmanager

import pytest

from app.core.config import Settings
from app.models import JobRun, MatchStage, PayoutStatus, Purchase, Raffle
from app.scheduling.windows import Phase
from app.services.errors import PayoutError
from app.services.settlement import SettlementEngine
from pipelines import payout_run, scheduler_run
from pipelines.payout_run import PayoutRetryPipeline
from pipelines.scheduler_run import SchedulerPipeline

from factories import wib


class StubFeed:
    def __init__(self, *args, **kwargs) -> None:
        self.closed = False

    def fetch_fixtures(self, league, *, today=None):
        return []

    def fetch_live_scores(self, leagues, *, today=None):
        return []

    def close(self) -> None:
        self.closed = True


class ScriptedPayoutClient:
    def __init__(self, *, fail: bool) -> None:
        self.fail = fail

    def send(self, wallet: str, amount: float, token: str, *, reference: str) -> str:
        if self.fail:
            raise PayoutError("treasury unavailable")
        return f"0xpaid-{reference}"


@pytest.fixture
def shared_session(db_session, monkeypatch):
    """Route the pipelines' unit of work onto the in-memory test session."""

    @contextmanager
    def _scope():
        yield db_session
        db_session.commit()

    for module in (payout_run, scheduler_run):
        monkeypatch.setattr(module, "session_scope", _scope)
        monkeypatch.setattr(module, "init_db", lambda: None)
    monkeypatch.setattr(scheduler_run, "SportsFeedClient", StubFeed)
    return db_session


@pytest.fixture
def failed_raffle(shared_session, make_match):
    match = make_match(
        "g1",
        start_time=wib(2025, 1, 11, 8),
        status="finished",
        stage=MatchStage.AWAITING_RESULT.value,
        home_score=100,
        away_score=98,
    )
    shared_session.add(
        Purchase(
            purchase_id="p1",
            match_id=match.match_id,
            buyer="0xonly",
            payment_ref="tx1",
            amount=1.0,
            token="CARV",
            purchased_at=wib(2025, 1, 10, 14),
        )
    )
    shared_session.commit()
    SettlementEngine(
        shared_session,
        Settings(entry_fee=1.0, payout_fraction=0.8),
        payout_client=ScriptedPayoutClient(fail=True),
        rng=random.Random(1),
    ).settle(match.match_id, now=wib(2025, 1, 11, 15))
    return shared_session.get(Raffle, match.match_id)


def test_payout_retry_pays_failed_raffles(shared_session, failed_raffle):
    assert failed_raffle.payout_status == PayoutStatus.FAILED.value

    pipeline = PayoutRetryPipeline(Settings(), payout_client=ScriptedPayoutClient(fail=False))
    summary = pipeline.run(match_ids=["NBA:g1", "NBA:unknown"])

    assert summary.to_dict() == {"checked": 1, "paid": 1, "failed": 0, "skipped": 1, "failures": []}
    raffle = shared_session.get(Raffle, "NBA:g1")
    assert raffle.winner == "0xonly"
    assert raffle.payout_ref == "0xpaid-NBA:g1"

    again = pipeline.run()
    assert again.checked == 0


def test_payout_retry_reports_repeat_failures(shared_session, failed_raffle):
    summary = PayoutRetryPipeline(Settings(), payout_client=ScriptedPayoutClient(fail=True)).run()

    assert summary.failed == 1
    assert summary.failures == [{"match_id": "NBA:g1", "reason": "treasury unavailable"}]
    assert shared_session.get(Raffle, "NBA:g1").payout_attempts == 2


def test_scheduler_tick_and_manual_phase(shared_session, tmp_path):
    pipeline = SchedulerPipeline(Settings(enabled_leagues="NBA,EPL,LALIGA"))
    try:
        tick = pipeline.run(now=wib(2025, 1, 10, 11, 1))
        manual = pipeline.run(league="epl", phase=Phase.CLOSE, now=wib(2025, 1, 10, 9))
    finally:
        pipeline.close()

    assert tick.mode == "tick"
    assert tick.ok
    assert [(result.league, result.phase) for result in tick.results] == [("NBA", Phase.SELECT)]
    assert manual.mode == "EPL:close"
    assert manual.results[0].in_slot is False
    assert shared_session.query(JobRun).filter(JobRun.manual.is_(True)).count() == 1

    path = tmp_path / "reports" / "scheduler.json"
    scheduler_run._write_summary(manual, path)
    written = json.loads(path.read_text())
    assert written["mode"] == "EPL:close"
    assert written["results"][0]["phase"] == "close"


def test_scheduler_sweep_mode(shared_session):
    pipeline = SchedulerPipeline(Settings(enabled_leagues="NBA,EPL"))
    try:
        summary = pipeline.run(sweep=True, now=wib(2025, 1, 11, 2))
    finally:
        pipeline.close()

    assert summary.mode == "sweep"
    assert summary.results == []
    assert summary.ok
