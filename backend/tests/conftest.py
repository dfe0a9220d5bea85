from __future__ import annotations

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.db import Base
from app.models import Match

from factories import build_match

DATA_DIR = Path(__file__).parent / "data"


def load_payload(name: str) -> dict[str, object]:
    return json.loads((DATA_DIR / name).read_text(encoding="utf-8"))


@pytest.fixture
def thesportsdb_payload() -> dict[str, object]:
    return load_payload("thesportsdb_events.json")


@pytest.fixture
def espn_payload() -> dict[str, object]:
    return load_payload("espn_scoreboard.json")


@pytest.fixture
def football_data_payload() -> dict[str, object]:
    return load_payload("football_data_matches.json")


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'matchpass.db'}",
        enabled_leagues="NBA,EPL,LALIGA",
        entry_fee=1.0,
        payout_fraction=0.8,
        token_symbol="CARV",
        payout_api_url="https://treasury.test/transfer",
        payout_api_key="treasury-secret",
        worker_api_key="worker-secret",
        football_data_api_key=None,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=True)
    session = factory()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """Session factory over a file-backed database so independent sessions race for real."""

    engine = create_engine(
        f"sqlite:///{tmp_path/'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 1},
    )
    Base.metadata.create_all(engine)
    try:
        yield sessionmaker(bind=engine, autoflush=True)
    finally:
        engine.dispose()


@pytest.fixture
def make_match(db_session):
    """Insert a cached match and return it."""

    def _make(external_id: str, **fields) -> Match:
        match = build_match(external_id, **fields)
        db_session.add(match)
        db_session.commit()
        return match

    return _make
