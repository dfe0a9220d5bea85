from __future__ import annotations

from sqlalchemy import create_engine, inspect

from app import db


def test_init_db_creates_schema_and_league_index(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path/'schema.db'}")
    monkeypatch.setattr(db, "engine", engine)

    db.init_db()
    db.init_db()

    inspector = inspect(engine)
    assert {"matches", "selection_cycles", "selection_entries", "raffles", "purchases"} <= set(
        inspector.get_table_names()
    )
    raffle_columns = {column["name"] for column in inspector.get_columns("raffles")}
    assert {"payout_attempts", "payout_error"} <= raffle_columns
    indexes = {index["name"] for index in inspector.get_indexes("matches")}
    assert "ix_matches_league_start" in indexes
    engine.dispose()
