from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Sequence

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.db import SessionLocal
from app.repositories import MatchRepository
from app.scheduling.windows import evaluator_for

from .client import SportsFeedClient


@contextmanager
def session_scope() -> Session:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ingest_league_matches(
    leagues: Sequence[str] | None = None,
    *,
    client: SportsFeedClient | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Refresh the match cache from the feeds for each league."""

    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    codes = [code.upper() for code in leagues] if leagues else list(settings.enabled_leagues)

    counts: dict[str, int] = {}
    owns_client = client is None
    feed = client or SportsFeedClient(settings=settings)
    try:
        with session_scope() as session:
            repo = MatchRepository(session)
            for code in codes:
                config = settings.league_config(code)
                today = evaluator_for(config, settings).local(now).date()
                snapshots = feed.fetch_fixtures(config, today=today)
                counts[config.code] = repo.upsert_snapshots(snapshots, synced_at=now)
                logger.info("Ingested {} {} matches", counts[config.code], config.code)
    finally:
        if owns_client:
            feed.close()
    return counts
