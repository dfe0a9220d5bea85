"""Standalone job that writes final scores back onto predictions and raffles."""

from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import init_db
from app.services.reconciler import ReconcileSummary, ResultReconciler
from ingestion.client import SportsFeedClient
from ingestion.service import session_scope


class ResultPipeline:
    """Coordinate result reconciliation independently of the settle slot."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = SportsFeedClient(settings=self.settings)

    def run(self, *, league: str | None = None, limit: int | None = None) -> ReconcileSummary:
        init_db()
        now = datetime.now(timezone.utc)
        logger.info("Starting result sweep: league={}, limit={}", league, limit)
        with session_scope() as session:
            reconciler = ResultReconciler(session, self.settings, feed=self._client)
            return reconciler.reconcile_pending(now=now, league=league, limit=limit)

    def close(self) -> None:
        self._client.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reconcile final match results without running the settlement phase",
    )
    parser.add_argument("--league", type=str, default=None, help="Restrict the sweep to one league")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of matches to check")
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args()


def _write_summary(summary: ReconcileSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Result summary written to {}", path)


def main() -> ReconcileSummary:
    args = _parse_args()
    settings = get_settings()
    pipeline = ResultPipeline(settings)
    try:
        summary = pipeline.run(league=args.league, limit=args.limit)
    finally:
        pipeline.close()

    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
