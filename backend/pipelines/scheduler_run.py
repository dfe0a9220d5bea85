"""Timer entry point that runs the per-league scheduled phases."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dateutil import parser as date_parser
from loguru import logger

from app.core.config import Settings, get_settings
from app.db import init_db
from app.scheduling import Phase
from app.scheduling.dispatcher import Dispatcher, PhaseResult
from ingestion.client import SportsFeedClient
from ingestion.service import session_scope


@dataclass(slots=True)
class SchedulerSummary:
    invoked_at: datetime
    mode: str
    results: list[PhaseResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoked_at": self.invoked_at.isoformat(),
            "mode": self.mode,
            "ok": self.ok,
            "results": [result.to_dict() for result in self.results],
        }


class SchedulerPipeline:
    """Own the feed client and session for one scheduler invocation."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._feed = SportsFeedClient(settings=self.settings)

    def run(
        self,
        *,
        league: str | None = None,
        phase: Phase | None = None,
        now: datetime | None = None,
        sweep: bool = False,
    ) -> SchedulerSummary:
        init_db()
        now = now or datetime.now(timezone.utc)
        mode = "tick" if league is None else f"{league.upper()}:{phase.value}"
        if sweep:
            mode = "sweep"
        summary = SchedulerSummary(invoked_at=now, mode=mode)

        with session_scope() as session:
            dispatcher = Dispatcher(session, self.settings, feed=self._feed)
            try:
                if sweep:
                    generated = dispatcher.sweep_predictions(now)
                    logger.info("Background prediction sweep generated {}", generated)
                elif league is None:
                    summary.results.extend(dispatcher.tick(now))
                else:
                    summary.results.append(dispatcher.run_phase(league, phase, now, manual=True))
            finally:
                dispatcher.close()

        for result in summary.results:
            logger.info(
                "{} {}: ok={} in_slot={} {}",
                result.league,
                result.phase.value,
                result.ok,
                result.in_slot,
                result.message,
            )
        return summary

    def close(self) -> None:
        self._feed.close()


def _parse_now(value: str) -> datetime:
    parsed = date_parser.isoparse(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the league selection, prediction, close and settlement phases",
    )
    parser.add_argument(
        "--tick",
        action="store_true",
        help="Run every phase whose automation slot is active (default when no league is given)",
    )
    parser.add_argument("--league", type=str, default=None, help="League code, e.g. NBA")
    parser.add_argument(
        "--phase",
        type=Phase,
        choices=list(Phase),
        default=None,
        help="Phase to run for --league",
    )
    parser.add_argument(
        "--sweep-predictions",
        action="store_true",
        help="Generate missing predictions for non-dedicated leagues",
    )
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="Evaluate windows and slots at this ISO-8601 timestamp (UTC when naive)",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    args = parser.parse_args()
    if (args.league is None) != (args.phase is None):
        parser.error("--league and --phase must be given together")
    if args.tick and args.league:
        parser.error("--tick cannot be combined with --league")
    return args


def _write_summary(summary: SchedulerSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Scheduler summary written to {}", path)


def main() -> SchedulerSummary:
    args = _parse_args()
    settings = get_settings()
    pipeline = SchedulerPipeline(settings)
    try:
        summary = pipeline.run(
            league=args.league,
            phase=args.phase,
            now=args.now,
            sweep=args.sweep_predictions,
        )
    finally:
        pipeline.close()

    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
