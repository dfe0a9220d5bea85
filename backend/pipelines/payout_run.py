"""Operator job that re-attempts prize transfers for drawn raffles."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import init_db
from app.models import PayoutStatus
from app.repositories import RaffleRepository
from app.services.errors import MatchPassError
from app.services.payout import PayoutClient, TreasuryPayoutClient
from app.services.settlement import SettlementEngine
from ingestion.service import session_scope


@dataclass(slots=True)
class PayoutRetrySummary:
    checked: int = 0
    paid: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "paid": self.paid,
            "failed": self.failed,
            "skipped": self.skipped,
            "failures": self.failures,
        }


class PayoutRetryPipeline:
    def __init__(
        self, settings: Settings | None = None, *, payout_client: PayoutClient | None = None
    ) -> None:
        self.settings = settings or get_settings()
        self._owned_client = None if payout_client else TreasuryPayoutClient(settings=self.settings)
        self._client = payout_client or self._owned_client

    def run(self, *, match_ids: Sequence[str] | None = None) -> PayoutRetrySummary:
        init_db()
        summary = PayoutRetrySummary()
        now = datetime.now(timezone.utc)
        with session_scope() as session:
            raffles = RaffleRepository(session).list_unpaid(match_ids=list(match_ids or []))
            targets = [raffle.match_id for raffle in raffles]
            if match_ids:
                missing = sorted(set(match_ids) - set(targets))
                for match_id in missing:
                    summary.skipped += 1
                    logger.warning("No unpaid raffle recorded for {}; skipping", match_id)
            if not targets:
                logger.info("No unpaid raffles found; nothing to retry")
                return summary

            engine = SettlementEngine(session, self.settings, payout_client=self._client)
            for match_id in targets:
                summary.checked += 1
                try:
                    raffle = engine.retry_payout(match_id, now=now)
                except MatchPassError as exc:
                    summary.skipped += 1
                    logger.warning("Skipping payout retry for {}: {}", match_id, exc)
                    continue
                if raffle.payout_status == PayoutStatus.PAID.value:
                    summary.paid += 1
                else:
                    summary.failed += 1
                    summary.failures.append({"match_id": match_id, "reason": raffle.payout_error})

        logger.info(
            "Payout retry finished: checked={}, paid={}, failed={}",
            summary.checked,
            summary.paid,
            summary.failed,
        )
        return summary

    def close(self) -> None:
        if self._owned_client is not None:
            self._owned_client.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Retry failed raffle payouts")
    parser.add_argument(
        "--match-id",
        dest="match_ids",
        action="append",
        help="Retry only this match's raffle (can be provided multiple times)",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args()


def _write_summary(summary: PayoutRetrySummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Payout summary written to {}", path)


def main() -> PayoutRetrySummary:
    args = _parse_args()
    pipeline = PayoutRetryPipeline(get_settings())
    try:
        summary = pipeline.run(match_ids=args.match_ids)
    finally:
        pipeline.close()

    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
