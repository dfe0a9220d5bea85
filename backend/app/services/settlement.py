"""Raffle draw and payout for finished matches.

Drawing and paying are separate steps. The raffle row (winner included) is
committed before the payout is attempted, and the row's primary key on
``match_id`` guarantees that a second draw for the same match fails at the
storage layer. A failed payout leaves the draw intact with
``payout_status=failed``; ``retry_payout`` re-runs only the transfer.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx
from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.models import MatchStage, MatchStatus, PayoutStatus, Raffle
from app.repositories import MatchRepository, PurchaseRepository, RaffleRepository

from .errors import PayoutAlreadySettledError, PayoutError, RaffleNotFoundError
from .payout import PayoutClient


class SettlementStatus(str, Enum):
    SETTLED = "settled"
    EXISTS = "exists"
    NOT_FOUND = "not_found"
    NOT_FINISHED = "not_finished"
    NO_PURCHASES = "no_purchases"


@dataclass(slots=True)
class SettlementOutcome:
    match_id: str
    status: SettlementStatus
    raffle: Raffle | None = None
    conflict: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "match_id": self.match_id,
            "status": self.status.value,
            "conflict": self.conflict,
        }
        if self.raffle is not None:
            payload.update(
                {
                    "winner": self.raffle.winner,
                    "prize_pool": float(self.raffle.prize_pool),
                    "winner_payout": float(self.raffle.winner_payout),
                    "payout_status": self.raffle.payout_status,
                    "payout_ref": self.raffle.payout_ref,
                }
            )
        return payload


@dataclass(slots=True)
class SettlementSummary:
    league: str
    checked: int = 0
    settled: int = 0
    paid: int = 0
    payout_failed: int = 0
    conflicts: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "league": self.league,
            "checked": self.checked,
            "settled": self.settled,
            "paid": self.paid,
            "payout_failed": self.payout_failed,
            "conflicts": self.conflicts,
            "failures": self.failures,
        }


def compute_prize(buyer_count: int, entry_fee: float, payout_fraction: float) -> tuple[float, float]:
    """Return ``(prize_pool, winner_payout)`` rounded to token precision."""

    prize_pool = round(buyer_count * entry_fee, 6)
    winner_payout = round(prize_pool * payout_fraction, 6)
    return prize_pool, winner_payout


class SettlementEngine:
    """Draw raffles and pay winners through a caller-owned payout client."""

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        *,
        payout_client: PayoutClient,
        rng: random.Random | None = None,
    ) -> None:
        self._session = session
        self.settings = settings or get_settings()
        self._payouts = payout_client
        self._rng = rng or random.Random()
        self._matches = MatchRepository(session)
        self._purchases = PurchaseRepository(session)
        self._raffles = RaffleRepository(session)

    def settle(self, match_id: str, *, now: datetime | None = None) -> SettlementOutcome:
        now = now or datetime.now(timezone.utc)
        existing = self._raffles.get(match_id)
        if existing is not None:
            return SettlementOutcome(match_id, SettlementStatus.EXISTS, raffle=existing, conflict=True)

        match = self._matches.get(match_id)
        if match is None:
            return SettlementOutcome(match_id, SettlementStatus.NOT_FOUND)
        if match.status != MatchStatus.FINISHED.value:
            return SettlementOutcome(match_id, SettlementStatus.NOT_FINISHED)

        entrants = self._purchases.buyers(match_id)
        if not entrants:
            return SettlementOutcome(match_id, SettlementStatus.NO_PURCHASES)

        buyer_count, total_entries = self._purchases.count(match_id)
        winner = self._rng.choice(entrants)
        prize_pool, winner_payout = compute_prize(
            buyer_count, self.settings.entry_fee, self.settings.payout_fraction
        )
        raffle = Raffle(
            match_id=match_id,
            league=match.league,
            entrants=entrants,
            winner=winner,
            buyer_count=buyer_count,
            total_entries=total_entries,
            entry_fee=self.settings.entry_fee,
            prize_pool=prize_pool,
            payout_fraction=self.settings.payout_fraction,
            winner_payout=winner_payout,
            token=self.settings.token_symbol,
            payout_status=PayoutStatus.PENDING.value,
            payout_attempts=0,
            created_at=now,
        )
        prediction = match.prediction
        if prediction is not None and prediction.actual_winner is not None:
            raffle.actual_winner = prediction.actual_winner
            raffle.actual_score = prediction.actual_score
            raffle.is_correct = prediction.is_correct
            raffle.finalized_at = prediction.finalized_at
        match.stage = MatchStage.FINALIZED.value

        try:
            self._raffles.add(raffle)
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            logger.warning("Raffle for {} was drawn concurrently; keeping the existing draw", match_id)
            return SettlementOutcome(
                match_id,
                SettlementStatus.EXISTS,
                raffle=self._raffles.get(match_id),
                conflict=True,
            )

        logger.info(
            "Drew raffle for {}: winner={} buyers={} payout={} {}",
            match_id,
            winner,
            buyer_count,
            winner_payout,
            self.settings.token_symbol,
        )
        self._pay(raffle, now=now)
        return SettlementOutcome(match_id, SettlementStatus.SETTLED, raffle=raffle)

    def settle_league(self, league: str, *, now: datetime | None = None) -> SettlementSummary:
        now = now or datetime.now(timezone.utc)
        code = league.upper()
        summary = SettlementSummary(league=code)
        for match_id in self._matches.list_settleable_ids(league=code):
            summary.checked += 1
            try:
                outcome = self.settle(match_id, now=now)
            except Exception as exc:
                self._session.rollback()
                logger.exception("Settlement failed for {}", match_id)
                summary.failures.append({"match_id": match_id, "reason": str(exc)})
                continue
            if outcome.conflict:
                summary.conflicts += 1
            if outcome.status is SettlementStatus.SETTLED and outcome.raffle is not None:
                summary.settled += 1
                if outcome.raffle.payout_status == PayoutStatus.PAID.value:
                    summary.paid += 1
                else:
                    summary.payout_failed += 1
        logger.info(
            "Settlement for {} finished: checked={}, settled={}, payout_failed={}",
            code,
            summary.checked,
            summary.settled,
            summary.payout_failed,
        )
        return summary

    def retry_payout(self, match_id: str, *, now: datetime | None = None) -> Raffle:
        """Re-attempt only the transfer for an already drawn raffle."""

        raffle = self._raffles.get(match_id)
        if raffle is None:
            raise RaffleNotFoundError(match_id)
        if raffle.payout_status == PayoutStatus.PAID.value:
            raise PayoutAlreadySettledError(
                f"Raffle for '{match_id}' was already paid ({raffle.payout_ref})"
            )
        self._pay(raffle, now=now or datetime.now(timezone.utc))
        return raffle

    def _pay(self, raffle: Raffle, *, now: datetime) -> None:
        raffle.payout_attempts = (raffle.payout_attempts or 0) + 1
        try:
            reference = self._payouts.send(
                raffle.winner,
                float(raffle.winner_payout),
                raffle.token,
                reference=raffle.match_id,
            )
        except (PayoutError, httpx.HTTPError) as exc:
            logger.warning("Payout for {} failed: {}", raffle.match_id, exc)
            raffle.payout_status = PayoutStatus.FAILED.value
            raffle.payout_ref = None
            raffle.payout_error = str(exc)
        else:
            raffle.payout_status = PayoutStatus.PAID.value
            raffle.payout_ref = reference
            raffle.payout_error = None
            raffle.paid_at = now
            logger.info("Paid raffle {} to {} ({})", raffle.match_id, raffle.winner, reference)
        self._session.commit()
