"""One purchase per (match, buyer), plus buyability rules for the storefront."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.models import Match, MatchStatus, Prediction, Purchase
from app.repositories import MatchRepository, PurchaseRepository, SelectionRepository
from app.scheduling.windows import WindowEvaluator, ensure_utc, evaluator_for

from .errors import (
    AlreadyPurchasedError,
    InvalidPurchaseError,
    MatchNotBuyableError,
    MatchNotFoundError,
)
from .prediction_generator import PredictionGenerator


@dataclass(slots=True)
class PurchaseCount:
    match_id: str
    buyer_count: int
    total_purchases: int


@dataclass(slots=True)
class MatchVisibility:
    buyable: bool
    buyable_from: datetime
    window_open: bool
    locked: bool
    cycle_date: date


@dataclass(slots=True)
class PurchaseReceipt:
    purchase: Purchase
    prediction: Prediction


def normalize_buyer(buyer: str) -> str:
    return buyer.strip().lower()


class PurchaseLedger:
    """Record purchases and answer buyer/visibility questions."""

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        *,
        generator: PredictionGenerator | None = None,
    ) -> None:
        self._session = session
        self.settings = settings or get_settings()
        self._generator = generator or PredictionGenerator(session, self.settings)
        self._matches = MatchRepository(session)
        self._purchases = PurchaseRepository(session)
        self._selections = SelectionRepository(session)
        self._evaluators: dict[str, WindowEvaluator] = {}
        self._locked_cache: dict[tuple[str, date], set[str]] = {}

    # ------------------------------------------------------------------
    # Visibility

    def _evaluator(self, league: str) -> WindowEvaluator:
        if league not in self._evaluators:
            self._evaluators[league] = evaluator_for(league, self.settings)
        return self._evaluators[league]

    def _locked_ids(self, league: str, cycle_date: date) -> set[str]:
        key = (league, cycle_date)
        if key not in self._locked_cache:
            self._locked_cache[key] = set(self._selections.locked_ids(league, cycle_date))
        return self._locked_cache[key]

    def buyable_from(self, match: Match) -> datetime:
        lead = self.settings.league_config(match.league).purchase_lead
        return ensure_utc(match.start_time) - timedelta(hours=lead)

    def visibility(self, match: Match, now: datetime) -> MatchVisibility:
        now = ensure_utc(now)
        evaluator = self._evaluator(match.league)
        cycle_date = evaluator.cycle_date(now)
        window_open = evaluator.is_open(now)
        locked = match.match_id in self._locked_ids(match.league, cycle_date)
        buyable_from = self.buyable_from(match)
        buyable = (
            window_open
            and locked
            and match.status == MatchStatus.SCHEDULED.value
            and buyable_from <= now < ensure_utc(match.start_time)
        )
        return MatchVisibility(
            buyable=buyable,
            buyable_from=buyable_from,
            window_open=window_open,
            locked=locked,
            cycle_date=cycle_date,
        )

    # ------------------------------------------------------------------
    # Mutations

    def buy(
        self,
        match_id: str,
        buyer: str,
        payment_ref: str,
        amount: float,
        token: str,
        *,
        now: datetime | None = None,
    ) -> PurchaseReceipt:
        now = ensure_utc(now or datetime.now(timezone.utc))
        buyer_key = normalize_buyer(buyer or "")
        if not buyer_key:
            raise InvalidPurchaseError("Buyer address is required")
        if not payment_ref or not payment_ref.strip():
            raise InvalidPurchaseError("Payment reference is required")
        if token.strip().upper() != self.settings.token_symbol.upper():
            raise InvalidPurchaseError(
                f"Purchases must be paid in {self.settings.token_symbol}"
            )
        if amount < self.settings.entry_fee:
            raise InvalidPurchaseError(
                f"Amount {amount} is below the entry fee {self.settings.entry_fee}"
            )

        match = self._matches.get(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)

        visibility = self.visibility(match, now)
        if not visibility.buyable:
            if not visibility.window_open:
                reason = "purchase window is closed"
            elif not visibility.locked:
                reason = "match is not in the current selection"
            else:
                reason = "match is not open for purchase"
            raise MatchNotBuyableError(f"Match '{match_id}' is not buyable: {reason}")

        if self._purchases.exists(match_id, buyer_key):
            raise AlreadyPurchasedError(match_id, buyer_key)

        prediction = self._generator.generate_fallback(match, now=now)

        purchase = Purchase(
            purchase_id=str(uuid.uuid4()),
            match_id=match_id,
            buyer=buyer_key,
            payment_ref=payment_ref.strip(),
            amount=amount,
            token=self.settings.token_symbol,
            prediction_snapshot=prediction.full_text,
            purchased_at=now,
        )
        try:
            self._purchases.add(purchase)
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise AlreadyPurchasedError(match_id, buyer_key) from exc

        logger.info("Recorded purchase of {} by {}", match_id, buyer_key)
        return PurchaseReceipt(purchase=purchase, prediction=prediction)

    # ------------------------------------------------------------------
    # Queries

    def count(self, match_id: str) -> PurchaseCount:
        buyers, total = self._purchases.count(match_id)
        return PurchaseCount(match_id=match_id, buyer_count=buyers, total_purchases=total)

    def lookup(self, *, match_id: str | None = None, buyer: str | None = None) -> list[Purchase]:
        return self._purchases.lookup(
            match_id=match_id, buyer=normalize_buyer(buyer) if buyer else None
        )
