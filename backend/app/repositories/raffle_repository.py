"""Raffle persistence helpers."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.models import PayoutStatus, Raffle


class RaffleRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, match_id: str) -> Raffle | None:
        return self._session.get(Raffle, match_id)

    def add(self, raffle: Raffle) -> Raffle:
        self._session.add(raffle)
        self._session.flush()
        return raffle

    def list_raffles(
        self, *, league: str | None = None, limit: int = 20, offset: int = 0
    ) -> tuple[list[Raffle], int]:
        filters = [Raffle.league == league] if league else []
        total = int(
            self._session.execute(select(func.count(Raffle.match_id)).where(*filters)).scalar_one()
        )
        query = (
            select(Raffle)
            .options(selectinload(Raffle.match))
            .where(*filters)
            .order_by(Raffle.created_at.desc(), Raffle.match_id.asc())
            .limit(limit)
            .offset(offset)
        )
        return list(self._session.execute(query).scalars().all()), total

    def list_unpaid(self, *, match_ids: list[str] | None = None) -> list[Raffle]:
        query = select(Raffle).where(Raffle.payout_status != PayoutStatus.PAID.value)
        if match_ids:
            query = query.where(Raffle.match_id.in_(match_ids))
        return list(self._session.execute(query.order_by(Raffle.created_at.asc())).scalars().all())
