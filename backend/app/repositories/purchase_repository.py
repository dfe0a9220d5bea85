"""Purchase ledger persistence helpers."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import Purchase


class PurchaseRepository:
    """Encapsulate purchase reads and the single insert path."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, purchase: Purchase) -> Purchase:
        self._session.add(purchase)
        self._session.flush()
        return purchase

    def exists(self, match_id: str, buyer: str) -> bool:
        query = select(func.count(Purchase.purchase_id)).where(
            Purchase.match_id == match_id, Purchase.buyer == buyer
        )
        return bool(self._session.execute(query).scalar_one())

    def lookup(
        self,
        *,
        match_id: str | None = None,
        buyer: str | None = None,
        limit: int | None = None,
    ) -> list[Purchase]:
        query = select(Purchase)
        if match_id:
            query = query.where(Purchase.match_id == match_id)
        if buyer:
            query = query.where(Purchase.buyer == buyer)
        query = query.order_by(Purchase.purchased_at.asc(), Purchase.purchase_id.asc())
        if limit:
            query = query.limit(limit)
        return list(self._session.execute(query).scalars().all())

    def count(self, match_id: str) -> tuple[int, int]:
        """Return ``(distinct buyers, total purchases)`` for a match."""

        query = select(
            func.count(func.distinct(Purchase.buyer)), func.count(Purchase.purchase_id)
        ).where(Purchase.match_id == match_id)
        buyers, total = self._session.execute(query).one()
        return int(buyers or 0), int(total or 0)

    def buyers(self, match_id: str) -> list[str]:
        query = (
            select(Purchase.buyer)
            .where(Purchase.match_id == match_id)
            .distinct()
            .order_by(Purchase.buyer.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def purchased_match_ids(self, *, league: str | None = None) -> set[str]:
        query = select(Purchase.match_id).distinct()
        if league:
            query = query.where(Purchase.match_id.like(f"{league}:%"))
        return set(self._session.execute(query).scalars().all())
