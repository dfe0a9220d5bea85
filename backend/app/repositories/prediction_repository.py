"""Prediction persistence helpers."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Prediction


class PredictionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, match_id: str) -> Prediction | None:
        return self._session.get(Prediction, match_id)

    def existing_ids(self, match_ids: Iterable[str]) -> set[str]:
        identifiers = list(dict.fromkeys(match_ids))
        if not identifiers:
            return set()
        rows = self._session.execute(
            select(Prediction.match_id).where(Prediction.match_id.in_(identifiers))
        ).scalars()
        return set(rows)

    def add(self, prediction: Prediction) -> Prediction:
        self._session.add(prediction)
        self._session.flush()
        return prediction
