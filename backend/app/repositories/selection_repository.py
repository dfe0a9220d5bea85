"""Selection cycle persistence with merge-append semantics."""

from __future__ import annotations

from datetime import date, datetime
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.models import SelectionCycle, SelectionEntry


class SelectionConflict(Exception):
    """Raised when a concurrent writer advanced the cycle first."""


class SelectionRepository:
    """Encapsulate reads and compare-and-swap appends of locked match sets."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Cycles

    def get_cycle(self, league: str, cycle_date: date) -> SelectionCycle | None:
        query = (
            select(SelectionCycle)
            .options(selectinload(SelectionCycle.entries))
            .where(SelectionCycle.league == league, SelectionCycle.cycle_date == cycle_date)
            .execution_options(populate_existing=True)
        )
        return self._session.execute(query).scalar_one_or_none()

    def get_or_create_cycle(self, league: str, cycle_date: date, *, now: datetime) -> SelectionCycle:
        """Load the cycle, creating it in its own transaction when missing."""

        cycle = self.get_cycle(league, cycle_date)
        if cycle is not None:
            return cycle

        self._session.add(
            SelectionCycle(
                league=league,
                cycle_date=cycle_date,
                version=0,
                locked_at=now,
                updated_at=now,
            )
        )
        try:
            self._session.commit()
        except IntegrityError:
            # Another invocation created the same cycle first.
            self._session.rollback()
        cycle = self.get_cycle(league, cycle_date)
        if cycle is None:
            raise RuntimeError(f"Selection cycle {league}/{cycle_date} could not be created")
        return cycle

    def list_unclosed_cycles(self, league: str, *, through: date) -> list[SelectionCycle]:
        query = (
            select(SelectionCycle)
            .options(selectinload(SelectionCycle.entries))
            .where(
                SelectionCycle.league == league,
                SelectionCycle.closed_at.is_(None),
                SelectionCycle.cycle_date <= through,
            )
            .order_by(SelectionCycle.cycle_date.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def mark_closed(self, cycle: SelectionCycle, *, closed_at: datetime) -> None:
        cycle.closed_at = closed_at

    # ------------------------------------------------------------------
    # Entries

    def selected_match_ids(self, league: str) -> set[str]:
        rows = self._session.execute(
            select(SelectionEntry.match_id).where(SelectionEntry.league == league)
        ).scalars()
        return set(rows)

    def locked_ids(self, league: str, cycle_date: date) -> list[str]:
        query = (
            select(SelectionEntry.match_id)
            .join(SelectionCycle, SelectionCycle.cycle_id == SelectionEntry.cycle_id)
            .where(SelectionCycle.league == league, SelectionCycle.cycle_date == cycle_date)
            .order_by(SelectionEntry.position.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def append_entries(
        self,
        cycle: SelectionCycle,
        match_ids: Sequence[str],
        *,
        expected_version: int,
        now: datetime,
    ) -> int:
        """Append ``match_ids`` to the cycle if nobody else wrote since ``expected_version``.

        The version bump and the entry inserts are flushed together; callers
        commit or roll back. Raises ``SelectionConflict`` on a lost race.
        """

        if not match_ids:
            return 0

        result = self._session.execute(
            update(SelectionCycle)
            .where(
                SelectionCycle.cycle_id == cycle.cycle_id,
                SelectionCycle.version == expected_version,
            )
            .values(version=expected_version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise SelectionConflict(
                f"Cycle {cycle.league}/{cycle.cycle_date} changed since version {expected_version}"
            )

        start_position = len(cycle.entries)
        for offset, match_id in enumerate(match_ids):
            self._session.add(
                SelectionEntry(
                    cycle_id=cycle.cycle_id,
                    league=cycle.league,
                    match_id=match_id,
                    position=start_position + offset,
                    selected_at=now,
                )
            )
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise SelectionConflict(
                f"Match already locked while appending to {cycle.league}/{cycle.cycle_date}"
            ) from exc
        return len(match_ids)
