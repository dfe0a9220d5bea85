"""Job run bookkeeping for scheduled and manual worker invocations."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models import JobFailure, JobRun


class JobRepository:
    """Encapsulate job run persistence logic."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create_run(
        self,
        *,
        run_id: str,
        league: str | None,
        phase: str,
        manual: bool,
        started_at: datetime,
    ) -> JobRun:
        record = JobRun(
            run_id=run_id,
            league=league,
            phase=phase,
            manual=manual,
            started_at=started_at,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def get_run(self, run_id: str) -> JobRun | None:
        return self._session.get(JobRun, run_id)

    def record_failure(self, run_id: str, *, match_id: str | None, reason: str, logged_at: datetime) -> JobFailure:
        failure = JobFailure(run_id=run_id, match_id=match_id, reason=reason, logged_at=logged_at)
        self._session.add(failure)
        return failure

    def finalize_run(
        self,
        run: JobRun,
        *,
        status: str,
        message: str | None,
        counts: dict[str, Any] | None,
        finished_at: datetime,
    ) -> None:
        run.status = status
        run.message = message
        run.counts = counts
        run.finished_at = finished_at

    def recent_runs(self, *, limit: int = 10) -> list[JobRun]:
        query = (
            select(JobRun)
            .options(selectinload(JobRun.failures))
            .order_by(JobRun.started_at.desc())
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())
