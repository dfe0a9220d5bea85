"""Summary analytics for the operator dashboard."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import JobFailure, JobRun, Match, MatchStage, PayoutStatus, Prediction, Purchase, Raffle
from app.schemas import JobRunSummary, LeagueOverview, PayoutStatusCount, PlatformOverview


def _accuracy(correct: int, resolved: int) -> float | None:
    if resolved <= 0:
        return None
    return round(correct / resolved, 4)


class OverviewService:
    """Calculate aggregate platform metrics for dashboard views."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def platform_overview(self) -> PlatformOverview:
        total_matches = self._scalar(select(func.count(Match.match_id)))
        locked_matches = self._scalar(
            select(func.count(Match.match_id)).where(Match.stage == MatchStage.LOCKED.value)
        )
        total_predictions = self._scalar(select(func.count(Prediction.match_id)))
        resolved_predictions = self._scalar(
            select(func.count(Prediction.match_id)).where(Prediction.is_correct.is_not(None))
        )
        correct_predictions = self._scalar(
            select(func.count(Prediction.match_id)).where(Prediction.is_correct.is_(True))
        )
        total_purchases = self._scalar(select(func.count(Purchase.purchase_id)))
        distinct_buyers = self._scalar(select(func.count(func.distinct(Purchase.buyer))))
        total_raffles = self._scalar(select(func.count(Raffle.match_id)))

        status_rows = self._session.execute(
            select(Raffle.payout_status, func.count(Raffle.match_id)).group_by(Raffle.payout_status)
        ).all()
        total_prize_pool = self._decimal(select(func.coalesce(func.sum(Raffle.prize_pool), 0)))
        total_paid_out = self._decimal(
            select(func.coalesce(func.sum(Raffle.winner_payout), 0)).where(
                Raffle.payout_status == PayoutStatus.PAID.value
            )
        )

        recent_job_runs = self._load_recent_job_runs(limit=10)
        latest_job_run = recent_job_runs[0] if recent_job_runs else None

        return PlatformOverview(
            generated_at=datetime.now(timezone.utc),
            total_matches=total_matches,
            locked_matches=locked_matches,
            total_predictions=total_predictions,
            resolved_predictions=resolved_predictions,
            correct_predictions=correct_predictions,
            accuracy=_accuracy(correct_predictions, resolved_predictions),
            total_purchases=total_purchases,
            distinct_buyers=distinct_buyers,
            total_raffles=total_raffles,
            payout_status=self._normalize_payout_status(status_rows),
            total_prize_pool=total_prize_pool,
            total_paid_out=total_paid_out,
            leagues=self._summarize_leagues(),
            latest_job_run=latest_job_run,
            recent_job_runs=recent_job_runs,
        )

    # ------------------------------------------------------------------
    # Aggregation helpers

    def _summarize_leagues(self) -> list[LeagueOverview]:
        prediction_rows = self._session.execute(
            select(
                Prediction.league,
                func.count(Prediction.match_id),
                func.count(Prediction.is_correct),
            ).group_by(Prediction.league)
        ).all()
        correct_rows = self._session.execute(
            select(Prediction.league, func.count(Prediction.match_id))
            .where(Prediction.is_correct.is_(True))
            .group_by(Prediction.league)
        ).all()
        purchase_rows = self._session.execute(
            select(Match.league, func.count(Purchase.purchase_id))
            .join(Match, Match.match_id == Purchase.match_id)
            .group_by(Match.league)
        ).all()
        raffle_rows = self._session.execute(
            select(Raffle.league, func.count(Raffle.match_id)).group_by(Raffle.league)
        ).all()

        predictions = {league: (int(total), int(resolved)) for league, total, resolved in prediction_rows}
        correct = {league: int(count) for league, count in correct_rows}
        purchases = {league: int(count) for league, count in purchase_rows}
        raffles = {league: int(count) for league, count in raffle_rows}

        leagues = sorted(set(predictions) | set(purchases) | set(raffles))
        summaries: list[LeagueOverview] = []
        for league in leagues:
            total, resolved = predictions.get(league, (0, 0))
            hits = correct.get(league, 0)
            summaries.append(
                LeagueOverview(
                    league=league,
                    predictions=total,
                    resolved_predictions=resolved,
                    correct_predictions=hits,
                    accuracy=_accuracy(hits, resolved),
                    purchases=purchases.get(league, 0),
                    raffles=raffles.get(league, 0),
                )
            )
        return summaries

    def _load_recent_job_runs(self, *, limit: int = 10) -> list[JobRunSummary]:
        failure_counts = (
            select(JobFailure.run_id, func.count(JobFailure.failure_id).label("failures"))
            .group_by(JobFailure.run_id)
            .subquery()
        )
        rows = self._session.execute(
            select(JobRun, failure_counts.c.failures)
            .outerjoin(failure_counts, failure_counts.c.run_id == JobRun.run_id)
            .order_by(JobRun.started_at.desc())
            .limit(limit)
        ).all()

        summaries: list[JobRunSummary] = []
        for record, failures in rows:
            summaries.append(
                JobRunSummary(
                    run_id=record.run_id,
                    league=record.league,
                    phase=record.phase,
                    manual=record.manual,
                    status=record.status,
                    started_at=record.started_at,
                    finished_at=record.finished_at,
                    message=record.message,
                    failure_count=int(failures or 0),
                )
            )
        return summaries

    def _normalize_payout_status(self, rows: list[tuple[str | None, int]]) -> list[PayoutStatusCount]:
        counts: dict[str, int] = {}
        for status, count in rows:
            if status is None:
                continue
            counts[status] = int(count)

        order = {status.value: index for index, status in enumerate(PayoutStatus)}
        for default_status in order:
            counts.setdefault(default_status, 0)

        ordered_statuses = sorted(counts, key=lambda value: order.get(value, 99))
        return [PayoutStatusCount(status=status, count=counts[status]) for status in ordered_statuses]

    def _scalar(self, statement) -> int:
        return int(self._session.execute(statement).scalar_one() or 0)

    def _decimal(self, statement) -> float:
        return float(self._session.execute(statement).scalar_one() or 0)


__all__ = ["OverviewService"]
