"""Route timer and worker invocations to the per-league scheduled phases."""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.leagues import LeagueConfig
from app.models import MatchStage
from app.repositories import JobRepository, MatchRepository, SelectionRepository
from app.services.errors import UnknownLeagueError
from app.services.payout import PayoutClient, TreasuryPayoutClient
from app.services.prediction_generator import PredictionGenerator
from app.services.reconciler import ResultReconciler
from app.services.selector import SelectionService
from app.services.settlement import SettlementEngine
from ingestion.client import SportsFeedClient

from .windows import Phase, WindowEvaluator, ensure_utc, evaluator_for

PhaseHandler = Callable[[LeagueConfig, WindowEvaluator, datetime], "PhaseReport"]


@dataclass(slots=True)
class PhaseReport:
    message: str
    counts: dict[str, Any] = field(default_factory=dict)
    failures: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class PhaseResult:
    ok: bool
    league: str
    phase: Phase
    message: str
    in_slot: bool
    counts: dict[str, Any] = field(default_factory=dict)
    run_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "message": self.message,
            "league": self.league,
            "phase": self.phase.value,
            "in_slot": self.in_slot,
            "run_id": self.run_id,
            "counts": self.counts,
        }


class Dispatcher:
    """Run SELECT, PREDICT, CLOSE and SETTLE phases for each league.

    Every invocation is recorded as a job run. Phases invoked outside their
    automation slot log a warning and still run, which keeps manual triggers
    usable. Failures are logged per league and never escape ``tick``.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        *,
        feed: SportsFeedClient | None = None,
        payout_client: PayoutClient | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._session = session
        self.settings = settings or get_settings()
        self._feed = feed
        self._payout_client = payout_client
        self._owned_payout_client: TreasuryPayoutClient | None = None
        self._rng = rng or random.Random()
        self._jobs = JobRepository(session)
        self._matches = MatchRepository(session)
        self._selections = SelectionRepository(session)
        self._handlers: dict[Phase, PhaseHandler] = {
            Phase.SELECT: self._select,
            Phase.PREDICT: self._predict,
            Phase.CLOSE: self._close,
            Phase.SETTLE: self._settle,
        }

    def close(self) -> None:
        if self._owned_payout_client is not None:
            self._owned_payout_client.close()
            self._owned_payout_client = None
            self._payout_client = None

    def _league(self, league: str) -> LeagueConfig:
        try:
            return self.settings.league_config(league)
        except KeyError as exc:
            raise UnknownLeagueError(f"Unknown league '{league}'") from exc

    # ------------------------------------------------------------------
    # Entry points

    def run_phase(
        self,
        league: str,
        phase: Phase | str,
        now: datetime | None = None,
        *,
        manual: bool = False,
    ) -> PhaseResult:
        config = self._league(league)
        phase = Phase(phase)
        now = ensure_utc(now or datetime.now(timezone.utc))
        evaluator = evaluator_for(config, self.settings)
        in_slot = evaluator.in_slot(phase, now)
        if not in_slot:
            logger.warning(
                "{} {} invoked at {} outside its {} {} slot. Proceeding anyway (manual trigger allowed)",
                config.code,
                phase.value,
                evaluator.local(now).strftime("%H:%M"),
                evaluator.slot_time(phase).strftime("%H:%M"),
                self.settings.schedule_timezone_label,
            )

        run_id = str(uuid.uuid4())
        self._jobs.create_run(
            run_id=run_id, league=config.code, phase=phase.value, manual=manual, started_at=now
        )
        self._session.commit()

        try:
            report = self._handlers[phase](config, evaluator, now)
            ok = True
        except Exception as exc:
            self._session.rollback()
            logger.exception("{} {} phase failed", config.code, phase.value)
            report = PhaseReport(message=f"{phase.value} failed: {exc}")
            ok = False

        run = self._jobs.get_run(run_id)
        if run is not None:
            finished_at = datetime.now(timezone.utc)
            for failure in report.failures:
                self._jobs.record_failure(
                    run_id,
                    match_id=failure.get("match_id"),
                    reason=str(failure.get("reason")),
                    logged_at=finished_at,
                )
            self._jobs.finalize_run(
                run,
                status="completed" if ok else "failed",
                message=report.message,
                counts=report.counts,
                finished_at=finished_at,
            )
            self._session.commit()

        return PhaseResult(
            ok=ok,
            league=config.code,
            phase=phase,
            message=report.message,
            in_slot=in_slot,
            counts=report.counts,
            run_id=run_id,
        )

    def tick(self, now: datetime | None = None) -> list[PhaseResult]:
        """Run every phase whose automation slot contains ``now``."""

        now = ensure_utc(now or datetime.now(timezone.utc))
        results: list[PhaseResult] = []
        for config in self.settings.league_configs():
            evaluator = evaluator_for(config, self.settings)
            for phase in evaluator.active_phases(now):
                try:
                    results.append(self.run_phase(config.code, phase, now))
                except Exception:
                    self._session.rollback()
                    logger.exception("Scheduler tick failed for {} {}", config.code, phase.value)
        if not results:
            logger.info("No automation slots active at {}", now.isoformat())
        return results

    def sweep_predictions(self, now: datetime | None = None) -> dict[str, int]:
        """General-purpose background generation for non-dedicated leagues."""

        now = ensure_utc(now or datetime.now(timezone.utc))
        generator = PredictionGenerator(self._session, self.settings, rng=self._rng)
        generated: dict[str, int] = {}
        for config in self.settings.league_configs():
            if config.dedicated_generation:
                continue
            evaluator = evaluator_for(config, self.settings)
            locked = self._selections.locked_ids(config.code, evaluator.cycle_date(now))
            try:
                generated[config.code] = generator.generate_for_locked(config.code, locked, now=now)
            except Exception:
                self._session.rollback()
                logger.exception("Background prediction sweep failed for {}", config.code)
                generated[config.code] = 0
        return generated

    # ------------------------------------------------------------------
    # Phases

    def _select(self, config: LeagueConfig, evaluator: WindowEvaluator, now: datetime) -> PhaseReport:
        refreshed = 0
        if self._feed is not None:
            snapshots = self._feed.fetch_fixtures(config, today=evaluator.local(now).date())
            refreshed = self._matches.upsert_snapshots(snapshots, synced_at=now)
            self._session.commit()

        outcome = SelectionService(self._session, self.settings, rng=self._rng).select_for_cycle(
            config.code, None, now
        )
        counts = {"refreshed": refreshed, **outcome.to_dict()}
        counts.pop("league", None)
        if outcome.conflict == "cycle_full":
            message = f"{config.code} cycle {outcome.cycle_date} already full"
        elif outcome.shortfall:
            message = (
                f"Locked {len(outcome.locked)} {config.code} matches, "
                f"{outcome.shortfall} short of minimum {config.min_matches}"
            )
        else:
            message = f"Locked {len(outcome.locked)} {config.code} matches ({len(outcome.added)} new)"
        return PhaseReport(message=message, counts=counts)

    def _predict(self, config: LeagueConfig, evaluator: WindowEvaluator, now: datetime) -> PhaseReport:
        cycle_date = evaluator.cycle_date(now)
        locked = self._selections.locked_ids(config.code, cycle_date)
        details = self._matches.get_many(locked)
        generator = PredictionGenerator(self._session, self.settings, rng=self._rng)
        generated = generator.generate_for_locked(
            config.code, locked, details, bypass_scope_check=True, now=now
        )
        message = (
            f"Generated {generated} {config.code} predictions"
            if locked
            else f"No locked {config.code} matches for {cycle_date}"
        )
        return PhaseReport(
            message=message,
            counts={"cycle_date": cycle_date.isoformat(), "locked": len(locked), "generated": generated},
        )

    def _close(self, config: LeagueConfig, evaluator: WindowEvaluator, now: datetime) -> PhaseReport:
        through = evaluator.closed_cycle_date(now)
        cycles = self._selections.list_unclosed_cycles(config.code, through=through)
        archived = 0
        awaiting = 0
        failures: list[dict[str, Any]] = []
        for cycle in cycles:
            cycle_date = cycle.cycle_date
            try:
                matches = self._matches.get_many(cycle.match_ids)
                for match_id in cycle.match_ids:
                    match = matches.get(match_id)
                    if match is None:
                        failures.append({"match_id": match_id, "reason": "locked match missing from cache"})
                        continue
                    prediction_text = match.prediction.full_text if match.prediction else None
                    if self._matches.archive(
                        match, cycle_date=cycle_date, archived_at=now, prediction_text=prediction_text
                    ):
                        archived += 1
                awaiting += self._matches.set_stage(cycle.match_ids, MatchStage.AWAITING_RESULT)
                self._selections.mark_closed(cycle, closed_at=now)
                self._session.commit()
            except Exception as exc:
                self._session.rollback()
                logger.exception("Closing {} cycle {} failed", config.code, cycle_date)
                failures.append({"match_id": None, "reason": f"cycle {cycle_date}: {exc}"})

        message = f"Closed {len(cycles)} {config.code} cycles, archived {archived} matches"
        logger.info(message)
        return PhaseReport(
            message=message,
            counts={
                "cycles_closed": len(cycles),
                "archived": archived,
                "awaiting_result": awaiting,
            },
            failures=failures,
        )

    def _settle(self, config: LeagueConfig, evaluator: WindowEvaluator, now: datetime) -> PhaseReport:
        reconciler = ResultReconciler(self._session, self.settings, feed=self._feed)
        results = reconciler.reconcile_pending(now=now, league=config.code)
        if self._payout_client is None:
            self._owned_payout_client = TreasuryPayoutClient(settings=self.settings)
            self._payout_client = self._owned_payout_client
        engine = SettlementEngine(
            self._session, self.settings, payout_client=self._payout_client, rng=self._rng
        )
        settlement = engine.settle_league(config.code, now=now)
        message = (
            f"Updated {results.updated} results and drew {settlement.settled} "
            f"{config.code} raffles ({settlement.payout_failed} payouts failed)"
        )
        return PhaseReport(
            message=message,
            counts={
                "results_checked": results.checked,
                "results_updated": results.updated,
                "results_pending": results.still_pending,
                "raffles_settled": settlement.settled,
                "payouts_paid": settlement.paid,
                "payouts_failed": settlement.payout_failed,
            },
            failures=[*results.failures, *settlement.failures],
        )
