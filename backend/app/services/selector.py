"""Lock a bounded random subset of upcoming matches for each league cycle."""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.models import Match, MatchStage, MatchStatus
from app.repositories import MatchRepository, SelectionConflict, SelectionRepository
from app.scheduling.windows import ensure_utc, evaluator_for

MAX_APPEND_ATTEMPTS = 3


@dataclass(slots=True)
class SelectionOutcome:
    league: str
    cycle_date: date
    locked: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    eligible: int = 0
    shortfall: int = 0
    conflict: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "league": self.league,
            "cycle_date": self.cycle_date.isoformat(),
            "locked": list(self.locked),
            "added": list(self.added),
            "eligible": self.eligible,
            "shortfall": self.shortfall,
            "conflict": self.conflict,
        }


class SelectionService:
    """Merge-append selection of matches into ``(league, cycle_date)`` cycles.

    The locked set only ever grows. Appends are guarded by a version
    compare-and-swap on the cycle row plus a unique ``(league, match_id)``
    constraint on entries; a lost race is retried against fresh state.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._session = session
        self.settings = settings or get_settings()
        self._rng = rng or random.Random()
        self._selections = SelectionRepository(session)
        self._matches = MatchRepository(session)

    def select_for_cycle(
        self,
        league: str,
        candidates: Sequence[Match] | None,
        now: datetime,
    ) -> SelectionOutcome:
        config = self.settings.league_config(league)
        evaluator = evaluator_for(config, self.settings)
        now = ensure_utc(now)
        cycle_date = evaluator.cycle_date(now)
        start, end = evaluator.eligibility_range(cycle_date)

        if candidates is None:
            candidates = self._matches.list_candidates(config.code, start_after=start, start_before=end)

        for attempt in range(1, MAX_APPEND_ATTEMPTS + 1):
            cycle = self._selections.get_or_create_cycle(config.code, cycle_date, now=now)
            locked = cycle.match_ids
            outcome = SelectionOutcome(league=config.code, cycle_date=cycle_date, locked=list(locked))

            if len(locked) >= config.max_matches:
                outcome.conflict = "cycle_full"
                outcome.shortfall = max(0, config.min_matches - len(locked))
                logger.info(
                    "{} cycle {} already holds {} matches; nothing to add",
                    config.code,
                    cycle_date,
                    len(locked),
                )
                return outcome

            excluded = (
                set(locked)
                | self._selections.selected_match_ids(config.code)
                | self._matches.archived_ids(config.code)
                | self._matches.raffled_ids(config.code)
            )
            eligible = [
                match
                for match in candidates
                if match.league == config.code
                and match.match_id not in excluded
                and match.status == MatchStatus.SCHEDULED.value
                and start <= ensure_utc(match.start_time) < end
                and ensure_utc(match.start_time) > now
            ]
            eligible.sort(key=lambda match: match.match_id)
            self._rng.shuffle(eligible)
            additions = [match.match_id for match in eligible[: config.max_matches - len(locked)]]
            outcome.eligible = len(eligible)

            try:
                self._selections.append_entries(
                    cycle, additions, expected_version=cycle.version, now=now
                )
                self._matches.set_stage(additions, MatchStage.LOCKED)
                self._session.commit()
            except SelectionConflict as exc:
                self._session.rollback()
                logger.warning(
                    "Selection conflict for {} {} (attempt {}/{}): {}",
                    config.code,
                    cycle_date,
                    attempt,
                    MAX_APPEND_ATTEMPTS,
                    exc,
                )
                continue

            outcome.added = additions
            outcome.locked = list(locked) + additions
            outcome.shortfall = max(0, config.min_matches - len(outcome.locked))
            if outcome.shortfall:
                logger.warning(
                    "{} cycle {} locked {} matches, {} short of the minimum {}",
                    config.code,
                    cycle_date,
                    len(outcome.locked),
                    outcome.shortfall,
                    config.min_matches,
                )
            else:
                logger.info(
                    "{} cycle {} locked {} matches ({} new)",
                    config.code,
                    cycle_date,
                    len(outcome.locked),
                    len(additions),
                )
            return outcome

        cycle = self._selections.get_cycle(config.code, cycle_date)
        locked = cycle.match_ids if cycle else []
        return SelectionOutcome(
            league=config.code,
            cycle_date=cycle_date,
            locked=list(locked),
            shortfall=max(0, config.min_matches - len(locked)),
            conflict="concurrent_update",
        )

    def locked_for_cycle(self, league: str, cycle_date: date) -> list[str]:
        return self._selections.locked_ids(league.upper(), cycle_date)
