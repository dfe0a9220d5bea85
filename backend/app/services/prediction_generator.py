"""Synthesize and persist one prediction per locked match."""

from __future__ import annotations

import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.leagues import LeagueConfig
from app.models import DRAW, Match, Prediction, PredictionSource
from app.repositories import MatchRepository, PredictionRepository

from .narrative import (
    NarrativeContext,
    NarrativeGenerator,
    TemplateNarrativeGenerator,
    render_prediction_text,
)


@dataclass(frozen=True, slots=True)
class ScoringModel:
    """Bounded random score model for one sport."""

    sport: str
    confidence_range: tuple[int, int]
    home_bias: float = 0.55
    min_score: int = 0
    max_score: int = 0
    home_boost: int = 0
    score_table: tuple[tuple[int, int], ...] = ()

    @property
    def allows_draw(self) -> bool:
        return self.sport == "soccer"


BASKETBALL_MODEL = ScoringModel(
    sport="basketball",
    confidence_range=(55, 75),
    home_bias=0.55,
    min_score=95,
    max_score=125,
    home_boost=3,
)

# Favourite-perspective scorelines; draws are symmetric.
SOCCER_MODEL = ScoringModel(
    sport="soccer",
    confidence_range=(58, 77),
    home_bias=0.55,
    score_table=(
        (1, 0),
        (2, 1),
        (2, 0),
        (3, 1),
        (1, 1),
        (2, 2),
        (0, 0),
        (3, 2),
        (3, 0),
    ),
)

SCORING_MODELS = {
    "basketball": BASKETBALL_MODEL,
    "soccer": SOCCER_MODEL,
}


@dataclass(slots=True)
class SimulatedResult:
    home_score: int
    away_score: int
    winner: str
    confidence: int
    over_under: str | None

    @property
    def score(self) -> str:
        return f"{self.home_score}-{self.away_score}"

    @property
    def total(self) -> int:
        return self.home_score + self.away_score


def simulate_result(model: ScoringModel, home_team: str, away_team: str, rng: random.Random) -> SimulatedResult:
    home_favoured = rng.random() < model.home_bias
    if model.score_table:
        favourite, underdog = rng.choice(model.score_table)
        home_score, away_score = (favourite, underdog) if home_favoured else (underdog, favourite)
    else:
        home_score = rng.randint(model.min_score, model.max_score)
        away_score = rng.randint(model.min_score, model.max_score)
        if home_favoured:
            home_score += model.home_boost
        if home_score == away_score:
            if home_favoured:
                home_score += 1
            else:
                away_score += 1

    if home_score > away_score:
        winner = home_team
    elif away_score > home_score:
        winner = away_team
    else:
        winner = DRAW

    over_under = None
    if model.allows_draw:
        over_under = "Over" if home_score + away_score > 2 else "Under"

    low, high = model.confidence_range
    return SimulatedResult(
        home_score=home_score,
        away_score=away_score,
        winner=winner,
        confidence=rng.randint(low, high),
        over_under=over_under,
    )


class PredictionGenerator:
    """Generate-once prediction writer for locked matches.

    Leagues flagged ``dedicated_generation`` are only written by their own
    scheduled job, which passes ``bypass_scope_check=True``; the general
    background sweep is refused so two jobs never race on the same match.
    """

    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        *,
        rng: random.Random | None = None,
        narrator: NarrativeGenerator | None = None,
    ) -> None:
        self._session = session
        self.settings = settings or get_settings()
        self._rng = rng or random.Random()
        self._narrator = narrator or TemplateNarrativeGenerator(self._rng)
        self._matches = MatchRepository(session)
        self._predictions = PredictionRepository(session)

    def generate_for_locked(
        self,
        league: str,
        locked_match_ids: Sequence[str],
        match_details: Mapping[str, Match] | None = None,
        *,
        bypass_scope_check: bool = False,
        now: datetime | None = None,
    ) -> int:
        config = self.settings.league_config(league)
        if not locked_match_ids:
            logger.info("No locked matches for {}; nothing to generate", config.code)
            return 0
        if config.dedicated_generation and not bypass_scope_check:
            logger.warning(
                "Refusing to generate {} predictions outside the dedicated league job", config.code
            )
            return 0

        now = now or datetime.now(timezone.utc)
        details: dict[str, Match] = dict(match_details or {})
        missing = [match_id for match_id in locked_match_ids if match_id not in details]
        details.update(self._matches.get_many(missing))
        existing = self._predictions.existing_ids(locked_match_ids)

        created = 0
        for match_id in locked_match_ids:
            if match_id in existing:
                continue
            match = details.get(match_id)
            if match is None:
                logger.warning("Locked match {} is missing from the match cache; skipping", match_id)
                continue
            if match.league != config.code:
                logger.warning(
                    "Refusing to generate {} prediction for {} match {}",
                    config.code,
                    match.league,
                    match_id,
                )
                continue
            try:
                if self._create(match, config, source=PredictionSource.SCHEDULED, now=now) is not None:
                    created += 1
            except Exception:
                self._session.rollback()
                logger.exception("Prediction generation failed for {}", match_id)

        logger.info("Generated {} predictions for {} ({} locked)", created, config.code, len(locked_match_ids))
        return created

    def generate_fallback(self, match: Match, *, now: datetime | None = None) -> Prediction:
        """Return the match prediction, creating a fallback one when none exists."""

        existing = self._predictions.get(match.match_id)
        if existing is not None:
            return existing
        config = self.settings.league_config(match.league)
        created = self._create(
            match, config, source=PredictionSource.FALLBACK, now=now or datetime.now(timezone.utc)
        )
        if created is not None:
            logger.info("Generated fallback prediction for {}", match.match_id)
            return created
        prediction = self._predictions.get(match.match_id)
        if prediction is None:
            raise RuntimeError(f"Prediction for {match.match_id} vanished after a write conflict")
        return prediction

    def _create(
        self,
        match: Match,
        config: LeagueConfig,
        *,
        source: PredictionSource,
        now: datetime,
    ) -> Prediction | None:
        model = SCORING_MODELS[config.sport]
        result = simulate_result(model, match.home_team, match.away_team, self._rng)
        narrative = self._narrator.generate(
            NarrativeContext(
                league=config.code,
                sport=config.sport,
                home_team=match.home_team,
                away_team=match.away_team,
                venue=match.venue,
                start_time=match.start_time,
                predicted_winner=result.winner,
                predicted_home_score=result.home_score,
                predicted_away_score=result.away_score,
                confidence=result.confidence,
                over_under=result.over_under,
            )
        )
        full_text = render_prediction_text(
            league=config.code,
            home_team=match.home_team,
            away_team=match.away_team,
            predicted_score=result.score,
            predicted_total=result.total,
            predicted_winner=result.winner,
            confidence=result.confidence,
            narrative=narrative,
            generated_at=now,
            over_under=result.over_under,
        )
        prediction = Prediction(
            match_id=match.match_id,
            league=config.code,
            predicted_winner=result.winner,
            predicted_score=result.score,
            predicted_home_score=result.home_score,
            predicted_away_score=result.away_score,
            predicted_total=result.total,
            confidence=result.confidence,
            over_under=result.over_under,
            narrative=narrative,
            full_text=full_text,
            source=source.value,
            generated_at=now,
        )
        try:
            self._predictions.add(prediction)
            self._session.commit()
        except IntegrityError:
            # A concurrent writer generated this match first.
            self._session.rollback()
            return None
        return prediction
