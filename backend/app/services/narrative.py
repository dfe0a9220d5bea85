"""Narrative text for generated predictions."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(slots=True)
class NarrativeContext:
    league: str
    sport: str
    home_team: str
    away_team: str
    venue: str | None
    start_time: datetime
    predicted_winner: str
    predicted_home_score: int
    predicted_away_score: int
    confidence: int
    over_under: str | None = None


class NarrativeGenerator(Protocol):
    def generate(self, context: NarrativeContext) -> str:
        ...


_BASKETBALL_TEMPLATES = (
    "{winner} look sharper on both ends heading into this one. Expect {loser} to keep it close "
    "through three quarters before {winner} pull away late for a {score} finish.",
    "Pace and depth favour {winner} tonight{venue_clause}. {loser} will need hot shooting from "
    "deep to stay in it, but the model sees {winner} closing it out {score}.",
    "{home} vs {away} shapes up as a high-tempo game. Rebounding and second-chance points tip "
    "the balance toward {winner}, {score}.",
)

_SOCCER_TEMPLATES = (
    "{winner} have the edge in midfield control{venue_clause}. {loser} should find chances on "
    "the break, but a {score} result looks most likely.",
    "Both sides press high, which usually opens the game up. Set pieces could decide it, and "
    "the model leans {winner} at {score}.",
    "{home} host {away} in a fixture that rarely lacks intensity. Expect a tight first half "
    "before {winner} find the decisive moments, {score}.",
)

_DRAW_TEMPLATES = (
    "{home} and {away} are closely matched{venue_clause}. Neither side is likely to take big "
    "risks, and a {score} draw is the model's call.",
    "Expect a cagey contest between {home} and {away}. Chances will be scarce and the points "
    "look set to be shared at {score}.",
)


class TemplateNarrativeGenerator:
    """Fill a randomly chosen sport-specific template with the prediction facts."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def generate(self, context: NarrativeContext) -> str:
        is_draw = context.predicted_home_score == context.predicted_away_score
        if is_draw:
            templates = _DRAW_TEMPLATES
        elif context.sport == "basketball":
            templates = _BASKETBALL_TEMPLATES
        else:
            templates = _SOCCER_TEMPLATES

        if context.predicted_winner == context.home_team:
            loser = context.away_team
        else:
            loser = context.home_team
        template = self._rng.choice(templates)
        text = template.format(
            home=context.home_team,
            away=context.away_team,
            winner=context.predicted_winner,
            loser=loser,
            score=f"{context.predicted_home_score}-{context.predicted_away_score}",
            venue_clause=f" at {context.venue}" if context.venue else "",
        )
        if context.over_under:
            text += f" Goals line: {context.over_under}."
        return text


def render_prediction_text(
    *,
    league: str,
    home_team: str,
    away_team: str,
    predicted_score: str,
    predicted_total: int,
    predicted_winner: str,
    confidence: int,
    narrative: str,
    generated_at: datetime,
    over_under: str | None = None,
) -> str:
    """Denormalized display rendering stored alongside each prediction."""

    lines = [
        f"[{league}] {home_team} vs {away_team}",
        "",
        f"Predicted Score: {predicted_score}",
        f"Total Score: {predicted_total}",
        f"Predicted Winner: {predicted_winner}",
    ]
    if over_under:
        lines.append(f"Over/Under 2.5: {over_under}")
    lines.extend(
        [
            f"Confidence: {confidence}%",
            "",
            "Review:",
            narrative,
            "",
            f"Generated: {generated_at.isoformat()}",
        ]
    )
    return "\n".join(lines)
