"""Fuzzy fixture matching across providers with inconsistent team naming.

Names are normalized first: accents and club-form tokens are stripped and
common abbreviations and nicknames are expanded ("LA" -> "los angeles",
"Man Utd" -> "manchester united", "Wolves" -> "wolverhampton wanderers").
Each side is then scored in tiers:

* exact normalized name: 1.0
* same words in a different order: 0.95
* rapidfuzz ``WRatio`` of at least 88: 0.85
* rapidfuzz ``WRatio`` of at least 80: 0.7

Names that each carry their own distinguishing words ("los angeles lakers"
and "los angeles clippers") score 0.0 however much else they share.

A fixture scores the weaker of its two sides. The highest fixture score wins;
when two candidates with different results share the top score the match is
reported as ambiguous and must not be applied. The same fixture reported by
several providers is not ambiguous.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from rapidfuzz import fuzz

from app.domain import MatchSnapshot

# Feeds disagree on kickoff by minutes; a different meeting is days apart.
KICKOFF_TOLERANCE = timedelta(hours=36)

STRONG_SIMILARITY = 88
WEAK_SIMILARITY = 80

_ORG_TOKENS = [
    r"\bfc\b",
    r"\bcf\b",
    r"\bsc\b",
    r"\bafc\b",
    r"\bssc\b",
    r"\bac\b",
    r"\bcd\b",
    r"\bud\b",
    r"\brc\b",
    r"\bclub\b",
    r"\bde\b",
    r"\bthe\b",
]

_TOKEN_EXPANSIONS = {
    "la": "los angeles",
    "ny": "new york",
    "okc": "oklahoma city",
    "man": "manchester",
    "utd": "united",
    "nott": "nottingham",
}

_TEAM_ALIASES = {
    "wolves": "wolverhampton wanderers",
    "nottingham m forest": "nottingham forest",
    "barca": "barcelona",
    "atleti": "atletico madrid",
    "sixers": "philadelphia 76ers",
    "blazers": "portland trail blazers",
}


def normalize_team_name(name: str | None) -> str:
    """Lowercase, strip accents and club-form tokens, expand common short forms.

    "Real Madrid CF" -> "real madrid", "Atlético de Madrid" -> "atletico madrid",
    "Man Utd" -> "manchester united", "LA Clippers" -> "los angeles clippers".
    """

    if not name:
        return ""
    value = name.lower().strip()
    value = value.replace("ø", "o").replace("æ", "ae").replace("ð", "d")
    value = unicodedata.normalize("NFKD", value)
    value = "".join(char for char in value if not unicodedata.combining(char))
    value = re.sub(r"[^\w\s]", " ", value)
    for token in _ORG_TOKENS:
        value = re.sub(token, " ", value)
    value = " ".join(_TOKEN_EXPANSIONS.get(token, token) for token in value.split())
    return _TEAM_ALIASES.get(value, value)


def _distinct_words_clash(left: str, right: str) -> bool:
    left_tokens = left.split()
    right_tokens = right.split()
    left_only = [token for token in left_tokens if token not in right_tokens]
    right_only = [token for token in right_tokens if token not in left_tokens]
    if not left_only or not right_only:
        return False
    return fuzz.ratio(" ".join(left_only), " ".join(right_only)) < WEAK_SIMILARITY


def side_score(expected: str, candidate: str) -> float:
    left = normalize_team_name(expected)
    right = normalize_team_name(candidate)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    if sorted(left.split()) == sorted(right.split()):
        return 0.95
    if _distinct_words_clash(left, right):
        return 0.0

    similarity = fuzz.WRatio(left, right)
    if similarity >= STRONG_SIMILARITY:
        return 0.85
    if similarity >= WEAK_SIMILARITY:
        return 0.7
    return 0.0


def fixture_score(home: str, away: str, candidate: MatchSnapshot) -> float:
    return min(side_score(home, candidate.home_team), side_score(away, candidate.away_team))


@dataclass(slots=True)
class FixtureResolution:
    snapshot: MatchSnapshot | None
    score: float = 0.0
    ambiguous: bool = False
    contenders: list[MatchSnapshot] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.snapshot is not None and not self.ambiguous


def _fixture_key(snapshot: MatchSnapshot) -> tuple[str, str]:
    return normalize_team_name(snapshot.home_team), normalize_team_name(snapshot.away_team)


class TeamMatcher:
    """Resolve a stored fixture against feed snapshots by team names."""

    def __init__(self, threshold: float = 0.6, *, kickoff_tolerance: timedelta = KICKOFF_TOLERANCE) -> None:
        self.threshold = threshold
        self.kickoff_tolerance = kickoff_tolerance

    def resolve(
        self,
        home: str,
        away: str,
        candidates: Sequence[MatchSnapshot],
        *,
        league: str | None = None,
        kickoff: datetime | None = None,
    ) -> FixtureResolution:
        scored: list[tuple[float, MatchSnapshot]] = []
        for candidate in candidates:
            if league and candidate.league and candidate.league.upper() != league.upper():
                continue
            if (
                kickoff is not None
                and candidate.start_time is not None
                and abs(candidate.start_time - kickoff) > self.kickoff_tolerance
            ):
                continue
            score = fixture_score(home, away, candidate)
            if score >= self.threshold:
                scored.append((score, candidate))

        if not scored:
            return FixtureResolution(snapshot=None)

        top_score = max(score for score, _ in scored)
        leaders = [candidate for score, candidate in scored if score == top_score]
        distinct = {_fixture_key(candidate) for candidate in leaders}
        if len(distinct) > 1:
            return FixtureResolution(
                snapshot=None, score=top_score, ambiguous=True, contenders=leaders
            )
        # Same fixture reported by several providers; prefer one carrying a final score.
        preferred = next((item for item in leaders if item.has_final_score), leaders[0])
        return FixtureResolution(snapshot=preferred, score=top_score, contenders=leaders)
