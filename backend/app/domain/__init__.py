"""Domain models representing normalized match data."""

from .models import MatchSnapshot, build_match_id

__all__ = [
    "MatchSnapshot",
    "build_match_id",
]
