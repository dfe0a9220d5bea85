"""Repository abstractions for database interactions."""

from .job_repository import JobRepository
from .match_repository import MatchRepository
from .prediction_repository import PredictionRepository
from .purchase_repository import PurchaseRepository
from .raffle_repository import RaffleRepository
from .selection_repository import SelectionConflict, SelectionRepository

__all__ = [
    "JobRepository",
    "MatchRepository",
    "PredictionRepository",
    "PurchaseRepository",
    "RaffleRepository",
    "SelectionConflict",
    "SelectionRepository",
]
